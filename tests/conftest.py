"""Shared fixtures: a scripted stand-in for the analysis service client."""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from typing import Dict, List, Optional

import pytest

from huddle_dashboard.models import (
    ChatExchange,
    ChatMessage,
    FileEntry,
    JobStatus,
    RemoteStatus,
    UploadRequest,
)


class FakeTransport:
    """Implements the TransportClient surface with scripted answers.

    Queued results may be exceptions, which are raised instead of returned.
    Optional ``asyncio.Event`` gates hold a call open until the test sets them.
    """

    def __init__(self):
        self.submitted: List[UploadRequest] = []
        self.submit_results: deque = deque()
        self.status_calls: List[str] = []
        self.status_results: deque = deque()
        self.status_gate: Optional[asyncio.Event] = None

        self.sent: List[str] = []
        self.send_results: Dict[str, object] = {}
        self.send_gates: Dict[str, asyncio.Event] = {}
        self.history: List[ChatMessage] = []
        self.clear_error: Optional[Exception] = None
        self.cleared = 0

        self.files: List[FileEntry] = []
        self.list_files_error: Optional[Exception] = None
        self.reorders: List[List[str]] = []
        self.reorder_results: deque = deque()
        self.reorder_gate: Optional[asyncio.Event] = None

        self._ids = itertools.count(1)

    async def submit_job(self, upload: UploadRequest) -> str:
        self.submitted.append(upload)
        result = self.submit_results.popleft() if self.submit_results else f"job-{len(self.submitted)}"
        if isinstance(result, Exception):
            raise result
        return result

    async def job_status(self, job_id: str) -> JobStatus:
        self.status_calls.append(job_id)
        if self.status_gate is not None:
            await self.status_gate.wait()
        result = self.status_results.popleft() if self.status_results else JobStatus(RemoteStatus.PROCESSING)
        if isinstance(result, Exception):
            raise result
        return result

    async def send_message(self, content: str) -> ChatExchange:
        self.sent.append(content)
        gate = self.send_gates.get(content)
        if gate is not None:
            await gate.wait()
        result = self.send_results.get(content)
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        number = next(self._ids)
        return ChatExchange(
            user_message=ChatMessage(id=f"msg-{number}-user", role="user", content=content),
            assistant_message=ChatMessage(
                id=f"msg-{number}-assistant", role="assistant", content=f"re: {content}"
            ),
        )

    async def chat_history(self, limit: int = 50) -> List[ChatMessage]:
        return list(self.history[-limit:])

    async def clear_chat(self) -> None:
        if self.clear_error is not None:
            raise self.clear_error
        self.cleared += 1

    async def list_files(self) -> List[FileEntry]:
        if self.list_files_error is not None:
            raise self.list_files_error
        return list(self.files)

    async def reorder_files(self, file_hashes) -> None:
        self.reorders.append(list(file_hashes))
        if self.reorder_gate is not None:
            await self.reorder_gate.wait()
        result = self.reorder_results.popleft() if self.reorder_results else None
        if isinstance(result, Exception):
            raise result


def make_file(key: str) -> FileEntry:
    return FileEntry(id=key, file_name=f"{key}.pdf", file_hash=key)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def abcd_files() -> List[FileEntry]:
    return [make_file(key) for key in ("A", "B", "C", "D")]
