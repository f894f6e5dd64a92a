"""Strict internal shapes for data received from the analysis service.

The service is loose about field names (snake_case and camelCase both show
up, and a few fields have historical aliases). Everything is normalized here,
at the transport boundary, so the rest of the package only sees one shape.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

MAX_UPLOAD_BYTES = 50 * 1024 * 1024


class RemoteStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_STATUS_ALIASES = {
    "pending": RemoteStatus.PROCESSING,
    "queued": RemoteStatus.PROCESSING,
    "processing": RemoteStatus.PROCESSING,
    "completed": RemoteStatus.COMPLETED,
    "complete": RemoteStatus.COMPLETED,
    "failed": RemoteStatus.FAILED,
    "error": RemoteStatus.FAILED,
}


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class UploadRequest:
    """A document to submit for analysis."""

    file_name: str
    content: bytes
    source_type: str = "document"
    content_type: str = "application/octet-stream"

    def validation_error(self) -> Optional[str]:
        """Return why the upload cannot be submitted, or None when it can."""
        if not self.file_name.strip():
            return "No file provided"
        if not self.content:
            return "File is empty"
        if len(self.content) > MAX_UPLOAD_BYTES:
            return "File exceeds the 50 MB upload limit"
        return None


@dataclass(frozen=True)
class JobResult:
    decision_count: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobStatus:
    """One normalized answer to a status query."""

    status: RemoteStatus
    result: Optional[JobResult] = None
    error: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "JobStatus":
        if isinstance(data.get("job"), dict):
            data = data["job"]

        raw_status = str(data.get("status") or "").strip().lower()
        status = _STATUS_ALIASES.get(raw_status, RemoteStatus.PROCESSING)

        if status is RemoteStatus.COMPLETED:
            count = _first(data, "decisions_extracted", "decisions_count", "decisionCount", default=0)
            try:
                count = int(count)
            except (TypeError, ValueError):
                count = 0
            return cls(status=status, result=JobResult(decision_count=count, payload=dict(data)))

        if status is RemoteStatus.FAILED:
            error = _first(data, "error", "error_message", "errorMessage")
            return cls(status=status, error=str(error) if error else None)

        return cls(status=status)


@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: str
    content: str
    sources: Tuple[str, ...] = ()
    created_at: str = ""

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ChatMessage":
        role = str(data.get("role") or "assistant").lower()
        if role not in ("user", "assistant"):
            role = "assistant"
        sources = data.get("sources") or ()
        return cls(
            id=str(_first(data, "id", "message_id", "messageId", default="") or uuid.uuid4()),
            role=role,
            content=str(data.get("content") or ""),
            sources=tuple(str(source) for source in sources),
            created_at=str(_first(data, "created_at", "createdAt", default="") or _now_iso()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "sources": list(self.sources),
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class ChatExchange:
    """The confirmed pair returned by a successful send."""

    user_message: ChatMessage
    assistant_message: ChatMessage

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ChatExchange":
        user = _first(data, "userMessage", "user_message")
        assistant = _first(data, "assistantMessage", "assistant_message")
        if not isinstance(user, dict) or not isinstance(assistant, dict):
            raise ValueError("chat response is missing the confirmed messages")
        return cls(
            user_message=ChatMessage.from_payload({"role": "user", **user}),
            assistant_message=ChatMessage.from_payload({"role": "assistant", **assistant}),
        )


@dataclass(frozen=True)
class FileEntry:
    id: str
    file_name: str
    file_hash: str
    status: str = "completed"
    decision_count: int = 0
    uploaded_at: str = ""
    uploaded_by: Optional[str] = None
    uploaded_by_name: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "FileEntry":
        file_hash = _first(data, "file_hash", "fileHash", "id")
        if not file_hash:
            raise ValueError("file entry has no stable key")
        status = str(data.get("status") or "completed").lower()
        if status not in ("processing", "completed", "failed"):
            status = "completed"
        count = _first(data, "decision_count", "decisionCount", default=0)
        try:
            count = int(count)
        except (TypeError, ValueError):
            count = 0
        return cls(
            id=str(_first(data, "file_hash", "fileHash", "id")),
            file_name=str(_first(data, "file_name", "fileName", default="Unknown")),
            file_hash=str(file_hash),
            status=status,
            decision_count=count,
            uploaded_at=str(_first(data, "uploaded_at", "uploadedAt", default="") or _now_iso()),
            uploaded_by=_first(data, "uploaded_by", "uploadedBy"),
            uploaded_by_name=_first(data, "uploaded_by_name", "uploadedByName"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fileName": self.file_name,
            "fileHash": self.file_hash,
            "status": self.status,
            "decisionCount": self.decision_count,
            "uploadedAt": self.uploaded_at,
            "uploadedBy": self.uploaded_by,
            "uploadedByName": self.uploaded_by_name,
        }
