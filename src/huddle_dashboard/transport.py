"""Authenticated HTTP client for the team analysis service."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from huddle_dashboard.errors import (
    AccessDeniedError,
    NetworkError,
    TransportError,
    error_message_from,
    is_access_denied,
)
from huddle_dashboard.models import ChatExchange, ChatMessage, FileEntry, JobStatus, UploadRequest

logger = logging.getLogger(__name__)

TEAM_HEADER = "x-team-id"


class TransportClient:
    """Issues team-scoped requests and turns HTTP failures into typed errors.

    Every response body is normalized into the shapes in
    :mod:`huddle_dashboard.models` before it is returned.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        team_id: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Analysis service root, e.g. ``http://localhost:8000``.
            token: Bearer credential sent on every request.
            team_id: Team the requests are scoped to.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.team_id = team_id

        headers = {TEAM_HEADER: team_id}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _team_path(self, suffix: str) -> str:
        return f"/api/teams/{self.team_id}{suffix}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning(f"{method} {path} failed before a response: {exc}")
            raise NetworkError(f"Network error: {exc}") from exc

        if response.is_error:
            raise _error_for(response)

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(
                "Malformed response from analysis service",
                status_code=response.status_code,
            ) from exc
        return body if isinstance(body, dict) else {"data": body}

    # ------------------------------------------------------------------
    # Upload jobs
    # ------------------------------------------------------------------

    async def submit_job(self, upload: UploadRequest) -> str:
        """Upload a document and return the job id issued by the service."""

        body = await self._request(
            "POST",
            self._team_path("/upload"),
            files={"file": (upload.file_name, upload.content, upload.content_type)},
            data={"source_type": upload.source_type},
        )
        job_id = body.get("job_id") or body.get("jobId")
        if not job_id:
            raise TransportError("Upload response did not include a job id")
        return str(job_id)

    async def job_status(self, job_id: str) -> JobStatus:
        body = await self._request("GET", self._team_path(f"/upload/{job_id}/status"))
        return JobStatus.from_payload(body)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send_message(self, content: str) -> ChatExchange:
        body = await self._request("POST", self._team_path("/chat"), json={"message": content})
        try:
            return ChatExchange.from_payload(body)
        except ValueError as exc:
            raise TransportError(str(exc)) from exc

    async def chat_history(self, limit: int = 50) -> List[ChatMessage]:
        body = await self._request(
            "GET", self._team_path("/chat/history"), params={"limit": limit}
        )
        return [
            ChatMessage.from_payload(item)
            for item in body.get("messages") or []
            if isinstance(item, dict)
        ]

    async def clear_chat(self) -> None:
        await self._request("DELETE", self._team_path("/chat/clear"))

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def list_files(self) -> List[FileEntry]:
        body = await self._request("GET", self._team_path("/files"))
        entries: List[FileEntry] = []
        for item in body.get("files") or []:
            if not isinstance(item, dict):
                continue
            try:
                entries.append(FileEntry.from_payload(item))
            except ValueError:
                logger.warning(f"Skipping file entry without a key: {item!r}")
        return entries

    async def reorder_files(self, file_hashes: Sequence[str]) -> None:
        await self._request(
            "PATCH",
            self._team_path("/files/reorder"),
            json={"files": list(file_hashes)},
        )


def _error_for(response: httpx.Response) -> TransportError:
    """Map an error response onto the error taxonomy."""

    try:
        payload: Any = response.json()
    except ValueError:
        payload = response.text

    message = error_message_from(payload, default=f"Request failed with status {response.status_code}")
    if is_access_denied(response.status_code, message):
        return AccessDeniedError(message, status_code=response.status_code)
    return TransportError(message, status_code=response.status_code)
