"""Map job and collection state onto what the presentation layer shows."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from huddle_dashboard.jobs import JobSnapshot, JobState

if TYPE_CHECKING:
    from huddle_dashboard.mutator import ChatSession, FileBoard

SESSION_EXPIRED_MESSAGE = "Session expired. Please log out and log back in."
PROCESSING_FAILED_MESSAGE = "Processing failed"
UPLOAD_FAILED_MESSAGE = "Upload failed"


class UploadPhase(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class JobView:
    phase: UploadPhase
    job_id: Optional[str] = None
    message: Optional[str] = None
    decision_count: int = 0
    can_retry: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data


def project_job(snapshot: Optional[JobSnapshot]) -> JobView:
    """Return the single presentation state for a job snapshot."""

    if snapshot is None:
        return JobView(phase=UploadPhase.IDLE)

    if snapshot.state is JobState.SUBMITTED:
        return JobView(phase=UploadPhase.UPLOADING)

    if snapshot.state is JobState.SUCCEEDED:
        count = snapshot.result.decision_count if snapshot.result else 0
        return JobView(phase=UploadPhase.COMPLETE, job_id=snapshot.id, decision_count=count)

    if snapshot.state is JobState.FAILED:
        if snapshot.access_denied:
            message = SESSION_EXPIRED_MESSAGE
        elif snapshot.id is None:
            message = snapshot.message or UPLOAD_FAILED_MESSAGE
        else:
            message = snapshot.message or PROCESSING_FAILED_MESSAGE
        return JobView(phase=UploadPhase.ERROR, job_id=snapshot.id, message=message)

    # Still polling; a surfaced transient error is shown but the job stays alive.
    return JobView(
        phase=UploadPhase.ANALYZING,
        job_id=snapshot.id,
        message=snapshot.last_error,
        can_retry=snapshot.last_error is not None,
    )


def project_chat(session: "ChatSession") -> Dict[str, Any]:
    return {
        "messages": [
            {**item.value.to_dict(), "localId": item.local_id, "pending": item.pending}
            for item in session.collection
        ],
        "input": session.input_buffer,
        "error": session.error,
        "sending": session.sending,
    }


def project_files(board: "FileBoard", query: str = "") -> Dict[str, Any]:
    files = board.filter(query) if query else [item.value for item in board.collection]
    return {
        "files": [entry.to_dict() for entry in files],
        "completed": sum(1 for item in board.collection if item.value.status == "completed"),
        "saving": board.saving,
        "error": board.error,
        "view": board.view,
    }
