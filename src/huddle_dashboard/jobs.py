"""Client-side record of one upload/analysis job."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from huddle_dashboard.errors import AuthoritativeFailure, DashboardError, TransientPollError
from huddle_dashboard.models import JobResult


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(str, Enum):
    TRANSIENT = "transient"
    AUTHORITATIVE = "authoritative"


@dataclass(frozen=True)
class JobSnapshot:
    """Immutable view of a job at one point in time."""

    slot: str
    id: Optional[str]
    state: JobState
    result: Optional[JobResult] = None
    failure_reason: Optional[FailureReason] = None
    message: Optional[str] = None
    access_denied: bool = False
    last_error: Optional[str] = None
    consecutive_errors: int = 0
    ticks: int = 0
    error: Optional[DashboardError] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)


class Job:
    """Mutable job record. Only :class:`~huddle_dashboard.poller.JobPoller` writes it."""

    def __init__(self, slot: str):
        self.slot = slot
        self.id: Optional[str] = None
        self.state = JobState.SUBMITTED
        self.result: Optional[JobResult] = None
        self.failure_reason: Optional[FailureReason] = None
        self.message: Optional[str] = None
        self.access_denied = False
        self.last_error: Optional[TransientPollError] = None
        self.consecutive_errors = 0
        self.failure_streak = 0
        self.ticks = 0
        self.cancelled = False
        self.timer: Any = None
        self.in_flight = False
        self.error: Optional[DashboardError] = None

    def __repr__(self) -> str:
        return f"Job(slot={self.slot!r}, id={self.id!r}, state={self.state.value})"

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)

    def start_polling(self, job_id: str) -> None:
        self.id = job_id
        self.state = JobState.POLLING

    def succeed(self, result: Optional[JobResult]) -> None:
        self.state = JobState.SUCCEEDED
        self.result = result or JobResult()
        self.last_error = None

    def fail(
        self,
        reason: FailureReason,
        message: str,
        access_denied: bool = False,
        status_code: Optional[int] = None,
    ) -> None:
        self.state = JobState.FAILED
        self.failure_reason = reason
        self.message = message
        self.access_denied = access_denied
        self.last_error = None
        if reason is FailureReason.AUTHORITATIVE:
            self.error = AuthoritativeFailure(message, status_code)
        else:
            self.error = TransientPollError(message, self.failure_streak, status_code)

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            slot=self.slot,
            id=self.id,
            state=self.state,
            result=self.result,
            failure_reason=self.failure_reason,
            message=self.message,
            access_denied=self.access_denied,
            last_error=self.last_error.message if self.last_error else None,
            consecutive_errors=self.consecutive_errors,
            ticks=self.ticks,
            error=self.error,
        )
