"""Error taxonomy shared by the transport, the job poller and the mutators."""

from __future__ import annotations

from typing import Any, Optional

ACCESS_DENIED_MARKER = "access denied"
ACCESS_DENIED_STATUSES = (401, 403)


class DashboardError(Exception):
    """Base class for every error raised by the dashboard core."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ----------------------------------------------------------------------
# Transport level
# ----------------------------------------------------------------------


class TransportError(DashboardError):
    """A request to the analysis service failed or returned an error status."""


class NetworkError(TransportError):
    """The request never produced an HTTP response (timeout, refused, reset)."""


class AccessDeniedError(TransportError):
    """The service refused the credential or the team membership."""


# ----------------------------------------------------------------------
# Core level
# ----------------------------------------------------------------------


class SubmissionError(DashboardError):
    """A job could not be started."""

    def __init__(self, message: str, status_code: Optional[int] = None, job: Any = None):
        super().__init__(message, status_code)
        self.job = job


class TransientPollError(DashboardError):
    """A status query failed in a way that may succeed on retry."""

    def __init__(self, message: str, attempts: int = 1, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.attempts = attempts


class AuthoritativeFailure(DashboardError):
    """The server reported a terminal failure, or access was revoked."""


class MutationConflict(DashboardError):
    """An optimistic write was rejected; local state must roll back."""


def is_access_denied(status_code: Optional[int], message: str = "") -> bool:
    if status_code in ACCESS_DENIED_STATUSES:
        return True
    return ACCESS_DENIED_MARKER in (message or "").lower()


def is_transient(error: BaseException) -> bool:
    """Return True for request errors that are worth retrying.

    Only access-denied errors are authoritative; every other transport error
    is treated as a transient hiccup.
    """
    if isinstance(error, AccessDeniedError):
        return False
    return isinstance(error, TransportError)


def error_message_from(payload: Any, default: str) -> str:
    """Pull a human-readable message out of an error response body."""
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return default
