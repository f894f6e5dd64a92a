"""Drive upload jobs from submission to a terminal state.

A job is polled on a fixed interval until the service reports it completed
or failed. Request errors are split in two classes:

* access denied: the job fails immediately and polling stops for good;
* anything else: one automatic retry after a longer backoff, after which the
  error is surfaced and the job waits for a manual retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from huddle_dashboard.errors import (
    AccessDeniedError,
    SubmissionError,
    TransientPollError,
    TransportError,
)
from huddle_dashboard.events import EventCoordinator
from huddle_dashboard.jobs import FailureReason, Job, JobSnapshot, JobState
from huddle_dashboard.models import RemoteStatus, UploadRequest
from huddle_dashboard.projector import project_job
from huddle_dashboard.retry import RetryPolicy
from huddle_dashboard.scheduler import AsyncioScheduler

logger = logging.getLogger(__name__)

DEFAULT_SLOT = "default"


@dataclass(frozen=True)
class PollPolicy:
    """Timing for status queries.

    Attributes:
        interval: Seconds between status queries while the job is processing.
        initial_delay: Seconds between submission and the first status query.
        retry: Policy for status queries that raise.
    """

    interval: float = 2.0
    initial_delay: float = 0.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)


class JobPoller:
    """Owns every tracked job and the timers that poll them."""

    def __init__(
        self,
        transport,
        policy: Optional[PollPolicy] = None,
        scheduler=None,
        coordinator: Optional[EventCoordinator] = None,
    ):
        """Initialize the poller.

        Args:
            transport: Object exposing ``submit_job`` and ``job_status``
                (normally a :class:`~huddle_dashboard.transport.TransportClient`).
            policy: Poll timing and retry policy (defaults: 2s / one retry after 5s).
            scheduler: Timer factory; defaults to the asyncio event loop.
            coordinator: Receives a ``job:updated`` event per transition.
        """
        self.transport = transport
        self.policy = policy or PollPolicy()
        self.scheduler = scheduler or AsyncioScheduler()
        self.coordinator = coordinator

        self._jobs: Dict[str, Job] = {}
        self._slots: Dict[str, Job] = {}
        self._transitions = 0
        self._submitted = 0

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def submit(self, upload: UploadRequest, slot: str = DEFAULT_SLOT) -> Job:
        """Submit a document and start polling the resulting job.

        Any job already occupying ``slot`` is discarded first.

        Raises:
            SubmissionError: the upload is invalid, the request could not be
                made, or the service rejected it.
        """
        self.discard(slot)

        job = Job(slot=slot)
        self._slots[slot] = job
        self._submitted += 1
        await self._publish(job)

        problem = upload.validation_error()
        if problem:
            await self._fail_submission(job, problem, None)
            raise SubmissionError(problem, status_code=400, job=job)

        try:
            job_id = await self.transport.submit_job(upload)
        except TransportError as exc:
            await self._fail_submission(job, exc.message, exc)
            raise SubmissionError(exc.message, status_code=exc.status_code, job=job) from exc

        if job.cancelled:
            logger.info(f"Slot {slot!r} was discarded while {upload.file_name} was uploading")
            return job

        job.start_polling(job_id)
        self._jobs[job_id] = job
        logger.info(f"Job {job_id} submitted for {upload.file_name}; polling started")
        await self._publish(job)
        self._schedule(job, self.policy.initial_delay)
        return job

    def current_state(self, job_id: str) -> Optional[JobSnapshot]:
        job = self._jobs.get(job_id)
        return job.snapshot() if job else None

    def slot_state(self, slot: str = DEFAULT_SLOT) -> Optional[JobSnapshot]:
        job = self._slots.get(slot)
        return job.snapshot() if job else None

    def cancel(self, job_id: str) -> bool:
        """Stop polling a job. No transition is observable afterwards."""
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        if self._slots.get(job.slot) is job:
            del self._slots[job.slot]
        self._stop(job)
        logger.info(f"Job {job_id} cancelled")
        return True

    def discard(self, slot: str = DEFAULT_SLOT) -> bool:
        """Drop whatever job occupies a slot, cancelling its timers."""
        job = self._slots.pop(slot, None)
        if job is None:
            return False
        if job.id is not None:
            self._jobs.pop(job.id, None)
        self._stop(job)
        return True

    def retry(self, job_id: str) -> bool:
        """Poll again now after an error was surfaced. Starts a new retry cycle.

        Refused unless the job is waiting on a surfaced error: no timer is
        pending and no status query is in flight.
        """
        job = self._jobs.get(job_id)
        if job is None or job.cancelled or job.state is not JobState.POLLING:
            return False
        if job.last_error is None or job.timer is not None or job.in_flight:
            return False
        job.consecutive_errors = 0
        logger.info(f"Manual retry requested for job {job_id}")
        self._schedule(job, 0.0)
        return True

    def shutdown(self) -> None:
        for slot in list(self._slots):
            self.discard(slot)
        for job_id in list(self._jobs):
            self.cancel(job_id)

    def get_stats(self) -> dict:
        """Get poller statistics."""
        active = [job for job in self._slots.values() if not job.is_terminal]
        return {
            "slots": len(self._slots),
            "active_jobs": len(active),
            "submitted": self._submitted,
            "transitions": self._transitions,
            "interval": self.policy.interval,
            "retry_backoff": self.policy.retry.backoff,
        }

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    def _schedule(self, job: Job, delay: float) -> None:
        job.timer = self.scheduler.schedule(delay, lambda: self._poll(job))

    def _stop(self, job: Job) -> None:
        job.cancelled = True
        if job.timer is not None:
            job.timer.cancel()
            job.timer = None

    async def _poll(self, job: Job) -> None:
        job.timer = None
        if job.cancelled or job.state is not JobState.POLLING:
            return

        job.ticks += 1
        job.in_flight = True
        try:
            status = await self.transport.job_status(job.id)
        except AccessDeniedError as exc:
            if job.cancelled:
                return
            logger.error(f"Job {job.id}: access denied, polling stopped ({exc.message})")
            job.fail(
                FailureReason.AUTHORITATIVE,
                exc.message,
                access_denied=True,
                status_code=exc.status_code,
            )
            await self._publish(job)
            return
        except TransportError as exc:
            if job.cancelled:
                return
            await self._handle_request_error(job, exc)
            return
        except Exception as exc:
            # Surface it so a manual retry can recover the job, then propagate.
            if not job.cancelled:
                job.last_error = TransientPollError(f"Unexpected error: {exc}")
                await self._publish(job)
            raise
        finally:
            job.in_flight = False

        if job.cancelled:
            return

        job.consecutive_errors = 0
        job.failure_streak = 0
        job.last_error = None

        if status.status is RemoteStatus.COMPLETED:
            job.succeed(status.result)
            logger.info(f"Job {job.id} completed")
        elif status.status is RemoteStatus.FAILED:
            job.fail(FailureReason.AUTHORITATIVE, status.error or "Processing failed")
            logger.info(f"Job {job.id} failed on the server: {job.message}")
        else:
            self._schedule(job, self.policy.interval)
        await self._publish(job)

    async def _handle_request_error(self, job: Job, exc: TransportError) -> None:
        retry = self.policy.retry
        job.consecutive_errors += 1
        job.failure_streak += 1
        error = TransientPollError(
            exc.message, attempts=job.consecutive_errors, status_code=exc.status_code
        )

        if retry.is_exhausted(job.failure_streak):
            logger.error(
                f"Job {job.id}: {job.failure_streak} consecutive status errors, giving up"
            )
            job.fail(FailureReason.TRANSIENT, exc.message, status_code=exc.status_code)
        elif retry.should_retry(exc, job.consecutive_errors):
            logger.warning(
                f"Job {job.id}: status query failed ({exc.message}), retrying in {retry.backoff}s"
            )
            self._schedule(job, retry.backoff)
            return
        else:
            logger.warning(f"Job {job.id}: status query failed again, waiting for a manual retry")
            job.last_error = error
        await self._publish(job)

    async def _fail_submission(self, job: Job, message: str, exc: Optional[TransportError]) -> None:
        access_denied = isinstance(exc, AccessDeniedError)
        logger.error(f"Upload for slot {job.slot!r} failed: {message}")
        status_code = exc.status_code if exc is not None else 400
        job.fail(
            FailureReason.AUTHORITATIVE,
            message,
            access_denied=access_denied,
            status_code=status_code,
        )
        await self._publish(job)

    async def _publish(self, job: Job) -> None:
        if job.cancelled:
            return
        self._transitions += 1
        if self.coordinator is None:
            return
        payload: Dict[str, Any] = {"slot": job.slot, **project_job(job.snapshot()).to_dict()}
        await self.coordinator.publish("job:updated", payload)
