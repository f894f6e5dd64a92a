"""Retry policies for jobs and optimistic mutations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from huddle_dashboard.errors import is_transient

T = TypeVar("T")


def _never(error: BaseException) -> bool:
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """How many automatic retries an operation gets and how long to wait.

    Attributes:
        max_attempts: Automatic retries allowed per cycle of consecutive errors.
        backoff: Delay in seconds before each automatic retry.
        is_retryable: Predicate deciding whether an error may be retried at all.
        max_consecutive_failures: Optional ceiling; that many consecutive
            errors turn the operation into a terminal failure. ``None``
            leaves the operation recoverable by a manual retry.
    """

    max_attempts: int = 1
    backoff: float = 5.0
    is_retryable: Callable[[BaseException], bool] = is_transient
    max_consecutive_failures: Optional[int] = None

    def should_retry(self, error: BaseException, consecutive_errors: int) -> bool:
        """Return True if an automatic retry is allowed after this error."""
        if not self.is_retryable(error):
            return False
        return consecutive_errors <= self.max_attempts

    def is_exhausted(self, consecutive_errors: int) -> bool:
        if self.max_consecutive_failures is None:
            return False
        return consecutive_errors >= self.max_consecutive_failures


# Optimistic writes are never retried: replaying a stale write can duplicate
# or misorder data.
MUTATION_RETRY_POLICY = RetryPolicy(max_attempts=0, backoff=0.0, is_retryable=_never)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await fn() until it succeeds or the policy refuses another attempt."""
    consecutive_errors = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            consecutive_errors += 1
            if not policy.should_retry(exc, consecutive_errors):
                raise
            await sleep(policy.backoff)
