"""Schedulable, cancelable timers for the job poller.

``AsyncioScheduler`` runs timers on the current event loop. ``VirtualScheduler``
keeps its own clock so tests can step time deterministically.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Awaitable, Callable, List, Optional, Set

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class AsyncioTimer:
    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> None:
        self._task.cancel()


class AsyncioScheduler:
    """Timers backed by tasks on the running event loop.

    Tasks stay referenced until they finish, and a callback that raises is
    logged instead of being dropped with the task.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return len(self._tasks)

    def schedule(self, delay: float, callback: TimerCallback) -> AsyncioTimer:
        async def _fire() -> None:
            await asyncio.sleep(delay)
            await callback()

        task = asyncio.get_running_loop().create_task(_fire())
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return AsyncioTimer(task)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Scheduled callback failed: {exc!r}", exc_info=exc)


class VirtualTimer:
    def __init__(self, when: float, seq: int, callback: TimerCallback):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """A scheduler with a manually advanced clock."""

    def __init__(self):
        self.now = 0.0
        self._timers: List[VirtualTimer] = []
        self._seq = itertools.count()

    def schedule(self, delay: float, callback: TimerCallback) -> VirtualTimer:
        timer = VirtualTimer(self.now + max(delay, 0.0), next(self._seq), callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> List[VirtualTimer]:
        return [timer for timer in self._timers if not timer.cancelled]

    def next_due(self) -> Optional[float]:
        pending = self.pending
        return min(timer.when for timer in pending) if pending else None

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that falls due in order.

        Timers scheduled by a firing callback are picked up in the same call
        when they fall inside the window.
        """
        target = self.now + seconds
        while True:
            due = [timer for timer in self.pending if timer.when <= target]
            if not due:
                break
            timer = min(due, key=lambda item: (item.when, item.seq))
            self._timers.remove(timer)
            self.now = timer.when
            timer.fired = True
            await timer.callback()
        self.now = target
