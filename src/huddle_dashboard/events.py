"""Fan-out of state-change events to dashboard subscribers.

The job poller and the optimistic sessions publish here after every
observable transition; the local API streams the events over SSE.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import AsyncGenerator, Deque, Optional

logger = logging.getLogger(__name__)


class EventCoordinator:
    """Delivers events to every subscriber queue and keeps a short history."""

    def __init__(self, history: int = 100):
        self._subscribers: list[asyncio.Queue] = []
        self._last_event: Optional[datetime] = None
        self._event_count = 0
        self.recent: Deque[dict] = deque(maxlen=history)

    async def subscribe(self) -> AsyncGenerator[dict, None]:
        """Subscribe to state-change events.

        Yields:
            Event dictionaries with type, timestamp and data.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)

        try:
            yield {
                "type": "heartbeat",
                "timestamp": datetime.now().isoformat(),
            }

            while True:
                event = await queue.get()
                yield event

        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    async def publish(self, event_type: str, data: dict) -> None:
        """Send an event to all subscribers.

        Args:
            event_type: e.g. "job:updated", "chat:updated", "files:updated"
            data: JSON-serializable payload
        """
        self._last_event = datetime.now()
        self._event_count += 1

        event = {
            "type": event_type,
            "timestamp": self._last_event.isoformat(),
            "count": self._event_count,
            "data": data,
        }
        self.recent.append(event)
        logger.debug(f"Event {event_type} (#{self._event_count})")

        dead_queues = []
        for queue in self._subscribers:
            try:
                await asyncio.wait_for(queue.put(event), timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("Subscriber queue full, dropping event")
                dead_queues.append(queue)

        for queue in dead_queues:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def events_of(self, event_type: str) -> list[dict]:
        return [event for event in self.recent if event["type"] == event_type]

    def get_stats(self) -> dict:
        """Get coordinator statistics."""
        return {
            "subscribers": len(self._subscribers),
            "last_event": self._last_event.isoformat() if self._last_event else None,
            "event_count": self._event_count,
        }
