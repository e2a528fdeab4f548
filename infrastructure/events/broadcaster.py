"""Real-time fan-out of transcript and lifecycle events.

The relay engine publishes ``newMessage`` for every transcript append and
``threadClose`` when a thread closes. Delivery is best effort: slow
subscribers lose events instead of blocking the engine.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    async def publish(self, event: str, data: dict[str, Any]) -> None:
        """Push an event to interested listeners."""


class NullEventSink:
    async def publish(self, event: str, data: dict[str, Any]) -> None:
        return None


class ThreadEventBroadcaster:
    """Keeps one queue per connected SSE client."""

    def __init__(self, max_queue_size: int = 256) -> None:
        self._queues: dict[int, asyncio.Queue[dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self._max_queue_size = max_queue_size

    def subscribe(self) -> tuple[int, asyncio.Queue[dict[str, Any]]]:
        subscriber_id = next(self._ids)
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._max_queue_size)
        self._queues[subscriber_id] = queue
        logger.debug("Created event subscription %s", subscriber_id)
        return subscriber_id, queue

    def unsubscribe(self, subscriber_id: int) -> None:
        if self._queues.pop(subscriber_id, None) is not None:
            logger.debug("Removed event subscription %s", subscriber_id)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    async def publish(self, event: str, data: dict[str, Any]) -> None:
        for subscriber_id, queue in list(self._queues.items()):
            try:
                queue.put_nowait({"event": event, "data": data})
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for slow subscriber %s", event, subscriber_id)


event_broadcaster = ThreadEventBroadcaster()
