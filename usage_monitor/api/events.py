"""In-memory fan-out of broadcast channels to SSE subscribers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)

QUEUE_SIZE = 50


class EventHub:
    """Every connected surface gets its own bounded queue."""

    def __init__(self, queue_size: int = QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._queues: list[asyncio.Queue[tuple[str, dict[str, Any]]]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def subscribe(self) -> asyncio.Queue[tuple[str, dict[str, Any]]]:
        queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue(maxsize=self._queue_size)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[tuple[str, dict[str, Any]]]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def broadcast_to_all(self, channel: str, payload: dict[str, Any]) -> None:
        """Push ``payload`` on ``channel`` to all subscribers."""
        for q in self._queues:
            try:
                q.put_nowait((channel, payload))
            except asyncio.QueueFull:
                logger.debug("Dropping %s event for slow subscriber", channel)
