"""Fan-out of server events to connected sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Protocol

from .messages import ServerEvent

logger = logging.getLogger(__name__)

# Posted to a connection queue to tell its writer to close the socket.
CLOSE_SENTINEL = object()


class Dispatcher(Protocol):
    """Transport seam used by the room.

    All methods are synchronous; events are delivered in the order they were
    handed over.
    """

    def send(self, connection_id: str, event: ServerEvent) -> None: ...

    def broadcast(self, event: ServerEvent) -> None: ...

    def broadcast_except(self, connection_id: str, event: ServerEvent) -> None: ...

    def close(self, connection_id: str) -> None: ...


class QueueDispatcher:
    """Dispatcher backed by one unbounded asyncio queue per connection."""

    def __init__(self) -> None:
        self._queues: Dict[str, asyncio.Queue] = {}

    def register(self, connection_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._queues[connection_id] = queue
        logger.debug("Registered connection %s", connection_id)
        return queue

    def unregister(self, connection_id: str) -> None:
        self._queues.pop(connection_id, None)

    def queue_for(self, connection_id: str) -> Optional[asyncio.Queue]:
        return self._queues.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._queues)

    def send(self, connection_id: str, event: ServerEvent) -> None:
        queue = self._queues.get(connection_id)
        if queue is None:
            logger.debug("Dropping %s for unknown connection %s", event.type, connection_id)
            return
        queue.put_nowait(event)

    def broadcast(self, event: ServerEvent) -> None:
        for queue in list(self._queues.values()):
            queue.put_nowait(event)

    def broadcast_except(self, connection_id: str, event: ServerEvent) -> None:
        for key, queue in list(self._queues.items()):
            if key != connection_id:
                queue.put_nowait(event)

    def close(self, connection_id: str) -> None:
        queue = self._queues.get(connection_id)
        if queue is not None:
            queue.put_nowait(CLOSE_SENTINEL)
