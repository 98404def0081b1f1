"""WebSocket session handling for the chat room."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect

from vox_room import QueueDispatcher, RoomCoordinator, ValidationRejection, parse_client_message
from vox_room.dispatcher import CLOSE_SENTINEL
from vox_room.errors import RoomRejection

logger = logging.getLogger(__name__)

IDLE_CLOSE_CODE = 4000


class RoomWebSocketSession:
    """Bridges one WebSocket to the room coordinator.

    A reader task parses incoming frames and hands them to the coordinator; a
    writer task drains the connection's dispatcher queue to the socket.
    """

    def __init__(
        self,
        websocket: WebSocket,
        coordinator: RoomCoordinator,
        dispatcher: QueueDispatcher,
        connection_id: Optional[str] = None,
    ):
        self.websocket = websocket
        self.coordinator = coordinator
        self.dispatcher = dispatcher
        self.connection_id = connection_id or uuid.uuid4().hex

    async def run(self) -> None:
        await self.websocket.accept()
        queue = self.dispatcher.register(self.connection_id)
        reader = asyncio.create_task(self._read_loop(), name=f"ws-read:{self.connection_id}")
        writer = asyncio.create_task(self._write_loop(queue), name=f"ws-write:{self.connection_id}")

        try:
            done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(
                        "WebSocket task failed for %s",
                        self.connection_id,
                        exc_info=task.exception(),
                    )
        finally:
            self.coordinator.disconnect(self.connection_id)
            self.dispatcher.unregister(self.connection_id)
            logger.debug("WebSocket session %s finished", self.connection_id)

    async def _read_loop(self) -> None:
        while True:
            try:
                raw = await self.websocket.receive_text()
            except WebSocketDisconnect:
                return

            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                self.coordinator.reject(
                    self.connection_id,
                    ValidationRejection("malformed_message", "Messages must be valid JSON."),
                )
                continue

            try:
                message = parse_client_message(payload)
            except RoomRejection as rejection:
                self.coordinator.reject(self.connection_id, rejection)
                continue

            self.coordinator.handle(self.connection_id, message)

    async def _write_loop(self, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            if event is CLOSE_SENTINEL:
                await self.websocket.close(code=IDLE_CLOSE_CODE)
                return
            try:
                await self.websocket.send_json(event.to_wire())
            except (WebSocketDisconnect, RuntimeError):
                return
