from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket

from vox_room import QueueDispatcher, RoomCoordinator, RoomSettings
from vox_room.gateway import ReplyGenerator

from .ws import RoomWebSocketSession

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[RoomSettings] = None,
    gateway: Optional[ReplyGenerator] = None,
) -> FastAPI:
    settings = settings or RoomSettings.from_env()
    dispatcher = QueueDispatcher()
    coordinator = RoomCoordinator(dispatcher, settings=settings, gateway=gateway)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        coordinator.start()
        try:
            yield
        finally:
            await coordinator.shutdown()

    app = FastAPI(title="Vox Chat", version="0.1.0", lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.dispatcher = dispatcher

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "service": "vox-chat", "connections": dispatcher.connection_count}

    @app.get("/api/room")
    async def room_state() -> dict:
        return coordinator.state_summary()

    @app.websocket("/ws")
    async def room_socket(websocket: WebSocket) -> None:
        await RoomWebSocketSession(websocket, coordinator, dispatcher).run()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("VOX_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", "3000")))
