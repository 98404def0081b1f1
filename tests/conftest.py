"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence, Tuple

import pytest
import pytest_asyncio

from vox_room import RoomCoordinator, RoomSettings
from vox_room.gateway import GatewayReply, GatewayResult
from vox_room.messages import ServerEvent
from vox_room.models import ConversationEvent

BROADCAST = "*"


class RecordingDispatcher:
    """Dispatcher that keeps every event in delivery order."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, Optional[str], ServerEvent]] = []
        self.closed: List[str] = []

    def send(self, connection_id: str, event: ServerEvent) -> None:
        self.sent.append(("direct", connection_id, event))

    def broadcast(self, event: ServerEvent) -> None:
        self.sent.append(("broadcast", None, event))

    def broadcast_except(self, connection_id: str, event: ServerEvent) -> None:
        self.sent.append(("except", connection_id, event))

    def close(self, connection_id: str) -> None:
        self.closed.append(connection_id)

    def received_by(self, connection_id: str) -> List[ServerEvent]:
        events = []
        for mode, target, event in self.sent:
            if mode == "broadcast":
                events.append(event)
            elif mode == "direct" and target == connection_id:
                events.append(event)
            elif mode == "except" and target != connection_id:
                events.append(event)
        return events

    def broadcasts(self, event_type: Optional[str] = None) -> List[ServerEvent]:
        return [
            event
            for mode, _, event in self.sent
            if mode == "broadcast" and (event_type is None or event.type == event_type)
        ]

    def direct(self, connection_id: str, event_type: Optional[str] = None) -> List[ServerEvent]:
        return [
            event
            for mode, target, event in self.sent
            if mode == "direct"
            and target == connection_id
            and (event_type is None or event.type == event_type)
        ]

    def types(self) -> List[str]:
        return [event.type for _, _, event in self.sent]

    def reset(self) -> None:
        self.sent.clear()
        self.closed.clear()


class ScriptedGateway:
    """Reply generator returning scripted results, optionally held open."""

    def __init__(self, results: Sequence[Any] = ()) -> None:
        self.results = list(results)
        self.calls: List[Tuple[str, List[ConversationEvent]]] = []
        self.gate: Optional[asyncio.Event] = None

    def hold(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def generate_reply(
        self, prompt_text: str, recent_context: Sequence[ConversationEvent]
    ) -> GatewayResult:
        self.calls.append((prompt_text, list(recent_context)))
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return GatewayReply(text=f"Reply to: {prompt_text}", token_cost=42)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def settings() -> RoomSettings:
    return RoomSettings(stale_sweep_enabled=False)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def room(settings, dispatcher, gateway, clock):
    coordinator = RoomCoordinator(dispatcher, settings=settings, gateway=gateway, clock=clock)
    coordinator.start()
    yield coordinator
    await coordinator.shutdown()


def join_all(room: RoomCoordinator, *names: str) -> List[str]:
    """Join one connection per name; connection ids are ``c-<name>``."""

    ids = []
    for name in names:
        connection_id = f"c-{name}"
        room.join(connection_id, name)
        ids.append(connection_id)
    return ids
