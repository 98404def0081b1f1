"""Conversation Log - bounded, ordered history of room events."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from typing import Deque, List, Optional

from .models import ConversationEvent, EventKind, utcnow

logger = logging.getLogger(__name__)

SYSTEM_AUTHOR = "System"
AI_AUTHOR = "AI Assistant"


class ConversationLog:
    """Append-only event history trimmed from the oldest end.

    ``epoch`` increases on every ``clear()`` so late writers can tell that the
    history they started from is gone.
    """

    def __init__(self, cap: int = 150):
        if cap < 1:
            raise ValueError("History cap must be at least 1")
        self.cap = cap
        self.epoch = 0
        self._events: Deque[ConversationEvent] = deque()
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: ConversationEvent) -> ConversationEvent:
        self._events.append(event)
        self.trim_to_cap()
        return event

    def record(
        self,
        kind: EventKind,
        body: str,
        *,
        author: Optional[str] = None,
        token_cost: Optional[int] = None,
    ) -> ConversationEvent:
        """Create, append and return a new event."""

        if author is None:
            author = AI_AUTHOR if kind is EventKind.AI else SYSTEM_AUTHOR
        event = ConversationEvent(
            id=f"{kind.value}_{next(self._ids)}",
            kind=kind,
            author=author,
            body=body,
            timestamp=utcnow(),
            token_cost=token_cost,
        )
        return self.append(event)

    def trim_to_cap(self) -> int:
        dropped = 0
        while len(self._events) > self.cap:
            self._events.popleft()
            dropped += 1
        if dropped:
            logger.debug("Trimmed %d event(s) from conversation log", dropped)
        return dropped

    def events(self) -> List[ConversationEvent]:
        return list(self._events)

    def recent_turns(self, limit: int) -> List[ConversationEvent]:
        """Last ``limit`` non-system events, oldest first."""

        if limit <= 0:
            return []
        turns = [event for event in self._events if event.kind is not EventKind.SYSTEM]
        return turns[-limit:]

    def clear(self) -> None:
        self._events.clear()
        self.epoch += 1
        logger.info("Conversation log cleared (epoch %d)", self.epoch)
