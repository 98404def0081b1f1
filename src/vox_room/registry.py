"""Session Registry - connected participants, name uniqueness and idle eviction."""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, List, Optional

from .errors import PolicyRejection, ValidationRejection
from .models import Participant, utcnow
from .timers import Scheduler

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 20
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\- ]+$")


def validate_display_name(raw_name: object) -> str:
    """Return the trimmed name or raise ``ValidationRejection``."""

    name = raw_name.strip() if isinstance(raw_name, str) else ""
    if not (NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH) or not NAME_PATTERN.match(name):
        raise ValidationRejection(
            "invalid_name",
            f"Name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters and contain only "
            "letters, numbers, spaces, hyphens, and underscores.",
        )
    return name


class SessionRegistry:
    """Tracks who is connected.

    Each participant carries an idle timer; when it fires ``on_idle`` is
    called with the connection id and the owner decides how to evict.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        idle_timeout_seconds: float = 300.0,
        on_idle: Optional[Callable[[str], None]] = None,
    ):
        self.scheduler = scheduler
        self.idle_timeout_seconds = idle_timeout_seconds
        self.on_idle = on_idle
        self._participants: Dict[str, Participant] = {}

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._participants

    @property
    def count(self) -> int:
        return len(self._participants)

    def get(self, connection_id: str) -> Optional[Participant]:
        return self._participants.get(connection_id)

    def require(self, connection_id: str) -> Participant:
        participant = self._participants.get(connection_id)
        if participant is None:
            raise PolicyRejection("not_joined", "Join the chat first.")
        return participant

    def participants(self) -> List[Participant]:
        return list(self._participants.values())

    def name_taken(self, name: str) -> bool:
        folded = name.casefold()
        return any(p.display_name.casefold() == folded for p in self._participants.values())

    def register(self, connection_id: str, raw_name: object) -> Participant:
        """Validate and add a participant, arming their idle timer."""

        if connection_id in self._participants:
            raise PolicyRejection("already_joined", "This connection has already joined.")
        name = validate_display_name(raw_name)
        if self.name_taken(name):
            raise PolicyRejection("name_taken", "Username already taken. Please choose another.")

        participant = Participant(id=connection_id, display_name=name)
        self._participants[connection_id] = participant
        self._arm_idle_timer(participant)
        logger.info("Participant %s joined as %r (%d connected)", connection_id, name, self.count)
        return participant

    def touch(self, connection_id: str) -> bool:
        participant = self._participants.get(connection_id)
        if participant is None:
            return False
        participant.last_activity_at = utcnow()
        self._arm_idle_timer(participant)
        return True

    def remove(self, connection_id: str) -> Optional[Participant]:
        participant = self._participants.pop(connection_id, None)
        if participant is None:
            return None
        if participant.idle_timer is not None:
            participant.idle_timer.cancel()
            participant.idle_timer = None
        logger.info(
            "Participant %s (%r) removed (%d connected)",
            connection_id,
            participant.display_name,
            self.count,
        )
        return participant

    def clear(self) -> None:
        for connection_id in list(self._participants):
            self.remove(connection_id)

    def _arm_idle_timer(self, participant: Participant) -> None:
        if participant.idle_timer is not None:
            participant.idle_timer.cancel()
        participant.idle_timer = self.scheduler.call_later(
            self.idle_timeout_seconds,
            self._idle_expired,
            participant.id,
            name=f"idle:{participant.id}",
        )

    def _idle_expired(self, connection_id: str) -> None:
        if connection_id not in self._participants:
            return
        logger.warning("Participant %s idle for %.0fs", connection_id, self.idle_timeout_seconds)
        if self.on_idle is not None:
            self.on_idle(connection_id)
        else:
            self.remove(connection_id)
