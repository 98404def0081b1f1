"""Room data model: participants, conversation events, prompts and vote sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional, Set

from .timers import ScheduledTask


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventKind(str, Enum):
    """Kind of entry in the conversation log."""

    USER = "user"
    AI = "ai"
    SYSTEM = "system"


class VotingState(str, Enum):
    """State of the prompt voting engine."""

    IDLE = "idle"
    ROUND_ACTIVE = "round_active"
    RESOLVING = "resolving"


class ClearVoteOutcome(str, Enum):
    """How a clear-chat vote ended."""

    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class ClearChoice(str, Enum):
    YES = "yes"
    NO = "no"


@dataclass
class Participant:
    """A connected, named chat participant."""

    id: str
    display_name: str
    joined_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    idle_timer: Optional[ScheduledTask] = field(default=None, repr=False)


@dataclass
class ConversationEvent:
    """A single entry in the shared conversation history."""

    id: str
    kind: EventKind
    author: str
    body: str
    timestamp: datetime = field(default_factory=utcnow)
    token_cost: Optional[int] = None


@dataclass
class Prompt:
    """A community prompt candidate and the participants voting for it."""

    id: str
    text: str
    submitter_id: str
    submitter_name: str
    submitted_at: datetime = field(default_factory=utcnow)
    _voter_ids: Set[str] = field(default_factory=set, repr=False)

    @property
    def normalized_text(self) -> str:
        return normalize_prompt_text(self.text)

    @property
    def vote_count(self) -> int:
        return len(self._voter_ids)

    @property
    def voter_ids(self) -> FrozenSet[str]:
        return frozenset(self._voter_ids)

    def has_voted(self, participant_id: str) -> bool:
        return participant_id in self._voter_ids

    def add_vote(self, participant_id: str) -> bool:
        """Record a vote; returns False when the participant already voted."""
        if participant_id in self._voter_ids:
            return False
        self._voter_ids.add(participant_id)
        return True

    def remove_vote(self, participant_id: str) -> bool:
        if participant_id not in self._voter_ids:
            return False
        self._voter_ids.discard(participant_id)
        return True


@dataclass
class PromptVotingRound:
    """The single active prompt-voting round."""

    generation: int
    started_at: datetime
    ends_at: datetime
    timer: ScheduledTask = field(repr=False)
    ticker: Optional[ScheduledTask] = field(default=None, repr=False)

    def cancel_timers(self) -> None:
        self.timer.cancel()
        if self.ticker is not None:
            self.ticker.cancel()


@dataclass
class ClearVoteSession:
    """The single active clear-chat vote.

    A participant sits in at most one of the yes/no sets.
    """

    proposer: str
    started_at: datetime
    timeout: Optional[ScheduledTask] = field(default=None, repr=False)
    _yes: Set[str] = field(default_factory=set, repr=False)
    _no: Set[str] = field(default_factory=set, repr=False)

    @property
    def yes_count(self) -> int:
        return len(self._yes)

    @property
    def no_count(self) -> int:
        return len(self._no)

    @property
    def voter_ids(self) -> FrozenSet[str]:
        return frozenset(self._yes | self._no)

    def choice_of(self, participant_id: str) -> Optional[ClearChoice]:
        if participant_id in self._yes:
            return ClearChoice.YES
        if participant_id in self._no:
            return ClearChoice.NO
        return None

    def cast(self, participant_id: str, choice: ClearChoice) -> None:
        self.withdraw(participant_id)
        if choice is ClearChoice.YES:
            self._yes.add(participant_id)
        else:
            self._no.add(participant_id)

    def withdraw(self, participant_id: str) -> bool:
        removed = participant_id in self._yes or participant_id in self._no
        self._yes.discard(participant_id)
        self._no.discard(participant_id)
        return removed


def normalize_prompt_text(text: str) -> str:
    """Case- and whitespace-insensitive form used for duplicate detection."""
    return " ".join(text.split()).casefold()
