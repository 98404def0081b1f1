"""Clear-Chat Consensus Engine - a yes/no majority vote to wipe the room.

Thresholds are fractions of the participants connected *now*, so the bar
moves as people join or leave while a vote is open.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import RoomSettings
from .conversation import ConversationLog
from .dispatcher import Dispatcher
from .errors import PolicyRejection, ValidationRejection
from .messages import (
    ClearChat,
    ClearProposed,
    ClearResolved,
    ClearTallyUpdated,
    ConversationEventPayload,
    NewMessage,
    SystemNotice,
)
from .models import ClearChoice, ClearVoteOutcome, ClearVoteSession, EventKind, Participant, utcnow
from .prompt_voting import PromptVotingEngine
from .registry import SessionRegistry
from .timers import Scheduler

logger = logging.getLogger(__name__)

CLEARED_NOTICE = "Chat has been cleared by community vote."

OUTCOME_NOTICES = {
    ClearVoteOutcome.APPROVED: "Clear chat vote passed.",
    ClearVoteOutcome.REJECTED: "Clear chat vote failed.",
    ClearVoteOutcome.TIMED_OUT: "Clear chat vote timed out.",
    ClearVoteOutcome.CANCELLED: "Clear chat vote cancelled.",
}


class ClearChatConsensus:
    """Runs at most one clear-chat vote at a time."""

    def __init__(
        self,
        settings: RoomSettings,
        registry: SessionRegistry,
        log: ConversationLog,
        voting: PromptVotingEngine,
        dispatcher: Dispatcher,
        scheduler: Scheduler,
    ):
        self.settings = settings
        self.registry = registry
        self.log = log
        self.voting = voting
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self._session: Optional[ClearVoteSession] = None

    @property
    def session(self) -> Optional[ClearVoteSession]:
        return self._session

    @property
    def is_pending(self) -> bool:
        return self._session is not None

    def propose(self, participant: Participant) -> ClearVoteSession:
        if self._session is not None:
            raise PolicyRejection("vote_in_progress", "A clear vote is already in progress.")
        minimum = self.settings.clear_min_participants
        if self.registry.count < minimum:
            raise PolicyRejection(
                "not_enough_participants",
                f"Need at least {minimum} users to propose clearing chat.",
            )

        timeout = self.settings.clear_vote_timeout_seconds
        session = ClearVoteSession(proposer=participant.display_name, started_at=utcnow())
        session.timeout = self.scheduler.call_later(timeout, self._timed_out, name="clear-vote")
        self._session = session
        logger.info("Clear vote proposed by %r (%d eligible)", participant.display_name, self.registry.count)

        self.dispatcher.broadcast(
            ClearProposed(
                proposer=participant.display_name,
                eligible=self.registry.count,
                time_limit_seconds=timeout,
            )
        )
        return session

    def cast_vote(self, participant: Participant, choice: object) -> Optional[ClearVoteOutcome]:
        """Record (or switch) a vote, then resolve if a threshold is crossed."""

        if self._session is None:
            raise PolicyRejection("no_active_vote", "There is no clear vote in progress.")
        try:
            resolved_choice = ClearChoice(choice)
        except ValueError:
            raise ValidationRejection("invalid_choice", "Vote must be 'yes' or 'no'.") from None

        self._session.cast(participant.id, resolved_choice)
        logger.debug("Clear vote: %r voted %s", participant.display_name, resolved_choice.value)
        self._broadcast_tally()
        return self._evaluate()

    def remove_participant(self, participant_id: str) -> Optional[ClearVoteOutcome]:
        """Forget a departing participant's vote; cancel if the room emptied.

        Must be called after the participant left the registry.
        """

        session = self._session
        if session is None:
            return None
        session.withdraw(participant_id)
        if self.registry.count == 0:
            self.end(ClearVoteOutcome.CANCELLED)
            return ClearVoteOutcome.CANCELLED
        self._broadcast_tally()
        return self._evaluate()

    def execute_clear(self) -> None:
        """Wipe history and prompts together, then close the vote as approved."""

        self.log.clear()
        self.voting.clear_pool(reason="Chat cleared.")
        notice = self.log.record(EventKind.SYSTEM, CLEARED_NOTICE)

        self.dispatcher.broadcast(ClearChat())
        self.dispatcher.broadcast(NewMessage(event=ConversationEventPayload.from_event(notice)))
        self.end(ClearVoteOutcome.APPROVED)

    def end(self, outcome: ClearVoteOutcome) -> None:
        session = self._session
        if session is None:
            return
        if session.timeout is not None:
            session.timeout.cancel()
        self._session = None
        logger.info("Clear vote ended: %s (yes=%d no=%d)", outcome.value, session.yes_count, session.no_count)

        self.dispatcher.broadcast(SystemNotice(message=OUTCOME_NOTICES[outcome]))
        self.dispatcher.broadcast(ClearResolved(outcome=outcome.value))

    def stop(self) -> None:
        if self._session is not None and self._session.timeout is not None:
            self._session.timeout.cancel()
        self._session = None

    def _evaluate(self) -> Optional[ClearVoteOutcome]:
        session = self._session
        connected = self.registry.count
        if session is None or connected == 0:
            return None

        if session.yes_count / connected >= self.settings.clear_approve_fraction:
            self.execute_clear()
            return ClearVoteOutcome.APPROVED
        voted = session.yes_count + session.no_count
        if session.no_count / connected >= self.settings.clear_reject_fraction or voted >= connected:
            self.end(ClearVoteOutcome.REJECTED)
            return ClearVoteOutcome.REJECTED
        return None

    def _broadcast_tally(self) -> None:
        session = self._session
        if session is None:
            return
        self.dispatcher.broadcast(
            ClearTallyUpdated(yes=session.yes_count, no=session.no_count, eligible=self.registry.count)
        )

    def _timed_out(self) -> None:
        if self._session is not None:
            self.end(ClearVoteOutcome.TIMED_OUT)
