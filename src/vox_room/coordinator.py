"""Room Coordinator - application state for one chat room.

Builds the registry, conversation log, prompt voting engine and clear-vote
engine, routes validated client messages to them, and turns rejections into
events for the originating connection.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from vox_core.provider_router import ProviderRouter, UnknownProviderError

from .clear_vote import ClearChatConsensus
from .config import RoomSettings
from .conversation import ConversationLog
from .dispatcher import Dispatcher
from .errors import RoomRejection
from .gateway import ReplyGenerator, ResponseGateway
from .messages import (
    ActivityPingMessage,
    CastClearVoteMessage,
    ClearRejected,
    ClientMessage,
    CommandRejected,
    ConversationEventPayload,
    HistorySnapshot,
    IdleDisconnect,
    JoinAccepted,
    JoinMessage,
    JoinRejected,
    MessageBlocked,
    NewMessage,
    ParticipantCountChanged,
    ParticipantJoined,
    ParticipantLeft,
    PromptRejected,
    ProposeClearMessage,
    ServerEvent,
    StopTypingMessage,
    SubmitPromptMessage,
    TypingMessage,
    TypingUpdate,
    UserChatMessage,
    VotePromptMessage,
    VoteRejected,
)
from .models import EventKind, Participant, utcnow
from .prompt_voting import PromptVotingEngine
from .registry import SessionRegistry
from .timers import Scheduler

logger = logging.getLogger(__name__)

IDLE_REASON = "You have been disconnected due to inactivity."
BLOCKED_REASON = "Direct messages to AI are not allowed. Please submit a community prompt instead."


class RoomCoordinator:
    """Single owner of all room state.

    Handlers are synchronous: each mutation is applied and its events are
    queued before the next command runs. Only the gateway call suspends, and
    it runs as a background task owned by the voting engine.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        settings: Optional[RoomSettings] = None,
        gateway: Optional[ReplyGenerator] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or RoomSettings()
        self.dispatcher = dispatcher
        self.scheduler = scheduler or Scheduler()
        self.gateway = gateway or ResponseGateway(
            provider=self.settings.ai_provider,
            model=self.settings.ai_model,
            timeout_seconds=self.settings.gateway_timeout_seconds,
            max_tokens=self.settings.ai_max_tokens,
            temperature=self.settings.ai_temperature,
        )

        self.registry = SessionRegistry(
            self.scheduler,
            idle_timeout_seconds=self.settings.idle_timeout_seconds,
            on_idle=self.idle_timeout,
        )
        self.log = ConversationLog(self.settings.max_history)
        self.voting = PromptVotingEngine(
            self.settings,
            self.registry,
            self.log,
            self.dispatcher,
            self.gateway,
            self.scheduler,
            clock=clock,
        )
        self.clear_vote = ClearChatConsensus(
            self.settings,
            self.registry,
            self.log,
            self.voting,
            self.dispatcher,
            self.scheduler,
        )
        self._typing: Dict[str, None] = {}
        self._started = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._check_provider()
        self.voting.start()
        logger.info("Room started (provider=%s)", self.settings.ai_provider)

    def _check_provider(self) -> None:
        try:
            ProviderRouter().provider_config(self.settings.ai_provider)
        except UnknownProviderError:
            logger.warning(
                "AI provider %r is not supported; prompt resolutions will fail until it is fixed",
                self.settings.ai_provider,
            )

    async def shutdown(self) -> None:
        self.voting.stop()
        self.clear_vote.stop()
        self.registry.clear()
        self._typing.clear()
        await self.scheduler.shutdown()
        self._started = False
        logger.info("Room shut down")

    async def drain(self) -> None:
        """Wait for in-flight AI resolutions to finish."""
        await self.scheduler.drain()

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def handle(self, connection_id: str, message: ClientMessage) -> None:
        """Apply one validated client message."""

        try:
            if isinstance(message, JoinMessage):
                self.join(connection_id, message.name)
                return

            participant = self.registry.require(connection_id)
            if isinstance(message, SubmitPromptMessage):
                self.registry.touch(connection_id)
                self.voting.submit_prompt(participant, message.text)
            elif isinstance(message, VotePromptMessage):
                self.registry.touch(connection_id)
                self.voting.vote_prompt(participant, message.prompt_id)
            elif isinstance(message, ProposeClearMessage):
                self.registry.touch(connection_id)
                self.clear_vote.propose(participant)
            elif isinstance(message, CastClearVoteMessage):
                self.registry.touch(connection_id)
                self.clear_vote.cast_vote(participant, message.choice)
            elif isinstance(message, ActivityPingMessage):
                self.touch_activity(connection_id)
            elif isinstance(message, TypingMessage):
                self.typing(connection_id)
            elif isinstance(message, StopTypingMessage):
                self.stop_typing(connection_id)
            elif isinstance(message, UserChatMessage):
                self.dispatcher.send(connection_id, MessageBlocked(reason=BLOCKED_REASON))
        except RoomRejection as rejection:
            logger.debug("Rejected %s from %s: %s", message.type, connection_id, rejection.code)
            self.dispatcher.send(connection_id, self._rejection_event(message, rejection))

    def reject(self, connection_id: str, rejection: RoomRejection) -> None:
        """Report a rejection raised before a message could be parsed."""
        self.dispatcher.send(connection_id, CommandRejected(code=rejection.code, reason=rejection.message))

    # ------------------------------------------------------------------ #
    # Session operations
    # ------------------------------------------------------------------ #

    def join(self, connection_id: str, raw_name: object) -> Participant:
        """Register a participant and send them the current room snapshot."""

        participant = self.registry.register(connection_id, raw_name)

        self.dispatcher.send(
            connection_id,
            JoinAccepted(participant_id=participant.id, name=participant.display_name),
        )
        self.dispatcher.send(
            connection_id,
            HistorySnapshot(events=[ConversationEventPayload.from_event(e) for e in self.log.events()]),
        )
        self.dispatcher.send(connection_id, self.voting.prompt_snapshot())
        round_status = self.voting.round_status()
        if round_status is not None:
            self.dispatcher.send(connection_id, round_status)

        notice = self.log.record(EventKind.SYSTEM, f"{participant.display_name} joined the chat")
        count = self.registry.count
        self.dispatcher.broadcast(NewMessage(event=ConversationEventPayload.from_event(notice)))
        self.dispatcher.broadcast(ParticipantJoined(name=participant.display_name, count=count))
        self.dispatcher.broadcast(ParticipantCountChanged(count=count))
        return participant

    def touch_activity(self, connection_id: str) -> bool:
        return self.registry.touch(connection_id)

    def idle_timeout(self, connection_id: str) -> None:
        """Evict an inactive participant, telling them why first."""

        if connection_id not in self.registry:
            return
        self.dispatcher.send(connection_id, IdleDisconnect(reason=IDLE_REASON))
        self.disconnect(connection_id, reason="idle")
        self.dispatcher.close(connection_id)

    def disconnect(self, connection_id: str, *, reason: str = "left") -> Optional[Participant]:
        """Remove a participant and cascade into both voting engines."""

        participant = self.registry.remove(connection_id)
        if participant is None:
            return None

        typing_changed = connection_id in self._typing
        self._typing.pop(connection_id, None)
        self.voting.remove_participant(connection_id)
        self.clear_vote.remove_participant(connection_id)

        if reason == "idle":
            body = f"{participant.display_name} was disconnected for inactivity"
        else:
            body = f"{participant.display_name} left the chat"
        notice = self.log.record(EventKind.SYSTEM, body)
        count = self.registry.count
        self.dispatcher.broadcast(NewMessage(event=ConversationEventPayload.from_event(notice)))
        self.dispatcher.broadcast(ParticipantLeft(name=participant.display_name, count=count, reason=reason))
        self.dispatcher.broadcast(ParticipantCountChanged(count=count))
        if typing_changed:
            self.dispatcher.broadcast(self._typing_update())
        return participant

    def typing(self, connection_id: str) -> None:
        if not self.registry.touch(connection_id):
            return
        self._typing[connection_id] = None
        self.dispatcher.broadcast_except(connection_id, self._typing_update())

    def stop_typing(self, connection_id: str) -> None:
        self._typing.pop(connection_id, None)
        self.dispatcher.broadcast_except(connection_id, self._typing_update())

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def state_summary(self) -> Dict[str, Any]:
        clear_session = self.clear_vote.session
        return {
            "participants": self.registry.count,
            "history_length": len(self.log),
            "prompts": len(self.voting.prompts()),
            "voting_state": self.voting.state.value,
            "required_votes": self.voting.required_votes(),
            "round_remaining_seconds": self.voting.remaining_seconds(),
            "clear_vote": None
            if clear_session is None
            else {
                "proposer": clear_session.proposer,
                "yes": clear_session.yes_count,
                "no": clear_session.no_count,
            },
            "ai_provider": self.settings.ai_provider,
        }

    def participant_names(self) -> List[str]:
        return [p.display_name for p in self.registry.participants()]

    def _typing_update(self) -> TypingUpdate:
        names = [self.registry.get(cid).display_name for cid in self._typing if cid in self.registry]
        return TypingUpdate(count=len(names), users=names)

    def _rejection_event(self, message: ClientMessage, rejection: RoomRejection) -> ServerEvent:
        if isinstance(message, JoinMessage):
            return JoinRejected(code=rejection.code, reason=rejection.message)
        if isinstance(message, SubmitPromptMessage):
            return PromptRejected(code=rejection.code, reason=rejection.message)
        if isinstance(message, VotePromptMessage):
            return VoteRejected(code=rejection.code, reason=rejection.message, prompt_id=message.prompt_id)
        if isinstance(message, (ProposeClearMessage, CastClearVoteMessage)):
            return ClearRejected(code=rejection.code, reason=rejection.message)
        return CommandRejected(code=rejection.code, reason=rejection.message)
