"""Prompt Pool & Voting Engine.

Participants submit candidate prompts; the room votes, and the winning prompt
is handed to the AI gateway. States:

    IDLE --submit--> ROUND_ACTIVE --quorum/timer/stale sweep--> RESOLVING --> IDLE

A round ends on timer expiry, on early quorum, or when the stale sweep
force-resolves an aged prompt. Prompts of a round being resolved are frozen:
they stay visible but take no more votes, and are removed once the gateway
answers. Prompts submitted meanwhile open the next round.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from .config import RoomSettings
from .conversation import ConversationLog
from .dispatcher import Dispatcher
from .errors import PolicyRejection, ValidationRejection
from .gateway import GatewayFailure, GatewayReply, GatewayResult, ReplyGenerator
from .messages import (
    AIComposing,
    AIError,
    ConversationEventPayload,
    NewMessage,
    NewPrompt,
    PromptPayload,
    PromptSnapshot,
    RoundEnded,
    RoundStarted,
    RoundTick,
)
from .models import (
    ConversationEvent,
    EventKind,
    Participant,
    Prompt,
    PromptVotingRound,
    VotingState,
    normalize_prompt_text,
    utcnow,
)
from .registry import SessionRegistry
from .timers import ScheduledTask, Scheduler

logger = logging.getLogger(__name__)

# Share of connected participants whose votes select a prompt before the
# round timer runs out.
PROMPT_QUORUM_FRACTION = 0.5

NO_VOTES_NOTICE = "No votes received. Prompts cleared."


def required_votes_for(connected: int) -> int:
    """Votes a prompt needs to win early: ceil(connected * 0.5), at least 1."""
    return max(1, math.ceil(connected * PROMPT_QUORUM_FRACTION))


def select_winner(prompts: Iterable[Prompt]) -> Optional[Prompt]:
    """Most-voted prompt; earliest submission wins ties. None if nobody voted."""

    best: Optional[Prompt] = None
    for prompt in prompts:
        if prompt.vote_count == 0:
            continue
        if best is None or prompt.vote_count > best.vote_count:
            best = prompt
    return best


class PromptVotingEngine:
    """Owns the prompt pool, the singleton voting round and resolutions."""

    def __init__(
        self,
        settings: RoomSettings,
        registry: SessionRegistry,
        log: ConversationLog,
        dispatcher: Dispatcher,
        gateway: ReplyGenerator,
        scheduler: Scheduler,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.registry = registry
        self.log = log
        self.dispatcher = dispatcher
        self.gateway = gateway
        self.scheduler = scheduler
        self.clock = clock

        self._prompts: Dict[str, Prompt] = {}
        self._frozen: Set[str] = set()
        self._round: Optional[PromptVotingRound] = None
        self._generation = 0
        self._resolutions: Dict[str, asyncio.Task] = {}
        self._sweep: Optional[ScheduledTask] = None
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> VotingState:
        if self._resolutions:
            return VotingState.RESOLVING
        if self._round is not None:
            return VotingState.ROUND_ACTIVE
        return VotingState.IDLE

    @property
    def current_round(self) -> Optional[PromptVotingRound]:
        return self._round

    @property
    def pending_resolutions(self) -> List[asyncio.Task]:
        return list(self._resolutions.values())

    def prompts(self) -> List[Prompt]:
        return list(self._prompts.values())

    def live_prompts(self) -> List[Prompt]:
        """Prompts still open for votes, in submission order."""
        return [p for p in self._prompts.values() if p.id not in self._frozen]

    def get(self, prompt_id: str) -> Optional[Prompt]:
        return self._prompts.get(prompt_id)

    def required_votes(self) -> int:
        return required_votes_for(self.registry.count)

    def remaining_seconds(self) -> float:
        if self._round is None:
            return 0.0
        return max(0.0, (self._round.ends_at - self.clock()).total_seconds())

    def prompt_snapshot(self) -> PromptSnapshot:
        return PromptSnapshot(prompts=[PromptPayload.from_prompt(p) for p in self._prompts.values()])

    def round_status(self) -> Optional[RoundStarted]:
        if self._round is None:
            return None
        return RoundStarted(
            ends_at=self._round.ends_at,
            remaining_seconds=self.remaining_seconds(),
            required_votes=self.required_votes(),
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Arm the periodic stale-prompt sweep if enabled."""

        if not self.settings.stale_sweep_enabled or self._sweep is not None:
            return
        self._sweep = self.scheduler.call_every(
            self.settings.stale_sweep_interval_seconds,
            self.sweep_stale_prompts,
            name="stale-sweep",
        )

    def stop(self) -> None:
        if self._sweep is not None:
            self._sweep.cancel()
            self._sweep = None
        self._close_round()
        for task in self._resolutions.values():
            task.cancel()

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def submit_prompt(self, participant: Participant, text: object) -> Prompt:
        cleaned = text.strip()[: self.settings.prompt_max_chars] if isinstance(text, str) else ""
        if not cleaned:
            raise ValidationRejection("empty_prompt", "Prompt text cannot be empty.")

        normalized = normalize_prompt_text(cleaned)
        # Prompts frozen for a pending resolution belong to a finished round.
        for existing in self.live_prompts():
            if existing.submitter_id == participant.id:
                raise PolicyRejection("prompt_pending", "You already have a pending prompt.")
            if existing.normalized_text == normalized:
                raise PolicyRejection("duplicate_prompt", "This prompt has already been submitted.")

        prompt = Prompt(
            id=f"prompt_{next(self._ids)}",
            text=cleaned,
            submitter_id=participant.id,
            submitter_name=participant.display_name,
            submitted_at=self.clock(),
        )
        self._prompts[prompt.id] = prompt
        self._enforce_pool_cap()
        logger.info("Prompt %s submitted by %r", prompt.id, participant.display_name)

        if self._round is None:
            self._start_round()

        self.dispatcher.broadcast(NewPrompt(prompt=PromptPayload.from_prompt(prompt)))
        self.dispatcher.broadcast(self.prompt_snapshot())
        return prompt

    def vote_prompt(self, participant: Participant, prompt_id: str) -> Prompt:
        prompt = self._prompts.get(prompt_id)
        if prompt is None:
            raise ValidationRejection("prompt_not_found", "Prompt not found.")
        if prompt.id in self._frozen:
            raise PolicyRejection("prompt_closed", "Voting on this prompt has closed.")
        if prompt.submitter_id == participant.id:
            raise PolicyRejection("self_vote", "You cannot vote for your own prompt.")
        if not prompt.add_vote(participant.id):
            raise PolicyRejection("already_voted", "You have already voted for this prompt.")

        required = self.required_votes()
        logger.debug(
            "Vote for %s by %r (%d/%d)", prompt.id, participant.display_name, prompt.vote_count, required
        )
        self.dispatcher.broadcast(self.prompt_snapshot())

        if prompt.vote_count >= required:
            logger.info("Prompt %s reached quorum (%d votes)", prompt.id, prompt.vote_count)
            self.resolve(prompt)
        return prompt

    def remove_participant(self, participant_id: str) -> None:
        """Strip a departing participant's votes; their prompt stays in the pool."""

        changed = False
        for prompt in self._prompts.values():
            changed = prompt.remove_vote(participant_id) or changed
        if changed:
            self.dispatcher.broadcast(self.prompt_snapshot())

    def clear_pool(self, reason: Optional[str] = None) -> None:
        """Drop every prompt and end the active round, if any."""

        self._prompts.clear()
        closed = self._close_round()
        self.dispatcher.broadcast(self.prompt_snapshot())
        if closed is not None:
            self.dispatcher.broadcast(RoundEnded(reason=reason))

    # ------------------------------------------------------------------ #
    # Round lifecycle
    # ------------------------------------------------------------------ #

    def end_prompt_voting(self) -> Optional[Prompt]:
        """Round timer expiry: resolve the leader or clear the pool."""

        if self._close_round() is None:
            return None

        candidates = self.live_prompts()
        if not candidates:
            self.dispatcher.broadcast(RoundEnded())
            return None

        winner = select_winner(candidates)
        if winner is None:
            logger.info("Round ended with no votes; clearing %d prompt(s)", len(candidates))
            self._remove_prompts(p.id for p in candidates)
            self.dispatcher.broadcast(self.prompt_snapshot())
            self.dispatcher.broadcast(RoundEnded(reason=NO_VOTES_NOTICE))
            return None

        self.resolve(winner)
        return winner

    def sweep_stale_prompts(self) -> Optional[Prompt]:
        """Force-resolve the most-voted prompt that has waited too long."""

        if not self.settings.stale_sweep_enabled:
            return None
        cutoff = self.clock() - timedelta(seconds=self.settings.stale_prompt_age_seconds)
        stale = [p for p in self.live_prompts() if p.submitted_at < cutoff]
        winner = select_winner(stale)
        if winner is None:
            return None
        logger.info("Stale sweep selecting %s (%d votes)", winner.id, winner.vote_count)
        self.resolve(winner)
        return winner

    def resolve(self, winner: Prompt) -> Optional[asyncio.Task]:
        """Select ``winner``, freeze its round and ask the gateway for a reply."""

        if winner.id not in self._prompts or winner.id in self._frozen:
            return None

        self._close_round()
        batch = [p.id for p in self.live_prompts()]
        self._frozen.update(batch)

        selected = self.log.record(
            EventKind.SYSTEM,
            f'Selected prompt: "{winner.text}" ({winner.vote_count} votes)',
        )
        self.dispatcher.broadcast(NewMessage(event=ConversationEventPayload.from_event(selected)))
        self.dispatcher.broadcast(AIComposing(active=True))

        context = self.log.recent_turns(self.settings.context_turns)
        task = self.scheduler.spawn(
            self._complete_resolution(winner, batch, context, self.log.epoch),
            name=f"resolve:{winner.id}",
        )
        self._resolutions[winner.id] = task
        return task

    async def _complete_resolution(
        self,
        winner: Prompt,
        batch: Sequence[str],
        context: Sequence[ConversationEvent],
        epoch: int,
    ) -> None:
        try:
            try:
                result: GatewayResult = await self.gateway.generate_reply(winner.text, context)
            except Exception as exc:
                logger.exception("Gateway raised while resolving %s", winner.id)
                result = GatewayFailure(
                    reason="Sorry, I encountered an error processing the selected prompt.",
                    detail=str(exc),
                )
            del self._resolutions[winner.id]
            self._apply_result(winner, result, epoch)
        finally:
            self._resolutions.pop(winner.id, None)
            self._finish_batch(batch)

    def _apply_result(self, winner: Prompt, result: GatewayResult, epoch: int) -> None:
        composing = AIComposing(active=bool(self._resolutions))

        if isinstance(result, GatewayReply):
            if self.log.epoch != epoch:
                logger.warning("Discarding reply to %s: chat was cleared meanwhile", winner.id)
                self.dispatcher.broadcast(composing)
                return
            reply = self.log.record(EventKind.AI, result.text, token_cost=result.token_cost)
            logger.info("AI replied to %s (%s tokens)", winner.id, result.token_cost)
            self.dispatcher.broadcast(composing)
            self.dispatcher.broadcast(NewMessage(event=ConversationEventPayload.from_event(reply)))
            return

        logger.error("AI reply for %s failed: %s", winner.id, result.detail or result.reason)
        self.dispatcher.broadcast(composing)
        self.dispatcher.broadcast(AIError(reason=result.reason))

    def _finish_batch(self, batch: Sequence[str]) -> None:
        self._remove_prompts(batch)
        self._frozen.difference_update(batch)
        self.dispatcher.broadcast(self.prompt_snapshot())
        if self._round is None:
            self.dispatcher.broadcast(RoundEnded())

    def _start_round(self) -> None:
        self._generation += 1
        now = self.clock()
        window = self.settings.voting_window_seconds
        timer = self.scheduler.call_later(window, self.end_prompt_voting, name="prompt-round")
        ticker = self.scheduler.call_every(self.settings.round_tick_seconds, self._tick, name="prompt-round-tick")
        self._round = PromptVotingRound(
            generation=self._generation,
            started_at=now,
            ends_at=now + timedelta(seconds=window),
            timer=timer,
            ticker=ticker,
        )
        logger.info("Voting round %d started (%.0fs)", self._generation, window)
        self.dispatcher.broadcast(
            RoundStarted(
                ends_at=self._round.ends_at,
                remaining_seconds=window,
                required_votes=self.required_votes(),
            )
        )

    def _close_round(self) -> Optional[PromptVotingRound]:
        closed = self._round
        if closed is not None:
            closed.cancel_timers()
            self._round = None
            logger.debug("Voting round %d closed", closed.generation)
        return closed

    def _tick(self) -> None:
        if self._round is None:
            return
        self.dispatcher.broadcast(
            RoundTick(remaining_seconds=self.remaining_seconds(), required_votes=self.required_votes())
        )

    def _enforce_pool_cap(self) -> None:
        live = self.live_prompts()
        while len(live) > self.settings.max_prompts:
            oldest = live.pop(0)
            self._prompts.pop(oldest.id)
            logger.debug("Prompt pool full; evicted %s", oldest.id)

    def _remove_prompts(self, prompt_ids: Iterable[str]) -> None:
        for prompt_id in list(prompt_ids):
            self._prompts.pop(prompt_id, None)
