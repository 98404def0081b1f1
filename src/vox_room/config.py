"""Room configuration loaded from the environment."""

from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "VOX_"

# Unprefixed names honoured for compatibility with existing deployments.
LEGACY_ENV_ALIASES = {
    "ai_provider": "AI_PROVIDER",
    "ai_model": "AI_MODEL",
}


class RoomSettings(BaseModel):
    """Tunable limits and timers for a chat room.

    Attributes:
        max_history: Conversation events kept before the oldest are dropped.
        max_prompts: Live prompts kept before the oldest is evicted.
        prompt_max_chars: Prompt text is truncated to this many characters.
        idle_timeout_seconds: Inactivity window before a participant is evicted.
        voting_window_seconds: Length of a prompt-voting round.
        round_tick_seconds: Interval of round countdown broadcasts.
        stale_sweep_enabled: Whether aged prompts may be force-resolved.
        stale_sweep_interval_seconds: How often the stale sweep runs.
        stale_prompt_age_seconds: Age after which a prompt counts as stale.
        clear_vote_timeout_seconds: Lifetime of a clear-chat vote.
        clear_approve_fraction: Yes share of connected participants that approves.
        clear_reject_fraction: No share of connected participants that rejects.
        clear_min_participants: Participants required to propose a clear.
        context_turns: Non-system turns sent to the model as context.
        ai_provider: Provider key understood by the provider router.
        ai_model: Model override; the provider default is used when unset.
    """

    max_history: int = Field(default=150, ge=1)
    max_prompts: int = Field(default=20, ge=1)
    prompt_max_chars: int = Field(default=500, ge=1)
    idle_timeout_seconds: float = Field(default=300.0, gt=0)
    voting_window_seconds: float = Field(default=60.0, gt=0)
    round_tick_seconds: float = Field(default=1.0, gt=0)
    stale_sweep_enabled: bool = Field(default=True)
    stale_sweep_interval_seconds: float = Field(default=120.0, gt=0)
    stale_prompt_age_seconds: float = Field(default=300.0, gt=0)
    clear_vote_timeout_seconds: float = Field(default=60.0, gt=0)
    clear_approve_fraction: float = Field(default=0.70, gt=0, le=1)
    clear_reject_fraction: float = Field(default=0.40, gt=0, le=1)
    clear_min_participants: int = Field(default=2, ge=1)
    context_turns: int = Field(default=8, ge=0)
    gateway_timeout_seconds: float = Field(default=30.0, gt=0)
    ai_provider: str = Field(default="anthropic")
    ai_model: Optional[str] = Field(default=None)
    ai_max_tokens: int = Field(default=400, ge=1)
    ai_temperature: float = Field(default=0.7, ge=0)

    @field_validator("ai_provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: object) -> str:
        if value is None:
            return "anthropic"
        return str(value).strip().lower() or "anthropic"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RoomSettings":
        """Build settings from ``VOX_<FIELD>`` environment variables."""

        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None and name in LEGACY_ENV_ALIASES:
                raw = env.get(LEGACY_ENV_ALIASES[name])
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)
