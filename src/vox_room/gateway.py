"""AI Response Gateway - turns a selected prompt into an assistant reply."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from vox_core.provider_router import ProviderRouter

from .models import ConversationEvent, EventKind

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant in a multi-user chat room. Be conversational, "
    "friendly, and concise. Keep responses under 300 words unless specifically asked "
    "for detailed information."
)


@dataclass
class GatewayReply:
    """A successful completion."""

    text: str
    token_cost: Optional[int] = None
    provider: str = ""
    model: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayFailure:
    """A failed completion; ``reason`` is safe to show to users."""

    reason: str
    detail: Optional[str] = None


GatewayResult = Union[GatewayReply, GatewayFailure]


class ReplyGenerator(Protocol):
    async def generate_reply(
        self, prompt_text: str, recent_context: Sequence[ConversationEvent]
    ) -> GatewayResult: ...


class ResponseGateway:
    """Async wrapper around the synchronous provider router.

    ``generate_reply`` never raises: timeouts and provider errors come back as
    ``GatewayFailure``.
    """

    def __init__(
        self,
        router: Optional[ProviderRouter] = None,
        *,
        provider: str = "anthropic",
        model: Optional[str] = None,
        timeout_seconds: float = 30.0,
        max_tokens: int = 400,
        temperature: Optional[float] = 0.7,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self._router = router or ProviderRouter.lazy_default()
        self.provider = provider
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.system_prompt = system_prompt

    async def generate_reply(
        self,
        prompt_text: str,
        recent_context: Sequence[ConversationEvent],
    ) -> GatewayResult:
        """Ask the configured provider for a reply to ``prompt_text``."""

        messages = [{"role": "user", "content": build_request_text(prompt_text, recent_context)}]

        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    self._router.send,
                    provider=self.provider,
                    model=self.model,
                    messages=messages,
                    system=self.system_prompt,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("AI reply timed out after %.0fs (provider=%s)", self.timeout_seconds, self.provider)
            return GatewayFailure(reason="The AI took too long to respond.", detail="timeout")
        except Exception as exc:
            logger.exception("AI reply failed (provider=%s model=%s)", self.provider, self.model)
            return GatewayFailure(
                reason="Sorry, I encountered an error processing the selected prompt.",
                detail=str(exc),
            )

        text = (result.text or "").strip()
        if not text:
            return GatewayFailure(reason="The AI returned an empty reply.", detail="empty")

        return GatewayReply(
            text=text,
            token_cost=result.usage.resolved_total() if result.usage else None,
            provider=self.provider,
            model=result.model or self.model or "",
            meta={"stop_reason": result.stop_reason},
        )


def build_request_text(prompt_text: str, recent_context: Sequence[ConversationEvent]) -> str:
    """Fold recent turns and the prompt into one user message.

    Context may contain consecutive assistant turns, which role-strict APIs
    reject, so turns are rendered as a transcript instead.
    """

    lines: List[str] = []
    for event in recent_context:
        if event.kind is EventKind.SYSTEM:
            continue
        role = "assistant" if event.kind is EventKind.AI else "user"
        lines.append(f"{role}: {event.body}")
    if not lines:
        return prompt_text
    lines.append(f"user: {prompt_text}")
    return "\n".join(lines)
