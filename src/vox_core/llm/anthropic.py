from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .http import ProviderHTTPError, post_json, safe_int
from .types import LLMMessage, LLMResult, UsageMetrics

DEFAULT_ANTHROPIC_MODEL = "claude-3-haiku-20240307"


class AnthropicError(ProviderHTTPError):
    """Raised when the Anthropic API request fails."""


class AnthropicClient:
    """Messages API client for the room's single-prompt replies."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        api_version: str = "2023-06-01",
        default_model: Optional[str] = None,
        default_max_output_tokens: int = 400,
        timeout: float = 30.0,
    ) -> None:
        resolved_key = (api_key or os.environ.get("ANTHROPIC_API_KEY") or "").strip()
        if not resolved_key:
            raise ValueError("Missing Anthropic API key (set ANTHROPIC_API_KEY)")

        self.api_key = resolved_key
        self.base_url = (base_url or os.environ.get("ANTHROPIC_API_URL") or "https://api.anthropic.com").rstrip("/")
        self.api_version = api_version
        self.default_model = default_model or os.environ.get("ANTHROPIC_MODEL") or DEFAULT_ANTHROPIC_MODEL
        self.default_max_output_tokens = int(default_max_output_tokens)
        self.timeout = timeout

    def send_messages(
        self,
        messages: Sequence[LLMMessage],
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResult:
        """Post user/assistant turns; the system prompt travels separately."""

        if not messages:
            raise ValueError("At least one message must be supplied.")

        prepared: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                raise ValueError("Pass system text via the 'system' argument.")
            blocks = message.content_blocks()
            if not blocks:
                raise ValueError(f"Message for role '{message.role}' is empty.")
            prepared.append({"role": message.role, "content": blocks})

        body: Dict[str, Any] = {
            "model": model or self.default_model,
            "messages": prepared,
            "max_tokens": max_tokens or self.default_max_output_tokens,
        }
        if system and system.strip():
            body["system"] = system.strip()
        if temperature is not None:
            body["temperature"] = float(temperature)

        payload, response_text = self._http_request(body)
        return self._normalise_response(payload, response_text)

    def _http_request(self, body: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
        return post_json(
            f"{self.base_url}/v1/messages",
            body,
            {"x-api-key": self.api_key, "anthropic-version": self.api_version},
            timeout=self.timeout,
            error_cls=AnthropicError,
            label="Anthropic",
        )

    def _normalise_response(self, payload: Mapping[str, Any], response_text: str) -> LLMResult:
        content_blocks = payload.get("content") or []
        text = "\n".join(
            str(block["text"])
            for block in content_blocks
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        ).strip()

        usage_payload = payload.get("usage") or {}
        usage = None
        if isinstance(usage_payload, dict) and usage_payload:
            usage = UsageMetrics(
                input_tokens=safe_int(usage_payload.get("input_tokens")),
                output_tokens=safe_int(usage_payload.get("output_tokens")),
            )

        return LLMResult(
            text=text,
            stop_reason=payload.get("stop_reason"),
            model=payload.get("model"),
            usage=usage,
            raw={"response": dict(payload), "text": response_text},
        )
