"""Chat-completions client for OpenAI and OpenAI-compatible APIs (xAI)."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .http import ProviderHTTPError, post_json, safe_int
from .types import LLMMessage, LLMResult, UsageMetrics

OPENAI_DEFAULT_BASE_URL = "https://api.openai.com/v1"
XAI_DEFAULT_BASE_URL = "https://api.x.ai/v1"


class OpenAICompatibleError(ProviderHTTPError):
    """Raised when a chat-completions request fails."""


class OpenAICompatibleClient:
    """Minimal chat-completions client sharing the Anthropic client's surface."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        api_key_env: str = "OPENAI_API_KEY",
        base_url: Optional[str] = None,
        default_model: str = "gpt-3.5-turbo",
        default_max_output_tokens: int = 400,
        timeout: float = 30.0,
        presence_penalty: Optional[float] = 0.1,
        frequency_penalty: Optional[float] = 0.1,
    ) -> None:
        resolved_key = (api_key or os.environ.get(api_key_env) or "").strip()
        if not resolved_key:
            raise ValueError(f"Missing API key (set {api_key_env})")

        self.api_key = resolved_key
        self.base_url = (base_url or OPENAI_DEFAULT_BASE_URL).rstrip("/")
        self.default_model = default_model
        self.default_max_output_tokens = int(default_max_output_tokens)
        self.timeout = timeout
        self.presence_penalty = presence_penalty
        self.frequency_penalty = frequency_penalty

    @classmethod
    def for_xai(cls, **kwargs: Any) -> "OpenAICompatibleClient":
        kwargs.setdefault("api_key_env", "XAI_API_KEY")
        kwargs.setdefault("base_url", XAI_DEFAULT_BASE_URL)
        kwargs.setdefault("default_model", "grok-beta")
        return cls(**kwargs)

    def send_messages(
        self,
        messages: Sequence[LLMMessage],
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResult:
        if not messages:
            raise ValueError("At least one message must be supplied.")

        prepared: List[Dict[str, str]] = []
        if system and system.strip():
            prepared.append({"role": "system", "content": system.strip()})
        for message in messages:
            text = message.as_text().strip()
            if text:
                prepared.append({"role": message.role, "content": text})

        body: Dict[str, Any] = {
            "model": model or self.default_model,
            "messages": prepared,
            "max_tokens": max_tokens or self.default_max_output_tokens,
        }
        if temperature is not None:
            body["temperature"] = float(temperature)
        if self.presence_penalty is not None:
            body["presence_penalty"] = self.presence_penalty
        if self.frequency_penalty is not None:
            body["frequency_penalty"] = self.frequency_penalty

        payload, response_text = self._http_request(body)
        return self._normalise_response(payload, response_text)

    def _http_request(self, body: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
        return post_json(
            f"{self.base_url}/chat/completions",
            body,
            {"authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            error_cls=OpenAICompatibleError,
            label="Chat-completions",
        )

    def _normalise_response(self, payload: Mapping[str, Any], response_text: str) -> LLMResult:
        choices = payload.get("choices") or []
        text = ""
        stop_reason = None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            if isinstance(message, dict):
                text = str(message.get("content") or "").strip()
            stop_reason = choices[0].get("finish_reason")

        usage_payload = payload.get("usage") or {}
        usage = None
        if isinstance(usage_payload, dict) and usage_payload:
            usage = UsageMetrics(
                input_tokens=safe_int(usage_payload.get("prompt_tokens")),
                output_tokens=safe_int(usage_payload.get("completion_tokens")),
                total_tokens=safe_int(usage_payload.get("total_tokens")),
            )

        return LLMResult(
            text=text,
            stop_reason=stop_reason,
            model=payload.get("model"),
            usage=usage,
            raw={"response": dict(payload), "text": response_text},
        )
