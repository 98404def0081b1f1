from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .llm import AnthropicClient, LLMMessage, LLMResult, OpenAICompatibleClient
from .llm.anthropic import DEFAULT_ANTHROPIC_MODEL

MessageInput = Union[LLMMessage, Mapping[str, Any]]


class UnknownProviderError(ValueError):
    """Raised when a caller references a provider that is not registered."""


@dataclass
class ProviderConfig:
    """Lightweight provider registry entry."""

    key: str
    kind: str
    default_model: str


DEFAULT_PROVIDERS = (
    ProviderConfig(key="anthropic", kind="anthropic", default_model=DEFAULT_ANTHROPIC_MODEL),
    ProviderConfig(key="claude", kind="anthropic", default_model=DEFAULT_ANTHROPIC_MODEL),
    ProviderConfig(key="openai", kind="openai", default_model="gpt-3.5-turbo"),
    ProviderConfig(key="xai", kind="xai", default_model="grok-beta"),
)


class ProviderRouter:
    """Route LLM invocations to a configured provider runtime."""

    def __init__(
        self,
        *,
        anthropic_client: Optional[AnthropicClient] = None,
        openai_client: Optional[OpenAICompatibleClient] = None,
        xai_client: Optional[OpenAICompatibleClient] = None,
        providers: Optional[Iterable[ProviderConfig]] = None,
    ) -> None:
        self._clients: Dict[str, Any] = {}
        if anthropic_client is not None:
            self._clients["anthropic"] = anthropic_client
        if openai_client is not None:
            self._clients["openai"] = openai_client
        if xai_client is not None:
            self._clients["xai"] = xai_client

        self._providers = {provider.key: provider for provider in DEFAULT_PROVIDERS}
        self._providers.update({provider.key: provider for provider in providers or []})

        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def send(
        self,
        *,
        provider: str,
        messages: Sequence[MessageInput],
        model: Optional[str] = None,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResult:
        """Dispatch a chat request to a provider."""

        config = self.provider_config(provider)
        client = self._ensure_client(config.kind)
        return client.send_messages(
            _normalise_messages(messages),
            system=system,
            model=model or config.default_model,
            max_tokens=max_tokens,
            temperature=temperature,
        )

    def provider_config(self, provider: str) -> ProviderConfig:
        provider_key = provider.lower().strip()
        if provider_key not in self._providers:
            raise UnknownProviderError(f"Provider '{provider}' is not registered with this router.")
        return self._providers[provider_key]

    @classmethod
    def lazy_default(cls) -> "ProviderRouter":
        return cls()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _ensure_client(self, kind: str) -> Any:
        with self._lock:
            client = self._clients.get(kind)
            if client is not None:
                return client
            if kind == "anthropic":
                client = AnthropicClient()
            elif kind == "openai":
                client = OpenAICompatibleClient()
            elif kind == "xai":
                client = OpenAICompatibleClient.for_xai()
            else:
                raise UnknownProviderError(f"Provider kind '{kind}' is not supported by this router.")
            self._clients[kind] = client
            return client


def _normalise_messages(messages: Sequence[MessageInput]) -> List[LLMMessage]:
    normalised: List[LLMMessage] = []
    for entry in messages:
        if isinstance(entry, LLMMessage):
            normalised.append(entry)
            continue

        if not isinstance(entry, Mapping):
            raise TypeError(f"Unsupported message input type: {type(entry)!r}")

        role = entry.get("role")
        content = entry.get("content")
        if not isinstance(role, str):
            raise ValueError("Message role must be a string.")
        if content is None:
            raise ValueError("Message content cannot be None.")
        normalised.append(LLMMessage(role=role, content=content))

    return normalised
