"""
LLM provider integrations for the Vox chat room.

The Anthropic Messages API and OpenAI-compatible chat completions (OpenAI,
xAI) expose the same ``send_messages`` surface so the router can swap them
without touching the room.
"""

from .anthropic import AnthropicClient, AnthropicError
from .http import ProviderHTTPError
from .openai_compat import OpenAICompatibleClient, OpenAICompatibleError
from .types import (
    LLMMessage,
    LLMResult,
    UsageMetrics,
)

__all__ = [
    "AnthropicClient",
    "AnthropicError",
    "ProviderHTTPError",
    "OpenAICompatibleClient",
    "OpenAICompatibleError",
    "LLMMessage",
    "LLMResult",
    "UsageMetrics",
]
