from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Union


MessageRole = Literal["system", "user", "assistant"]
ContentBlock = Dict[str, Any]
ContentLike = Union[str, Sequence[Mapping[str, Any]]]


@dataclass
class LLMMessage:
    """Generic chat message representation shared by the provider clients."""

    role: MessageRole
    content: ContentLike

    def as_text(self) -> str:
        """Return the string content, joining text blocks when needed."""

        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            str(block.get("text", ""))
            for block in self.content_blocks()
            if block.get("type") == "text"
        )

    def content_blocks(self) -> List[ContentBlock]:
        """Return the message content as Anthropic-compatible blocks."""

        if isinstance(self.content, str):
            text = self.content.strip()
            if not text:
                return []
            return [{"type": "text", "text": text}]

        blocks: List[ContentBlock] = []
        for block in self.content:
            if not isinstance(block, Mapping):
                raise TypeError(f"Unsupported content block type: {type(block)!r}")
            blocks.append(dict(block))
        return blocks


@dataclass
class UsageMetrics:
    """Token accounting returned by the provider."""

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    def resolved_total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return (self.input_tokens or 0) + (self.output_tokens or 0)


@dataclass
class LLMResult:
    """Normalized model response."""

    text: str
    stop_reason: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[UsageMetrics] = None
    raw: Optional[Dict[str, Any]] = field(default=None, repr=False)
