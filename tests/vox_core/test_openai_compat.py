from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional, Tuple

import pytest

from vox_core.llm import LLMMessage, OpenAICompatibleClient


class RecordingCompletionsClient(OpenAICompatibleClient):
    def __init__(self, response: Mapping[str, Any], **kwargs: Any) -> None:
        kwargs.setdefault("api_key", "test-key")
        super().__init__(**kwargs)
        self._response = dict(response)
        self.last_body: Optional[Dict[str, Any]] = None

    def _http_request(self, body: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:  # type: ignore[override]
        self.last_body = dict(body)
        return dict(self._response), json.dumps(self._response)


COMPLETION = {
    "model": "gpt-3.5-turbo-0125",
    "choices": [
        {"index": 0, "message": {"role": "assistant", "content": " Hello room! "}, "finish_reason": "stop"}
    ],
    "usage": {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16},
}


def test_send_messages_prepends_system_and_normalizes() -> None:
    client = RecordingCompletionsClient(COMPLETION)

    result = client.send_messages(
        [LLMMessage(role="user", content="Say hello")],
        system="Be brief.",
        max_tokens=150,
        temperature=0.7,
    )

    assert client.last_body is not None
    assert client.last_body["model"] == "gpt-3.5-turbo"
    assert client.last_body["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Say hello"},
    ]
    assert client.last_body["max_tokens"] == 150
    assert client.last_body["temperature"] == 0.7
    assert client.last_body["presence_penalty"] == 0.1
    assert client.last_body["frequency_penalty"] == 0.1

    assert result.text == "Hello room!"
    assert result.stop_reason == "stop"
    assert result.model == "gpt-3.5-turbo-0125"
    assert result.usage is not None
    assert (result.usage.input_tokens, result.usage.output_tokens) == (12, 4)
    assert result.usage.resolved_total() == 16


def test_for_xai_uses_grok_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("XAI_API_KEY", "xai-key")

    client = OpenAICompatibleClient.for_xai()

    assert client.api_key == "xai-key"
    assert client.base_url == "https://api.x.ai/v1"
    assert client.default_model == "grok-beta"


def test_missing_key_names_the_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("XAI_API_KEY", raising=False)
    with pytest.raises(ValueError, match="XAI_API_KEY"):
        OpenAICompatibleClient.for_xai()


def test_empty_choices_give_empty_text() -> None:
    client = RecordingCompletionsClient({"choices": []})
    result = client.send_messages([LLMMessage(role="user", content="hi")])
    assert result.text == ""
    assert result.usage is None
