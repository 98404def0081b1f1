from __future__ import annotations

import io
import json
import urllib.error
from typing import Any, Dict, Mapping, Optional, Sequence

import pytest

from vox_core.llm import AnthropicClient, AnthropicError, LLMMessage


class RecordingAnthropicClient(AnthropicClient):
    """Anthropic client that records the outgoing payload for assertions."""

    def __init__(self, response: Mapping[str, Any]) -> None:
        super().__init__(api_key="test-key", base_url="https://example.com")
        self._response = dict(response)
        self.last_body: Optional[Dict[str, Any]] = None

    def _http_request(self, body: Dict[str, Any]) -> tuple[Dict[str, Any], str]:  # type: ignore[override]
        self.last_body = dict(body)
        return dict(self._response), json.dumps(self._response)


def test_send_messages_builds_payload_and_normalizes_response() -> None:
    response_payload = {
        "id": "msg_123",
        "model": "claude-3-haiku-20240307",
        "content": [
            {"type": "text", "text": "Owls are nocturnal."},
            {"type": "text", "text": "Most of them, anyway."},
        ],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 10, "output_tokens": 32},
    }

    client = RecordingAnthropicClient(response_payload)

    result = client.send_messages(
        [LLMMessage(role="user", content="Tell me about owls")],
        system="  You are a helpful AI assistant in a multi-user chat room.  ",
        max_tokens=256,
        temperature=0.5,
    )

    assert client.last_body is not None
    assert client.last_body["model"] == client.default_model
    assert client.last_body["max_tokens"] == 256
    assert client.last_body["temperature"] == 0.5
    assert client.last_body["system"] == "You are a helpful AI assistant in a multi-user chat room."

    payload_messages: Sequence[Dict[str, Any]] = client.last_body["messages"]
    assert len(payload_messages) == 1
    assert payload_messages[0]["role"] == "user"
    assert payload_messages[0]["content"][0]["text"] == "Tell me about owls"

    assert result.text == "Owls are nocturnal.\nMost of them, anyway."
    assert result.stop_reason == "end_turn"
    assert result.usage is not None
    assert result.usage.resolved_total() == 42


def test_default_max_tokens_and_no_temperature() -> None:
    client = RecordingAnthropicClient({"content": [], "stop_reason": "end_turn"})

    result = client.send_messages([LLMMessage(role="user", content="hi")])

    assert client.last_body["max_tokens"] == 400
    assert "temperature" not in client.last_body
    assert "system" not in client.last_body
    assert result.text == ""
    assert result.usage is None


def test_rejects_empty_or_system_role_input() -> None:
    client = RecordingAnthropicClient({})

    with pytest.raises(ValueError):
        client.send_messages([])
    with pytest.raises(ValueError, match="system"):
        client.send_messages([LLMMessage(role="system", content="only rules")])
    with pytest.raises(ValueError):
        client.send_messages([LLMMessage(role="user", content="   ")])


def test_missing_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
        AnthropicClient()


def test_http_error_carries_api_message(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(request, timeout):
        body = json.dumps({"error": {"type": "overloaded_error", "message": "Overloaded"}}).encode()
        raise urllib.error.HTTPError(request.full_url, 529, "Overloaded", {}, io.BytesIO(body))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    client = AnthropicClient(api_key="test-key", base_url="https://example.com")

    with pytest.raises(AnthropicError) as excinfo:
        client.send_messages([LLMMessage(role="user", content="hi")])

    assert excinfo.value.status_code == 529
    assert excinfo.value.message == "Overloaded"
    assert excinfo.value.payload["messages"][0]["role"] == "user"
