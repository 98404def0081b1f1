"""JSON-over-HTTPS POST shared by the provider clients."""

from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Type


@dataclass
class ProviderHTTPError(Exception):
    """Raised when a provider request fails."""

    status_code: Optional[int]
    message: str
    response_text: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)


def post_json(
    url: str,
    body: Dict[str, Any],
    headers: Mapping[str, str],
    *,
    timeout: float,
    error_cls: Type[ProviderHTTPError] = ProviderHTTPError,
    label: str = "Provider",
) -> Tuple[Dict[str, Any], str]:
    """POST ``body`` and return the decoded JSON plus the raw text."""

    request = urllib.request.Request(
        url=url,
        data=json.dumps(body).encode("utf-8"),
        headers={"content-type": "application/json", **headers},
        method="POST",
    )

    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw_bytes = response.read()
            response_text = raw_bytes.decode("utf-8") if raw_bytes else ""
            try:
                return (json.loads(response_text) if response_text else {}), response_text
            except json.JSONDecodeError as exc:
                raise error_cls(
                    status_code=response.getcode(),
                    message=f"{label} response was not valid JSON.",
                    response_text=response_text,
                    payload=body,
                ) from exc
    except urllib.error.HTTPError as exc:
        error_bytes = exc.read()
        error_text = error_bytes.decode("utf-8", errors="ignore") if error_bytes else ""
        raise error_cls(
            status_code=exc.code,
            message=_error_message(error_text) or f"{label} API error ({exc.code})",
            response_text=error_text or None,
            payload=body,
        ) from None
    except urllib.error.URLError as exc:
        human = getattr(exc, "reason", None) or str(exc)
        raise error_cls(status_code=None, message=f"{label} request failed: {human}", payload=body) from exc
    except socket.timeout as exc:
        raise error_cls(status_code=None, message=f"{label} request timed out", payload=body) from exc


def _error_message(error_text: str) -> str:
    # Both Anthropic and OpenAI-style APIs answer {"error": {"message": ...}}.
    try:
        parsed = json.loads(error_text) if error_text else None
    except json.JSONDecodeError:
        return ""
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
        return str(parsed["error"].get("message") or "")
    return ""


def safe_int(value: Any) -> Optional[int]:
    try:
        if value is None:
            return None
        return int(value)
    except (TypeError, ValueError):
        return None
