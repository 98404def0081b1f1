"""Rejections raised by room operations.

Rejections never mutate state. The coordinator catches them and reports them
to the originating connection only.
"""

from __future__ import annotations


class RoomRejection(Exception):
    """Base class for a refused client command."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationRejection(RoomRejection):
    """Malformed input: bad name shape, empty prompt, unknown message type."""


class PolicyRejection(RoomRejection):
    """Well-formed input refused by room policy (duplicates, self-votes, ...)."""
