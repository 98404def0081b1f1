"""Wire protocol for the chat room WebSocket.

Every client and server message is a pydantic model tagged by ``type``.
Client payloads are validated here before they reach the room.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import ValidationRejection
from .models import ClearChoice, ConversationEvent, Prompt


# --------------------------------------------------------------------------- #
# Client -> server
# --------------------------------------------------------------------------- #


class JoinMessage(BaseModel):
    type: Literal["join"] = "join"
    name: str


class SubmitPromptMessage(BaseModel):
    type: Literal["submit_prompt"] = "submit_prompt"
    text: str


class VotePromptMessage(BaseModel):
    type: Literal["vote_prompt"] = "vote_prompt"
    prompt_id: str = Field(min_length=1)


class ProposeClearMessage(BaseModel):
    type: Literal["propose_clear"] = "propose_clear"


class CastClearVoteMessage(BaseModel):
    type: Literal["cast_clear_vote"] = "cast_clear_vote"
    choice: ClearChoice


class ActivityPingMessage(BaseModel):
    type: Literal["activity_ping"] = "activity_ping"


class TypingMessage(BaseModel):
    type: Literal["typing"] = "typing"


class StopTypingMessage(BaseModel):
    type: Literal["stop_typing"] = "stop_typing"


class UserChatMessage(BaseModel):
    """Direct chat to the assistant; always refused in favour of prompts."""

    type: Literal["user_message"] = "user_message"
    text: str = ""


ClientMessage = Annotated[
    Union[
        JoinMessage,
        SubmitPromptMessage,
        VotePromptMessage,
        ProposeClearMessage,
        CastClearVoteMessage,
        ActivityPingMessage,
        TypingMessage,
        StopTypingMessage,
        UserChatMessage,
    ],
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: Any) -> ClientMessage:
    """Validate a decoded JSON payload into a client message."""

    if not isinstance(raw, Mapping):
        raise ValidationRejection("malformed_message", "Messages must be JSON objects.")
    try:
        return _client_message_adapter.validate_python(dict(raw))
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "message"
        raise ValidationRejection(
            "malformed_message",
            f"Invalid {location}: {first.get('msg', 'validation failed')}",
        ) from None


# --------------------------------------------------------------------------- #
# Payload fragments
# --------------------------------------------------------------------------- #


class ConversationEventPayload(BaseModel):
    id: str
    kind: str
    author: str
    body: str
    timestamp: datetime
    token_cost: Optional[int] = None

    @classmethod
    def from_event(cls, event: ConversationEvent) -> "ConversationEventPayload":
        return cls(
            id=event.id,
            kind=event.kind.value,
            author=event.author,
            body=event.body,
            timestamp=event.timestamp,
            token_cost=event.token_cost,
        )


class PromptPayload(BaseModel):
    id: str
    text: str
    submitter: str
    votes: int
    submitted_at: datetime

    @classmethod
    def from_prompt(cls, prompt: Prompt) -> "PromptPayload":
        return cls(
            id=prompt.id,
            text=prompt.text,
            submitter=prompt.submitter_name,
            votes=prompt.vote_count,
            submitted_at=prompt.submitted_at,
        )


# --------------------------------------------------------------------------- #
# Server -> client
# --------------------------------------------------------------------------- #


class ServerEvent(BaseModel):
    """Base class for events pushed to clients."""

    type: str

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class JoinAccepted(ServerEvent):
    type: Literal["join_accepted"] = "join_accepted"
    participant_id: str
    name: str


class JoinRejected(ServerEvent):
    type: Literal["join_rejected"] = "join_rejected"
    code: str
    reason: str


class HistorySnapshot(ServerEvent):
    type: Literal["history_snapshot"] = "history_snapshot"
    events: List[ConversationEventPayload]


class PromptSnapshot(ServerEvent):
    type: Literal["prompt_snapshot"] = "prompt_snapshot"
    prompts: List[PromptPayload]


class NewMessage(ServerEvent):
    type: Literal["new_message"] = "new_message"
    event: ConversationEventPayload


class NewPrompt(ServerEvent):
    type: Literal["new_prompt"] = "new_prompt"
    prompt: PromptPayload


class PromptRejected(ServerEvent):
    type: Literal["prompt_rejected"] = "prompt_rejected"
    code: str
    reason: str


class VoteRejected(ServerEvent):
    type: Literal["vote_rejected"] = "vote_rejected"
    code: str
    reason: str
    prompt_id: Optional[str] = None


class ClearRejected(ServerEvent):
    type: Literal["clear_rejected"] = "clear_rejected"
    code: str
    reason: str


class CommandRejected(ServerEvent):
    type: Literal["command_rejected"] = "command_rejected"
    code: str
    reason: str


class RoundStarted(ServerEvent):
    type: Literal["round_started"] = "round_started"
    ends_at: datetime
    remaining_seconds: float
    required_votes: int


class RoundTick(ServerEvent):
    type: Literal["round_tick"] = "round_tick"
    remaining_seconds: float
    required_votes: int


class RoundEnded(ServerEvent):
    type: Literal["round_ended"] = "round_ended"
    reason: Optional[str] = None


class AIComposing(ServerEvent):
    type: Literal["ai_composing"] = "ai_composing"
    active: bool


class AIError(ServerEvent):
    type: Literal["ai_error"] = "ai_error"
    reason: str


class ClearProposed(ServerEvent):
    type: Literal["clear_proposed"] = "clear_proposed"
    proposer: str
    eligible: int
    time_limit_seconds: float


class ClearTallyUpdated(ServerEvent):
    type: Literal["clear_tally_updated"] = "clear_tally_updated"
    yes: int
    no: int
    eligible: int


class ClearResolved(ServerEvent):
    type: Literal["clear_resolved"] = "clear_resolved"
    outcome: str


class ClearChat(ServerEvent):
    type: Literal["clear_chat"] = "clear_chat"


class SystemNotice(ServerEvent):
    type: Literal["system_notice"] = "system_notice"
    message: str


class ParticipantCountChanged(ServerEvent):
    type: Literal["participant_count_changed"] = "participant_count_changed"
    count: int


class ParticipantJoined(ServerEvent):
    type: Literal["participant_joined"] = "participant_joined"
    name: str
    count: int


class ParticipantLeft(ServerEvent):
    type: Literal["participant_left"] = "participant_left"
    name: str
    count: int
    reason: str = "left"


class IdleDisconnect(ServerEvent):
    type: Literal["idle_disconnect"] = "idle_disconnect"
    reason: str


class TypingUpdate(ServerEvent):
    type: Literal["typing_update"] = "typing_update"
    count: int
    users: List[str]


class MessageBlocked(ServerEvent):
    type: Literal["message_blocked"] = "message_blocked"
    reason: str
