"""Democratic AI Chat Room.

This package holds the session-coordination core of a multi-user chat room in
which one shared AI assistant answers community-selected prompts: connected
participants, the conversation log, prompt voting rounds and the clear-chat
vote.
"""

from .clear_vote import ClearChatConsensus
from .config import RoomSettings
from .conversation import ConversationLog
from .coordinator import RoomCoordinator
from .dispatcher import Dispatcher, QueueDispatcher
from .errors import PolicyRejection, RoomRejection, ValidationRejection
from .gateway import GatewayFailure, GatewayReply, ResponseGateway
from .messages import ServerEvent, parse_client_message
from .models import (
    ClearChoice,
    ClearVoteOutcome,
    ConversationEvent,
    EventKind,
    Participant,
    Prompt,
    VotingState,
)
from .prompt_voting import PROMPT_QUORUM_FRACTION, PromptVotingEngine, required_votes_for
from .registry import SessionRegistry
from .timers import ScheduledTask, Scheduler

__all__ = [
    "ClearChatConsensus",
    "RoomSettings",
    "ConversationLog",
    "RoomCoordinator",
    "Dispatcher",
    "QueueDispatcher",
    "PolicyRejection",
    "RoomRejection",
    "ValidationRejection",
    "GatewayFailure",
    "GatewayReply",
    "ResponseGateway",
    "ServerEvent",
    "parse_client_message",
    "ClearChoice",
    "ClearVoteOutcome",
    "ConversationEvent",
    "EventKind",
    "Participant",
    "Prompt",
    "VotingState",
    "PROMPT_QUORUM_FRACTION",
    "PromptVotingEngine",
    "required_votes_for",
    "SessionRegistry",
    "ScheduledTask",
    "Scheduler",
]
