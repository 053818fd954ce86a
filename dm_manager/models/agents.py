"""Agent-related data models."""

from dataclasses import dataclass, field
from enum import Enum


class ToolName(str, Enum):
    """Closed set of tools the model may call."""

    SEND_MESSAGE = "send_instagram_message"
    REACT_TO_MESSAGE = "react_to_instagram_message"
    ESCALATE_TO_MANAGER = "escalate_to_manager"
    NOTIFY_BOOKING_CONFIRMED = "notify_booking_confirmed"
    RECORD_BOOKING = "record_booking"
    CHECK_LAST_NOTIFICATION = "check_last_notification"
    GET_CONVERSATION_HISTORY = "get_conversation_history"
    GET_USER_PROFILE = "get_user_profile"
    GET_SESSION_SCHEDULE = "get_session_schedule"
    NO_ACTION = "no_action"


class Reaction(str, Enum):
    """Reactions Instagram accepts on a message."""

    LOVE = "love"
    LIKE = "like"
    LAUGH = "laugh"
    WOW = "wow"
    SAD = "sad"
    ANGRY = "angry"


class Priority(str, Enum):
    """Escalation priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict


@dataclass
class AgentResult:
    """Outcome of one agent turn."""

    tools_invoked: list[ToolName] = field(default_factory=list)
    text: str | None = None
