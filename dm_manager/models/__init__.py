"""Core data models for the DM manager."""

from .agents import AgentResult, Priority, Reaction, ToolCall, ToolName
from .messages import (
    ConversationMessage,
    InstagramMessage,
    MessageType,
    SenderProfile,
    TranscriptEntry,
)
from .tasks import DispatchTask, TaskStatus
from .threads import ClaimResult, ThreadState
from .tracing import TraceEvent
from .users import Booking, CooldownStatus, UserProfile

__all__ = [
    # Messages
    "InstagramMessage",
    "ConversationMessage",
    "TranscriptEntry",
    "SenderProfile",
    "MessageType",
    # Threads
    "ThreadState",
    "ClaimResult",
    # Users
    "UserProfile",
    "Booking",
    "CooldownStatus",
    # Tasks
    "DispatchTask",
    "TaskStatus",
    # Agents
    "ToolName",
    "ToolCall",
    "Reaction",
    "Priority",
    "AgentResult",
    # Tracing
    "TraceEvent",
]
