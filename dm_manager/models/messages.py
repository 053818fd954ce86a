"""Message-related data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

MessageType = Literal[
    "text",
    "image",
    "video",
    "audio",
    "file",
    "share",
    "story_mention",
    "story_reply",
    "reel",
    "ig_reel",
    "other",
]


@dataclass
class InstagramMessage:
    """An inbound direct message parsed from a webhook event."""

    id: str
    sender_id: str
    recipient_id: str
    text: str
    timestamp: int  # epoch milliseconds, as sent by Meta
    message_type: MessageType = "text"
    reply_to_message_id: str | None = None


@dataclass
class ConversationMessage:
    """A message fetched from the platform's conversation history."""

    id: str
    sender_id: str
    text: str
    timestamp: datetime
    message_type: MessageType = "text"


@dataclass
class TranscriptEntry:
    """A single role-tagged line of the transcript given to the model."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime
    message_id: str | None = None


@dataclass
class SenderProfile:
    """Public profile of an Instagram user."""

    id: str
    username: str | None = None
    name: str | None = None
