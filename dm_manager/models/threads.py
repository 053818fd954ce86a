"""Thread state data models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class ThreadState:
    """Per-conversation debounce flags."""

    thread_id: str
    processing: bool = False
    has_pending_messages: bool = False
    last_processed_message_id: str | None = None
    updated_at: datetime | None = None


@dataclass
class ClaimResult:
    """Outcome of a claim attempt on a thread."""

    thread_id: str
    claimed: bool

    def __bool__(self) -> bool:
        return self.claimed
