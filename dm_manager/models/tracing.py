"""Tracing and observability data models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class TraceEvent:
    """A single observability event for a processing pass."""

    id: str
    event_type: str  # e.g. "thread_claimed", "agent_completed"
    actor: str  # component that recorded it
    data: dict
    timestamp: datetime
    thread_id: str | None = None
