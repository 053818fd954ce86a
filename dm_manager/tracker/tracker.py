"""Tracker implementation for creating TraceEvents."""

import uuid
from datetime import datetime, timezone
from typing import Protocol

from ..logging_config import get_logger
from ..models import TraceEvent
from ..storage import IStorage

logger = get_logger(__name__)


class ITracker(Protocol):
    """Creating TraceEvents for processing passes."""

    async def track(
        self, event_type: str, actor: str, data: dict, thread_id: str | None = None
    ) -> None:
        """Create TraceEvent and save to Storage."""
        ...


class Tracker:
    """Records what each component did, for the observability API."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def track(
        self, event_type: str, actor: str, data: dict, thread_id: str | None = None
    ) -> None:
        """Create TraceEvent and save to Storage.

        Tracing never breaks the pass it observes: storage failures are logged.
        """
        trace_event = TraceEvent(
            id=str(uuid.uuid4()),
            event_type=event_type,
            actor=actor,
            data=data,
            timestamp=datetime.now(timezone.utc),
            thread_id=thread_id,
        )
        try:
            await self._storage.save_trace_event(trace_event)
        except Exception as e:
            logger.warning(
                "Failed to save trace event %s: %s",
                event_type,
                e,
                extra={"context": {"thread_id": thread_id}},
            )
