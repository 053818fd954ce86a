"""Observability API routes."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException, Query

from ...app import Application
from ...models import TaskStatus


class TraceEventResponse(BaseModel):
    """Response model for trace event."""

    id: str
    event_type: str
    actor: str
    data: dict[str, Any]
    timestamp: datetime
    thread_id: str | None = None


class ThreadStateResponse(BaseModel):
    thread_id: str
    processing: bool
    has_pending_messages: bool
    last_processed_message_id: str | None = None
    updated_at: datetime | None = None


class DispatchTaskResponse(BaseModel):
    name: str
    thread_id: str
    run_at: datetime
    attempts: int
    status: str
    last_error: str | None = None


def create_observability_router(app: Application) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api", tags=["observability"])

    @router.get("/trace-events", response_model=list[TraceEventResponse])
    async def get_trace_events(
        after: str | None = Query(None, description="ISO timestamp filter"),
        limit: int = Query(100, ge=1, le=1000),
        event_type: str | None = Query(None, description="Filter by event type"),
        actor: str | None = Query(None, description="Filter by actor"),
        thread_id: str | None = Query(None, description="Filter by thread"),
    ) -> list[dict]:
        """Get trace events with optional filters."""
        after_dt = None
        if after:
            try:
                after_dt = datetime.fromisoformat(after)
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid after timestamp format")

        try:
            events = await app.storage.get_trace_events(
                after=after_dt,
                event_types=[event_type] if event_type else None,
                actor=actor,
                thread_id=thread_id,
                limit=limit,
            )
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

        return [
            {
                "id": e.id,
                "event_type": e.event_type,
                "actor": e.actor,
                "data": e.data,
                "timestamp": e.timestamp.isoformat(),
                "thread_id": e.thread_id,
            }
            for e in events
        ]

    @router.get("/threads/{thread_id}", response_model=ThreadStateResponse)
    async def get_thread(thread_id: str) -> dict:
        """Current debounce flags of a thread."""
        state = await app.storage.get_thread_state(thread_id)
        if state is None:
            raise HTTPException(status_code=404, detail="Thread not found")
        return {
            "thread_id": state.thread_id,
            "processing": state.processing,
            "has_pending_messages": state.has_pending_messages,
            "last_processed_message_id": state.last_processed_message_id,
            "updated_at": state.updated_at,
        }

    @router.get("/tasks", response_model=list[DispatchTaskResponse])
    async def list_tasks(
        thread_id: str | None = Query(None),
        status: str | None = Query(None, description="scheduled, running, done or dead"),
    ) -> list[dict]:
        """Dispatch tasks, including dead letters."""
        try:
            task_status = TaskStatus(status) if status else None
        except ValueError:
            raise HTTPException(status_code=400, detail="Unknown task status")

        tasks = await app.storage.list_tasks(thread_id=thread_id, status=task_status)
        return [
            {
                "name": t.name,
                "thread_id": t.thread_id,
                "run_at": t.run_at,
                "attempts": t.attempts,
                "status": t.status.value,
                "last_error": t.last_error,
            }
            for t in tasks
        ]

    return router
