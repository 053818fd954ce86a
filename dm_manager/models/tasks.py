"""Dispatch task data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    """Lifecycle of a dispatch task."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    DONE = "done"
    DEAD = "dead"


@dataclass
class DispatchTask:
    """A named, delayed unit of work: process one thread."""

    name: str
    thread_id: str
    run_at: datetime
    payload: dict = field(default_factory=dict)
    attempts: int = 0
    status: TaskStatus = TaskStatus.SCHEDULED
    last_error: str | None = None
    created_at: datetime | None = None
