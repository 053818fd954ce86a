"""Delayed dispatcher: schedules one processing task per thread per window."""

import math
import random
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from ..logging_config import get_logger
from ..models import DispatchTask
from ..storage import IStorage, TaskAlreadyExistsError

logger = get_logger(__name__)

Clock = Callable[[], datetime]

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IDelayedDispatcher(Protocol):
    """Schedules processing of a thread after the debounce delay."""

    async def schedule(self, thread_id: str) -> DispatchTask | None:
        """Schedule processing; None if an equivalent task already exists."""
        ...


class DelayedDispatcher:
    """Enqueues ``process-<thread>-<window>`` tasks.

    The window index is ``floor(now / delay_seconds)``. Every schedule call
    for a thread inside one window produces the same task name, and the
    queue rejects the duplicates. The delay is at least one window long, so
    a task only ever runs after its own window has closed.
    """

    def __init__(
        self,
        storage: IStorage,
        delay_seconds: int,
        max_delay_seconds: int | None = None,
        clock: Clock = _utcnow,
        rng: random.Random | None = None,
    ):
        if delay_seconds <= 0:
            raise ValueError("delay_seconds must be positive")
        if max_delay_seconds is not None and max_delay_seconds < delay_seconds:
            raise ValueError("max_delay_seconds must not be lower than delay_seconds")

        self._storage = storage
        self._delay_seconds = delay_seconds
        self._max_delay_seconds = max_delay_seconds or delay_seconds
        self._clock = clock
        self._rng = rng or random.Random()

    def window(self, now: datetime) -> int:
        """Index of the debounce window containing ``now``."""
        return math.floor(now.timestamp() / self._delay_seconds)

    def task_name(self, thread_id: str, now: datetime) -> str:
        safe_thread_id = _UNSAFE_NAME_CHARS.sub("_", thread_id)
        return f"process-{safe_thread_id}-{self.window(now)}"

    def _pick_delay(self) -> float:
        if self._max_delay_seconds == self._delay_seconds:
            return float(self._delay_seconds)
        return self._rng.uniform(self._delay_seconds, self._max_delay_seconds)

    async def schedule(self, thread_id: str) -> DispatchTask | None:
        now = self._clock()
        delay = self._pick_delay()
        task = DispatchTask(
            name=self.task_name(thread_id, now),
            thread_id=thread_id,
            run_at=now + timedelta(seconds=delay),
            payload={"thread_id": thread_id},
            created_at=now,
        )

        try:
            await self._storage.enqueue_task(task)
        except TaskAlreadyExistsError:
            logger.info(
                "Task already scheduled for thread (debouncing)",
                extra={"context": {"thread_id": thread_id, "task": task.name}},
            )
            return None
        except Exception:
            logger.error(
                "Failed to schedule processing task",
                exc_info=True,
                extra={"context": {"thread_id": thread_id, "task": task.name}},
            )
            raise

        logger.info(
            "Scheduled processing task",
            extra={
                "context": {
                    "thread_id": thread_id,
                    "task": task.name,
                    "delay_seconds": round(delay, 3),
                }
            },
        )
        return task
