"""Task runner: the durable delayed-job platform behind the dispatcher."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from ..logging_config import get_logger
from ..models import DispatchTask
from ..storage import IStorage
from ..tracker import ITracker

logger = get_logger(__name__)

TaskHandler = Callable[[DispatchTask], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskRunner:
    """Polls due dispatch tasks and delivers them to a handler.

    A failed or timed-out delivery is rescheduled with exponential backoff.
    After ``max_attempts`` the task is marked dead and left for an operator.
    """

    def __init__(
        self,
        storage: IStorage,
        handler: TaskHandler,
        tracker: ITracker | None = None,
        max_attempts: int = 5,
        timeout_seconds: float = 120.0,
        poll_interval_seconds: float = 1.0,
        concurrency: int = 10,
        base_backoff_seconds: float = 10.0,
        max_backoff_seconds: float = 600.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._storage = storage
        self._handler = handler
        self._tracker = tracker
        self._max_attempts = max_attempts
        self._timeout = timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._concurrency = concurrency
        self._base_backoff = base_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._clock = clock

        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Recover interrupted tasks and start polling."""
        if self._running:
            return

        recovered = await self._storage.requeue_running_tasks()
        if recovered:
            logger.warning("Requeued %s interrupted dispatch tasks", recovered)

        self._running = True
        self._loop_task = asyncio.create_task(self._poll_loop())
        logger.info("Task runner started")

    async def stop(self) -> None:
        """Stop polling and wait for in-flight deliveries."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("Task runner stopped")

    async def run_once(self) -> int:
        """Deliver every task due now and wait for them. Returns the count."""
        spawned = await self._spawn_due()
        if spawned:
            await asyncio.gather(*spawned, return_exceptions=True)
        return len(spawned)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self._spawn_due()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Task poll failed: {e}", exc_info=True)
            await asyncio.sleep(self._poll_interval)

    async def _spawn_due(self) -> list[asyncio.Task]:
        capacity = self._concurrency - len(self._in_flight)
        if capacity <= 0:
            return []

        tasks = await self._storage.acquire_due_tasks(self._clock(), capacity)
        spawned = []
        for task in tasks:
            running = asyncio.create_task(self._execute(task))
            self._in_flight.add(running)
            running.add_done_callback(self._in_flight.discard)
            spawned.append(running)
        return spawned

    def _backoff(self, attempts: int) -> timedelta:
        seconds = min(self._base_backoff * (2 ** max(attempts - 1, 0)), self._max_backoff)
        return timedelta(seconds=seconds)

    async def _execute(self, task: DispatchTask) -> None:
        context = {
            "thread_id": task.thread_id,
            "task": task.name,
            "attempt": task.attempts,
        }
        logger.info("Delivering dispatch task", extra={"context": context})

        try:
            await asyncio.wait_for(self._handler(task), timeout=self._timeout)
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                error = f"Timed out after {self._timeout}s"
            else:
                error = f"{type(e).__name__}: {e}"
            await self._handle_failure(task, error, context)
            return

        if await self._record_outcome(
            "done", self._storage.complete_task(task.name), context
        ):
            logger.info("Dispatch task completed", extra={"context": context})

    async def _handle_failure(self, task: DispatchTask, error: str, context: dict) -> None:
        if task.attempts >= self._max_attempts:
            if not await self._record_outcome(
                "dead", self._storage.bury_task(task.name, error), context
            ):
                return
            logger.error(
                "Dispatch task abandoned after %s attempts: %s",
                task.attempts,
                error,
                extra={"context": context},
            )
            if self._tracker:
                await self._tracker.track(
                    "task_dead",
                    "task_runner",
                    {"task": task.name, "attempts": task.attempts, "error": error},
                    thread_id=task.thread_id,
                )
            return

        run_at = self._clock() + self._backoff(task.attempts)
        if not await self._record_outcome(
            "rescheduled", self._storage.reschedule_task(task.name, run_at, error), context
        ):
            return
        logger.warning(
            "Dispatch task failed, retrying at %s: %s",
            run_at.isoformat(),
            error,
            extra={"context": context},
        )

    async def _record_outcome(
        self, outcome: str, update: Awaitable[None], context: dict
    ) -> bool:
        """Apply a task status change; a failure leaves the task running.

        Tasks stuck in running are returned to the schedule by ``start``.
        """
        try:
            await update
        except Exception as e:
            logger.error(
                "Failed to mark dispatch task %s: %s",
                outcome,
                e,
                exc_info=True,
                extra={"context": context},
            )
            return False
        return True
