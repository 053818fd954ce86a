"""Tests for TaskRunner."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

from dm_manager.dispatch import TaskRunner
from dm_manager.models import DispatchTask, TaskStatus


async def _enqueue(storage, clock, name="process-t1-1", thread_id="t1"):
    await storage.enqueue_task(
        DispatchTask(name=name, thread_id=thread_id, run_at=clock.now, payload={"thread_id": thread_id})
    )


class TestRunOnce:
    """Tests for delivering due tasks."""

    async def test_successful_delivery_completes_task(self, storage, clock):
        handler = AsyncMock()
        runner = TaskRunner(storage, handler, clock=clock)
        await _enqueue(storage, clock)

        assert await runner.run_once() == 1

        handler.assert_awaited_once()
        assert handler.await_args.args[0].thread_id == "t1"
        assert (await storage.get_task("process-t1-1")).status == TaskStatus.DONE

    async def test_tasks_not_due_are_left(self, storage, clock):
        handler = AsyncMock()
        runner = TaskRunner(storage, handler, clock=clock)
        await storage.enqueue_task(
            DispatchTask(name="later", thread_id="t1", run_at=clock.now + timedelta(seconds=5))
        )

        assert await runner.run_once() == 0
        handler.assert_not_awaited()

    async def test_failure_reschedules_with_backoff(self, storage, clock):
        handler = AsyncMock(side_effect=RuntimeError("processor down"))
        runner = TaskRunner(storage, handler, base_backoff_seconds=10, clock=clock)
        await _enqueue(storage, clock)

        await runner.run_once()

        task = await storage.get_task("process-t1-1")
        assert task.status == TaskStatus.SCHEDULED
        assert task.attempts == 1
        assert "processor down" in task.last_error
        assert task.run_at == clock.now + timedelta(seconds=10)

        # Not due again until the backoff has elapsed.
        assert await runner.run_once() == 0
        clock.advance(10)
        assert await runner.run_once() == 1
        task = await storage.get_task("process-t1-1")
        assert task.attempts == 2
        assert task.run_at == clock.now + timedelta(seconds=20)

    async def test_retry_then_success(self, storage, clock):
        handler = AsyncMock(side_effect=[RuntimeError("flaky"), None])
        runner = TaskRunner(storage, handler, base_backoff_seconds=1, clock=clock)
        await _enqueue(storage, clock)

        await runner.run_once()
        clock.advance(1)
        await runner.run_once()

        assert handler.await_count == 2
        assert (await storage.get_task("process-t1-1")).status == TaskStatus.DONE

    async def test_dead_letter_after_max_attempts(self, storage, tracker, clock):
        handler = AsyncMock(side_effect=RuntimeError("always failing"))
        runner = TaskRunner(
            storage,
            handler,
            tracker=tracker,
            max_attempts=3,
            base_backoff_seconds=1,
            max_backoff_seconds=1,
            clock=clock,
        )
        await _enqueue(storage, clock)

        for _ in range(3):
            await runner.run_once()
            clock.advance(1)

        task = await storage.get_task("process-t1-1")
        assert task.status == TaskStatus.DEAD
        assert task.attempts == 3
        assert await runner.run_once() == 0

        events = await storage.get_trace_events(event_types=["task_dead"])
        assert len(events) == 1
        assert events[0].thread_id == "t1"

    async def test_timeout_counts_as_failure(self, storage, clock):
        async def slow_handler(task):
            await asyncio.sleep(1)

        runner = TaskRunner(storage, slow_handler, timeout_seconds=0.05, clock=clock)
        await _enqueue(storage, clock)

        await runner.run_once()

        task = await storage.get_task("process-t1-1")
        assert task.status == TaskStatus.SCHEDULED
        assert "Timed out" in task.last_error

    async def test_concurrency_limit(self, storage, clock):
        handler = AsyncMock()
        runner = TaskRunner(storage, handler, concurrency=2, clock=clock)
        for i in range(3):
            await _enqueue(storage, clock, name=f"process-t{i}-1", thread_id=f"t{i}")

        assert await runner.run_once() == 2
        assert await runner.run_once() == 1


class TestBookkeepingFailures:
    """Status updates that fail after delivery."""

    async def test_complete_failure_is_logged(self, storage, clock, caplog):
        handler = AsyncMock()
        runner = TaskRunner(storage, handler, clock=clock)
        await _enqueue(storage, clock)
        storage.complete_task = AsyncMock(side_effect=RuntimeError("database is locked"))

        with caplog.at_level("ERROR", logger="dm_manager.dispatch.runner"):
            assert await runner.run_once() == 1

        handler.assert_awaited_once()
        records = [r for r in caplog.records if "Failed to mark dispatch task done" in r.getMessage()]
        assert len(records) == 1
        assert records[0].context["task"] == "process-t1-1"
        assert records[0].exc_info is not None
        assert (await storage.get_task("process-t1-1")).status == TaskStatus.RUNNING

        # Recovered into the schedule on the next start.
        assert await storage.requeue_running_tasks() == 1

    async def test_reschedule_failure_is_logged(self, storage, clock, caplog):
        handler = AsyncMock(side_effect=RuntimeError("processor down"))
        runner = TaskRunner(storage, handler, clock=clock)
        await _enqueue(storage, clock)
        storage.reschedule_task = AsyncMock(side_effect=RuntimeError("disk I/O error"))

        with caplog.at_level("ERROR", logger="dm_manager.dispatch.runner"):
            await runner.run_once()

        messages = [r.getMessage() for r in caplog.records]
        assert any("Failed to mark dispatch task rescheduled" in m for m in messages)
        assert not runner._in_flight


class TestLifecycle:
    """Tests for start/stop."""

    async def test_start_requeues_interrupted_tasks(self, storage, clock):
        await _enqueue(storage, clock)
        await storage.acquire_due_tasks(clock.now, limit=1)

        handler = AsyncMock()
        runner = TaskRunner(storage, handler, poll_interval_seconds=0.01, clock=clock)
        await runner.start()
        for _ in range(50):
            if handler.await_count:
                break
            await asyncio.sleep(0.01)
        await runner.stop()

        handler.assert_awaited_once()
        assert (await storage.get_task("process-t1-1")).status == TaskStatus.DONE
