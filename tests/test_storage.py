"""Tests for Storage."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from dm_manager.models import Booking, DispatchTask, TaskStatus, TraceEvent
from dm_manager.storage import TaskAlreadyExistsError

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestStorageInit:
    """Tests for Storage initialization."""

    async def test_init_creates_tables(self, storage):
        """Test that init creates all tables."""
        async with storage._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ) as cursor:
            tables = [row[0] for row in await cursor.fetchall()]
        for table in ("threads", "users", "bookings", "dispatch_tasks", "trace_events"):
            assert table in tables

    async def test_uninitialized_storage_raises(self):
        from dm_manager.storage import Storage

        st = Storage(":memory:")
        with pytest.raises(RuntimeError):
            await st.get_thread_state("t1")


class TestStorageThreads:
    """Tests for thread flags."""

    async def test_mark_pending_creates_thread(self, storage):
        await storage.mark_thread_pending("t1")

        state = await storage.get_thread_state("t1")
        assert state is not None
        assert state.has_pending_messages is True
        assert state.processing is False
        assert state.updated_at is not None

    async def test_mark_pending_keeps_processing_flag(self, storage):
        await storage.mark_thread_pending("t1")
        async with storage.transaction() as tx:
            await tx.update_thread("t1", processing=True, has_pending_messages=False)

        await storage.mark_thread_pending("t1")

        state = await storage.get_thread_state("t1")
        assert state.processing is True
        assert state.has_pending_messages is True

    async def test_unknown_thread_is_none(self, storage):
        assert await storage.get_thread_state("missing") is None

    async def test_update_missing_thread_returns_false(self, storage):
        async with storage.transaction() as tx:
            assert await tx.update_thread("missing", processing=False) is False

    async def test_update_rejects_unknown_fields(self, storage):
        await storage.mark_thread_pending("t1")
        with pytest.raises(ValueError):
            async with storage.transaction() as tx:
                await tx.update_thread("t1", thread_id="other")

    async def test_transaction_rolls_back_on_error(self, storage):
        await storage.mark_thread_pending("t1")

        with pytest.raises(RuntimeError):
            async with storage.transaction() as tx:
                await tx.update_thread("t1", processing=True)
                raise RuntimeError("boom")

        state = await storage.get_thread_state("t1")
        assert state.processing is False

    async def test_cancelled_writer_leaves_connection_usable(self, storage):
        writer = asyncio.create_task(storage.mark_thread_pending("t1"))
        await asyncio.sleep(0)
        writer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await writer

        await storage.mark_thread_pending("t2")

        state = await storage.get_thread_state("t2")
        assert state is not None
        assert state.has_pending_messages is True
        assert not storage._conn.in_transaction

    async def test_cancel_inside_transaction_rolls_back(self, storage):
        await storage.mark_thread_pending("t1")
        started = asyncio.Event()

        async def slow_claim():
            async with storage.transaction() as tx:
                await tx.update_thread("t1", processing=True)
                started.set()
                await asyncio.sleep(10)

        claim = asyncio.create_task(slow_claim())
        await started.wait()
        claim.cancel()
        with pytest.raises(asyncio.CancelledError):
            await claim

        assert (await storage.get_thread_state("t1")).processing is False
        await storage.mark_thread_pending("t2")
        assert await storage.get_thread_state("t2") is not None

    async def test_delete_thread_data_removes_profile(self, storage):
        await storage.mark_thread_pending("t1")
        await storage.touch_first_contact("t1", NOW)

        await storage.delete_thread_data("t1")

        assert await storage.get_thread_state("t1") is None
        assert await storage.get_user_profile("t1") is None


class TestStorageUsers:
    """Tests for user profiles and bookings."""

    async def test_first_contact_is_kept(self, storage):
        await storage.touch_first_contact("u1", NOW)
        await storage.touch_first_contact("u1", NOW + timedelta(days=3))

        profile = await storage.get_user_profile("u1")
        assert profile.first_contact == NOW

    async def test_set_last_notification(self, storage):
        await storage.touch_first_contact("u1", NOW)
        await storage.set_last_notification("u1", NOW + timedelta(hours=1))

        profile = await storage.get_user_profile("u1")
        assert profile.first_contact == NOW
        assert profile.last_notification == NOW + timedelta(hours=1)

    async def test_record_booking(self, storage):
        booking = Booking(
            id="",
            user_id="u1",
            thread_id="u1",
            session_date="2025-03-08",
            booked_at=NOW,
            user_name="Sam",
            phone="+44 7000 000000",
        )
        await storage.record_booking(booking)

        assert booking.id
        profile = await storage.get_user_profile("u1")
        assert profile.last_booking == NOW
        assert len(profile.bookings) == 1
        assert profile.bookings[0].session_date == "2025-03-08"
        assert profile.bookings[0].user_name == "Sam"


class TestStorageTasks:
    """Tests for dispatch tasks."""

    def _task(self, name="process-t1-1", run_at=NOW):
        return DispatchTask(name=name, thread_id="t1", run_at=run_at, payload={"thread_id": "t1"})

    async def test_duplicate_name_rejected(self, storage):
        await storage.enqueue_task(self._task())

        with pytest.raises(TaskAlreadyExistsError):
            await storage.enqueue_task(self._task())

    async def test_done_task_name_stays_reserved(self, storage):
        await storage.enqueue_task(self._task())
        await storage.complete_task("process-t1-1")

        with pytest.raises(TaskAlreadyExistsError):
            await storage.enqueue_task(self._task())

    async def test_acquire_only_due_tasks(self, storage):
        await storage.enqueue_task(self._task("due", NOW))
        await storage.enqueue_task(self._task("later", NOW + timedelta(seconds=30)))

        acquired = await storage.acquire_due_tasks(NOW, limit=10)

        assert [t.name for t in acquired] == ["due"]
        assert acquired[0].attempts == 1
        assert acquired[0].status == TaskStatus.RUNNING
        assert (await storage.get_task("later")).status == TaskStatus.SCHEDULED

    async def test_acquire_respects_limit(self, storage):
        for i in range(3):
            await storage.enqueue_task(self._task(f"t{i}", NOW - timedelta(seconds=i)))

        acquired = await storage.acquire_due_tasks(NOW, limit=2)
        assert len(acquired) == 2

    async def test_reschedule_and_bury(self, storage):
        await storage.enqueue_task(self._task())
        await storage.acquire_due_tasks(NOW, limit=1)

        await storage.reschedule_task("process-t1-1", NOW + timedelta(seconds=10), "boom")
        task = await storage.get_task("process-t1-1")
        assert task.status == TaskStatus.SCHEDULED
        assert task.last_error == "boom"
        assert task.run_at == NOW + timedelta(seconds=10)

        await storage.bury_task("process-t1-1", "gave up")
        task = await storage.get_task("process-t1-1")
        assert task.status == TaskStatus.DEAD
        assert task.last_error == "gave up"

    async def test_requeue_running_tasks(self, storage):
        await storage.enqueue_task(self._task())
        await storage.acquire_due_tasks(NOW, limit=1)

        assert await storage.requeue_running_tasks() == 1
        assert (await storage.get_task("process-t1-1")).status == TaskStatus.SCHEDULED

    async def test_list_tasks_filters(self, storage):
        await storage.enqueue_task(self._task("a"))
        await storage.enqueue_task(
            DispatchTask(name="b", thread_id="t2", run_at=NOW)
        )
        await storage.complete_task("a")

        assert [t.name for t in await storage.list_tasks(thread_id="t2")] == ["b"]
        assert [t.name for t in await storage.list_tasks(status=TaskStatus.DONE)] == ["a"]


class TestStorageTraceEvents:
    """Tests for TraceEvent storage."""

    async def test_filter_by_thread_and_type(self, storage):
        for i, (event_type, thread_id) in enumerate(
            [("message_received", "t1"), ("message_received", "t2"), ("tool_executed", "t1")]
        ):
            await storage.save_trace_event(
                TraceEvent(
                    id=f"e{i}",
                    event_type=event_type,
                    actor="test",
                    data={"i": i},
                    timestamp=NOW + timedelta(seconds=i),
                    thread_id=thread_id,
                )
            )

        events = await storage.get_trace_events(thread_id="t1")
        assert {e.id for e in events} == {"e0", "e2"}

        events = await storage.get_trace_events(event_types=["message_received"])
        assert {e.id for e in events} == {"e0", "e1"}

        events = await storage.get_trace_events(after=NOW)
        assert {e.id for e in events} == {"e1", "e2"}

    async def test_clear_removes_everything(self, storage):
        await storage.mark_thread_pending("t1")
        await storage.enqueue_task(DispatchTask(name="x", thread_id="t1", run_at=NOW))
        await storage.clear()

        assert await storage.get_thread_state("t1") is None
        assert await storage.get_task("x") is None
