"""SQLite storage implementation."""

import asyncio
import json
import sqlite3
import uuid
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import (
    Booking,
    DispatchTask,
    TaskStatus,
    ThreadState,
    TraceEvent,
    UserProfile,
)


class TaskAlreadyExistsError(Exception):
    """A dispatch task with the same name has already been enqueued."""

    def __init__(self, name: str):
        super().__init__(f"Task {name} already exists")
        self.name = name


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now() -> datetime:
    return datetime.now(timezone.utc)


_THREAD_COLUMNS = {"processing", "has_pending_messages", "last_processed_message_id"}


class Transaction:
    """Statements bound to one open transaction."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, sql: str, params=()) -> aiosqlite.Cursor:
        return await self._conn.execute(sql, params)

    async def get_thread(self, thread_id: str) -> ThreadState | None:
        cursor = await self._conn.execute(
            """
            SELECT thread_id, processing, has_pending_messages,
                   last_processed_message_id, updated_at
            FROM threads
            WHERE thread_id = ?
            """,
            (thread_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return ThreadState(
            thread_id=row[0],
            processing=bool(row[1]),
            has_pending_messages=bool(row[2]),
            last_processed_message_id=row[3],
            updated_at=_from_db(row[4]),
        )

    async def update_thread(self, thread_id: str, **fields) -> bool:
        """Update flags on an existing thread. Returns False if the row is gone."""
        unknown = set(fields) - _THREAD_COLUMNS
        if unknown:
            raise ValueError(f"Unknown thread fields: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in fields]
        params: list = [
            int(value) if isinstance(value, bool) else value
            for value in fields.values()
        ]
        assignments.append("updated_at = ?")
        params.append(_to_db(_now()))
        params.append(thread_id)

        cursor = await self._conn.execute(
            f"UPDATE threads SET {', '.join(assignments)} WHERE thread_id = ?",
            params,
        )
        return cursor.rowcount > 0


class IStorage(Protocol):
    """Persistent storage for all system data (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    def transaction(self) -> "AsyncIterator[Transaction]":
        """Open an exclusive transaction for conditional thread updates."""
        ...

    # Threads
    async def mark_thread_pending(self, thread_id: str) -> None:
        """Flag a thread as having unprocessed messages."""
        ...

    async def get_thread_state(self, thread_id: str) -> ThreadState | None:
        """Get the debounce flags of a thread."""
        ...

    async def delete_thread_data(self, thread_id: str) -> None:
        """Delete thread state and the matching user profile."""
        ...

    # Users
    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        """Get a user profile with its bookings."""
        ...

    async def touch_first_contact(self, user_id: str, at: datetime) -> None:
        """Record first contact unless already known."""
        ...

    async def set_last_notification(self, user_id: str, at: datetime) -> None:
        """Stamp when the manager was last notified about a user."""
        ...

    async def record_booking(self, booking: Booking) -> None:
        """Store a booking against the user and in the bookings table."""
        ...

    # Dispatch tasks
    async def enqueue_task(self, task: DispatchTask) -> None:
        """Insert a task; raise TaskAlreadyExistsError on a duplicate name."""
        ...

    async def get_task(self, name: str) -> DispatchTask | None:
        """Get a task by name."""
        ...

    async def list_tasks(
        self, thread_id: str | None = None, status: TaskStatus | None = None
    ) -> list[DispatchTask]:
        """List tasks, oldest first."""
        ...

    async def acquire_due_tasks(self, now: datetime, limit: int) -> list[DispatchTask]:
        """Move due scheduled tasks to running and return them."""
        ...

    async def complete_task(self, name: str) -> None:
        """Mark a task done."""
        ...

    async def reschedule_task(self, name: str, run_at: datetime, error: str) -> None:
        """Put a failed task back in the schedule."""
        ...

    async def bury_task(self, name: str, error: str) -> None:
        """Mark a task dead after its last attempt."""
        ...

    async def requeue_running_tasks(self) -> int:
        """Return tasks left running by a previous process to the schedule."""
        ...

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        ...

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        thread_id: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation.

    The connection runs in autocommit mode. Every write goes through
    ``transaction()``, which serializes writers on this connection with a
    lock and uses ``BEGIN IMMEDIATE`` so other processes sharing the
    database file wait for the write lock instead of interleaving.
    """

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Open an exclusive transaction; commit on exit, roll back on error.

        Statements already handed to the aiosqlite thread run even when the
        awaiting task is cancelled, so cancellation (e.g. a task runner
        timeout) still ends in a rollback and never leaves the shared
        connection inside an open transaction.
        """
        conn = self._require_conn()
        async with self._lock:
            begin = asyncio.ensure_future(self._run_statement(conn, "BEGIN IMMEDIATE"))
            commit: asyncio.Future | None = None
            try:
                await asyncio.shield(begin)
                yield Transaction(conn)
                commit = asyncio.ensure_future(self._run_statement(conn, "COMMIT"))
                await asyncio.shield(commit)
            except BaseException:
                await self._rollback(conn, begin, commit)
                raise

    @staticmethod
    async def _run_statement(conn: aiosqlite.Connection, sql: str) -> None:
        await conn.execute(sql)

    @staticmethod
    async def _rollback(
        conn: aiosqlite.Connection,
        begin: asyncio.Future,
        commit: asyncio.Future | None,
    ) -> None:
        try:
            await begin
        except Exception:
            # BEGIN itself failed; there is nothing to roll back.
            return
        if commit is not None:
            with suppress(Exception):
                await commit
        if conn.in_transaction:
            await conn.execute("ROLLBACK")

    # Threads
    async def mark_thread_pending(self, thread_id: str) -> None:
        """Flag a thread as having unprocessed messages.

        Only the pending flag is touched, so a thread that is currently
        claimed keeps ``processing`` and the flag is seen at release.
        """
        async with self.transaction() as tx:
            await tx.execute(
                """
                INSERT INTO threads (thread_id, processing, has_pending_messages, updated_at)
                VALUES (?, 0, 1, ?)
                ON CONFLICT (thread_id) DO UPDATE SET
                    has_pending_messages = 1,
                    updated_at = excluded.updated_at
                """,
                (thread_id, _to_db(_now())),
            )

    async def get_thread_state(self, thread_id: str) -> ThreadState | None:
        """Get the debounce flags of a thread."""
        conn = self._require_conn()
        return await Transaction(conn).get_thread(thread_id)

    async def delete_thread_data(self, thread_id: str) -> None:
        """Delete thread state and the matching user profile.

        The thread id is the sender id for Instagram DMs, so the user profile
        shares the key.
        """
        async with self.transaction() as tx:
            await tx.execute(
                "DELETE FROM threads WHERE thread_id = ?", (thread_id,)
            )
            await tx.execute("DELETE FROM users WHERE user_id = ?", (thread_id,))

    # Users
    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        """Get a user profile with its bookings."""
        conn = self._require_conn()

        cursor = await conn.execute(
            """
            SELECT user_id, first_contact, last_notification, last_booking
            FROM users
            WHERE user_id = ?
            """,
            (user_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None

        booking_cursor = await conn.execute(
            """
            SELECT id, user_id, thread_id, session_date, booked_at, user_name, phone
            FROM bookings
            WHERE user_id = ?
            ORDER BY booked_at ASC
            """,
            (user_id,),
        )
        bookings = [
            Booking(
                id=b[0],
                user_id=b[1],
                thread_id=b[2],
                session_date=b[3],
                booked_at=_from_db(b[4]),
                user_name=b[5],
                phone=b[6],
            )
            for b in await booking_cursor.fetchall()
        ]

        return UserProfile(
            user_id=row[0],
            first_contact=_from_db(row[1]),
            last_notification=_from_db(row[2]),
            last_booking=_from_db(row[3]),
            bookings=bookings,
        )

    async def touch_first_contact(self, user_id: str, at: datetime) -> None:
        """Record first contact unless already known."""
        async with self.transaction() as tx:
            await tx.execute(
                """
                INSERT INTO users (user_id, first_contact)
                VALUES (?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    first_contact = COALESCE(users.first_contact, excluded.first_contact)
                """,
                (user_id, _to_db(at)),
            )

    async def set_last_notification(self, user_id: str, at: datetime) -> None:
        """Stamp when the manager was last notified about a user."""
        async with self.transaction() as tx:
            await tx.execute(
                """
                INSERT INTO users (user_id, last_notification)
                VALUES (?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    last_notification = excluded.last_notification
                """,
                (user_id, _to_db(at)),
            )

    async def record_booking(self, booking: Booking) -> None:
        """Store a booking against the user and in the bookings table."""
        if not booking.id:
            booking.id = str(uuid.uuid4())

        async with self.transaction() as tx:
            await tx.execute(
                """
                INSERT INTO users (user_id, last_booking)
                VALUES (?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    last_booking = excluded.last_booking
                """,
                (booking.user_id, _to_db(booking.booked_at)),
            )
            await tx.execute(
                """
                INSERT INTO bookings
                (id, user_id, thread_id, session_date, booked_at, user_name, phone)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    booking.id,
                    booking.user_id,
                    booking.thread_id,
                    booking.session_date,
                    _to_db(booking.booked_at),
                    booking.user_name,
                    booking.phone,
                ),
            )

    # Dispatch tasks
    async def enqueue_task(self, task: DispatchTask) -> None:
        """Insert a task; raise TaskAlreadyExistsError on a duplicate name."""
        created_at = task.created_at or _now()
        try:
            async with self.transaction() as tx:
                await tx.execute(
                    """
                    INSERT INTO dispatch_tasks
                    (name, thread_id, payload, run_at, attempts, status, last_error, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.name,
                        task.thread_id,
                        json.dumps(task.payload),
                        _to_db(task.run_at),
                        task.attempts,
                        task.status.value,
                        task.last_error,
                        _to_db(created_at),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise TaskAlreadyExistsError(task.name) from e
        task.created_at = created_at

    def _row_to_task(self, row) -> DispatchTask:
        return DispatchTask(
            name=row[0],
            thread_id=row[1],
            payload=json.loads(row[2]),
            run_at=_from_db(row[3]),
            attempts=row[4],
            status=TaskStatus(row[5]),
            last_error=row[6],
            created_at=_from_db(row[7]),
        )

    _TASK_SELECT = """
        SELECT name, thread_id, payload, run_at, attempts, status, last_error, created_at
        FROM dispatch_tasks
    """

    async def get_task(self, name: str) -> DispatchTask | None:
        """Get a task by name."""
        conn = self._require_conn()
        cursor = await conn.execute(self._TASK_SELECT + " WHERE name = ?", (name,))
        row = await cursor.fetchone()
        return self._row_to_task(row) if row else None

    async def list_tasks(
        self, thread_id: str | None = None, status: TaskStatus | None = None
    ) -> list[DispatchTask]:
        """List tasks, oldest first."""
        conn = self._require_conn()

        conditions = []
        params: list = []
        if thread_id:
            conditions.append("thread_id = ?")
            params.append(thread_id)
        if status:
            conditions.append("status = ?")
            params.append(status.value)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        cursor = await conn.execute(
            f"{self._TASK_SELECT} {where_clause} ORDER BY created_at ASC", params
        )
        return [self._row_to_task(row) for row in await cursor.fetchall()]

    async def acquire_due_tasks(self, now: datetime, limit: int) -> list[DispatchTask]:
        """Move due scheduled tasks to running and return them."""
        async with self.transaction() as tx:
            cursor = await tx.execute(
                f"""
                {self._TASK_SELECT}
                WHERE status = ? AND run_at <= ?
                ORDER BY run_at ASC
                LIMIT ?
                """,
                (TaskStatus.SCHEDULED.value, _to_db(now), limit),
            )
            tasks = [self._row_to_task(row) for row in await cursor.fetchall()]

            for task in tasks:
                task.attempts += 1
                task.status = TaskStatus.RUNNING
                await tx.execute(
                    """
                    UPDATE dispatch_tasks
                    SET status = ?, attempts = ?
                    WHERE name = ?
                    """,
                    (task.status.value, task.attempts, task.name),
                )

        return tasks

    async def _set_task_status(
        self,
        name: str,
        status: TaskStatus,
        error: str | None = None,
        run_at: datetime | None = None,
    ) -> None:
        async with self.transaction() as tx:
            if run_at is not None:
                await tx.execute(
                    """
                    UPDATE dispatch_tasks
                    SET status = ?, last_error = ?, run_at = ?
                    WHERE name = ?
                    """,
                    (status.value, error, _to_db(run_at), name),
                )
            else:
                await tx.execute(
                    """
                    UPDATE dispatch_tasks
                    SET status = ?, last_error = COALESCE(?, last_error)
                    WHERE name = ?
                    """,
                    (status.value, error, name),
                )

    async def complete_task(self, name: str) -> None:
        """Mark a task done. The row is kept so its name stays reserved."""
        await self._set_task_status(name, TaskStatus.DONE)

    async def reschedule_task(self, name: str, run_at: datetime, error: str) -> None:
        """Put a failed task back in the schedule."""
        await self._set_task_status(name, TaskStatus.SCHEDULED, error, run_at)

    async def bury_task(self, name: str, error: str) -> None:
        """Mark a task dead after its last attempt."""
        await self._set_task_status(name, TaskStatus.DEAD, error)

    async def requeue_running_tasks(self) -> int:
        """Return tasks left running by a previous process to the schedule."""
        async with self.transaction() as tx:
            cursor = await tx.execute(
                "UPDATE dispatch_tasks SET status = ? WHERE status = ?",
                (TaskStatus.SCHEDULED.value, TaskStatus.RUNNING.value),
            )
            return cursor.rowcount

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        async with self.transaction() as tx:
            await tx.execute(
                """
                INSERT INTO trace_events (id, event_type, actor, thread_id, data, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id or str(uuid.uuid4()),
                    event.event_type,
                    event.actor,
                    event.thread_id,
                    json.dumps(event.data, default=str),
                    _to_db(event.timestamp),
                ),
            )

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        thread_id: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters (newest first)."""
        conn = self._require_conn()

        conditions = []
        params: list = []

        if after:
            conditions.append("timestamp > ?")
            params.append(_to_db(after))
        if event_types:
            placeholders = ",".join("?" * len(event_types))
            conditions.append(f"event_type IN ({placeholders})")
            params.extend(event_types)
        if actor:
            conditions.append("actor = ?")
            params.append(actor)
        if thread_id:
            conditions.append("thread_id = ?")
            params.append(thread_id)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT id, event_type, actor, thread_id, data, timestamp
            FROM trace_events
            {where_clause}
            ORDER BY timestamp DESC
            LIMIT ?
        """
        params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        return [
            TraceEvent(
                id=row[0],
                event_type=row[1],
                actor=row[2],
                thread_id=row[3],
                data=json.loads(row[4]),
                timestamp=_from_db(row[5]),
            )
            for row in rows
        ]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        tables = [
            "threads",
            "users",
            "bookings",
            "dispatch_tasks",
            "trace_events",
        ]

        async with self.transaction() as tx:
            for table in tables:
                await tx.execute(f"DELETE FROM {table}")
