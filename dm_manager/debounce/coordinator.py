"""Debounce coordinator: claim, release and abort of a thread."""

from typing import Protocol

from ..logging_config import get_logger
from ..models import ClaimResult
from ..storage import IStorage

logger = get_logger(__name__)


class IDebounceCoordinator(Protocol):
    """Decides which dispatch may process a thread."""

    async def claim(self, thread_id: str) -> ClaimResult:
        """Claim pending work on a thread, or decline."""
        ...

    async def release(
        self, thread_id: str, last_processed_message_id: str | None = None
    ) -> bool:
        """Release the claim; return whether new work arrived meanwhile."""
        ...

    async def abort(self, thread_id: str) -> None:
        """Give claimed work back so a later dispatch can retry it."""
        ...


class DebounceCoordinator:
    """Per-thread state machine over the ``processing`` and
    ``has_pending_messages`` flags.

    Each operation reads and writes the flags inside one storage
    transaction, so two dispatches for the same thread can never both hold
    a claim. Inbound messages only ever set ``has_pending_messages``; they
    do not look at ``processing``, which is how work that lands during a
    claim is picked up at release.
    """

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def claim(self, thread_id: str) -> ClaimResult:
        async with self._storage.transaction() as tx:
            state = await tx.get_thread(thread_id)

            if state is None or state.processing or not state.has_pending_messages:
                claimed = False
            else:
                await tx.update_thread(
                    thread_id, processing=True, has_pending_messages=False
                )
                claimed = True

        logger.info(
            "Thread claim %s",
            "acquired" if claimed else "declined",
            extra={
                "context": {
                    "thread_id": thread_id,
                    "claimed": claimed,
                    "processing": bool(state and state.processing),
                    "has_pending_messages": bool(
                        state and state.has_pending_messages
                    ),
                }
            },
        )
        return ClaimResult(thread_id=thread_id, claimed=claimed)

    async def release(
        self, thread_id: str, last_processed_message_id: str | None = None
    ) -> bool:
        async with self._storage.transaction() as tx:
            state = await tx.get_thread(thread_id)
            if state is None:
                # Thread was reset while we held the claim; leave it deleted.
                has_pending = False
            else:
                fields: dict = {"processing": False}
                if last_processed_message_id:
                    fields["last_processed_message_id"] = last_processed_message_id
                await tx.update_thread(thread_id, **fields)
                has_pending = state.has_pending_messages

        logger.info(
            "Released thread claim",
            extra={
                "context": {
                    "thread_id": thread_id,
                    "last_processed_message_id": last_processed_message_id,
                    "has_pending_messages": has_pending,
                }
            },
        )
        return has_pending

    async def abort(self, thread_id: str) -> None:
        async with self._storage.transaction() as tx:
            restored = await tx.update_thread(
                thread_id, processing=False, has_pending_messages=True
            )

        logger.warning(
            "Aborted thread claim, work returned to pending",
            extra={"context": {"thread_id": thread_id, "restored": restored}},
        )
