"""Thread processor: one debounced processing pass over a conversation."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal, Protocol

from ..agent import IAgentInvoker
from ..dialogue import build_transcript, latest_inbound
from ..dispatch import IDelayedDispatcher
from ..logging_config import get_logger
from ..models import AgentResult
from ..storage import IStorage
from ..tools import InstagramClient
from ..tracker import ITracker
from .coordinator import IDebounceCoordinator

logger = get_logger(__name__)


@dataclass
class ProcessResult:
    thread_id: str
    status: Literal["processed", "skipped"]
    agent_result: AgentResult | None = None
    follow_up_scheduled: bool = False


class IThreadProcessor(Protocol):
    async def process_thread(self, thread_id: str) -> ProcessResult:
        """Claim, assemble, invoke the agent and release one thread."""
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ThreadProcessor:
    """claim -> assemble -> agent -> release -> follow-up.

    A declined claim is a successful no-op. Any failure after the claim
    gives the work back with ``abort`` and re-raises, so the task runner
    retries the dispatch.
    """

    def __init__(
        self,
        coordinator: IDebounceCoordinator,
        dispatcher: IDelayedDispatcher,
        instagram: InstagramClient,
        agent: IAgentInvoker,
        storage: IStorage,
        tracker: ITracker,
        history_limit: int = 50,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._coordinator = coordinator
        self._dispatcher = dispatcher
        self._instagram = instagram
        self._agent = agent
        self._storage = storage
        self._tracker = tracker
        self._history_limit = history_limit
        self._clock = clock

    async def process_thread(self, thread_id: str) -> ProcessResult:
        log_context = {"thread_id": thread_id}

        claim = await self._coordinator.claim(thread_id)
        if not claim:
            await self._tracker.track(
                event_type="claim_declined", actor="processor", data={}, thread_id=thread_id
            )
            return ProcessResult(thread_id=thread_id, status="skipped")

        try:
            page_id = self._instagram.page_id
            history = await self._instagram.get_conversation_messages(
                thread_id, limit=self._history_limit
            )
            transcript = build_transcript(
                history, page_id, limit=self._history_limit, newest_first=True
            )
            latest = latest_inbound(history, page_id, newest_first=True)
            sender = await self._instagram.get_user_profile(thread_id)
            await self._storage.touch_first_contact(thread_id, self._clock())

            logger.info(
                "Processing thread",
                extra={"context": {**log_context, "transcript_length": len(transcript)}},
            )
            await self._tracker.track(
                event_type="processing_started",
                actor="processor",
                data={"transcript_length": len(transcript)},
                thread_id=thread_id,
            )

            agent_result = await self._agent.run(
                thread_id,
                transcript,
                sender,
                latest_message_type=latest.message_type if latest else None,
            )

            last_processed_id = transcript[-1].message_id if transcript else None
            has_more = await self._coordinator.release(thread_id, last_processed_id)
        except (Exception, asyncio.CancelledError) as e:
            logger.error(
                "Processing failed, returning work to pending: %s",
                e,
                exc_info=True,
                extra={"context": log_context},
            )
            await self._coordinator.abort(thread_id)
            await self._tracker.track(
                event_type="processing_failed",
                actor="processor",
                data={"error": str(e) or type(e).__name__},
                thread_id=thread_id,
            )
            raise

        await self._tracker.track(
            event_type="processing_completed",
            actor="processor",
            data={
                "tools_invoked": [tool.value for tool in agent_result.tools_invoked],
                "has_pending_messages": has_more,
            },
            thread_id=thread_id,
        )

        follow_up = False
        if has_more:
            try:
                follow_up = await self._dispatcher.schedule(thread_id) is not None
            except Exception as e:
                # The next inbound message re-arms the thread.
                logger.error(
                    "Failed to schedule follow-up processing: %s",
                    e,
                    extra={"context": log_context},
                )
            else:
                logger.info(
                    "Messages arrived during processing, follow-up scheduled",
                    extra={"context": {**log_context, "created": follow_up}},
                )

        return ProcessResult(
            thread_id=thread_id,
            status="processed",
            agent_result=agent_result,
            follow_up_scheduled=follow_up,
        )
