"""End-to-end tests for the debounced processing pass."""

import asyncio

import pytest

from dm_manager.agent import AgentInvoker
from dm_manager.debounce import ThreadProcessor
from dm_manager.dispatch import LocalTaskDelivery, TaskRunner
from dm_manager.llm import LLMResponse
from dm_manager.models import TaskStatus, ToolCall, ToolName
from dm_manager.tools import ScheduleProvider, TelegramNotifier, ToolCatalog

from conftest import USER_ID, ScriptedLLM


def _reply(text: str, call_id: str = "c1") -> LLMResponse:
    return LLMResponse(
        tool_calls=[
            ToolCall(
                id=call_id,
                name="send_instagram_message",
                arguments={"recipient_id": USER_ID, "text": text},
            )
        ]
    )


@pytest.fixture
def build(storage, tracker, coordinator, dispatcher, instagram, clock):
    """Wire a processor and runner around the given LLM."""

    def _build(llm):
        catalog = ToolCatalog(
            storage=storage,
            instagram=instagram,
            notifier=TelegramNotifier(bot_token="", chat_id=""),
            schedule=ScheduleProvider(""),
            clock=clock,
        )
        processor = ThreadProcessor(
            coordinator=coordinator,
            dispatcher=dispatcher,
            instagram=instagram,
            agent=AgentInvoker(llm, catalog, tracker=tracker),
            storage=storage,
            tracker=tracker,
            history_limit=50,
            clock=clock,
        )
        runner = TaskRunner(
            storage, LocalTaskDelivery(processor), tracker=tracker, clock=clock
        )
        return processor, runner

    return _build


async def _inbound(storage, dispatcher, instagram, text: str):
    """What the webhook does for one accepted message."""
    instagram.add_inbound(USER_ID, text)
    await storage.mark_thread_pending(USER_ID)
    return await dispatcher.schedule(USER_ID)


class TestSingleMessage:
    async def test_one_message_one_reply(self, build, storage, dispatcher, instagram, clock):
        llm = ScriptedLLM([_reply("Hi! Sessions run Saturday 10am.")])
        processor, runner = build(llm)

        task = await _inbound(storage, dispatcher, instagram, "Any sessions this weekend?")
        assert await runner.run_once() == 0

        clock.advance(60)
        assert await runner.run_once() == 1

        assert instagram.sent == [(USER_ID, "Hi! Sessions run Saturday 10am.")]
        assert (await storage.get_task(task.name)).status == TaskStatus.DONE

        state = await storage.get_thread_state(USER_ID)
        assert state.processing is False
        assert state.has_pending_messages is False
        assert state.last_processed_message_id == "m_1"

        profile = await storage.get_user_profile(USER_ID)
        assert profile.first_contact == clock.now

    async def test_transcript_passed_oldest_first(self, build, storage, dispatcher, instagram):
        llm = ScriptedLLM()
        processor, _ = build(llm)
        await _inbound(storage, dispatcher, instagram, "first")
        await _inbound(storage, dispatcher, instagram, "second")

        await processor.process_thread(USER_ID)

        contents = [m["content"] for m in llm.calls[0]["messages"]]
        assert contents == ["first", "second"]

    async def test_declined_claim_is_skipped(self, build, instagram):
        llm = ScriptedLLM()
        processor, _ = build(llm)

        result = await processor.process_thread(USER_ID)

        assert result.status == "skipped"
        assert llm.calls == []


class TestBurst:
    async def test_burst_processed_once(self, build, storage, dispatcher, instagram, clock):
        llm = ScriptedLLM([_reply("Got all three!")])
        processor, runner = build(llm)

        for text in ("hey", "quick question", "do you have nets?"):
            await _inbound(storage, dispatcher, instagram, text)
            clock.advance(5)

        assert len(await storage.list_tasks(thread_id=USER_ID)) == 1

        clock.advance(60)
        await runner.run_once()

        assert len(instagram.sent) == 1
        assert len(llm.calls[0]["messages"]) == 3

    async def test_duplicate_delivery_runs_once(self, build, storage, dispatcher, instagram):
        llm = ScriptedLLM([_reply("See you Saturday.")])
        processor, _ = build(llm)
        await _inbound(storage, dispatcher, instagram, "can I join?")

        results = await asyncio.gather(
            processor.process_thread(USER_ID), processor.process_thread(USER_ID)
        )

        assert sorted(r.status for r in results) == ["processed", "skipped"]
        assert instagram.sent == [(USER_ID, "See you Saturday.")]
        assert len(llm.calls) == 2  # tool turn + closing turn of the single pass


class TestMessageDuringProcessing:
    async def test_late_message_gets_second_pass(
        self, build, storage, dispatcher, instagram, clock
    ):
        class ArrivingLLM(ScriptedLLM):
            arrived = False

            async def chat(self, messages, system=None, tools=None, max_tokens=1024):
                if not self.arrived:
                    self.arrived = True
                    await _inbound(storage, dispatcher, instagram, "also, what's the price?")
                return await super().chat(messages, system, tools, max_tokens)

        llm = ArrivingLLM(
            [_reply("Saturday 10am.", "c1"), LLMResponse(text="ok"), _reply("It's £20.", "c2")]
        )
        processor, runner = build(llm)

        await _inbound(storage, dispatcher, instagram, "when are sessions?")
        clock.advance(60)
        await runner.run_once()

        assert [text for _, text in instagram.sent] == ["Saturday 10am."]
        state = await storage.get_thread_state(USER_ID)
        assert state.has_pending_messages is True
        assert state.processing is False

        clock.advance(60)
        await runner.run_once()

        assert [text for _, text in instagram.sent] == ["Saturday 10am.", "It's £20."]
        second_pass = [m["content"] for m in llm.calls[2]["messages"]]
        assert second_pass == [
            "when are sessions?",
            "also, what's the price?",
            "Saturday 10am.",
        ]
        assert (await storage.get_thread_state(USER_ID)).has_pending_messages is False

    async def test_release_schedules_follow_up(self, build, storage, dispatcher, instagram, clock):
        class PendingLLM(ScriptedLLM):
            async def chat(self, messages, system=None, tools=None, max_tokens=1024):
                # Pending flag without its own dispatch task.
                await storage.mark_thread_pending(USER_ID)
                return await super().chat(messages, system, tools, max_tokens)

        processor, _ = build(PendingLLM())
        await _inbound(storage, dispatcher, instagram, "hello")
        clock.advance(60)

        result = await processor.process_thread(USER_ID)

        assert result.status == "processed"
        assert result.follow_up_scheduled is True
        assert len(await storage.list_tasks(thread_id=USER_ID)) == 2

    async def test_follow_up_failure_is_not_raised(self, build, storage, dispatcher, instagram):
        class PendingLLM(ScriptedLLM):
            async def chat(self, messages, system=None, tools=None, max_tokens=1024):
                await storage.mark_thread_pending(USER_ID)
                return await super().chat(messages, system, tools, max_tokens)

        async def broken_schedule(thread_id):
            raise RuntimeError("queue down")

        processor, _ = build(PendingLLM())
        await _inbound(storage, dispatcher, instagram, "hello")
        dispatcher.schedule = broken_schedule

        result = await processor.process_thread(USER_ID)

        assert result.status == "processed"
        assert result.follow_up_scheduled is False


class TestFailures:
    async def test_agent_failure_aborts_and_retries(
        self, build, storage, dispatcher, instagram, clock
    ):
        class FailingOnceLLM(ScriptedLLM):
            failed = False

            async def chat(self, messages, system=None, tools=None, max_tokens=1024):
                if not self.failed:
                    self.failed = True
                    raise RuntimeError("LLM API error: overloaded")
                return await super().chat(messages, system, tools, max_tokens)

        llm = FailingOnceLLM([_reply("Sorry for the wait!")])
        processor, runner = build(llm)
        task = await _inbound(storage, dispatcher, instagram, "hello?")
        clock.advance(60)

        await runner.run_once()

        state = await storage.get_thread_state(USER_ID)
        assert state.processing is False
        assert state.has_pending_messages is True
        stored = await storage.get_task(task.name)
        assert stored.status == TaskStatus.SCHEDULED
        assert "overloaded" in stored.last_error

        clock.advance(10)
        await runner.run_once()

        assert instagram.sent == [(USER_ID, "Sorry for the wait!")]
        assert (await storage.get_task(task.name)).status == TaskStatus.DONE

    async def test_history_failure_aborts(self, build, storage, dispatcher, instagram):
        processor, _ = build(ScriptedLLM())
        await _inbound(storage, dispatcher, instagram, "hello")
        instagram.fail_history = True

        with pytest.raises(Exception):
            await processor.process_thread(USER_ID)

        state = await storage.get_thread_state(USER_ID)
        assert state.processing is False
        assert state.has_pending_messages is True
        events = await storage.get_trace_events(event_types=["processing_failed"])
        assert len(events) == 1

    async def test_reset_during_processing(self, build, storage, dispatcher, instagram):
        class ResettingLLM(ScriptedLLM):
            async def chat(self, messages, system=None, tools=None, max_tokens=1024):
                await storage.delete_thread_data(USER_ID)
                return await super().chat(messages, system, tools, max_tokens)

        processor, _ = build(ResettingLLM())
        await _inbound(storage, dispatcher, instagram, "RESET")

        result = await processor.process_thread(USER_ID)

        assert result.status == "processed"
        assert await storage.get_thread_state(USER_ID) is None


class TestToolsInvoked:
    async def test_result_lists_tools(self, build, storage, dispatcher, instagram):
        processor, _ = build(ScriptedLLM([_reply("hi")]))
        await _inbound(storage, dispatcher, instagram, "hello")

        result = await processor.process_thread(USER_ID)

        assert result.agent_result.tools_invoked == [ToolName.SEND_MESSAGE]
