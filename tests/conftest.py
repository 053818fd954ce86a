"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dm_manager.llm import LLMResponse  # noqa: E402
from dm_manager.models import ConversationMessage, SenderProfile  # noqa: E402
from dm_manager.tools import InstagramAPIError, reset_tool_catalog  # noqa: E402

PAGE_ID = "page_1"
USER_ID = "user_42"


class FakeClock:
    """Settable clock for deterministic windows and backoff."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeInstagram:
    """In-memory stand-in for InstagramClient."""

    def __init__(self, page_id: str = PAGE_ID):
        self.page_id = page_id
        self.history: dict[str, list[ConversationMessage]] = {}
        self.sent: list[tuple[str, str]] = []
        self.reactions: list[tuple[str, str, str]] = []
        self.fail_history = False
        self._counter = 0

    def add_inbound(self, thread_id: str, text: str, message_type: str = "text") -> str:
        self._counter += 1
        message_id = f"m_{self._counter}"
        self.history.setdefault(thread_id, []).append(
            ConversationMessage(
                id=message_id,
                sender_id=thread_id,
                text=text,
                timestamp=datetime(2025, 3, 1, 12, 0, self._counter, tzinfo=timezone.utc),
                message_type=message_type,
            )
        )
        return message_id

    async def get_conversation_messages(self, user_id: str, limit: int = 50):
        if self.fail_history:
            raise InstagramAPIError("history unavailable", 500)
        # Newest first, as the Graph API returns it.
        return list(reversed(self.history.get(user_id, [])))[:limit]

    async def get_user_profile(self, user_id: str) -> SenderProfile:
        return SenderProfile(id=user_id, username=f"{user_id}_ig", name="Test User")

    async def send_message(self, recipient_id: str, text: str) -> str:
        self.sent.append((recipient_id, text))
        self._counter += 1
        message_id = f"m_{self._counter}"
        self.history.setdefault(recipient_id, []).append(
            ConversationMessage(
                id=message_id,
                sender_id=self.page_id,
                text=text,
                timestamp=datetime(2025, 3, 1, 12, 0, self._counter, tzinfo=timezone.utc),
            )
        )
        return message_id

    async def send_reaction(self, recipient_id: str, message_id: str, reaction) -> None:
        self.reactions.append((recipient_id, message_id, reaction.value))


class ScriptedLLM:
    """Returns queued responses and records every request.

    When the script runs out it answers with plain text, ending the tool loop.
    """

    def __init__(self, responses: list[LLMResponse] | None = None):
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    async def chat(self, messages, system=None, tools=None, max_tokens=1024):
        self.calls.append(
            {"messages": [dict(m) for m in messages], "system": system, "tools": tools}
        )
        if self.responses:
            return self.responses.pop(0)
        return LLMResponse(text="done")


@pytest.fixture(autouse=True)
def _reset_catalog():
    """Each test builds its own tool catalog."""
    reset_tool_catalog()
    yield
    reset_tool_catalog()


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from dm_manager.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def tracker(storage):
    """Create Tracker with storage."""
    from dm_manager.tracker import Tracker

    return Tracker(storage)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(storage):
    from dm_manager.debounce import DebounceCoordinator

    return DebounceCoordinator(storage)


@pytest.fixture
def dispatcher(storage, clock):
    from dm_manager.dispatch import DelayedDispatcher

    return DelayedDispatcher(storage, delay_seconds=60, clock=clock)


@pytest.fixture
def instagram():
    return FakeInstagram()


@pytest.fixture
def llm():
    return ScriptedLLM()
