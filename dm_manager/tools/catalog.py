"""Tool catalog: the closed set of side effects the agent may request.

Each tool has a pydantic input model (its JSON schema is what the model
sees), a description, and a handler bound to the live clients. Dispatch is
a lookup in a ``ToolName -> handler`` table; unknown names and invalid
arguments come back as error results instead of exceptions.
"""

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field, ValidationError

from ..dialogue import build_transcript
from ..logging_config import get_logger
from ..models import (
    Booking,
    CooldownStatus,
    Priority,
    Reaction,
    SenderProfile,
    ToolName,
)
from ..storage import IStorage
from .instagram import InstagramAPIError, InstagramClient
from .schedule import ScheduleProvider
from .telegram import TelegramNotifier, escape_markdown_v2

logger = get_logger(__name__)


# --- Inputs ---------------------------------------------------------------


class SendMessageInput(BaseModel):
    recipient_id: str = Field(description="Instagram user id to send to")
    text: str = Field(description="Message text; keep it short and natural")


class ReactInput(BaseModel):
    message_id: str = Field(description="Id of the message to react to")
    reaction: Reaction = Field(description="Reaction type")


class EscalateInput(BaseModel):
    user_id: str = Field(description="Instagram user id")
    username: str = Field(description="Instagram username")
    reason: str = Field(description="Why the manager needs to step in")
    summary: str = Field(description="Short summary of the conversation")
    priority: Priority = Priority.NORMAL


class BookingConfirmedInput(BaseModel):
    username: str
    session_date: str = Field(description="Date of the booked session")
    user_phone: str | None = None
    user_name: str | None = None
    additional_attendees: list[str] | None = None
    kit_status: str | None = Field(
        default=None, description="Whether the user brings their own kit"
    )
    notes: str | None = None


class RecordBookingInput(BaseModel):
    user_id: str
    thread_id: str
    session_date: str
    user_name: str | None = None
    phone: str | None = None


class ConversationHistoryInput(BaseModel):
    thread_id: str = Field(description="Conversation (Instagram user) id")
    limit: int = Field(default=20, ge=1, le=50, description="Newest messages to return")


class UserIdInput(BaseModel):
    user_id: str


class EmptyInput(BaseModel):
    pass


class NoActionInput(BaseModel):
    reason: str = Field(description="Why no reply is needed")


# --- Outputs --------------------------------------------------------------


class ToolOutput(BaseModel):
    success: bool
    message_id: str | None = None
    error: str | None = None
    skipped: bool | None = None


class RecordBookingOutput(BaseModel):
    success: bool
    booking_id: str | None = None
    message: str


class CooldownOutput(BaseModel):
    can_notify: bool
    last_notification: datetime | None = None
    days_since_last_notification: int | None = None


class BookingOutput(BaseModel):
    session_date: str
    booked_at: datetime
    user_name: str | None = None
    phone: str | None = None


class UserProfileOutput(BaseModel):
    user_id: str
    exists: bool
    first_contact: datetime | None = None
    last_notification: datetime | None = None
    last_booking: datetime | None = None
    bookings: list[BookingOutput] = Field(default_factory=list)


class HistoryMessageOutput(BaseModel):
    role: str
    text: str
    timestamp: datetime
    message_id: str | None = None


class ConversationHistoryOutput(BaseModel):
    success: bool
    messages: list[HistoryMessageOutput] = Field(default_factory=list)
    error: str | None = None


class ScheduleEventOutput(BaseModel):
    name: str
    start: str
    end: str | None = None
    location: str | None = None


class ScheduleOutput(BaseModel):
    events: list[ScheduleEventOutput]


# --- Definitions ----------------------------------------------------------


@dataclass(frozen=True)
class ToolDefinition:
    name: ToolName
    description: str
    input_model: type[BaseModel]

    @property
    def input_schema(self) -> dict:
        return self.input_model.model_json_schema()


@dataclass
class ToolContext:
    """The conversation a tool call belongs to."""

    thread_id: str
    sender: SenderProfile


_TOOL_SPECS: list[tuple[ToolName, str, type[BaseModel]]] = [
    (
        ToolName.SEND_MESSAGE,
        "Send a direct message to the user on Instagram.",
        SendMessageInput,
    ),
    (
        ToolName.REACT_TO_MESSAGE,
        "React to one of the user's messages instead of (or as well as) replying.",
        ReactInput,
    ),
    (
        ToolName.ESCALATE_TO_MANAGER,
        "Notify the studio manager on Telegram when a human needs to take over. "
        "Respects the notification cooldown for the user.",
        EscalateInput,
    ),
    (
        ToolName.NOTIFY_BOOKING_CONFIRMED,
        "Tell the manager on Telegram that a user confirmed a session booking.",
        BookingConfirmedInput,
    ),
    (
        ToolName.RECORD_BOOKING,
        "Store a confirmed booking against the user's profile.",
        RecordBookingInput,
    ),
    (
        ToolName.CHECK_LAST_NOTIFICATION,
        "Check whether the manager may be notified about this user again.",
        UserIdInput,
    ),
    (
        ToolName.GET_CONVERSATION_HISTORY,
        "Fetch the latest messages of a conversation, oldest first. "
        "Use it when more context than the current transcript is needed.",
        ConversationHistoryInput,
    ),
    (
        ToolName.GET_USER_PROFILE,
        "Look up what we know about the user, including past bookings.",
        UserIdInput,
    ),
    (
        ToolName.GET_SESSION_SCHEDULE,
        "List upcoming sessions. Returns an empty list when unavailable.",
        EmptyInput,
    ),
    (
        ToolName.NO_ACTION,
        "Take no action, for example when the conversation needs no reply.",
        NoActionInput,
    ),
]

_definitions: dict[ToolName, ToolDefinition] | None = None
_definitions_lock = threading.Lock()


def get_tool_definitions() -> dict[ToolName, ToolDefinition]:
    """Register the tool set once per process."""
    global _definitions
    if _definitions is None:
        with _definitions_lock:
            if _definitions is None:
                _definitions = {
                    name: ToolDefinition(name, description, model)
                    for name, description, model in _TOOL_SPECS
                }
                logger.info(
                    "Registered tools",
                    extra={"context": {"tools": [name.value for name in _definitions]}},
                )
    return _definitions


def check_cooldown(
    last_notification: datetime | None, now: datetime, cooldown_days: int
) -> CooldownStatus:
    """A user may be escalated again once the cooldown has fully elapsed."""
    if last_notification is None:
        return CooldownStatus(can_notify=True)

    elapsed = now - last_notification
    return CooldownStatus(
        can_notify=elapsed > timedelta(days=cooldown_days),
        last_notification=last_notification,
        days_since_last_notification=math.floor(elapsed.total_seconds() / 86400),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


Handler = Callable[[Any, ToolContext], Awaitable[BaseModel]]


class ToolCatalog:
    """Binds the tool definitions to live clients."""

    def __init__(
        self,
        storage: IStorage,
        instagram: InstagramClient,
        notifier: TelegramNotifier,
        schedule: ScheduleProvider,
        cooldown_days: int = 7,
        coordinator_name: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._storage = storage
        self._instagram = instagram
        self._notifier = notifier
        self._schedule = schedule
        self._cooldown_days = cooldown_days
        self._coordinator_name = coordinator_name
        self._clock = clock
        self._definitions = get_tool_definitions()
        self._handlers: dict[ToolName, Handler] = {
            ToolName.SEND_MESSAGE: self._send_message,
            ToolName.REACT_TO_MESSAGE: self._react,
            ToolName.ESCALATE_TO_MANAGER: self._escalate,
            ToolName.NOTIFY_BOOKING_CONFIRMED: self._notify_booking,
            ToolName.RECORD_BOOKING: self._record_booking,
            ToolName.CHECK_LAST_NOTIFICATION: self._check_last_notification,
            ToolName.GET_CONVERSATION_HISTORY: self._get_conversation_history,
            ToolName.GET_USER_PROFILE: self._get_user_profile,
            ToolName.GET_SESSION_SCHEDULE: self._get_schedule,
            ToolName.NO_ACTION: self._no_action,
        }

    @property
    def definitions(self) -> list[ToolDefinition]:
        return list(self._definitions.values())

    async def execute(
        self, name: str, arguments: dict, context: ToolContext
    ) -> tuple[ToolName | None, dict]:
        """Run one tool call. Returns the resolved tool name and its result."""
        try:
            tool = ToolName(name)
        except ValueError:
            logger.warning(
                "Model requested unknown tool %s",
                name,
                extra={"context": {"thread_id": context.thread_id}},
            )
            return None, {"success": False, "error": f"Unknown tool: {name}"}

        definition = self._definitions[tool]
        try:
            args = definition.input_model.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning(
                "Invalid arguments for %s",
                tool.value,
                extra={"context": {"thread_id": context.thread_id, "error": str(e)}},
            )
            return tool, {"success": False, "error": f"Invalid arguments: {e}"}

        result = await self._handlers[tool](args, context)
        return tool, result.model_dump(mode="json", exclude_none=True)

    # --- Handlers ---------------------------------------------------------

    async def _send_message(self, args: SendMessageInput, ctx: ToolContext) -> ToolOutput:
        try:
            message_id = await self._instagram.send_message(args.recipient_id, args.text)
        except InstagramAPIError as e:
            return ToolOutput(success=False, error=str(e))
        return ToolOutput(success=True, message_id=message_id)

    async def _react(self, args: ReactInput, ctx: ToolContext) -> ToolOutput:
        try:
            await self._instagram.send_reaction(ctx.sender.id, args.message_id, args.reaction)
        except InstagramAPIError as e:
            return ToolOutput(success=False, error=str(e))
        return ToolOutput(success=True)

    async def _escalate(self, args: EscalateInput, ctx: ToolContext) -> ToolOutput:
        profile = await self._storage.get_user_profile(args.user_id)
        status = check_cooldown(
            profile.last_notification if profile else None,
            self._clock(),
            self._cooldown_days,
        )
        if not status.can_notify:
            logger.info(
                "Escalation skipped, manager notified %s days ago",
                status.days_since_last_notification,
                extra={"context": {"thread_id": ctx.thread_id, "user_id": args.user_id}},
            )
            return ToolOutput(
                success=False,
                skipped=True,
                error="Manager was already notified about this user recently",
            )

        lines = [
            f"*Escalation* \\({escape_markdown_v2(args.priority.value)} priority\\)",
            f"User: @{escape_markdown_v2(args.username)}",
            f"Reason: {escape_markdown_v2(args.reason)}",
            "",
            escape_markdown_v2(args.summary),
        ]
        result = await self._notifier.send("\n".join(lines))
        if not result.success:
            return ToolOutput(success=False, error=result.error)

        await self._storage.set_last_notification(args.user_id, self._clock())
        logger.info(
            "Manager notified",
            extra={"context": {"thread_id": ctx.thread_id, "priority": args.priority.value}},
        )
        return ToolOutput(success=True, message_id=result.message_id)

    async def _notify_booking(
        self, args: BookingConfirmedInput, ctx: ToolContext
    ) -> ToolOutput:
        lines = [
            "*Booking confirmed*",
            f"User: @{escape_markdown_v2(args.username)}",
            f"Session: {escape_markdown_v2(args.session_date)}",
        ]
        if args.user_name:
            lines.append(f"Name: {escape_markdown_v2(args.user_name)}")
        if args.user_phone:
            lines.append(f"Phone: {escape_markdown_v2(args.user_phone)}")
        if args.additional_attendees:
            attendees = ", ".join(args.additional_attendees)
            lines.append(f"Also attending: {escape_markdown_v2(attendees)}")
        if args.kit_status:
            lines.append(f"Kit: {escape_markdown_v2(args.kit_status)}")
        if args.notes:
            lines.append(f"Notes: {escape_markdown_v2(args.notes)}")
        if self._coordinator_name:
            lines.append(f"\nFor {escape_markdown_v2(self._coordinator_name)}")

        result = await self._notifier.send("\n".join(lines))
        return ToolOutput(
            success=result.success, message_id=result.message_id, error=result.error
        )

    async def _record_booking(
        self, args: RecordBookingInput, ctx: ToolContext
    ) -> RecordBookingOutput:
        booking = Booking(
            id="",
            user_id=args.user_id,
            thread_id=args.thread_id,
            session_date=args.session_date,
            booked_at=self._clock(),
            user_name=args.user_name,
            phone=args.phone,
        )
        await self._storage.record_booking(booking)
        logger.info(
            "Booking recorded",
            extra={"context": {"thread_id": ctx.thread_id, "session_date": args.session_date}},
        )
        return RecordBookingOutput(
            success=True,
            booking_id=booking.id,
            message=f"Booking recorded for {args.session_date}",
        )

    async def _check_last_notification(
        self, args: UserIdInput, ctx: ToolContext
    ) -> CooldownOutput:
        profile = await self._storage.get_user_profile(args.user_id)
        status = check_cooldown(
            profile.last_notification if profile else None,
            self._clock(),
            self._cooldown_days,
        )
        return CooldownOutput(
            can_notify=status.can_notify,
            last_notification=status.last_notification,
            days_since_last_notification=status.days_since_last_notification,
        )

    async def _get_conversation_history(
        self, args: ConversationHistoryInput, ctx: ToolContext
    ) -> ConversationHistoryOutput:
        try:
            messages = await self._instagram.get_conversation_messages(
                args.thread_id, limit=args.limit
            )
        except InstagramAPIError as e:
            return ConversationHistoryOutput(success=False, error=str(e))

        transcript = build_transcript(
            messages, self._instagram.page_id, limit=args.limit, newest_first=True
        )
        return ConversationHistoryOutput(
            success=True,
            messages=[
                HistoryMessageOutput(
                    role=entry.role,
                    text=entry.content,
                    timestamp=entry.timestamp,
                    message_id=entry.message_id,
                )
                for entry in transcript
            ],
        )

    async def _get_user_profile(self, args: UserIdInput, ctx: ToolContext) -> UserProfileOutput:
        profile = await self._storage.get_user_profile(args.user_id)
        if profile is None:
            return UserProfileOutput(user_id=args.user_id, exists=False)
        return UserProfileOutput(
            user_id=profile.user_id,
            exists=True,
            first_contact=profile.first_contact,
            last_notification=profile.last_notification,
            last_booking=profile.last_booking,
            bookings=[
                BookingOutput(
                    session_date=b.session_date,
                    booked_at=b.booked_at,
                    user_name=b.user_name,
                    phone=b.phone,
                )
                for b in profile.bookings
            ],
        )

    async def _get_schedule(self, args: EmptyInput, ctx: ToolContext) -> ScheduleOutput:
        events = await self._schedule.get_events()
        return ScheduleOutput(
            events=[
                ScheduleEventOutput(
                    name=e.name, start=e.start, end=e.end, location=e.location
                )
                for e in events
            ]
        )

    async def _no_action(self, args: NoActionInput, ctx: ToolContext) -> ToolOutput:
        logger.info(
            "Agent chose no action: %s",
            args.reason,
            extra={"context": {"thread_id": ctx.thread_id}},
        )
        return ToolOutput(success=True)


_catalog: ToolCatalog | None = None
_catalog_lock = threading.Lock()


def get_tool_catalog(factory: Callable[[], ToolCatalog] | None = None) -> ToolCatalog:
    """Process-wide catalog, built on first use by ``factory``."""
    global _catalog
    if _catalog is None:
        with _catalog_lock:
            if _catalog is None:
                if factory is None:
                    raise RuntimeError("Tool catalog has not been initialised")
                _catalog = factory()
    return _catalog


def reset_tool_catalog() -> None:
    """Drop the process-wide catalog (application shutdown and tests)."""
    global _catalog
    with _catalog_lock:
        _catalog = None
