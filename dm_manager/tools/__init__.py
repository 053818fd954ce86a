"""Side-effect tools available to the agent."""

from .catalog import (
    ToolCatalog,
    ToolContext,
    ToolDefinition,
    check_cooldown,
    get_tool_catalog,
    get_tool_definitions,
    reset_tool_catalog,
)
from .instagram import InstagramAPIError, InstagramClient
from .schedule import ScheduleEvent, ScheduleProvider
from .telegram import NotificationResult, TelegramNotifier, escape_markdown_v2

__all__ = [
    "ToolCatalog",
    "ToolContext",
    "ToolDefinition",
    "check_cooldown",
    "get_tool_catalog",
    "get_tool_definitions",
    "reset_tool_catalog",
    "InstagramClient",
    "InstagramAPIError",
    "TelegramNotifier",
    "NotificationResult",
    "escape_markdown_v2",
    "ScheduleProvider",
    "ScheduleEvent",
]
