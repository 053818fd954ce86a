"""Instagram DM manager."""

from .app import Application, IApplication
from .config import Settings
from .debounce import DebounceCoordinator, IDebounceCoordinator, ThreadProcessor
from .dispatch import DelayedDispatcher, IDelayedDispatcher, TaskRunner
from .ingress import WebhookIngress
from .llm import ILLMProvider, LLMProviderKind, create_llm_provider
from .models import (
    AgentResult,
    ClaimResult,
    DispatchTask,
    InstagramMessage,
    ThreadState,
    ToolName,
    TraceEvent,
    UserProfile,
)
from .storage import IStorage, Storage
from .tools import ToolCatalog, get_tool_catalog
from .tracker import ITracker, Tracker

__all__ = [
    # Application
    "Application",
    "IApplication",
    "Settings",
    # Models
    "InstagramMessage",
    "ThreadState",
    "ClaimResult",
    "DispatchTask",
    "UserProfile",
    "ToolName",
    "AgentResult",
    "TraceEvent",
    # Components
    "IStorage",
    "Storage",
    "ITracker",
    "Tracker",
    "IDebounceCoordinator",
    "DebounceCoordinator",
    "IDelayedDispatcher",
    "DelayedDispatcher",
    "TaskRunner",
    "ThreadProcessor",
    "WebhookIngress",
    "ToolCatalog",
    "get_tool_catalog",
    "ILLMProvider",
    "LLMProviderKind",
    "create_llm_provider",
]
