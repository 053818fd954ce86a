"""Dispatch module."""

from .auth import (
    DispatchAuthError,
    DispatchTokenSettings,
    issue_dispatch_token,
    parse_bearer,
    verify_dispatch_token,
)
from .delivery import HttpTaskDelivery, LocalTaskDelivery
from .dispatcher import DelayedDispatcher, IDelayedDispatcher
from .runner import TaskHandler, TaskRunner

__all__ = [
    "DelayedDispatcher",
    "IDelayedDispatcher",
    "TaskRunner",
    "TaskHandler",
    "LocalTaskDelivery",
    "HttpTaskDelivery",
    "DispatchAuthError",
    "DispatchTokenSettings",
    "issue_dispatch_token",
    "verify_dispatch_token",
    "parse_bearer",
]
