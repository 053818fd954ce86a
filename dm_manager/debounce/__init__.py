"""Per-thread debouncing: claim coordination and the processing pass."""

from .coordinator import DebounceCoordinator, IDebounceCoordinator
from .processor import IThreadProcessor, ProcessResult, ThreadProcessor

__all__ = [
    "DebounceCoordinator",
    "IDebounceCoordinator",
    "ThreadProcessor",
    "IThreadProcessor",
    "ProcessResult",
]
