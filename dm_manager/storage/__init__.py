"""Storage module."""

from .storage import IStorage, Storage, TaskAlreadyExistsError, Transaction

__all__ = ["IStorage", "Storage", "TaskAlreadyExistsError", "Transaction"]
