"""Persistence: document stores and the typed gateway."""

from tasksync.storage.base import DocumentStore, StoreError, VersionConflictError
from tasksync.storage.gateway import PersistenceGateway
from tasksync.storage.memory_store import MemoryStore
from tasksync.storage.sqlite_store import SQLiteStore

__all__ = [
    "DocumentStore",
    "StoreError",
    "VersionConflictError",
    "PersistenceGateway",
    "MemoryStore",
    "SQLiteStore",
    "create_store",
]


def create_store(backend: str, sqlite_path: str = "tasksync.db") -> DocumentStore:
    """Build the document store named by configuration.

    Args:
        backend: "memory" or "sqlite"
        sqlite_path: Database file for the sqlite backend

    Returns:
        Uninitialized document store
    """
    if backend == "memory":
        return MemoryStore()
    if backend == "sqlite":
        return SQLiteStore(sqlite_path)
    raise ValueError(f"Unknown store backend: {backend}")
