"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements a local SQLite store, but designed to be swappable.
"""

from finance_capture.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EventStorageInterface,
    StorageConnectionError,
    StorageError,
)
from finance_capture.services.storage.sqlite_storage import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteEventStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "EventStorageInterface",
    # Exceptions
    "DuplicateError",
    "StorageConnectionError",
    "StorageError",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteEventStorage",
]
