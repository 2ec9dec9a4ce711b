"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the local SQLite store for another backend later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
The capture pipeline itself only ever calls save_event.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from finance_capture.models.audit import AuditEvent
from finance_capture.models.event import FinanceEvent


class EventStorageInterface(ABC):
    """
    Abstract interface for finance event storage.

    Events are insert-only: there is no update or delete path.
    """

    @abstractmethod
    async def save_event(self, event: FinanceEvent) -> bool:
        """
        Insert a validated finance event.

        Args:
            event: The event to save

        Returns:
            True if saved successfully

        Raises:
            DuplicateError: If an event with the same id already exists
            StorageError: If the insert fails for any other reason
        """
        pass

    @abstractmethod
    async def get_event_by_id(self, event_id: UUID) -> Optional[FinanceEvent]:
        """
        Retrieve an event by its ID.

        Returns:
            The event if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_events(
        self,
        limit: int = 100,
        offset: int = 0,
    ) -> list[FinanceEvent]:
        """
        List events, newest first.

        Args:
            limit: Maximum number of results
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def count_events(self) -> int:
        """Number of stored events."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one capture session).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
