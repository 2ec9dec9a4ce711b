"""
SQLite Storage Implementation

DESIGN DECISION: Events are kept in a local SQLite file because:
1. The whole pipeline runs on the user's own machine
2. No database server to set up
3. The file is easy to back up or inspect with any SQLite tool

SQLAlchemy's async engine (aiosqlite driver) keeps storage calls from
blocking the event loop while a capture session is running.

The implementation follows the abstract interface, so the store can be
swapped without changing business logic.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String, Text, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from finance_capture.config import StorageSettings, get_settings
from finance_capture.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_capture.models.event import (
    CaptureMode,
    EventCategory,
    EventType,
    FinanceEvent,
)
from finance_capture.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EventStorageInterface,
    StorageConnectionError,
    StorageError,
)


class Base(DeclarativeBase):
    pass


class FinanceEventRow(Base):
    __tablename__ = "finance_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    extraction_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    item: Mapped[str | None] = mapped_column(String(200))
    # Decimal kept exact; SQLite has no decimal type
    amount: Mapped[str | None] = mapped_column(String(40))
    currency: Mapped[str | None] = mapped_column(String(10))
    merchant: Mapped[str | None] = mapped_column(String(200))
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_events_date", "date"),
        Index("idx_events_created_at", "created_at"),
    )


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(40))
    entity_id: Mapped[str | None] = mapped_column(String(36))
    correlation_id: Mapped[str | None] = mapped_column(String(36))
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    details_json: Mapped[str | None] = mapped_column(Text)
    error_code: Mapped[str | None] = mapped_column(String(100))
    error_message: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("idx_audit_correlation", "correlation_id"),
        Index("idx_audit_timestamp", "timestamp"),
    )


def _as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; everything we write is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SQLiteClient:
    """
    Owns the async engine and session factory for the local store.

    Tables are created by init_schema(); call it once before use.
    """

    def __init__(self, settings: Optional[StorageSettings] = None):
        self._settings = settings or get_settings().storage
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            url = make_url(self._settings.database_url)
            # Create the folder for file databases
            if url.database and url.database != ":memory:":
                Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_async_engine(url, echo=self._settings.echo)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        return self._session_factory

    async def init_schema(self) -> None:
        """Create tables that don't exist yet."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except OperationalError as e:
            raise StorageConnectionError(f"Failed to open the event store: {e}")

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


class SQLiteEventStorage(EventStorageInterface):
    """
    SQLite implementation of event storage.

    One event per row; the event id is the primary key, so the store
    itself refuses duplicate ids.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    def _event_to_row(self, event: FinanceEvent) -> FinanceEventRow:
        """Convert a FinanceEvent to a table row."""
        return FinanceEventRow(
            id=str(event.id),
            extraction_id=str(event.extraction_id),
            type=event.type.value,
            category=event.category.value,
            item=event.item,
            amount=str(event.amount) if event.amount is not None else None,
            currency=event.currency,
            merchant=event.merchant,
            date=event.date,
            source=event.source.value,
            schema_version=event.schema_version,
            created_at=event.created_at,
        )

    def _row_to_event(self, row: FinanceEventRow) -> FinanceEvent:
        """Convert a table row to a FinanceEvent."""
        return FinanceEvent(
            id=UUID(row.id),
            extraction_id=UUID(row.extraction_id),
            type=EventType(row.type),
            category=EventCategory(row.category),
            item=row.item,
            amount=Decimal(row.amount) if row.amount is not None else None,
            currency=row.currency,
            merchant=row.merchant,
            date=_as_utc(row.date),
            source=CaptureMode(row.source),
            schema_version=row.schema_version,
            created_at=_as_utc(row.created_at),
        )

    async def save_event(self, event: FinanceEvent) -> bool:
        """Insert a finance event."""
        try:
            async with self._client.session_factory() as session:
                async with session.begin():
                    session.add(self._event_to_row(event))
            return True
        except IntegrityError:
            raise DuplicateError(f"Event already exists: {event.id}")
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save event: {e}")

    async def get_event_by_id(self, event_id: UUID) -> Optional[FinanceEvent]:
        """Retrieve an event by its ID."""
        try:
            async with self._client.session_factory() as session:
                row = await session.get(FinanceEventRow, str(event_id))
                return self._row_to_event(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get event: {e}")

    async def list_events(
        self,
        limit: int = 100,
        offset: int = 0,
    ) -> list[FinanceEvent]:
        """List events, newest first."""
        stmt = (
            select(FinanceEventRow)
            .order_by(FinanceEventRow.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        try:
            async with self._client.session_factory() as session:
                rows = (await session.scalars(stmt)).all()
                return [self._row_to_event(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list events: {e}")

    async def count_events(self) -> int:
        try:
            async with self._client.session_factory() as session:
                return await session.scalar(
                    select(func.count()).select_from(FinanceEventRow)
                ) or 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to count events: {e}")


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit storage.

    Append-only: no method updates or deletes a row.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    def _event_to_row(self, event: AuditEvent) -> AuditEventRow:
        return AuditEventRow(
            event_id=str(event.event_id),
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            severity=event.severity.value,
            entity_type=event.entity_type,
            entity_id=str(event.entity_id) if event.entity_id else None,
            correlation_id=str(event.correlation_id) if event.correlation_id else None,
            description=event.description,
            details_json=event.details_json() or None,
            error_code=event.error_code,
            error_message=event.error_message,
        )

    def _row_to_event(self, row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row.event_id),
            timestamp=_as_utc(row.timestamp),
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            entity_type=row.entity_type,
            entity_id=UUID(row.entity_id) if row.entity_id else None,
            correlation_id=UUID(row.correlation_id) if row.correlation_id else None,
            description=row.description,
            details=json.loads(row.details_json) if row.details_json else {},
            error_code=row.error_code,
            error_message=row.error_message,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            async with self._client.session_factory() as session:
                async with session.begin():
                    session.add(self._event_to_row(event))
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to append audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for one capture session, oldest first."""
        stmt = (
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == str(correlation_id))
            .order_by(AuditEventRow.timestamp)
        )
        try:
            async with self._client.session_factory() as session:
                rows = (await session.scalars(stmt)).all()
                return [self._row_to_event(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events."""
        stmt = (
            select(AuditEventRow)
            .order_by(AuditEventRow.timestamp.desc())
            .limit(limit)
        )
        try:
            async with self._client.session_factory() as session:
                rows = (await session.scalars(stmt)).all()
                return [self._row_to_event(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get recent audit events: {e}")
