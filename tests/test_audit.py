"""Tests for the audit logger."""

from uuid import uuid4

import pytest

from finance_capture.audit import AuditLogger, create_correlation_id
from finance_capture.models.audit import AuditEventBuilder, AuditEventType
from finance_capture.services.storage import AuditStorageInterface, StorageError


class FailingAuditStorage(AuditStorageInterface):

    async def append_event(self, event):
        raise StorageError("disk full")

    async def get_events_by_correlation_id(self, correlation_id):
        return []

    async def get_recent_events(self, limit=100):
        return []


class TestAuditLogger:

    @pytest.mark.asyncio
    async def test_local_only_logging(self):
        logger = AuditLogger()
        event = AuditEventBuilder.capture_started(uuid4(), "text", uuid4())
        assert await logger.log(event) is True

    @pytest.mark.asyncio
    async def test_persists_to_storage(self, audit_storage):
        logger = AuditLogger(audit_storage)
        correlation_id = create_correlation_id()
        session_id = uuid4()

        await logger.log_capture_started(session_id, "speech", correlation_id)
        await logger.log_capture_failed(session_id, RuntimeError("mic unplugged"), correlation_id)

        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.CAPTURE_STARTED,
            AuditEventType.CAPTURE_FAILED,
        ]
        assert events[1].error_code == "RuntimeError"
        assert events[1].error_message == "mic unplugged"

    @pytest.mark.asyncio
    async def test_storage_failure_not_raised(self):
        logger = AuditLogger(FailingAuditStorage())
        result = await logger.log(AuditEventBuilder.system_error("ValueError", "bad"))
        assert result is False

    def test_correlation_ids_unique(self):
        assert create_correlation_id() != create_correlation_id()
