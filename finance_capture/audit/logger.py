"""
Audit Logger

DESIGN DECISION: Every step of a capture session is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. A history the user can inspect later

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the session if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_capture.models.audit import AuditEvent, AuditEventBuilder
from finance_capture.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit table of the local store (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finance_capture.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_capture_started(
        self,
        session_id: UUID,
        mode: str,
        correlation_id: UUID,
    ) -> None:
        """Log the start of a capture."""
        await self.log(AuditEventBuilder.capture_started(
            session_id=session_id,
            mode=mode,
            correlation_id=correlation_id,
        ))

    async def log_capture_stopped(
        self,
        session_id: UUID,
        mode: str,
        transcript_length: int,
        correlation_id: UUID,
    ) -> None:
        """Log a finished capture."""
        await self.log(AuditEventBuilder.capture_stopped(
            session_id=session_id,
            mode=mode,
            transcript_length=transcript_length,
            correlation_id=correlation_id,
        ))

    async def log_capture_failed(
        self,
        session_id: UUID,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        """Log a capture failure."""
        await self.log(AuditEventBuilder.capture_failed(
            session_id=session_id,
            error_type=type(error).__name__,
            error_message=str(error),
            correlation_id=correlation_id,
        ))

    async def log_authorization_denied(
        self,
        session_id: UUID,
        status: str,
        correlation_id: UUID,
    ) -> None:
        """Log a refused recognizer authorization."""
        await self.log(AuditEventBuilder.authorization_denied(
            session_id=session_id,
            status=status,
            correlation_id=correlation_id,
        ))

    async def log_ocr_completed(
        self,
        session_id: UUID,
        page_count: int,
        text_length: int,
        correlation_id: UUID,
    ) -> None:
        """Log OCR completion."""
        await self.log(AuditEventBuilder.ocr_completed(
            session_id=session_id,
            page_count=page_count,
            text_length=text_length,
            correlation_id=correlation_id,
        ))

    async def log_ocr_failed(
        self,
        session_id: UUID,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        """Log OCR failure."""
        await self.log(AuditEventBuilder.ocr_failed(
            session_id=session_id,
            error_type=type(error).__name__,
            error_message=str(error),
            correlation_id=correlation_id,
        ))

    async def log_extraction_started(
        self,
        session_id: UUID,
        transcript_length: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_started(
            session_id=session_id,
            transcript_length=transcript_length,
            correlation_id=correlation_id,
        ))

    async def log_extraction_completed(
        self,
        extraction_id: UUID,
        event_type: str,
        category: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_completed(
            extraction_id=extraction_id,
            event_type=event_type,
            category=category,
            correlation_id=correlation_id,
        ))

    async def log_extraction_failed(
        self,
        session_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_failed(
            session_id=session_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_validation_passed(
        self,
        extraction_id: UUID,
        warnings: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.validation_passed(
            extraction_id=extraction_id,
            warnings=warnings,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        extraction_id: UUID,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            extraction_id=extraction_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_event_saved(
        self,
        event_id: UUID,
        event_type: str,
        amount: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log event save."""
        await self.log(AuditEventBuilder.event_saved(
            event_id=event_id,
            event_type=event_type,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_save_failed(
        self,
        event_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(
            event_id=event_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_session_rejected(
        self,
        session_id: UUID,
        active_session_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.session_rejected(
            session_id=session_id,
            active_session_id=active_session_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new capture session.
    Pass it through all subsequent operations.
    """
    return uuid4()
