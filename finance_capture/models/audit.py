"""
Audit Models for Finance Capture

Every significant step of a capture session is logged for audit purposes.
This provides:
1. Complete traceability of all operations
2. Debugging information when things go wrong
3. Ability to reconstruct what a session did

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finance_capture.models.event import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step in the capture pipeline has its own event type.
    """
    # Capture
    CAPTURE_STARTED = "capture_started"
    CAPTURE_STOPPED = "capture_stopped"
    CAPTURE_FAILED = "capture_failed"
    AUTHORIZATION_DENIED = "authorization_denied"

    # OCR processing
    OCR_COMPLETED = "ocr_completed"
    OCR_FAILED = "ocr_failed"

    # Extraction
    EXTRACTION_STARTED = "extraction_started"
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_FAILED = "extraction_failed"

    # Validation
    VALIDATION_PASSED = "validation_passed"
    VALIDATION_FAILED = "validation_failed"

    # Persistence
    EVENT_SAVED = "event_saved"
    SAVE_FAILED = "save_failed"

    # Session management
    SESSION_REJECTED = "session_rejected"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'session', 'extraction', 'event')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one capture session share this
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def details_json(self) -> str:
        """Details serialized for a text column ("" when empty)."""
        return json.dumps(self.details, default=str) if self.details else ""


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.capture_started(session_id, "speech", correlation_id)
        event = AuditEventBuilder.event_saved(event_id, "expense", "12.50", correlation_id)
    """

    @staticmethod
    def capture_started(
        session_id: UUID,
        mode: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CAPTURE_STARTED,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Capture started ({mode})",
            details={"mode": mode},
        )

    @staticmethod
    def capture_stopped(
        session_id: UUID,
        mode: str,
        transcript_length: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CAPTURE_STOPPED,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Capture finished with {transcript_length} characters",
            details={
                "mode": mode,
                "transcript_length": transcript_length,
            },
        )

    @staticmethod
    def capture_failed(
        session_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CAPTURE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Capture failed: {error_type}",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def authorization_denied(
        session_id: UUID,
        status: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTHORIZATION_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Speech recognition not authorized ({status})",
            details={"status": status},
        )

    @staticmethod
    def ocr_completed(
        session_id: UUID,
        page_count: int,
        text_length: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_COMPLETED,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Recognized {text_length} characters on the first of {page_count} pages",
            details={
                "page_count": page_count,
                "text_length": text_length,
            },
        )

    @staticmethod
    def ocr_failed(
        session_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Text recognition failed: {error_type}",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def extraction_started(
        session_id: UUID,
        transcript_length: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_STARTED,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="Extraction requested",
            details={"transcript_length": transcript_length},
        )

    @staticmethod
    def extraction_completed(
        extraction_id: UUID,
        event_type: str,
        category: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_COMPLETED,
            entity_type="extraction",
            entity_id=extraction_id,
            correlation_id=correlation_id,
            description=f"Extracted {event_type} / {category}",
            details={
                "type": event_type,
                "category": category,
            },
        )

    @staticmethod
    def extraction_failed(
        session_id: UUID,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="Extraction failed",
            error_message=error_message,
        )

    @staticmethod
    def validation_passed(
        extraction_id: UUID,
        warnings: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_PASSED,
            entity_type="extraction",
            entity_id=extraction_id,
            correlation_id=correlation_id,
            description=f"Validation passed with {len(warnings)} warnings",
            details={"warnings": warnings},
        )

    @staticmethod
    def validation_failed(
        extraction_id: UUID,
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="extraction",
            entity_id=extraction_id,
            correlation_id=correlation_id,
            description=f"Extraction rejected with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def event_saved(
        event_id: UUID,
        event_type: str,
        amount: Optional[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENT_SAVED,
            entity_type="event",
            entity_id=event_id,
            correlation_id=correlation_id,
            description=f"Event saved: {event_type} {amount or '(no amount)'}",
            details={
                "type": event_type,
                "amount": amount,
            },
        )

    @staticmethod
    def save_failed(
        event_id: UUID,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="event",
            entity_id=event_id,
            correlation_id=correlation_id,
            description="Saving the event failed",
            error_message=error_message,
        )

    @staticmethod
    def session_rejected(
        session_id: UUID,
        active_session_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="Another capture session is still in progress",
            details={"active_session_id": str(active_session_id)},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
