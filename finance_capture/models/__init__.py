"""
Data Models Package

This package contains all Pydantic models used in the Finance Capture system.
All data flowing through the system must conform to these schemas.
"""

from finance_capture.models.event import (
    SCHEMA_VERSION,
    CaptureMode,
    CaptureResult,
    EventCategory,
    EventType,
    ExtractionRequest,
    FinanceEvent,
    FinanceEventDTO,
    SessionState,
    TranscriptFinal,
    TranscriptUpdate,
    ValidationIssue,
    ValidationResult,
)
from finance_capture.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Event models
    "SCHEMA_VERSION",
    "CaptureMode",
    "CaptureResult",
    "EventCategory",
    "EventType",
    "ExtractionRequest",
    "FinanceEvent",
    "FinanceEventDTO",
    "SessionState",
    "TranscriptFinal",
    "TranscriptUpdate",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
