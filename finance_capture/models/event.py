"""
Core Data Models for Finance Capture

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: The model's raw output (FinanceEventDTO) and the stored
record (FinanceEvent) are separate types. The DTO accepts any string for
type/category so that out-of-enum output can be classified and rejected by
the validator instead of failing deep inside a parser.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# Bumped whenever the extraction schema changes shape.
SCHEMA_VERSION = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EventType(str, Enum):
    """Direction of money movement."""
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class EventCategory(str, Enum):
    """
    Category taxonomy for finance events.

    DESIGN DECISION: Using explicit categories rather than free text ensures
    consistent categorization and enables reliable querying.
    """
    FOOD_AND_DRINK = "Food & Drink"
    TRANSPORT = "Transport"
    SHOPPING = "Shopping"
    BILLS_AND_UTILITIES = "Bills & Utilities"
    ENTERTAINMENT = "Entertainment"
    HEALTH = "Health"
    INCOME = "Income"
    TRANSFER = "Transfer"
    OTHER = "Other"


class CaptureMode(str, Enum):
    """Where the transcript came from."""
    SPEECH = "speech"
    SCAN = "scan"
    TEXT = "text"


class SessionState(str, Enum):
    """
    Capture session lifecycle.

    idle → capturing → extracting → {persisted | failed} → idle
    """
    IDLE = "idle"
    CAPTURING = "capturing"
    EXTRACTING = "extracting"
    PERSISTED = "persisted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.PERSISTED, SessionState.FAILED)

    @property
    def is_busy(self) -> bool:
        return self in (SessionState.CAPTURING, SessionState.EXTRACTING)


# =============================================================================
# CAPTURE MODELS
# =============================================================================

class CaptureResult(BaseModel):
    """A finished capture: one text blob plus when capture began."""

    text: str
    capture_start: datetime
    mode: CaptureMode


class TranscriptUpdate(BaseModel):
    """In-progress transcript, emitted every time the recognizer revises it."""

    text: str
    received_at: datetime = Field(default_factory=utc_now)


class TranscriptFinal(BaseModel):
    """Last item of a transcript stream."""

    text: str
    capture_start: datetime
    finalized_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# EXTRACTION MODELS
# =============================================================================

class ExtractionRequest(BaseModel):
    """Everything the extraction service needs for one call."""

    instructions: str
    prompt: str
    response_schema: dict
    capture_start_iso: str


class FinanceEventDTO(BaseModel):
    """
    Structured output returned by the extraction service.

    CRITICAL: This is PROPOSED data, NOT verified.
    It MUST pass EventValidator before being persisted.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Extraction metadata
    extraction_id: UUID = Field(
        default_factory=uuid4,
        description="Unique ID for this extraction attempt"
    )
    extracted_at: datetime = Field(
        default_factory=utc_now,
        description="When extraction was performed"
    )

    type: str = Field(
        ...,
        description="One of expense, income, transfer"
    )
    category: str = Field(
        ...,
        description="One of the EventCategory values"
    )
    item: Optional[str] = Field(
        default=None,
        description="The specific item purchased, if mentioned"
    )
    amount: Optional[float] = Field(
        default=None,
        description="Total amount, positive number"
    )
    currency: Optional[str] = Field(
        default=None,
        description="ISO currency code or symbol"
    )
    merchant: Optional[str] = Field(
        default=None,
        description="Merchant or source name"
    )
    date: Optional[str] = Field(
        default=None,
        description="Event date (ISO-8601), set from the capture start time"
    )

    @field_validator('item', 'currency', 'merchant', 'date')
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Models sometimes send "" for an omitted field."""
        if v is not None and not v:
            return None
        return v


class FinanceEvent(BaseModel):
    """
    A validated finance event as it is stored.

    Created only from an accepted FinanceEventDTO. Never updated in place.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique event ID"
    )
    extraction_id: UUID = Field(
        ...,
        description="ID of the extraction this event came from"
    )

    type: EventType
    category: EventCategory
    item: Optional[str] = Field(default=None, max_length=200)
    amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Total amount, strictly positive"
    )
    currency: Optional[str] = Field(default=None, max_length=10)
    merchant: Optional[str] = Field(default=None, max_length=200)
    date: datetime = Field(
        ...,
        description="Capture start time (UTC)"
    )

    source: CaptureMode = Field(
        default=CaptureMode.TEXT,
        description="How the transcript was captured"
    )
    schema_version: int = Field(
        default=SCHEMA_VERSION,
        description="Extraction schema the event was produced with"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the event was saved"
    )

    @field_validator('date', 'created_at')
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive datetimes are taken as UTC; aware ones are converted."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'not_in_enum', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of validating one extraction.

    Stage 1: Schema validation (enumerated members, amount, currency)
    Stage 2: Semantic validation (plausibility checks, warnings only)
    """

    extraction_id: UUID
    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool
    semantic_valid: bool
    accepted: bool = Field(
        ...,
        description="True when the extraction may be persisted"
    )

    # Resolved members (None when the raw value was rejected)
    event_type: Optional[EventType] = None
    category: Optional[EventCategory] = None

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
