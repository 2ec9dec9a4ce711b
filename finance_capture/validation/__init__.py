"""Validation package."""

from finance_capture.validation.validator import (
    EventValidator,
    ValidationRejectedError,
    resolve_category,
    resolve_event_type,
)

__all__ = [
    "EventValidator",
    "ValidationRejectedError",
    "resolve_category",
    "resolve_event_type",
]
