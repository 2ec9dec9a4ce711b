"""AI Agents package."""

from finance_capture.agents.extraction_agent import (
    ExtractionError,
    ExtractionServiceInterface,
    FinanceExtractionAgent,
)
from finance_capture.agents.request_builder import (
    EVENT_RESPONSE_SCHEMA,
    EXTRACTION_INSTRUCTIONS,
    EmptyTranscriptError,
    as_utc,
    build_extraction_request,
    format_capture_timestamp,
    parse_event_date,
    stamp_capture_date,
)

__all__ = [
    "EVENT_RESPONSE_SCHEMA",
    "EXTRACTION_INSTRUCTIONS",
    "EmptyTranscriptError",
    "ExtractionError",
    "ExtractionServiceInterface",
    "FinanceExtractionAgent",
    "as_utc",
    "build_extraction_request",
    "format_capture_timestamp",
    "parse_event_date",
    "stamp_capture_date",
]
