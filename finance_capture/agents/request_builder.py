"""
Extraction Request Builder

Pure functions that turn a transcript and the capture start time into the
prompt, instructions and response schema for the extraction service.

CRITICAL: The model is never asked for a date. The event date is always the
capture start time, stamped after the call returns.
"""

from datetime import datetime, timezone
from typing import Optional

from finance_capture.models.event import (
    EventCategory,
    EventType,
    ExtractionRequest,
    FinanceEventDTO,
)


class EmptyTranscriptError(ValueError):
    """Nothing to extract from."""

    def __init__(self, message: str = "The transcript is empty; nothing to extract."):
        super().__init__(message)


EVENT_TYPES = [t.value for t in EventType]
EVENT_CATEGORIES = [c.value for c in EventCategory]

EXTRACTION_INSTRUCTIONS = f"""You extract structured finance events from the transcript.

Rules:
- Respond strictly using the FinanceEvent schema.
- Extract the specific item purchased into the 'item' field if it is mentioned.
- The 'category' must be one of: {', '.join(EVENT_CATEGORIES)}.
- The 'type' must be one of: {', '.join(EVENT_TYPES)}.
- Infer category from merchant or phrasing; default to "Other" if unsure.
- amount must be the numeric total; parse currencies and symbols (USD, IDR, $, Rp, etc).
- merchant: name if present; avoid hallucination.
- date: do not infer; the app will set this to the recording time after generation."""

PROMPT_TEMPLATE = """Transcript:
{transcript}

Recording time: {recording_time}

Task:
- Do not infer date; the app will set FinanceEvent.date to the recording time.
- Do not add extra fields; adhere to FinanceEvent schema strictly."""

# Response schema in the Gemini (OpenAPI subset) format
EVENT_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "type": {
            "type": "STRING",
            "format": "enum",
            "enum": EVENT_TYPES,
        },
        "category": {
            "type": "STRING",
            "format": "enum",
            "enum": EVENT_CATEGORIES,
        },
        "item": {
            "type": "STRING",
            "nullable": True,
            "description": (
                "The specific item purchased, if mentioned "
                "(e.g., 'Big Mac', 'coffee'). Omit if not mentioned."
            ),
        },
        "amount": {
            "type": "NUMBER",
            "nullable": True,
            "description": "Total amount, positive number. Omit if not mentioned.",
        },
        "currency": {
            "type": "STRING",
            "nullable": True,
            "description": "ISO currency code or symbol. Omit if not mentioned.",
        },
        "merchant": {
            "type": "STRING",
            "nullable": True,
            "description": "Merchant or source name. Omit if not mentioned.",
        },
        "date": {
            "type": "STRING",
            "nullable": True,
            "description": "Leave empty; the app sets it to the recording time.",
        },
    },
    "required": ["type", "category"],
}


def format_capture_timestamp(value: datetime) -> str:
    """
    ISO-8601 internet date-time in UTC with milliseconds.

    Naive datetimes are taken as UTC.
    Example: 2025-11-08T09:30:00.000Z
    """
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_event_date(value: Optional[str], fallback: datetime) -> datetime:
    """
    Parse an ISO-8601 date string, or return `fallback` if that fails.

    The result is always timezone-aware UTC.
    """
    parsed = fallback
    if value:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = fallback
    return as_utc(parsed)


def build_extraction_request(transcript: str, capture_start: datetime) -> ExtractionRequest:
    """
    Build the extraction request for one transcript.

    Raises:
        EmptyTranscriptError: If the transcript is empty or whitespace
    """
    text = (transcript or "").strip()
    if not text:
        raise EmptyTranscriptError()

    recording_time = format_capture_timestamp(capture_start)
    return ExtractionRequest(
        instructions=EXTRACTION_INSTRUCTIONS,
        prompt=PROMPT_TEMPLATE.format(transcript=text, recording_time=recording_time),
        response_schema=EVENT_RESPONSE_SCHEMA,
        capture_start_iso=recording_time,
    )


def stamp_capture_date(dto: FinanceEventDTO, capture_start: datetime) -> FinanceEventDTO:
    """Return a copy of the DTO whose date is the capture start time."""
    return dto.model_copy(update={"date": format_capture_timestamp(capture_start)})
