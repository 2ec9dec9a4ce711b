"""
Integration tests for the capture flow.

Every external service is faked; storage is a temporary SQLite file.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import (
    FakeExtractionService,
    FakeSpeechRecognizer,
    FakeTextRecognizer,
)
from finance_capture.agents import EmptyTranscriptError, ExtractionError
from finance_capture.audit import AuditLogger
from finance_capture.models.audit import AuditEventType
from finance_capture.models.event import (
    CaptureMode,
    EventCategory,
    EventType,
    SessionState,
    TranscriptFinal,
)
from finance_capture.orchestrator import (
    ALLOWED_TRANSITIONS,
    FinanceCaptureFlow,
    InvalidTransitionError,
    SessionBusyError,
    create_app_components,
)
from finance_capture.services.ocr import ImageDecodeError, NoTextFoundError
from finance_capture.services.speech import (
    AuthorizationStatus,
    CaptureAuthorizationError,
    CaptureDeviceError,
    MissingStartTimeError,
)
from finance_capture.services.storage import (
    DuplicateError,
    EventStorageInterface,
)
from finance_capture.validation import ValidationRejectedError


CAPTURE_START = datetime(2025, 11, 8, 9, 30, 15, 250000, tzinfo=timezone.utc)

COFFEE = {
    "type": "expense",
    "category": "Food & Drink",
    "item": "coffee",
    "amount": 4.5,
    "currency": "USD",
    "merchant": "Starbucks",
}


class DuplicatingStorage(EventStorageInterface):

    async def save_event(self, event):
        raise DuplicateError(f"Event already exists: {event.id}")

    async def get_event_by_id(self, event_id):
        return None

    async def list_events(self, limit=100, offset=0):
        return []

    async def count_events(self):
        return 0


class BrokenStorage(DuplicatingStorage):

    async def save_event(self, event):
        raise RuntimeError("disk on fire")


class FailingStopRecognizer(FakeSpeechRecognizer):

    def __init__(self, error):
        super().__init__(final_text="coffee 4.50")
        self.error = error

    def stop(self):
        self.stopped += 1
        raise self.error


async def _collect(iterable) -> list:
    return [item async for item in iterable]


@pytest.fixture
def make_flow(validator, event_storage, audit_storage):
    def factory(response=None, error=None, recognizer=None, text_recognizer=None, storage=None):
        extraction = FakeExtractionService(response=response or COFFEE, error=error)
        flow = FinanceCaptureFlow(
            recognizer=recognizer or FakeSpeechRecognizer(),
            text_recognizer=text_recognizer or FakeTextRecognizer(text="STARBUCKS TOTAL 4.50"),
            extraction_service=extraction,
            validator=validator,
            event_storage=storage or event_storage,
            audit_logger=AuditLogger(audit_storage),
        )
        return flow, extraction
    return factory


class TestTextFlow:

    @pytest.mark.asyncio
    async def test_persists_event(self, make_flow, event_storage):
        flow, extraction = make_flow()
        session = flow.new_session()

        event = await flow.extract_from_text(session, "coffee at Starbucks 4.50 dollars", CAPTURE_START)

        assert event is not None
        assert session.state == SessionState.PERSISTED
        assert session.last_event == event
        assert event.type == EventType.EXPENSE
        assert event.category == EventCategory.FOOD_AND_DRINK
        assert event.amount == Decimal("4.5")
        assert event.source == CaptureMode.TEXT
        assert await event_storage.get_event_by_id(event.id) == event
        assert extraction.requests[0].capture_start_iso == "2025-11-08T09:30:15.250Z"

    @pytest.mark.asyncio
    async def test_date_is_capture_start_not_transcript_date(self, make_flow, event_storage):
        flow, _ = make_flow(response={**COFFEE, "date": "2019-03-01T12:00:00Z"})
        session = flow.new_session()

        event = await flow.extract_from_text(session, "yesterday I bought coffee for 4.50", CAPTURE_START)

        stored = await event_storage.get_event_by_id(event.id)
        assert stored.date == CAPTURE_START

    @pytest.mark.asyncio
    @pytest.mark.parametrize("service_date", [None, "", "not a date", "32/13/2025"])
    async def test_missing_or_malformed_date_uses_capture_start(self, make_flow, service_date):
        response = dict(COFFEE)
        if service_date is not None:
            response["date"] = service_date
        flow, _ = make_flow(response=response)
        session = flow.new_session()

        event = await flow.extract_from_text(session, "coffee 4.50", CAPTURE_START)
        assert event.date == CAPTURE_START

    @pytest.mark.asyncio
    async def test_default_capture_start_is_now(self, make_flow):
        flow, _ = make_flow()
        session = flow.new_session()

        before = datetime.now(timezone.utc) - timedelta(milliseconds=1)
        event = await flow.extract_from_text(session, "coffee 4.50")

        assert before <= event.date <= datetime.now(timezone.utc)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("type", "gift"),
        ("category", "Groceries"),
        ("category", "Misc"),
    ])
    async def test_out_of_enum_rejected_and_nothing_persisted(self, make_flow, event_storage, field, value):
        flow, _ = make_flow(response={**COFFEE, field: value})
        session = flow.new_session()

        event = await flow.extract_from_text(session, "something for 4.50", CAPTURE_START)

        assert event is None
        assert session.state == SessionState.FAILED
        assert isinstance(session.error, ValidationRejectedError)
        assert value in session.error_message
        assert session.last_validation.accepted is False
        assert await event_storage.count_events() == 0

    @pytest.mark.asyncio
    async def test_case_variants_normalized(self, make_flow):
        flow, _ = make_flow(response={**COFFEE, "type": "EXPENSE", "category": "food and drink"})
        session = flow.new_session()

        event = await flow.extract_from_text(session, "coffee 4.50", CAPTURE_START)

        assert event.type == EventType.EXPENSE
        assert event.category == EventCategory.FOOD_AND_DRINK

    @pytest.mark.asyncio
    async def test_empty_transcript(self, make_flow):
        flow, extraction = make_flow()
        session = flow.new_session()

        assert await flow.extract_from_text(session, "   ", CAPTURE_START) is None
        assert isinstance(session.error, EmptyTranscriptError)
        assert session.state == SessionState.FAILED
        assert extraction.requests == []

    @pytest.mark.asyncio
    async def test_extraction_failure_message_wraps_cause(self, make_flow):
        flow, _ = make_flow(error=RuntimeError("quota exceeded"))
        session = flow.new_session()

        assert await flow.extract_from_text(session, "coffee 4.50", CAPTURE_START) is None
        assert isinstance(session.error, ExtractionError)
        assert session.error_message == "Extraction failed: quota exceeded"

    @pytest.mark.asyncio
    async def test_extraction_error_kept_as_is(self, make_flow):
        flow, _ = make_flow(error=ExtractionError("Extraction failed: blocked"))
        session = flow.new_session()

        await flow.extract_from_text(session, "coffee 4.50", CAPTURE_START)
        assert session.error_message == "Extraction failed: blocked"

    @pytest.mark.asyncio
    async def test_save_failure(self, make_flow):
        flow, _ = make_flow(storage=DuplicatingStorage())
        session = flow.new_session()

        assert await flow.extract_from_text(session, "coffee 4.50", CAPTURE_START) is None
        assert isinstance(session.error, DuplicateError)
        assert session.error_message.startswith("Failed to save event")
        assert session.state == SessionState.FAILED

    @pytest.mark.asyncio
    async def test_unexpected_save_error_releases_flow(self, make_flow, audit_storage):
        flow, _ = make_flow(storage=BrokenStorage())
        session = flow.new_session()

        assert await flow.extract_from_text(session, "coffee 4.50", CAPTURE_START) is None

        assert session.state == SessionState.FAILED
        assert isinstance(session.error, RuntimeError)
        assert session.error_message == "disk on fire"
        assert flow.active_session is None
        events = await audit_storage.get_events_by_correlation_id(session.correlation_id)
        assert events[-1].event_type == AuditEventType.SYSTEM_ERROR

        assert await flow.extract_from_text(flow.new_session(), "coffee 4.50", CAPTURE_START) is None
        assert flow.active_session is None

    @pytest.mark.asyncio
    async def test_sub_millisecond_capture_start_kept(self, make_flow, event_storage):
        capture_start = datetime(2025, 11, 8, 9, 30, 15, 250731, tzinfo=timezone.utc)
        flow, extraction = make_flow()
        session = flow.new_session()

        event = await flow.extract_from_text(session, "coffee 4.50", capture_start)

        assert extraction.requests[0].capture_start_iso == "2025-11-08T09:30:15.250Z"
        assert event.date == capture_start
        assert (await event_storage.get_event_by_id(event.id)).date == capture_start

    @pytest.mark.asyncio
    async def test_sequential_sessions_get_distinct_ids(self, make_flow, event_storage):
        flow, _ = make_flow()

        first = await flow.extract_from_text(flow.new_session(), "coffee 4.50", CAPTURE_START)
        second = await flow.extract_from_text(flow.new_session(), "coffee 4.50", CAPTURE_START)

        assert first.id != second.id
        assert first.extraction_id != second.extraction_id
        assert await event_storage.count_events() == 2

    @pytest.mark.asyncio
    async def test_session_reuse_after_failure(self, make_flow):
        flow, _ = make_flow()
        session = flow.new_session()

        await flow.extract_from_text(session, "", CAPTURE_START)
        assert session.state == SessionState.FAILED

        event = await flow.extract_from_text(session, "coffee 4.50", CAPTURE_START)
        assert event is not None
        assert session.state == SessionState.PERSISTED
        assert session.error is None
        assert session.error_message is None

    @pytest.mark.asyncio
    async def test_audit_trail(self, make_flow, audit_storage):
        flow, _ = make_flow()
        session = flow.new_session()

        await flow.extract_from_text(session, "coffee 4.50", CAPTURE_START)

        events = await audit_storage.get_events_by_correlation_id(session.correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.EXTRACTION_STARTED,
            AuditEventType.EXTRACTION_COMPLETED,
            AuditEventType.VALIDATION_PASSED,
            AuditEventType.EVENT_SAVED,
        ]


class TestSpeechFlow:

    @pytest.mark.asyncio
    async def test_record_and_extract(self, make_flow):
        recognizer = FakeSpeechRecognizer(final_text="coffee at Starbucks 4.50 dollars")
        flow, extraction = make_flow(recognizer=recognizer)
        session = flow.new_session()

        capture_start = await flow.start_recording(session)
        assert session.state == SessionState.CAPTURING
        assert session.listening is True

        recognizer.emit("coffee at")
        recognizer.emit("coffee at Starbucks")
        event = await flow.stop_recording_and_extract(session)

        assert event is not None
        assert event.source == CaptureMode.SPEECH
        assert session.transcript == "coffee at Starbucks 4.50 dollars"
        assert session.listening is False
        assert event.date == capture_start
        assert "coffee at Starbucks 4.50 dollars" in extraction.requests[0].prompt

    @pytest.mark.asyncio
    async def test_transcript_updates(self, make_flow):
        recognizer = FakeSpeechRecognizer(final_text="taxi 15")
        flow, _ = make_flow(recognizer=recognizer)
        session = flow.new_session()

        await flow.start_recording(session)
        recognizer.emit("taxi")
        await flow.stop_recording_and_extract(session)

        items = [item async for item in flow.transcript_updates(session)]
        assert [i.text for i in items] == ["taxi", "taxi 15"]
        assert isinstance(items[-1], TranscriptFinal)

        again = await asyncio.wait_for(_collect(flow.transcript_updates(session)), timeout=1.0)
        assert [i.text for i in again] == ["taxi 15"]

    @pytest.mark.asyncio
    async def test_device_error_on_stop_releases_flow(self, make_flow, audit_storage):
        recognizer = FailingStopRecognizer(CaptureDeviceError("microphone unplugged"))
        flow, extraction = make_flow(recognizer=recognizer)
        session = flow.new_session()

        await flow.start_recording(session)
        assert await flow.stop_recording_and_extract(session) is None

        assert session.state == SessionState.FAILED
        assert isinstance(session.error, CaptureDeviceError)
        assert session.error_message == "microphone unplugged"
        assert flow.active_session is None
        assert extraction.requests == []
        events = await audit_storage.get_events_by_correlation_id(session.correlation_id)
        assert events[-1].event_type == AuditEventType.CAPTURE_FAILED

        other = flow.new_session()
        assert await flow.extract_from_text(other, "coffee 4.50", CAPTURE_START) is not None

    @pytest.mark.asyncio
    async def test_unexpected_error_on_stop_releases_flow(self, make_flow):
        flow, _ = make_flow(recognizer=FailingStopRecognizer(RuntimeError("driver crashed")))
        session = flow.new_session()

        await flow.start_recording(session)
        assert await flow.stop_recording_and_extract(session) is None

        assert session.state == SessionState.FAILED
        assert isinstance(session.error, RuntimeError)
        assert flow.active_session is None

    @pytest.mark.asyncio
    async def test_stop_before_start(self, make_flow):
        flow, extraction = make_flow()
        session = flow.new_session()

        event = await flow.stop_recording_and_extract(session)

        assert event is None
        assert session.state == SessionState.FAILED
        assert isinstance(session.error, MissingStartTimeError)
        assert session.error_message == "Missing recording start time."
        assert extraction.requests == []

    @pytest.mark.asyncio
    async def test_stop_twice(self, make_flow):
        flow, _ = make_flow(recognizer=FakeSpeechRecognizer(final_text="coffee 4.50"))
        session = flow.new_session()

        await flow.start_recording(session)
        assert await flow.stop_recording_and_extract(session) is not None

        assert await flow.stop_recording_and_extract(session) is None
        assert isinstance(session.error, MissingStartTimeError)

    @pytest.mark.asyncio
    async def test_authorization_denied(self, make_flow, audit_storage):
        flow, _ = make_flow(recognizer=FakeSpeechRecognizer(status=AuthorizationStatus.DENIED))
        session = flow.new_session()

        with pytest.raises(CaptureAuthorizationError):
            await flow.start_recording(session)

        assert session.state == SessionState.FAILED
        assert flow.active_session is None
        events = await audit_storage.get_events_by_correlation_id(session.correlation_id)
        assert events[0].event_type == AuditEventType.AUTHORIZATION_DENIED

    @pytest.mark.asyncio
    async def test_double_start_same_session(self, make_flow):
        flow, _ = make_flow()
        session = flow.new_session()

        await flow.start_recording(session)
        with pytest.raises(InvalidTransitionError):
            await flow.start_recording(session)


class TestScanFlow:

    @pytest.mark.asyncio
    async def test_scan_and_extract(self, make_flow, png_page):
        text_recognizer = FakeTextRecognizer(text="STARBUCKS\nLatte 4.50\nTOTAL 4.50")
        flow, extraction = make_flow(text_recognizer=text_recognizer)
        session = flow.new_session()

        event = await flow.scan_and_extract(session, [png_page])

        assert event.source == CaptureMode.SCAN
        assert session.transcript == "STARBUCKS\nLatte 4.50\nTOTAL 4.50"
        assert "TOTAL 4.50" in extraction.requests[0].prompt

    @pytest.mark.asyncio
    async def test_no_text_found(self, make_flow, png_page, event_storage):
        flow, extraction = make_flow(text_recognizer=FakeTextRecognizer(text="  "))
        session = flow.new_session()

        assert await flow.scan_and_extract(session, [png_page]) is None
        assert isinstance(session.error, NoTextFoundError)
        assert not isinstance(session.error, ImageDecodeError)
        assert session.state == SessionState.FAILED
        assert extraction.requests == []
        assert await event_storage.count_events() == 0

    @pytest.mark.asyncio
    async def test_undecodable_page(self, make_flow):
        flow, _ = make_flow()
        session = flow.new_session()

        assert await flow.scan_and_extract(session, [b"garbage"]) is None
        assert isinstance(session.error, ImageDecodeError)
        assert session.error_message.startswith("Failed to convert image")

    @pytest.mark.asyncio
    async def test_unexpected_recognizer_error_releases_flow(self, make_flow, png_page):
        text_recognizer = FakeTextRecognizer(error=RuntimeError("camera crashed"))
        flow, extraction = make_flow(text_recognizer=text_recognizer)
        session = flow.new_session()

        assert await flow.scan_and_extract(session, [png_page]) is None

        assert session.state == SessionState.FAILED
        assert session.error_message == "camera crashed"
        assert flow.active_session is None
        assert extraction.requests == []


class TestSessionConcurrency:

    @pytest.mark.asyncio
    async def test_second_session_rejected_while_capturing(self, make_flow, audit_storage):
        recognizer = FakeSpeechRecognizer(final_text="coffee 4.50")
        flow, _ = make_flow(recognizer=recognizer)
        first = flow.new_session()
        second = flow.new_session()

        await flow.start_recording(first)

        with pytest.raises(SessionBusyError) as exc_info:
            await flow.extract_from_text(second, "bus 2 euro", CAPTURE_START)
        with pytest.raises(SessionBusyError):
            await flow.start_recording(second)

        assert exc_info.value.active_session_id == first.session_id
        assert second.state == SessionState.IDLE
        events = await audit_storage.get_events_by_correlation_id(second.correlation_id)
        assert events[0].event_type == AuditEventType.SESSION_REJECTED

        # Once the first session is done the second may run
        await flow.stop_recording_and_extract(first)
        assert flow.active_session is None
        assert await flow.extract_from_text(second, "bus 2 euro", CAPTURE_START) is not None


class TestStateMachine:

    def test_terminal_states_only_return_to_idle(self):
        assert ALLOWED_TRANSITIONS[SessionState.PERSISTED] == {SessionState.IDLE}
        assert ALLOWED_TRANSITIONS[SessionState.FAILED] == {SessionState.IDLE}

    def test_every_state_can_be_left(self):
        for state in SessionState:
            assert ALLOWED_TRANSITIONS[state]


def test_create_app_components_without_storage():
    flow, client = create_app_components(use_storage=False)
    assert isinstance(flow, FinanceCaptureFlow)
    assert client is None
