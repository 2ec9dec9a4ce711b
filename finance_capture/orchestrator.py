"""
Main Orchestrator for Finance Capture

This module ties together all the components and defines the
end-to-end flow for one capture session:

    speech | scan | text → transcript → extract → validate → stamp date → save

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is persisted unless the validator accepted it
- The stored date is always the capture start time
- Every step is audited under the session's correlation id

Failures after capture never raise. They are recorded on the session, which
ends in the `failed` state, and the flow method returns None.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Optional, Sequence
from uuid import UUID, uuid4

import structlog

from finance_capture.agents import (
    EmptyTranscriptError,
    ExtractionError,
    ExtractionServiceInterface,
    FinanceExtractionAgent,
    as_utc,
    build_extraction_request,
    stamp_capture_date,
)
from finance_capture.audit import AuditLogger, create_correlation_id
from finance_capture.config import get_settings
from finance_capture.models.event import (
    CaptureMode,
    CaptureResult,
    FinanceEvent,
    SessionState,
    TranscriptFinal,
    ValidationResult,
)
from finance_capture.services.ocr import (
    MindeeOCRService,
    OCRError,
    OCRServiceError,
    ScanCapture,
    TextRecognizerInterface,
)
from finance_capture.services.speech import (
    CaptureAuthorizationError,
    CaptureError,
    MissingStartTimeError,
    SpeechCapture,
    SpeechRecognizerInterface,
    VoskSpeechRecognizer,
)
from finance_capture.services.speech.stream import TranscriptItem
from finance_capture.services.storage import (
    EventStorageInterface,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteEventStorage,
    StorageError,
)
from finance_capture.validation import EventValidator, ValidationRejectedError

logger = structlog.get_logger(__name__)


# Valid session state transitions
ALLOWED_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CAPTURING, SessionState.FAILED},
    SessionState.CAPTURING: {SessionState.EXTRACTING, SessionState.FAILED},
    SessionState.EXTRACTING: {SessionState.PERSISTED, SessionState.FAILED},
    SessionState.PERSISTED: {SessionState.IDLE},
    SessionState.FAILED: {SessionState.IDLE},
}


class InvalidTransitionError(Exception):
    """A session was asked to move to a state it cannot reach."""

    def __init__(self, current: SessionState, target: SessionState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move session from {current.value} to {target.value}")


class SessionBusyError(Exception):
    """Another session of the same flow is still capturing or extracting."""

    def __init__(self, active_session_id: UUID):
        self.active_session_id = active_session_id
        super().__init__(
            f"Session {active_session_id} is still in progress; "
            "finish it before starting another capture."
        )


class CaptureSession:
    """
    Context for one capture, owned by a single caller.

    A session can be reused: starting a new capture from `persisted` or
    `failed` returns it to `idle` and clears the previous outcome.
    """

    def __init__(self, session_id: Optional[UUID] = None):
        self.session_id = session_id or uuid4()
        self.correlation_id = create_correlation_id()
        self.state = SessionState.IDLE
        self.mode: Optional[CaptureMode] = None
        self.capture_start: Optional[datetime] = None
        self.transcript = ""
        self.last_event: Optional[FinanceEvent] = None
        self.last_validation: Optional[ValidationResult] = None
        self.error: Optional[Exception] = None
        self.error_message: Optional[str] = None
        self.speech: Optional[SpeechCapture] = None

    @property
    def listening(self) -> bool:
        return self.speech is not None and self.speech.listening

    def reset(self) -> None:
        self.mode = None
        self.capture_start = None
        self.transcript = ""
        self.last_event = None
        self.last_validation = None
        self.error = None
        self.error_message = None
        self.speech = None


class FinanceCaptureFlow:
    """
    Orchestrates the capture → extraction → persistence pipeline.

    Flow:
    1. Capture → speech recording, scanned page or plain text
    2. Request → transcript plus capture start time
    3. Extract → structured proposal from the extraction service
    4. Validate → two-stage validation (rejects out-of-enum values)
    5. Stamp → event date := capture start time
    6. Save → one row in the local store

    One session at a time: a second session is rejected, not queued.
    """

    def __init__(
        self,
        recognizer: Optional[SpeechRecognizerInterface] = None,
        text_recognizer: Optional[TextRecognizerInterface] = None,
        extraction_service: Optional[ExtractionServiceInterface] = None,
        validator: Optional[EventValidator] = None,
        event_storage: Optional[EventStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        # Backends that need credentials or devices are created on first use
        self._recognizer = recognizer
        self._text_recognizer = text_recognizer
        self._extraction_service = extraction_service
        self._validator = validator or EventValidator()
        self._event_storage = event_storage
        self._audit_logger = audit_logger or AuditLogger()
        self._active: Optional[CaptureSession] = None

    def _get_recognizer(self) -> SpeechRecognizerInterface:
        if self._recognizer is None:
            self._recognizer = VoskSpeechRecognizer()
        return self._recognizer

    def _get_text_recognizer(self) -> TextRecognizerInterface:
        if self._text_recognizer is None:
            self._text_recognizer = MindeeOCRService()
        return self._text_recognizer

    def _get_extraction_service(self) -> ExtractionServiceInterface:
        if self._extraction_service is None:
            self._extraction_service = FinanceExtractionAgent()
        return self._extraction_service

    # -------------------------------------------------------------------------
    # Session bookkeeping
    # -------------------------------------------------------------------------

    def new_session(self) -> CaptureSession:
        return CaptureSession()

    @property
    def active_session(self) -> Optional[CaptureSession]:
        if self._active is not None and self._active.state.is_busy:
            return self._active
        return None

    def _transition(self, session: CaptureSession, target: SessionState) -> None:
        if target not in ALLOWED_TRANSITIONS[session.state]:
            raise InvalidTransitionError(session.state, target)

        logger.debug(
            "session_transition",
            session_id=str(session.session_id),
            from_state=session.state.value,
            to_state=target.value,
        )
        session.state = target
        if target.is_terminal and self._active is session:
            self._active = None

    async def _begin(self, session: CaptureSession, mode: CaptureMode) -> None:
        """Claim the flow for this session and bring it back to idle."""
        active = self.active_session
        if active is not None and active is not session:
            await self._audit_logger.log_session_rejected(
                session_id=session.session_id,
                active_session_id=active.session_id,
                correlation_id=session.correlation_id,
            )
            raise SessionBusyError(active.session_id)

        if session.state.is_terminal:
            self._transition(session, SessionState.IDLE)
            session.reset()
        elif session.state != SessionState.IDLE:
            raise InvalidTransitionError(session.state, SessionState.CAPTURING)

        session.mode = mode
        self._active = session

    def _fail(
        self,
        session: CaptureSession,
        error: Exception,
        message: Optional[str] = None,
    ) -> None:
        session.error = error
        session.error_message = message or str(error)
        self._transition(session, SessionState.FAILED)

        logger.warning(
            "session_failed",
            session_id=str(session.session_id),
            error_type=type(error).__name__,
            error=session.error_message,
        )

    async def _abort(self, session: CaptureSession, error: Exception, stage: str) -> None:
        """Record an unexpected error and release the flow."""
        logger.error(
            "session_unexpected_error",
            session_id=str(session.session_id),
            stage=stage,
            error_type=type(error).__name__,
            error=str(error),
        )
        await self._audit_logger.log_error(
            error_type=type(error).__name__,
            error_message=str(error),
            details={"stage": stage},
            correlation_id=session.correlation_id,
        )
        if session.state.is_busy:
            self._fail(session, error)

    # -------------------------------------------------------------------------
    # Speech mode
    # -------------------------------------------------------------------------

    async def start_recording(self, session: CaptureSession) -> datetime:
        """
        Start a speech capture for the session.

        Returns:
            The capture start time

        Raises:
            SessionBusyError: If another session is in progress
            CaptureAuthorizationError: If the recognizer may not listen
            CaptureError: If the audio device cannot be opened
        """
        await self._begin(session, CaptureMode.SPEECH)

        session.speech = SpeechCapture(self._get_recognizer())
        try:
            session.capture_start = session.speech.start()
        except CaptureAuthorizationError as e:
            await self._audit_logger.log_authorization_denied(
                session_id=session.session_id,
                status=e.status.value,
                correlation_id=session.correlation_id,
            )
            self._fail(session, e)
            raise
        except CaptureError as e:
            await self._audit_logger.log_capture_failed(
                session_id=session.session_id,
                error=e,
                correlation_id=session.correlation_id,
            )
            self._fail(session, e)
            raise

        self._transition(session, SessionState.CAPTURING)
        await self._audit_logger.log_capture_started(
            session_id=session.session_id,
            mode=CaptureMode.SPEECH.value,
            correlation_id=session.correlation_id,
        )
        return session.capture_start

    async def transcript_updates(self, session: CaptureSession) -> AsyncIterator[TranscriptItem]:
        """
        Follow the live transcript of the session's recording.

        Yields TranscriptUpdate items and ends after one TranscriptFinal.
        """
        if session.speech is None:
            raise MissingStartTimeError()

        async for item in session.speech.updates():
            session.transcript = item.text
            yield item
            if isinstance(item, TranscriptFinal):
                return

    async def stop_recording_and_extract(self, session: CaptureSession) -> Optional[FinanceEvent]:
        """
        Stop the recording and run the pipeline on its transcript.

        Returns:
            The persisted event, or None if the session failed
        """
        if session.state == SessionState.EXTRACTING:
            raise InvalidTransitionError(session.state, SessionState.EXTRACTING)

        if session.speech is None or session.state != SessionState.CAPTURING:
            # Stop without a running recording
            error = MissingStartTimeError()
            await self._audit_logger.log_capture_failed(
                session_id=session.session_id,
                error=error,
                correlation_id=session.correlation_id,
            )
            if session.state.is_terminal:
                self._transition(session, SessionState.IDLE)
                session.reset()
            self._fail(session, error)
            return None

        try:
            result = session.speech.stop()
        except CaptureError as e:
            await self._audit_logger.log_capture_failed(
                session_id=session.session_id,
                error=e,
                correlation_id=session.correlation_id,
            )
            self._fail(session, e)
            return None
        except Exception as e:
            await self._abort(session, e, stage="capture")
            return None

        await self._audit_logger.log_capture_stopped(
            session_id=session.session_id,
            mode=result.mode.value,
            transcript_length=len(result.text),
            correlation_id=session.correlation_id,
        )
        return await self._extract_and_persist(session, result)

    # -------------------------------------------------------------------------
    # Scan mode
    # -------------------------------------------------------------------------

    async def scan_and_extract(
        self,
        session: CaptureSession,
        pages: Sequence[bytes],
    ) -> Optional[FinanceEvent]:
        """
        Recognize the first scanned page and run the pipeline on its text.

        Raises:
            SessionBusyError: If another session is in progress
        """
        await self._begin(session, CaptureMode.SCAN)
        session.capture_start = datetime.now(timezone.utc)
        self._transition(session, SessionState.CAPTURING)
        await self._audit_logger.log_capture_started(
            session_id=session.session_id,
            mode=CaptureMode.SCAN.value,
            correlation_id=session.correlation_id,
        )

        scanner = ScanCapture(self._get_text_recognizer())
        try:
            result = await scanner.scan(pages)
        except OCRError as e:
            if isinstance(e, OCRServiceError):
                await self._audit_logger.log_external_service_error(
                    service="mindee",
                    error_message=str(e),
                    correlation_id=session.correlation_id,
                )
            await self._audit_logger.log_ocr_failed(
                session_id=session.session_id,
                error=e,
                correlation_id=session.correlation_id,
            )
            self._fail(session, e)
            return None
        except Exception as e:
            await self._abort(session, e, stage="ocr")
            return None

        await self._audit_logger.log_ocr_completed(
            session_id=session.session_id,
            page_count=len(pages),
            text_length=len(result.text),
            correlation_id=session.correlation_id,
        )
        return await self._extract_and_persist(session, result)

    # -------------------------------------------------------------------------
    # Text mode
    # -------------------------------------------------------------------------

    async def extract_from_text(
        self,
        session: CaptureSession,
        transcript: str,
        capture_start: Optional[datetime] = None,
    ) -> Optional[FinanceEvent]:
        """
        Run the pipeline on a transcript supplied directly.

        Raises:
            SessionBusyError: If another session is in progress
        """
        await self._begin(session, CaptureMode.TEXT)
        self._transition(session, SessionState.CAPTURING)

        result = CaptureResult(
            text=transcript or "",
            capture_start=capture_start or datetime.now(timezone.utc),
            mode=CaptureMode.TEXT,
        )
        return await self._extract_and_persist(session, result)

    # -------------------------------------------------------------------------
    # Shared pipeline
    # -------------------------------------------------------------------------

    async def _extract_and_persist(
        self,
        session: CaptureSession,
        result: CaptureResult,
    ) -> Optional[FinanceEvent]:
        try:
            return await self._run_pipeline(session, result)
        except Exception as e:
            await self._abort(session, e, stage=session.state.value)
            return None

    async def _run_pipeline(
        self,
        session: CaptureSession,
        result: CaptureResult,
    ) -> Optional[FinanceEvent]:
        session.transcript = result.text
        session.capture_start = result.capture_start
        self._transition(session, SessionState.EXTRACTING)

        # Step 1: Build the request
        try:
            request = build_extraction_request(result.text, result.capture_start)
        except EmptyTranscriptError as e:
            await self._audit_logger.log_extraction_failed(
                session_id=session.session_id,
                error_message=str(e),
                correlation_id=session.correlation_id,
            )
            self._fail(session, e)
            return None

        await self._audit_logger.log_extraction_started(
            session_id=session.session_id,
            transcript_length=len(result.text),
            correlation_id=session.correlation_id,
        )

        # Step 2: Extract
        try:
            dto = await self._get_extraction_service().extract(request)
        except ExtractionError as e:
            error = e
        except Exception as e:
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"stage": "extraction"},
                correlation_id=session.correlation_id,
            )
            error = ExtractionError(f"Extraction failed: {e}")
        else:
            error = None

        if error is not None:
            await self._audit_logger.log_extraction_failed(
                session_id=session.session_id,
                error_message=str(error),
                correlation_id=session.correlation_id,
            )
            self._fail(session, error)
            return None

        await self._audit_logger.log_extraction_completed(
            extraction_id=dto.extraction_id,
            event_type=dto.type,
            category=dto.category,
            correlation_id=session.correlation_id,
        )

        # Step 3: Validate
        validation = self._validator.validate(dto)
        session.last_validation = validation
        if not validation.accepted:
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in validation.issues
            ]
            await self._audit_logger.log_validation_failed(
                extraction_id=dto.extraction_id,
                issues=issues,
                correlation_id=session.correlation_id,
            )
            self._fail(
                session,
                ValidationRejectedError(validation),
                self._validator.get_user_friendly_summary(validation),
            )
            return None

        await self._audit_logger.log_validation_passed(
            extraction_id=dto.extraction_id,
            warnings=validation.warnings,
            correlation_id=session.correlation_id,
        )

        # Step 4: Stamp the capture start time as the event date.
        # The DTO carries it at millisecond precision, the record keeps it exact.
        stamped = stamp_capture_date(dto, result.capture_start)
        event = FinanceEvent(
            extraction_id=stamped.extraction_id,
            type=validation.event_type,
            category=validation.category,
            item=stamped.item,
            amount=Decimal(str(stamped.amount)) if stamped.amount is not None else None,
            currency=stamped.currency,
            merchant=stamped.merchant,
            date=as_utc(result.capture_start),
            source=result.mode,
        )

        # Step 5: Save
        if self._event_storage is not None:
            try:
                await self._event_storage.save_event(event)
            except StorageError as e:
                await self._audit_logger.log_save_failed(
                    event_id=event.id,
                    error_message=str(e),
                    correlation_id=session.correlation_id,
                )
                self._fail(session, e, f"Failed to save event: {e}")
                return None

            await self._audit_logger.log_event_saved(
                event_id=event.id,
                event_type=event.type.value,
                amount=str(event.amount) if event.amount is not None else None,
                correlation_id=session.correlation_id,
            )

        session.last_event = event
        self._transition(session, SessionState.PERSISTED)
        return event


def create_app_components(
    use_storage: bool = True,
) -> tuple[FinanceCaptureFlow, Optional[SQLiteClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to open the local SQLite store.
                    Set to False to run the pipeline without persisting.

    Returns:
        (capture_flow, sqlite_client)

    Call `await sqlite_client.init_schema()` before the first session.
    """
    settings = get_settings()
    sqlite_client = None
    event_storage = None

    if use_storage:
        sqlite_client = SQLiteClient(settings.storage)
        event_storage = SQLiteEventStorage(sqlite_client)
        audit_logger = AuditLogger(SQLiteAuditStorage(sqlite_client))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    flow = FinanceCaptureFlow(
        validator=EventValidator(settings.app),
        event_storage=event_storage,
        audit_logger=audit_logger,
    )
    return flow, sqlite_client
