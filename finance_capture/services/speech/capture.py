"""
Speech Capture

One recording from start() to stop(). Holds the transcript buffer, the
listening flag and the capture start time for exactly one session; the
orchestrator creates a new SpeechCapture per session.
"""

import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import structlog

from finance_capture.models.event import CaptureMode, CaptureResult
from finance_capture.services.speech.interface import (
    AuthorizationStatus,
    CaptureAuthorizationError,
    MissingStartTimeError,
    SpeechRecognizerInterface,
)
from finance_capture.services.speech.stream import TranscriptItem, TranscriptStream

logger = structlog.get_logger(__name__)


class SpeechCapture:
    """
    Streaming speech capture.

    Usage:
        capture = SpeechCapture(recognizer)
        capture.start()
        async for item in capture.updates():
            ...
        result = capture.stop()
    """

    def __init__(self, recognizer: SpeechRecognizerInterface):
        self._recognizer = recognizer
        self._stream = TranscriptStream()
        self._text = ""
        self._listening = False
        self._capture_start: Optional[datetime] = None

    @property
    def text(self) -> str:
        """Best transcript so far."""
        return self._text

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def capture_start(self) -> Optional[datetime]:
        return self._capture_start

    def start(self) -> datetime:
        """
        Start recording and return the capture start time.

        Must be called from within a running event loop.

        Raises:
            CaptureAuthorizationError: If the recognizer may not listen
            CaptureDeviceError: If the audio device cannot be opened
        """
        status = self._recognizer.request_authorization()
        if status != AuthorizationStatus.AUTHORIZED:
            logger.warning("speech_not_authorized", status=status.value)
            raise CaptureAuthorizationError(status)

        self._text = ""
        self._capture_start = datetime.now(timezone.utc)
        self._stream.open(asyncio.get_running_loop())
        self._listening = True
        try:
            self._recognizer.start(self._on_result)
        except Exception:
            self._listening = False
            self._stream.finalize("", self._capture_start)
            raise

        logger.info("speech_capture_started", capture_start=self._capture_start.isoformat())
        return self._capture_start

    def _on_result(self, text: str, is_final: bool) -> None:
        # May run on the recognizer's audio thread
        self._text = text
        if is_final:
            self._listening = False
            self._stream.finalize(text, self._capture_start)
        else:
            self._stream.publish(text)

    def updates(self) -> AsyncIterator[TranscriptItem]:
        """Transcript updates for the current recording, ending with TranscriptFinal."""
        return self._stream.__aiter__()

    def stop(self) -> CaptureResult:
        """
        Stop recording and return the finalized transcript.

        Raises:
            MissingStartTimeError: If start() was never called
        """
        if self._capture_start is None:
            raise MissingStartTimeError()

        final_text = self._recognizer.stop()
        if final_text:
            self._text = final_text
        self._listening = False
        self._stream.finalize(self._text, self._capture_start)

        logger.info("speech_capture_stopped", transcript_length=len(self._text))
        return CaptureResult(
            text=self._text,
            capture_start=self._capture_start,
            mode=CaptureMode.SPEECH,
        )
