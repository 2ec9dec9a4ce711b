"""Speech capture services package."""

from finance_capture.services.speech.capture import SpeechCapture
from finance_capture.services.speech.interface import (
    AuthorizationStatus,
    CaptureAuthorizationError,
    CaptureDeviceError,
    CaptureError,
    MissingStartTimeError,
    SpeechRecognizerInterface,
)
from finance_capture.services.speech.stream import TranscriptStream
from finance_capture.services.speech.vosk_service import VoskSpeechRecognizer

__all__ = [
    "AuthorizationStatus",
    "CaptureAuthorizationError",
    "CaptureDeviceError",
    "CaptureError",
    "MissingStartTimeError",
    "SpeechCapture",
    "SpeechRecognizerInterface",
    "TranscriptStream",
    "VoskSpeechRecognizer",
]
