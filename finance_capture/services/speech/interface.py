"""
Speech Recognizer Interface and Capture Errors

A recognizer turns microphone audio into a running transcript. It reports
results through a callback, possibly from an audio thread:

    on_result(text, is_final)

`text` is always the full best transcript so far, not a delta. `is_final`
is True exactly once, when the recognizer has ended by itself (end of
utterance or device error). stop() returns the finalized transcript.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

ResultCallback = Callable[[str, bool], None]


class AuthorizationStatus(str, Enum):
    """Outcome of asking for microphone / recognizer access."""
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"
    NOT_DETERMINED = "not_determined"


class CaptureError(Exception):
    """Base exception for capture errors."""
    pass


class CaptureAuthorizationError(CaptureError):
    """Recognizer or microphone access was not granted."""

    def __init__(self, status: AuthorizationStatus):
        self.status = status
        super().__init__(f"Speech recognition not authorized ({status.value})")


class CaptureDeviceError(CaptureError):
    """The audio device or recognizer failed."""
    pass


class MissingStartTimeError(CaptureError):
    """stop() was called on a capture that was never started."""

    def __init__(self, message: str = "Missing recording start time."):
        super().__init__(message)


class SpeechRecognizerInterface(ABC):
    """
    Abstract interface for a streaming speech recognizer.

    Implementations must be restartable: start() may be called again
    after stop().
    """

    @abstractmethod
    def request_authorization(self) -> AuthorizationStatus:
        """Check that the recognizer can listen right now."""
        pass

    @abstractmethod
    def start(self, on_result: ResultCallback) -> None:
        """
        Begin listening.

        Raises:
            CaptureDeviceError: If the audio device cannot be opened
        """
        pass

    @abstractmethod
    def stop(self) -> str:
        """Stop listening and return the finalized transcript."""
        pass
