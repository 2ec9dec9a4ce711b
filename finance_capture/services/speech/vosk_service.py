"""
On-device Speech Recognition using Vosk

DESIGN DECISION: We use Vosk because:
1. Recognition runs entirely on the local machine (no audio leaves it)
2. It reports partial results while the user is still speaking
3. Small models are good enough for short spoken expenses

Audio comes from the default (or configured) microphone through
sounddevice. The sounddevice callback runs on PortAudio's thread; results
are forwarded to the capture through the on_result callback.
"""

import json
import threading
from pathlib import Path
from typing import Optional

import structlog

from finance_capture.config import SpeechSettings, get_settings
from finance_capture.services.speech.interface import (
    AuthorizationStatus,
    CaptureDeviceError,
    ResultCallback,
    SpeechRecognizerInterface,
)

logger = structlog.get_logger(__name__)


class VoskSpeechRecognizer(SpeechRecognizerInterface):
    """
    Streaming recognizer backed by a Vosk model and a sounddevice input stream.

    The model is loaded once and reused across recordings.
    """

    def __init__(self, settings: Optional[SpeechSettings] = None):
        self._settings = settings or get_settings().speech
        self._model = None
        self._recognizer = None
        self._stream = None
        self._on_result: Optional[ResultCallback] = None
        self._segments: list[str] = []
        self._partial = ""
        self._lock = threading.Lock()

    def _get_model(self):
        """Load the Vosk model on first use."""
        if self._model is None:
            import vosk

            vosk.SetLogLevel(-1)
            try:
                self._model = vosk.Model(self._settings.model_path)
            except Exception as e:
                raise CaptureDeviceError(f"Failed to load speech model: {e}")
        return self._model

    def request_authorization(self) -> AuthorizationStatus:
        """
        Authorized when the model exists and an input device is available.

        There is no OS permission prompt here; a missing microphone is
        reported as RESTRICTED, a missing model as NOT_DETERMINED.
        """
        if not Path(self._settings.model_path).exists():
            logger.warning("speech_model_missing", model_path=self._settings.model_path)
            return AuthorizationStatus.NOT_DETERMINED

        # sounddevice needs PortAudio at import time
        import sounddevice as sd

        try:
            sd.query_devices(self._settings.device, kind="input")
        except Exception as e:
            logger.warning("speech_input_unavailable", error=str(e))
            return AuthorizationStatus.RESTRICTED
        return AuthorizationStatus.AUTHORIZED

    def _transcript(self) -> str:
        parts = [*self._segments, self._partial]
        return " ".join(p for p in parts if p)

    def _audio_callback(self, indata, frames, time, status) -> None:
        if status:
            logger.debug("speech_audio_status", status=str(status))
        with self._lock:
            recognizer = self._recognizer
            if recognizer is None:
                return
            if recognizer.AcceptWaveform(bytes(indata)):
                text = json.loads(recognizer.Result()).get("text", "")
                if text:
                    self._segments.append(text)
                self._partial = ""
            else:
                self._partial = json.loads(recognizer.PartialResult()).get("partial", "")
            transcript = self._transcript()
        if self._on_result is not None:
            self._on_result(transcript, False)

    def start(self, on_result: ResultCallback) -> None:
        import sounddevice as sd
        import vosk

        model = self._get_model()
        with self._lock:
            self._recognizer = vosk.KaldiRecognizer(model, self._settings.sample_rate)
            self._segments = []
            self._partial = ""
        self._on_result = on_result

        try:
            self._stream = sd.RawInputStream(
                samplerate=self._settings.sample_rate,
                blocksize=self._settings.block_size,
                device=self._settings.device,
                dtype="int16",
                channels=1,
                callback=self._audio_callback,
                finished_callback=self._on_stream_finished,
            )
            self._stream.start()
        except Exception as e:
            with self._lock:
                self._recognizer = None
            self._stream = None
            raise CaptureDeviceError(f"Failed to open microphone: {e}")

    def _on_stream_finished(self) -> None:
        # Fires after stop() too; only report streams that ended on their own
        with self._lock:
            if self._recognizer is None:
                return
            self._finish_recognizer()
            transcript = self._transcript()
        logger.warning("speech_stream_ended")
        if self._on_result is not None:
            self._on_result(transcript, True)

    def _finish_recognizer(self) -> None:
        """Flush the recognizer; caller holds the lock."""
        text = json.loads(self._recognizer.FinalResult()).get("text", "")
        if text:
            self._segments.append(text)
        self._partial = ""
        self._recognizer = None

    def stop(self) -> str:
        stream, self._stream = self._stream, None
        with self._lock:
            # Clear the recognizer first so the finished callback stays quiet
            if self._recognizer is not None:
                self._finish_recognizer()
            transcript = self._transcript()
        if stream is not None:
            stream.stop()
            stream.close()
        self._on_result = None
        return transcript
