"""Services package."""

from finance_capture.services.ocr import (
    ImageDecodeError,
    MindeeOCRService,
    NoTextFoundError,
    OCRError,
    OCRServiceError,
    ScanCapture,
    TextRecognizerInterface,
)
from finance_capture.services.speech import (
    AuthorizationStatus,
    CaptureAuthorizationError,
    CaptureDeviceError,
    CaptureError,
    MissingStartTimeError,
    SpeechCapture,
    SpeechRecognizerInterface,
    VoskSpeechRecognizer,
)
from finance_capture.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    EventStorageInterface,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteEventStorage,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # OCR services
    "ImageDecodeError",
    "MindeeOCRService",
    "NoTextFoundError",
    "OCRError",
    "OCRServiceError",
    "ScanCapture",
    "TextRecognizerInterface",
    # Speech services
    "AuthorizationStatus",
    "CaptureAuthorizationError",
    "CaptureDeviceError",
    "CaptureError",
    "MissingStartTimeError",
    "SpeechCapture",
    "SpeechRecognizerInterface",
    "VoskSpeechRecognizer",
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "EventStorageInterface",
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteEventStorage",
    "StorageConnectionError",
    "StorageError",
]
