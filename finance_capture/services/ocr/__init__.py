"""OCR services package."""

from finance_capture.services.ocr.interface import (
    ImageDecodeError,
    NoTextFoundError,
    OCRError,
    OCRServiceError,
    TextRecognizerInterface,
)
from finance_capture.services.ocr.mindee_service import MindeeOCRService
from finance_capture.services.ocr.scanner import ScanCapture, decode_page

__all__ = [
    "ImageDecodeError",
    "MindeeOCRService",
    "NoTextFoundError",
    "OCRError",
    "OCRServiceError",
    "ScanCapture",
    "TextRecognizerInterface",
    "decode_page",
]
