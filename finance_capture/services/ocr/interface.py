"""
Text Recognizer Interface and OCR Errors
"""

from abc import ABC, abstractmethod


class OCRError(Exception):
    """Base exception for OCR errors."""
    pass


class ImageDecodeError(OCRError):
    """The scanned page could not be decoded as an image."""
    pass


class NoTextFoundError(OCRError):
    """Recognition ran but produced no text."""

    def __init__(
        self,
        message: str = (
            "No text was found in the image. "
            "Please try a different image with clearer text."
        ),
    ):
        super().__init__(message)


class OCRServiceError(OCRError):
    """The recognition service itself failed."""
    pass


class TextRecognizerInterface(ABC):
    """Recognizes the text on a single page image."""

    @abstractmethod
    async def recognize_text(self, image_bytes: bytes, filename: str) -> str:
        """
        Return all text found on the page ("" if none).

        Raises:
            OCRServiceError: If the recognition service fails
        """
        pass
