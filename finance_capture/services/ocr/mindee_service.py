"""
OCR Service using Mindee

DESIGN DECISION: We use Mindee because:
1. Specialized for financial documents (receipts, invoices)
2. Returns the full page text alongside its structured prediction
3. Handles photographed, skewed receipts reasonably well

This service only returns the raw recognized text. Turning that text into a
finance event is the extraction agent's job, exactly as for a spoken
transcript.
"""

import asyncio
from typing import Optional

import structlog
from mindee import Client, product
from tenacity import retry, stop_after_attempt, wait_exponential

from finance_capture.config import MindeeSettings, get_settings
from finance_capture.services.ocr.interface import (
    OCRServiceError,
    TextRecognizerInterface,
)

logger = structlog.get_logger(__name__)


class MindeeOCRService(TextRecognizerInterface):
    """
    Full-page text recognition through Mindee's receipt product.

    IMPORTANT BOUNDARIES:
    1. This service ONLY recognizes text - it does NOT interpret it
    2. An empty result is returned as "", the caller decides what that means
    """

    def __init__(self, settings: Optional[MindeeSettings] = None):
        self._settings = settings or get_settings().mindee
        self._client: Optional[Client] = None

    def _get_client(self) -> Client:
        """Get or create Mindee client."""
        if self._client is None:
            self._client = Client(api_key=self._settings.api_key)
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _parse(self, image_bytes: bytes, filename: str) -> str:
        client = self._get_client()
        input_source = client.source_from_bytes(image_bytes, filename)
        response = client.parse(
            product.ReceiptV5,
            input_source,
            include_words=True,
        )
        ocr = response.document.ocr
        return str(ocr).strip() if ocr is not None else ""

    async def recognize_text(self, image_bytes: bytes, filename: str) -> str:
        """
        Recognize all text on one page.

        The Mindee client is synchronous, so the call runs in a worker thread.
        """
        try:
            text = await asyncio.to_thread(self._parse, image_bytes, filename)
        except Exception as e:
            logger.error("mindee_ocr_failed", error=str(e))
            raise OCRServiceError(f"Text recognition failed: {e}") from e

        logger.info("mindee_ocr_completed", text_length=len(text))
        return text
