"""
Scan Capture

Takes the pages produced by a document scan, keeps only the first one,
decodes it locally with Pillow and hands a normalized PNG to the text
recognizer.

CRITICAL: A page that cannot be decoded (ImageDecodeError) and a page that
decodes but contains no text (NoTextFoundError) are different failures and
are reported separately.
"""

from datetime import datetime, timezone
from io import BytesIO
from typing import Optional, Sequence

import structlog
from PIL import Image, UnidentifiedImageError

from finance_capture.config import AppSettings, get_settings
from finance_capture.models.event import CaptureMode, CaptureResult
from finance_capture.services.ocr.interface import (
    ImageDecodeError,
    NoTextFoundError,
    TextRecognizerInterface,
)

logger = structlog.get_logger(__name__)


def decode_page(image_bytes: bytes, max_size_bytes: Optional[int] = None) -> Image.Image:
    """
    Decode one page image.

    Multi-frame files (e.g. TIFF scans) yield their first frame.

    Raises:
        ImageDecodeError: If the bytes are empty, too large or not an image
    """
    if not image_bytes:
        raise ImageDecodeError("Failed to convert image: no data")
    if max_size_bytes is not None and len(image_bytes) > max_size_bytes:
        raise ImageDecodeError(
            f"Failed to convert image: {len(image_bytes)} bytes exceeds "
            f"the {max_size_bytes} byte limit"
        )

    try:
        image = Image.open(BytesIO(image_bytes))
        image.seek(0)
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Failed to convert image: {e}") from e

    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    return image


def encode_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class ScanCapture:
    """
    Scan-mode capture: first page in, recognized text out.
    """

    def __init__(
        self,
        recognizer: TextRecognizerInterface,
        settings: Optional[AppSettings] = None,
    ):
        self._recognizer = recognizer
        self._settings = settings or get_settings().app

    async def scan(self, pages: Sequence[bytes]) -> CaptureResult:
        """
        Recognize the text on the first scanned page.

        Raises:
            ImageDecodeError: If there is no page or it cannot be decoded
            NoTextFoundError: If the page contains no recognizable text
            OCRServiceError: If the recognition service fails
        """
        capture_start = datetime.now(timezone.utc)

        if not pages:
            raise ImageDecodeError("Failed to convert image: no pages scanned")

        image = decode_page(pages[0], self._settings.max_upload_size_bytes)
        logger.info(
            "scan_page_decoded",
            page_count=len(pages),
            width=image.width,
            height=image.height,
        )

        text = await self._recognizer.recognize_text(encode_png(image), "page-1.png")
        text = text.strip()
        if not text:
            raise NoTextFoundError()

        return CaptureResult(
            text=text,
            capture_start=capture_start,
            mode=CaptureMode.SCAN,
        )
