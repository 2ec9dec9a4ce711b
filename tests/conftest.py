"""
Shared test fixtures.

No real service calls: the recognizers and the extraction service are
replaced by in-memory fakes, and storage runs against a temporary SQLite file.
"""

from io import BytesIO
from typing import Optional

import pytest
import pytest_asyncio
from PIL import Image, ImageDraw

from finance_capture.agents import ExtractionError, ExtractionServiceInterface
from finance_capture.config import AppSettings, StorageSettings
from finance_capture.models.event import ExtractionRequest, FinanceEventDTO
from finance_capture.services.ocr import TextRecognizerInterface
from finance_capture.services.speech import (
    AuthorizationStatus,
    SpeechRecognizerInterface,
)
from finance_capture.services.storage import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteEventStorage,
)
from finance_capture.validation import EventValidator


class FakeSpeechRecognizer(SpeechRecognizerInterface):
    """Recognizer driven by the test through emit()."""

    def __init__(
        self,
        status: AuthorizationStatus = AuthorizationStatus.AUTHORIZED,
        final_text: str = "",
    ):
        self.status = status
        self.final_text = final_text
        self.on_result = None
        self.started = 0
        self.stopped = 0

    def request_authorization(self) -> AuthorizationStatus:
        return self.status

    def start(self, on_result) -> None:
        self.started += 1
        self.on_result = on_result

    def emit(self, text: str, is_final: bool = False) -> None:
        self.on_result(text, is_final)

    def stop(self) -> str:
        self.stopped += 1
        return self.final_text


class FakeTextRecognizer(TextRecognizerInterface):

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: list[tuple[bytes, str]] = []

    async def recognize_text(self, image_bytes: bytes, filename: str) -> str:
        self.calls.append((image_bytes, filename))
        if self.error is not None:
            raise self.error
        return self.text


class FakeExtractionService(ExtractionServiceInterface):
    """Returns a canned record (or raises) and keeps the requests it saw."""

    def __init__(self, response: Optional[dict] = None, error: Optional[Exception] = None):
        self.response = response or {}
        self.error = error
        self.requests: list[ExtractionRequest] = []

    async def extract(self, request: ExtractionRequest) -> FinanceEventDTO:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        try:
            return FinanceEventDTO.model_validate(self.response)
        except ValueError as e:
            raise ExtractionError(f"Extraction failed: {e}") from e


def make_png(width: int = 64, height: int = 32, text: str = "TOTAL 4.50") -> bytes:
    image = Image.new("RGB", (width, height), "white")
    ImageDraw.Draw(image).text((2, 2), text, fill="black")
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(max_upload_size_mb=1, max_event_amount=10000.0)


@pytest.fixture
def validator(app_settings) -> EventValidator:
    return EventValidator(app_settings)


@pytest.fixture
def png_page() -> bytes:
    return make_png()


@pytest_asyncio.fixture
async def sqlite_client(tmp_path):
    client = SQLiteClient(StorageSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'events.db'}",
    ))
    await client.init_schema()
    yield client
    await client.dispose()


@pytest.fixture
def event_storage(sqlite_client) -> SQLiteEventStorage:
    return SQLiteEventStorage(sqlite_client)


@pytest.fixture
def audit_storage(sqlite_client) -> SQLiteAuditStorage:
    return SQLiteAuditStorage(sqlite_client)
