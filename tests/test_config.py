"""Tests for settings loading."""

import pytest

from finance_capture.config import (
    AppSettings,
    GeminiSettings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_gemini_defaults(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "abc")
    settings = GeminiSettings()

    assert settings.api_key == "abc"
    assert settings.model_name == "gemini-1.5-flash"
    assert settings.max_tokens == 256
    assert settings.temperature == 0.1
    assert settings.top_k == 1


def test_storage_env_override(monkeypatch, tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'x.db'}"
    monkeypatch.setenv("STORAGE_DATABASE_URL", url)
    assert StorageSettings().database_url == url


def test_upload_size_in_bytes():
    assert AppSettings(max_upload_size_mb=2).max_upload_size_bytes == 2 * 1024 * 1024


def test_validate_all_settings_reports_missing_keys(monkeypatch):
    monkeypatch.delenv("MINDEE_API_KEY", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "abc")

    results = validate_all_settings()

    assert results["gemini"] is True
    assert results["storage"] is True
    assert results["app"] is True
    assert results["mindee"] is False
    assert "mindee_error" in results


def test_settings_cached():
    assert get_settings() is get_settings()
