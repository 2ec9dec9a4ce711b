"""
Configuration Management for Finance Capture

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini extraction model configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    # Decoding policy: near-greedy with a small response budget
    max_tokens: int = Field(
        default=256,
        ge=64,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )
    top_k: int = Field(
        default=1,
        ge=1,
        description="Candidates considered per step (1 = greedy)"
    )


class MindeeSettings(BaseSettings):
    """Mindee OCR service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MINDEE_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Mindee API key"
    )


class SpeechSettings(BaseSettings):
    """On-device speech recognizer configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SPEECH_",
        extra="ignore"
    )

    model_path: str = Field(
        ...,
        description="Path to an unpacked Vosk model directory"
    )
    sample_rate: int = Field(
        default=16000,
        ge=8000,
        le=48000,
        description="Microphone sample rate in Hz"
    )
    block_size: int = Field(
        default=8000,
        ge=256,
        description="Audio frames per recognizer block"
    )
    device: Optional[str] = Field(
        default=None,
        description="Input device name or index (system default if unset)"
    )

    @field_validator('model_path')
    @classmethod
    def validate_model_path(cls, v: str) -> str:
        """Warn if the model directory doesn't exist (it may be downloaded later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Speech model not found at {v}. "
                "Download a Vosk model before recording."
            )
        return v


class StorageSettings(BaseSettings):
    """Local event store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        extra="ignore"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///finance_events.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Scan limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum scanned page size in MB"
    )

    # Validation thresholds
    max_event_amount: float = Field(
        default=1000000000.0,
        gt=0,
        description="Amount above which an event is flagged for review"
    )

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def mindee(self) -> MindeeSettings:
        return MindeeSettings()

    @property
    def speech(self) -> SpeechSettings:
        return SpeechSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the sections that failed.
    """
    results = {}
    settings = get_settings()

    for name in ("gemini", "mindee", "speech", "storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
