"""Configuration package."""

from finance_capture.config.settings import (
    AppSettings,
    GeminiSettings,
    MindeeSettings,
    Settings,
    SpeechSettings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "MindeeSettings",
    "Settings",
    "SpeechSettings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
