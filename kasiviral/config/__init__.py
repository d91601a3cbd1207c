"""Configuration module for the KasiViral service."""

from kasiviral.config.settings import (
    Settings,
    get_settings,
    normalize_database_url,
    reset_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "normalize_database_url",
    "reset_settings",
]
