"""Configuration module for tvcurator."""

from .settings import (
    DatabaseSettings,
    FFprobeSettings,
    LibrarySettings,
    Settings,
    TaskSettings,
    TMDBSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "FFprobeSettings",
    "LibrarySettings",
    "Settings",
    "TMDBSettings",
    "TaskSettings",
    "get_settings",
]
