"""Infrastructure persistence layer."""

from .database import Database, normalize_database_url
from .models import (
    AppSettingsModel,
    Base,
    EpisodeFileModel,
    EpisodeModel,
    MediaTrackModel,
    ScanHistoryModel,
    SeasonModel,
    TVShowModel,
)
from .repositories import (
    AppSettingsRepository,
    EpisodeFileRepository,
    LibraryRepository,
    ScanHistoryRepository,
    ShowRepository,
)

__all__ = [
    "AppSettingsModel",
    "AppSettingsRepository",
    "Base",
    "Database",
    "EpisodeFileModel",
    "EpisodeFileRepository",
    "EpisodeModel",
    "LibraryRepository",
    "MediaTrackModel",
    "ScanHistoryModel",
    "ScanHistoryRepository",
    "SeasonModel",
    "ShowRepository",
    "TVShowModel",
    "normalize_database_url",
]
