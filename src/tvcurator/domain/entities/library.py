"""Library record states shared by the scanner, the workers and the API."""

from enum import Enum


# Stored as plain strings in the DB (not SQL enums - SQLite compatibility)
class FileStatus(str, Enum):
    """Lifecycle of an episode file record."""

    ACTIVE = "active"
    DELETED = "deleted"


class ScanStatus(str, Enum):
    """Outcome of a persisted scan-history record."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MonitorStatus(str, Enum):
    """Whether an episode is wanted in the library."""

    WANTED = "wanted"
    UNWANTED = "unwanted"


class TrackType(str, Enum):
    """Stream kind inside a media container."""

    VIDEO = "video"
    AUDIO = "audio"
    SUBTITLE = "subtitle"


class UpsertOutcome(str, Enum):
    """Result of writing one discovered file to the DB."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
