"""Domain entities."""

from tvcurator.domain.entities.library import (
    FileStatus,
    MonitorStatus,
    ScanStatus,
    TrackType,
    UpsertOutcome,
)
from tvcurator.domain.entities.task import (
    FileDetails,
    ScanDetails,
    ScanPhase,
    TaskDetails,
    TaskError,
    TaskProgress,
    TaskStatus,
    TaskType,
    serialize_progress,
)

__all__ = [
    "FileDetails",
    "FileStatus",
    "MonitorStatus",
    "ScanDetails",
    "ScanPhase",
    "ScanStatus",
    "TaskDetails",
    "TaskError",
    "TaskProgress",
    "TaskStatus",
    "TaskType",
    "TrackType",
    "UpsertOutcome",
    "serialize_progress",
]
