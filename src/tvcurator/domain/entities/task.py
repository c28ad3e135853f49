"""Background task domain model.

A task is one trackable unit of background work (library scan, TMDB bulk sync,
ffprobe analysis). Its progress record lives in memory only, tasks don't
survive a restart.

Type-specific fields hang off ``TaskProgress.details`` as a tagged union
(ScanDetails | FileDetails | None). Don't subclass TaskProgress for new task
kinds, add another details dataclass with its own ``kind`` tag instead.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal


class TaskStatus(str, Enum):
    """Lifecycle state of a task.

    pending -> running -> {completed | failed | cancelled}. Nothing goes back
    to pending.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}


# Hey future me - the string values are what the UI sees, keep them kebab-case and stable!
class TaskType(str, Enum):
    """Kind of background work."""

    SCAN = "scan"
    SHOW_SCAN = "show-scan"
    TMDB_BULK_MATCH = "tmdb-bulk-match"
    TMDB_BULK_REFRESH = "tmdb-bulk-refresh"
    TMDB_REFRESH_MISSING = "tmdb-refresh-missing"
    TMDB_SINGLE_REFRESH = "tmdb-single-refresh"
    TMDB_IMPORT = "tmdb-import"
    FFPROBE_ANALYZE = "ffprobe-analyze"
    FFPROBE_BULK_ANALYZE = "ffprobe-bulk-analyze"

    @property
    def is_scan(self) -> bool:
        """Check if this task walks the filesystem."""
        return self in {TaskType.SCAN, TaskType.SHOW_SCAN}

    @property
    def runs_in_worker(self) -> bool:
        """Check if this task runs on an isolated worker thread."""
        return self in {
            TaskType.TMDB_BULK_MATCH,
            TaskType.TMDB_BULK_REFRESH,
            TaskType.TMDB_REFRESH_MISSING,
            TaskType.TMDB_SINGLE_REFRESH,
            TaskType.TMDB_IMPORT,
        }


class ScanPhase(str, Enum):
    """Phases of a library scan, strictly in this order."""

    DISCOVERING = "discovering"
    PARSING = "parsing"
    SAVING = "saving"
    CLEANUP = "cleanup"
    COMPLETE = "complete"


@dataclass(frozen=True)
class TaskError:
    """One failed item. ``item`` is empty for task-level failures."""

    item: str
    error: str


@dataclass
class ScanDetails:
    """Extension fields for scan and show-scan tasks."""

    kind: Literal["scan"] = "scan"
    phase: ScanPhase = ScanPhase.DISCOVERING
    scan_id: int | None = None
    target_show_id: int | None = None
    files_added: int = 0
    files_updated: int = 0
    files_deleted: int = 0


@dataclass
class FileDetails:
    """Extension fields for single-file tasks."""

    kind: Literal["file"] = "file"
    file_id: int | None = None


TaskDetails = ScanDetails | FileDetails


@dataclass
class TaskProgress:
    """Mutable progress record of one task.

    Invariants (kept by TaskProgressTracker, not by this dataclass):
    - processed == succeeded + failed
    - processed never decreases, total is set at most once
    - completed_at is set exactly once, on the terminal transition
    """

    task_id: str
    type: TaskType
    status: TaskStatus
    started_at: datetime
    title: str | None = None
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    current_item: str | None = None
    errors: list[TaskError] = field(default_factory=list)
    completed_at: datetime | None = None
    details: TaskDetails | None = None

    def copy(self) -> "TaskProgress":
        """Deep copy so subscribers can't mutate tracker state."""
        return copy.deepcopy(self)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# Yo, this is THE transport format for HTTP and SSE. camelCase keys because the dashboard
# is JavaScript and already speaks this shape. Details get flattened into the top level
# (minus the "kind" tag) so the UI reads task.phase / task.filesAdded directly.
def serialize_progress(progress: TaskProgress) -> dict[str, Any]:
    """Convert a progress record into a JSON-safe dict.

    Args:
        progress: Progress snapshot

    Returns:
        Dict with ISO-8601 dates, enum values as strings and details merged in
    """
    data: dict[str, Any] = {
        "taskId": progress.task_id,
        "type": progress.type.value,
        "title": progress.title,
        "status": progress.status.value,
        "total": progress.total,
        "processed": progress.processed,
        "succeeded": progress.succeeded,
        "failed": progress.failed,
        "currentItem": progress.current_item,
        "errors": [{"item": e.item, "error": e.error} for e in progress.errors],
        "startedAt": _iso(progress.started_at),
        "completedAt": _iso(progress.completed_at),
    }

    details = progress.details
    if isinstance(details, ScanDetails):
        data.update(
            {
                "phase": details.phase.value,
                "scanId": details.scan_id,
                "targetShowId": details.target_show_id,
                "filesAdded": details.files_added,
                "filesUpdated": details.files_updated,
                "filesDeleted": details.files_deleted,
            }
        )
    elif isinstance(details, FileDetails):
        data["fileId"] = details.file_id

    return data
