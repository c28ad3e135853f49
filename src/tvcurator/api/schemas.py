"""Request/response models for the HTTP API.

The UI speaks camelCase, Python speaks snake_case. Every model uses the
``to_camel`` alias generator: JSON in and out is camelCase, attribute access
stays snake_case, and FastAPI serializes responses by alias.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tvcurator.application.services.scanner import StartScanResult
from tvcurator.application.tasks import MAX_PARALLEL_TASKS, MIN_PARALLEL_TASKS, StartedTask


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Tasks
# =============================================================================


class TaskListResponse(CamelModel):
    """All tasks still in the registry."""

    tasks: list[dict[str, Any]]
    count: int


class TaskCountsResponse(CamelModel):
    """Sidebar badge numbers."""

    running: int
    pending: int
    total: int


class CancelTaskResponse(CamelModel):
    """Result of a cancellation request."""

    success: bool
    message: str
    task_id: str


class StartedTaskResponse(CamelModel):
    """A background job was started (or there was nothing to do)."""

    task_id: str | None = None
    status: str | None = None
    total: int = 0
    message: str = ""

    @classmethod
    def from_result(cls, result: StartedTask) -> "StartedTaskResponse":
        """Convert the service result."""
        return cls(
            task_id=result.task_id,
            status=result.status,
            total=result.total,
            message=result.message,
        )


# =============================================================================
# Scan
# =============================================================================


class ScanRequest(CamelModel):
    """Start a full library scan or a single-show scan."""

    scan_type: Literal["full", "show"] = "full"
    show_id: int | None = None
    folder_name: str | None = None


class ScanResponse(CamelModel):
    """Ids of the created scan."""

    scan_id: int
    task_id: str
    status: str

    @classmethod
    def from_result(cls, result: StartScanResult) -> "ScanResponse":
        """Convert the orchestrator result."""
        return cls(scan_id=result.scan_id, task_id=result.task_id, status=result.status)


class ScanHistoryEntry(CamelModel):
    """One persisted scan."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    scan_type: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    files_scanned: int = 0
    files_added: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    errors: list[dict[str, Any]] | None = None


class ScanHistoryResponse(CamelModel):
    """Latest scans first."""

    scans: list[ScanHistoryEntry]


# =============================================================================
# TMDB import
# =============================================================================


class ImportEpisode(CamelModel):
    """Episode metadata to create/update."""

    episode_number: int = Field(ge=0)
    title: str | None = None
    tmdb_episode_id: int | None = None
    still_path: str | None = None
    description: str | None = None
    air_date: str | None = None
    runtime: int | None = None
    vote_average: float | None = None
    monitor_status: Literal["wanted", "unwanted"] | None = None


class ImportSeason(CamelModel):
    """Season metadata plus its episodes."""

    season_number: int = Field(ge=0)
    name: str | None = None
    tmdb_season_id: int | None = None
    poster_path: str | None = None
    description: str | None = None
    air_date: str | None = None
    episodes: list[ImportEpisode] = Field(default_factory=list)


class ImportRequest(CamelModel):
    """Seasons/episodes to import for one show."""

    seasons: list[ImportSeason]


# =============================================================================
# Media analysis
# =============================================================================


class BulkAnalyzeRequest(CamelModel):
    """Scope of a bulk ffprobe run."""

    scope: Literal["library", "show", "season"]
    show_id: int | None = None
    season_id: int | None = None
    reanalyze: bool = False


# =============================================================================
# Settings
# =============================================================================


class TaskSettingsResponse(CamelModel):
    """Task queue settings and live counts."""

    max_parallel_tasks: int
    min_parallel_tasks: int = MIN_PARALLEL_TASKS
    max_allowed_parallel_tasks: int = MAX_PARALLEL_TASKS
    running: int
    pending: int


class TaskSettingsUpdate(CamelModel):
    """New task queue limit."""

    max_parallel_tasks: int = Field(ge=MIN_PARALLEL_TASKS, le=MAX_PARALLEL_TASKS)
