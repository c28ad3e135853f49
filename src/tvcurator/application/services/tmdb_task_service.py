"""Starting TMDB metadata tasks (bulk match/refresh, single refresh, import)."""

# Hey future me - this is the SERVER side of the TMDB tasks. It only collects the work list
# (which shows, which seasons), creates the task and hands everything to the WorkerDispatcher.
# The actual TMDB calls happen on the worker thread (worker_runtime.py). Keep the task_data
# plain JSON (ids, titles, numbers) - it's copied across the thread boundary.

import logging
from typing import Any

from tvcurator.application.tasks.dispatcher import WorkerDispatcher
from tvcurator.application.tasks.registry import StartedTask, TaskRegistry
from tvcurator.config import TMDBSettings
from tvcurator.domain.entities import TaskType
from tvcurator.domain.exceptions import ConfigurationError, InvalidStateException
from tvcurator.infrastructure.persistence import Database, ShowRepository

logger = logging.getLogger(__name__)


class TMDBTaskService:
    """Creates TMDB tasks and runs them on worker threads."""

    def __init__(
        self,
        registry: TaskRegistry,
        dispatcher: WorkerDispatcher,
        database: Database,
        settings: TMDBSettings,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.database = database
        self.settings = settings

    def ensure_configured(self) -> None:
        """Raise ConfigurationError if no TMDB API key is set."""
        if not self.settings.is_configured:
            raise ConfigurationError("TMDB is not configured. Set TMDB_API_KEY.")

    def _start(
        self,
        task_type: TaskType,
        data: dict[str, Any],
        total: int,
        title: str | None,
        label: str,
    ) -> StartedTask:
        tracker = self.registry.create_task(task_type, total=total, title=title)
        self.dispatcher.run_in_worker(tracker.task_id, task_type, data, tracker)
        status = tracker.status.value
        verb = "queued" if status == "pending" else "started"
        return StartedTask(tracker.task_id, status, total, f"{label} {verb}")

    async def start_bulk_match(self) -> StartedTask:
        """Auto-match every show without a TMDB id."""
        self.ensure_configured()
        async with self.database.session_scope() as session:
            shows = [
                {"id": s.id, "title": s.title, "year": s.year}
                for s in await ShowRepository(session).list_unmatched()
            ]
        if not shows:
            return StartedTask(None, None, 0, "No unmatched shows found")
        return self._start(TaskType.TMDB_BULK_MATCH, {"shows": shows}, len(shows), None, "Bulk match")

    async def start_bulk_refresh(self) -> StartedTask:
        """Refresh metadata of every matched show."""
        self.ensure_configured()
        async with self.database.session_scope() as session:
            shows = [
                {"id": s.id, "title": s.title}
                for s in await ShowRepository(session).list_matched()
            ]
        if not shows:
            return StartedTask(None, None, 0, "No matched shows found")
        return self._start(
            TaskType.TMDB_BULK_REFRESH, {"shows": shows}, len(shows), None, "Bulk refresh"
        )

    async def start_refresh_missing(self) -> StartedTask:
        """Pull seasons/episodes for matched shows that have none yet."""
        self.ensure_configured()
        async with self.database.session_scope() as session:
            shows = [
                {"id": s.id, "title": s.title, "tmdb_id": s.tmdb_id}
                for s in await ShowRepository(session).list_missing_seasons()
            ]
        if not shows:
            return StartedTask(None, None, 0, "All shows are already synced")
        return self._start(
            TaskType.TMDB_REFRESH_MISSING, {"shows": shows}, len(shows), None, "Refresh missing"
        )

    async def start_show_refresh(self, show_id: int) -> StartedTask:
        """Refresh one matched show.

        Raises:
            EntityNotFoundException: unknown show
            InvalidStateException: show has no TMDB id
        """
        self.ensure_configured()
        async with self.database.session_scope() as session:
            show = await ShowRepository(session).get_or_raise(show_id)
            if not show.tmdb_id:
                raise InvalidStateException("Show is not matched to TMDB")
            title = show.title

        return self._start(
            TaskType.TMDB_SINGLE_REFRESH,
            {"show_id": show_id, "show_title": title},
            1,
            f"Refresh: {title}",
            "Refresh",
        )

    async def start_import(self, show_id: int, seasons: list[dict[str, Any]]) -> StartedTask:
        """Import a season/episode payload for one show.

        Args:
            show_id: Target show
            seasons: [{season_number, name?, ..., episodes: [{episode_number, title?, ...}]}]
        """
        async with self.database.session_scope() as session:
            show = await ShowRepository(session).get_or_raise(show_id)
            title = show.title

        total = sum(len(s.get("episodes") or []) for s in seasons)
        if total == 0:
            return StartedTask(None, None, 0, "No episodes to import")

        return self._start(
            TaskType.TMDB_IMPORT,
            {"show_id": show_id, "show_title": title, "seasons": seasons},
            total,
            f"Import: {title}",
            "Import",
        )
