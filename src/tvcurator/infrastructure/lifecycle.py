"""Application lifecycle management for startup and shutdown tasks.

This module handles the FastAPI lifespan context manager that wires the
background task core:
- TaskRegistry (admission, cancellation, retention)
- WorkerDispatcher (TMDB worker threads)
- ScanOrchestrator, TMDBTaskService, MediaAnalysisService
- AppSettingsService (persisted max parallel tasks)
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tvcurator.application.services.app_settings_service import AppSettingsService
from tvcurator.application.services.media_analysis_service import MediaAnalysisService
from tvcurator.application.services.scanner import ScanOrchestrator
from tvcurator.application.services.tmdb_task_service import TMDBTaskService
from tvcurator.application.tasks import TaskRegistry, WorkerDispatcher
from tvcurator.config import Settings, get_settings
from tvcurator.domain.exceptions import ConfigurationError
from tvcurator.infrastructure.observability import configure_logging
from tvcurator.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


# Hey future me, this validates the SQLite directory BEFORE the engine exists. SQLite wants to
# create -journal/-wal files next to the .db, so a read-only directory only blows up on the
# first write otherwise. Returns early for anything that isn't a file-backed SQLite URL.
def _validate_sqlite_path(settings: Settings) -> None:
    """Make sure the SQLite database directory exists and is writable."""
    db_path = settings._get_sqlite_db_path()
    if db_path is None:
        return

    try:
        settings.ensure_directories()
        test_file = db_path.parent / f".{db_path.stem}_write_test"
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write files in database directory '{db_path.parent}': {exc}. "
            "Update DATABASE_URL or adjust directory permissions."
        ) from exc


def _resolve_settings(app: FastAPI) -> Settings:
    """Settings handed to create_app() win over the cached env settings."""
    settings = getattr(app.state, "settings", None)
    if isinstance(settings, Settings):
        return settings
    settings = get_settings()
    app.state.settings = settings
    return settings


# Listen future me, everything before `yield` runs at STARTUP, everything after at SHUTDOWN.
# All singletons live on app.state, api/dependencies.py reads them from there. Shutdown order
# matters: workers first (they hold their own DB engines), then in-process tasks, then the DB.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = _resolve_settings(app)

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info(f"Starting application: {settings.app_name}")

    _validate_sqlite_path(settings)

    db = Database.from_settings(settings)
    app.state.db = db
    await db.create_tables()
    logger.info(f"Database initialized: {settings.database.url}")

    registry = TaskRegistry(
        max_parallel_tasks=settings.tasks.max_parallel_tasks,
        retention_seconds=settings.tasks.retention_seconds,
    )
    app.state.task_registry = registry

    # Hey future me - the Settings page value beats TASK_MAX_PARALLEL_TASKS. A broken settings
    # row must not keep the server from starting, so failures here only log.
    app_settings_service = AppSettingsService(db, registry)
    app.state.app_settings_service = app_settings_service
    try:
        limit = await app_settings_service.load_into_registry()
        logger.info(f"Max parallel tasks: {limit}")
    except Exception as e:
        logger.warning(f"Failed to load task settings from DB: {e} (using env default)")

    dispatcher = WorkerDispatcher(registry, settings.database.url, settings.tmdb)
    app.state.worker_dispatcher = dispatcher

    app.state.scan_orchestrator = ScanOrchestrator(registry, db, settings)
    app.state.tmdb_task_service = TMDBTaskService(registry, dispatcher, db, settings.tmdb)
    app.state.media_analysis_service = MediaAnalysisService(registry, db, settings.ffprobe)

    if not settings.library.is_configured:
        logger.warning("Neither TV_SHOWS_PATH nor MOVIES_PATH is set, scans will fail")

    try:
        yield
    finally:
        logger.info("Shutting down application")

        try:
            await dispatcher.shutdown()
        except Exception as e:
            logger.exception(f"Error stopping worker threads: {e}")

        try:
            await registry.shutdown()
        except Exception as e:
            logger.exception(f"Error stopping task registry: {e}")

        try:
            await db.close()
            logger.info("Database connection closed")
        except Exception as e:
            logger.exception(f"Error closing database: {e}")
