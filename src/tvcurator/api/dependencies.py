"""Dependency injection for API endpoints."""

import logging
from typing import Any, TypeVar, cast

from fastapi import HTTPException, Request

from tvcurator.application.services.app_settings_service import AppSettingsService
from tvcurator.application.services.media_analysis_service import MediaAnalysisService
from tvcurator.application.services.scanner import ScanOrchestrator
from tvcurator.application.services.tmdb_task_service import TMDBTaskService
from tvcurator.application.tasks import TaskRegistry, WorkerDispatcher
from tvcurator.config import Settings
from tvcurator.infrastructure.persistence import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Hey future me - every long-lived object (registry, dispatcher, services) is built ONCE in the
# lifespan (infrastructure/lifecycle.py) and parked on app.state. If one is missing the app
# didn't finish starting, so we answer 503 instead of crashing with AttributeError. Tests swap
# these via app.dependency_overrides or by setting app.state directly.
def _from_state(request: Request, name: str, expected: type[T]) -> T:
    value: Any = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return cast(T, value)


def get_app_settings(request: Request) -> Settings:
    """Settings the app was started with."""
    return _from_state(request, "settings", Settings)


def get_database(request: Request) -> Database:
    """Server database."""
    return _from_state(request, "db", Database)


def get_task_registry(request: Request) -> TaskRegistry:
    """The process-wide task registry."""
    return _from_state(request, "task_registry", TaskRegistry)


def get_worker_dispatcher(request: Request) -> WorkerDispatcher:
    """Worker thread dispatcher for TMDB tasks."""
    return _from_state(request, "worker_dispatcher", WorkerDispatcher)


def get_scan_orchestrator(request: Request) -> ScanOrchestrator:
    """Library scan orchestrator."""
    return _from_state(request, "scan_orchestrator", ScanOrchestrator)


def get_tmdb_task_service(request: Request) -> TMDBTaskService:
    """Starts TMDB worker tasks."""
    return _from_state(request, "tmdb_task_service", TMDBTaskService)


def get_media_analysis_service(request: Request) -> MediaAnalysisService:
    """Starts ffprobe analysis tasks."""
    return _from_state(request, "media_analysis_service", MediaAnalysisService)


def get_app_settings_service(request: Request) -> AppSettingsService:
    """Runtime settings (task queue limit)."""
    return _from_state(request, "app_settings_service", AppSettingsService)
