"""API router initialization."""

# Hey future me, this aggregates every sub-router; main.py mounts api_router under /api. Each
# router module carries its own prefix (/tasks, /scan, /tmdb, /settings), media.py has two
# different roots (/files and /ffprobe) so it has none.

from fastapi import APIRouter

from tvcurator.api.routers import media, scan, settings, tasks, tmdb

api_router = APIRouter()

api_router.include_router(tasks.router)
api_router.include_router(scan.router)
api_router.include_router(tmdb.router)
api_router.include_router(media.router)
api_router.include_router(settings.router)

__all__ = [
    "api_router",
    "media",
    "scan",
    "settings",
    "tasks",
    "tmdb",
]
