"""TMDB metadata task endpoints."""

from fastapi import APIRouter, Depends

from tvcurator.api.dependencies import get_tmdb_task_service
from tvcurator.api.schemas import ImportRequest, StartedTaskResponse
from tvcurator.application.services.tmdb_task_service import TMDBTaskService

router = APIRouter(prefix="/tmdb", tags=["TMDB"])


@router.post("/bulk-match", response_model=StartedTaskResponse)
async def bulk_match(
    service: TMDBTaskService = Depends(get_tmdb_task_service),
) -> StartedTaskResponse:
    """Auto-match all unmatched shows."""
    return StartedTaskResponse.from_result(await service.start_bulk_match())


@router.post("/bulk-refresh", response_model=StartedTaskResponse)
async def bulk_refresh(
    service: TMDBTaskService = Depends(get_tmdb_task_service),
) -> StartedTaskResponse:
    """Refresh metadata of all matched shows."""
    return StartedTaskResponse.from_result(await service.start_bulk_refresh())


@router.post("/refresh-missing", response_model=StartedTaskResponse)
async def refresh_missing(
    service: TMDBTaskService = Depends(get_tmdb_task_service),
) -> StartedTaskResponse:
    """Pull seasons/episodes for matched shows that have none."""
    return StartedTaskResponse.from_result(await service.start_refresh_missing())


@router.post("/shows/{show_id}/refresh", response_model=StartedTaskResponse)
async def refresh_show(
    show_id: int,
    service: TMDBTaskService = Depends(get_tmdb_task_service),
) -> StartedTaskResponse:
    """Refresh one matched show."""
    return StartedTaskResponse.from_result(await service.start_show_refresh(show_id))


@router.post("/shows/{show_id}/import", response_model=StartedTaskResponse)
async def import_show(
    show_id: int,
    body: ImportRequest,
    service: TMDBTaskService = Depends(get_tmdb_task_service),
) -> StartedTaskResponse:
    """Import a season/episode payload for one show."""
    seasons = [season.model_dump() for season in body.seasons]
    return StartedTaskResponse.from_result(await service.start_import(show_id, seasons))
