"""Runtime settings endpoints (task queue)."""

import logging

from fastapi import APIRouter, Depends

from tvcurator.api.dependencies import get_app_settings_service
from tvcurator.api.schemas import TaskSettingsResponse, TaskSettingsUpdate
from tvcurator.application.services.app_settings_service import AppSettingsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("/tasks", response_model=TaskSettingsResponse)
async def get_task_settings(
    service: AppSettingsService = Depends(get_app_settings_service),
) -> TaskSettingsResponse:
    """Current parallelism limit and queue counts."""
    return TaskSettingsResponse(**service.get_task_settings())


# Yo, pydantic already rejects values outside 1..10 with a 422 here. The service clamps again
# because it's also called from places that don't go through this schema.
@router.patch("/tasks", response_model=TaskSettingsResponse)
async def update_task_settings(
    body: TaskSettingsUpdate,
    service: AppSettingsService = Depends(get_app_settings_service),
) -> TaskSettingsResponse:
    """Persist and apply a new parallelism limit."""
    applied = await service.set_max_parallel_tasks(body.max_parallel_tasks)
    logger.info(f"Max parallel tasks set to {applied}")
    return TaskSettingsResponse(**service.get_task_settings())
