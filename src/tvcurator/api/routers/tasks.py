"""Background task endpoints: list, inspect, cancel, stream progress."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from tvcurator.api.dependencies import get_task_registry
from tvcurator.api.schemas import CancelTaskResponse, TaskCountsResponse, TaskListResponse
from tvcurator.application.tasks import TaskRegistry
from tvcurator.domain.entities import TaskProgress, TaskStatus, serialize_progress
from tvcurator.domain.exceptions import EntityNotFoundException, InvalidStateException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["Tasks"])

# Seconds between disconnect checks while a task is quiet
_SSE_POLL_INTERVAL = 5.0


@router.get("", response_model=TaskListResponse)
async def list_tasks(registry: TaskRegistry = Depends(get_task_registry)) -> TaskListResponse:
    """All tasks still in the registry (running, pending, recently finished)."""
    tasks = [serialize_progress(p) for p in registry.get_active_tasks()]
    return TaskListResponse(tasks=tasks, count=len(tasks))


# Must stay above /{task_id}, otherwise "counts" is taken as a task id
@router.get("/counts", response_model=TaskCountsResponse)
async def task_counts(registry: TaskRegistry = Depends(get_task_registry)) -> TaskCountsResponse:
    """Running/pending/total counts."""
    return TaskCountsResponse(**registry.get_task_counts())


@router.get("/{task_id}")
async def get_task(
    task_id: str, registry: TaskRegistry = Depends(get_task_registry)
) -> dict[str, Any]:
    """Serialized snapshot of one task."""
    serialized = registry.get_serialized(task_id)
    if serialized is None:
        raise EntityNotFoundException("Task", task_id)
    return serialized


@router.post("/{task_id}/cancel", response_model=CancelTaskResponse)
async def cancel_task(
    task_id: str, registry: TaskRegistry = Depends(get_task_registry)
) -> CancelTaskResponse:
    """Request cancellation of a pending or running task."""
    tracker = registry.get_tracker(task_id)
    if tracker is None:
        raise EntityNotFoundException("Task", task_id)
    if tracker.is_terminal:
        raise InvalidStateException(f"Task is already {tracker.status.value}")

    was_pending = tracker.status is TaskStatus.PENDING
    registry.request_cancellation(task_id)
    message = "Task cancelled" if was_pending else "Cancellation requested"
    return CancelTaskResponse(success=True, message=message, task_id=task_id)


# Hey future me - the SSE stream subscribes to the tracker, which replays the current state
# right away, so the client's first event is always the full snapshot. The tracker calls our
# callback synchronously on the loop thread, we just drop snapshots into a queue. The stream
# ends after the first terminal snapshot. ALWAYS unsubscribe in finally or dead callbacks pile
# up on long-running scans.
@router.get("/{task_id}/progress")
async def stream_task_progress(
    task_id: str,
    request: Request,
    registry: TaskRegistry = Depends(get_task_registry),
) -> EventSourceResponse:
    """Server-Sent Events stream of progress snapshots."""
    tracker = registry.get_tracker(task_id)
    if tracker is None:
        raise EntityNotFoundException("Task", task_id)

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        def on_progress(progress: TaskProgress) -> None:
            queue.put_nowait(serialize_progress(progress))

        unsubscribe = tracker.subscribe(on_progress)
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    data = await asyncio.wait_for(queue.get(), timeout=_SSE_POLL_INTERVAL)
                except TimeoutError:
                    continue
                yield {"event": "progress", "data": json.dumps(data)}
                if TaskStatus(data["status"]).is_terminal:
                    break
        except asyncio.CancelledError:
            logger.debug(f"Progress stream for task {task_id} closed by client")
            raise
        finally:
            unsubscribe()

    return EventSourceResponse(event_generator())
