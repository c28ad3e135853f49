"""Background task core: registry, progress tracking, admission and worker dispatch."""

from tvcurator.application.tasks.admission import (
    DEFAULT_MAX_PARALLEL_TASKS,
    MAX_PARALLEL_TASKS,
    MIN_PARALLEL_TASKS,
    AdmissionController,
    clamp_parallel_tasks,
)
from tvcurator.application.tasks.dispatcher import WorkerDispatcher, WorkerHandle
from tvcurator.application.tasks.progress import TaskProgressTracker
from tvcurator.application.tasks.registry import StartedTask, TaskRegistry

__all__ = [
    "DEFAULT_MAX_PARALLEL_TASKS",
    "MAX_PARALLEL_TASKS",
    "MIN_PARALLEL_TASKS",
    "AdmissionController",
    "StartedTask",
    "TaskProgressTracker",
    "TaskRegistry",
    "WorkerDispatcher",
    "WorkerHandle",
    "clamp_parallel_tasks",
]
