"""Runtime-editable settings stored in the app_settings table."""

import logging

from tvcurator.application.tasks.admission import clamp_parallel_tasks
from tvcurator.application.tasks.registry import TaskRegistry
from tvcurator.infrastructure.persistence import AppSettingsRepository, Database

logger = logging.getLogger(__name__)

MAX_PARALLEL_TASKS_KEY = "tasks.max_parallel_tasks"


# Hey future me - env vars give the DEFAULT (TASK_MAX_PARALLEL_TASKS), the Settings page writes
# the app_settings row, and the row wins at startup. The registry is the live value; this
# service just keeps the DB row and the registry in sync.
class AppSettingsService:
    """Load and persist task-queue settings."""

    def __init__(self, database: Database, registry: TaskRegistry) -> None:
        self.database = database
        self.registry = registry

    async def load_into_registry(self) -> int:
        """Apply the stored parallelism limit (if any) to the registry."""
        async with self.database.session_scope() as session:
            stored = await AppSettingsRepository(session).get_int(MAX_PARALLEL_TASKS_KEY)
        if stored is None:
            return self.registry.max_parallel_tasks
        applied = self.registry.set_max_parallel_tasks(stored)
        logger.info(f"Loaded max parallel tasks from settings: {applied}")
        return applied

    async def set_max_parallel_tasks(self, value: int) -> int:
        """Persist and apply a new limit. Returns the clamped value."""
        clamped = clamp_parallel_tasks(value)
        async with self.database.session_scope() as session:
            await AppSettingsRepository(session).set(
                MAX_PARALLEL_TASKS_KEY, clamped, value_type="integer", category="tasks"
            )
        return self.registry.set_max_parallel_tasks(clamped)

    def get_task_settings(self) -> dict[str, int]:
        """Current live values."""
        counts = self.registry.get_task_counts()
        return {
            "max_parallel_tasks": self.registry.max_parallel_tasks,
            "running": counts["running"],
            "pending": counts["pending"],
        }
