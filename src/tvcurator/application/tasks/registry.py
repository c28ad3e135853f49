"""Task registry: the process-wide source of truth for background task state.

Hey future me - there is exactly ONE TaskRegistry per server process. It's built
in the FastAPI lifespan (see infrastructure/lifecycle.py), parked on
``app.state.task_registry`` and handed to every service that creates or reads
tasks. No module-level singleton on purpose - tests build their own registry
and nothing leaks between them.

What lives here:
- trackers by task id (until the retention timer purges them)
- cancellation flags (polled by in-process executors)
- cancel hooks (worker dispatcher registers "terminate this thread")
- the admission controller (running limit + FIFO queue)
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from tvcurator.application.tasks.admission import (
    DEFAULT_MAX_PARALLEL_TASKS,
    AdmissionController,
    RunCallable,
)
from tvcurator.application.tasks.progress import TaskProgressTracker
from tvcurator.domain.entities import (
    ScanDetails,
    TaskDetails,
    TaskProgress,
    TaskStatus,
    TaskType,
)

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 3600.0

CancelHook = Callable[[str], None]

_STATUS_ORDER = {TaskStatus.RUNNING: 0, TaskStatus.PENDING: 1}


@dataclass(frozen=True)
class StartedTask:
    """Answer to "start this background job" (task_id is None if nothing to do)."""

    task_id: str | None
    status: str | None
    total: int
    message: str


class TaskRegistry:
    """Creates, tracks, cancels and purges background tasks."""

    def __init__(
        self,
        max_parallel_tasks: int = DEFAULT_MAX_PARALLEL_TASKS,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
    ) -> None:
        """Create an empty registry.

        Args:
            max_parallel_tasks: Concurrency limit (clamped to 1..10)
            retention_seconds: How long finished tasks stay queryable
        """
        self._trackers: dict[str, TaskProgressTracker] = {}
        self._cancelled: set[str] = set()
        self._cancel_hooks: dict[str, list[CancelHook]] = {}
        self._cleanup_handles: dict[str, asyncio.TimerHandle] = {}
        self._jobs: dict[str, asyncio.Task[None]] = {}
        self.retention_seconds = retention_seconds
        self._admission = AdmissionController(
            running_count=self._count_running,
            get_tracker=self._trackers.get,
            execute=self._execute,
            limit=max_parallel_tasks,
        )

    # =========================================================================
    # Creation & execution
    # =========================================================================

    def create_task(
        self,
        task_type: TaskType,
        total: int = 0,
        title: str | None = None,
        details: TaskDetails | None = None,
    ) -> TaskProgressTracker:
        """Create a task; admission decides RUNNING or PENDING.

        Args:
            task_type: Kind of work
            total: Number of items if already known (0 = set later)
            title: Label for the UI, e.g. "Scan: Breaking Bad"
            details: Type-specific extension (scan tasks get ScanDetails by default)

        Returns:
            Tracker for the new task
        """
        if details is None and task_type.is_scan:
            details = ScanDetails()

        status = self._admission.decide()
        progress = TaskProgress(
            task_id=str(uuid.uuid4()),
            type=task_type,
            status=status,
            started_at=datetime.now(UTC),
            title=title,
            total=total,
            details=details,
        )
        tracker = TaskProgressTracker(progress, on_finished=self._on_task_finished)
        self._trackers[progress.task_id] = tracker

        logger.info(
            f"Created task {progress.task_id} ({task_type.value}"
            f"{', ' + title if title else ''}) as {status.value}"
        )
        return tracker

    # Hey future me - launch() is how every executor hands over its work. RUNNING -> the run
    # coroutine starts right now as an asyncio task. PENDING -> it waits in the admission queue
    # and is started by the drain once a slot frees up. Either way exceptions from run() end up
    # in tracker.fail(), so callers can fire-and-forget.
    def launch(self, tracker: TaskProgressTracker, run: RunCallable) -> None:
        """Run a task now or when admission promotes it."""
        status = tracker.status
        if status is TaskStatus.PENDING:
            self._admission.enqueue(tracker.task_id, run)
        elif status is TaskStatus.RUNNING:
            self._execute(tracker, run)
        else:
            logger.warning(
                f"Not launching task {tracker.task_id}, it is already {status.value}"
            )

    def _execute(self, tracker: TaskProgressTracker, run: RunCallable) -> None:
        loop = asyncio.get_running_loop()
        task_id = tracker.task_id
        job = loop.create_task(self._run_guarded(tracker, run), name=f"task-{task_id}")
        self._jobs[task_id] = job
        job.add_done_callback(lambda _: self._jobs.pop(task_id, None))

    async def _run_guarded(self, tracker: TaskProgressTracker, run: RunCallable) -> None:
        try:
            await run()
        except asyncio.CancelledError:
            if not tracker.is_terminal:
                tracker.cancel()
            raise
        except Exception as e:
            logger.exception(f"Task {tracker.task_id} crashed")
            if not tracker.is_terminal:
                tracker.fail(str(e) or type(e).__name__)

    def _count_running(self) -> int:
        return sum(1 for t in self._trackers.values() if t.status is TaskStatus.RUNNING)

    def _on_task_finished(self, tracker: TaskProgressTracker) -> None:
        self.schedule_cleanup(tracker.task_id)
        self._admission.schedule_drain()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_tracker(self, task_id: str) -> TaskProgressTracker | None:
        """Tracker for a task id, None if unknown or purged."""
        return self._trackers.get(task_id)

    def get_progress(self, task_id: str) -> TaskProgress | None:
        """Snapshot of a task."""
        tracker = self._trackers.get(task_id)
        return tracker.get_progress() if tracker else None

    def get_serialized(self, task_id: str) -> dict[str, Any] | None:
        """Transport-safe snapshot of a task."""
        tracker = self._trackers.get(task_id)
        return tracker.get_serialized() if tracker else None

    def get_active_tasks(self) -> list[TaskProgress]:
        """All non-purged tasks: running first, then pending, then newest first."""
        snapshots = [t.get_progress() for t in self._trackers.values()]
        snapshots.sort(key=lambda p: -p.started_at.timestamp())
        snapshots.sort(key=lambda p: _STATUS_ORDER.get(p.status, 2))
        return snapshots

    def get_task_counts(self) -> dict[str, int]:
        """Counts for the sidebar badge."""
        statuses = [t.status for t in self._trackers.values()]
        return {
            "running": statuses.count(TaskStatus.RUNNING),
            "pending": statuses.count(TaskStatus.PENDING),
            "total": len(statuses),
        }

    # =========================================================================
    # Cancellation
    # =========================================================================

    # Listen up, cancellation has two flavours:
    # - PENDING: the run callable never started. Pull it out of the queue and cancel the tracker
    #   on the spot. The callable is never invoked.
    # - RUNNING: set the flag (scans/analysis poll it between items) and fire the cancel hooks
    #   (the worker dispatcher uses one to stop the worker thread). The executor does the actual
    #   cancel() transition.
    # Asking twice is harmless: the flag is a set and hooks only fire the first time.
    def request_cancellation(self, task_id: str) -> bool:
        """Ask a task to stop.

        Returns:
            False if the task is unknown or already finished, True otherwise
        """
        tracker = self._trackers.get(task_id)
        if tracker is None or tracker.is_terminal:
            return False

        if tracker.status is TaskStatus.PENDING:
            self._admission.remove(task_id)
            self._cancelled.add(task_id)
            tracker.cancel()
            logger.info(f"Cancelled pending task {task_id} before it started")
            return True

        if task_id in self._cancelled:
            return True

        self._cancelled.add(task_id)
        logger.info(f"Cancellation requested for running task {task_id}")
        for hook in list(self._cancel_hooks.get(task_id, [])):
            try:
                hook(task_id)
            except Exception:
                logger.exception(f"Cancel hook failed for task {task_id}")
        return True

    def is_cancelled(self, task_id: str) -> bool:
        """Check the cancellation flag (polled by in-process executors)."""
        return task_id in self._cancelled

    def add_cancel_hook(self, task_id: str, hook: CancelHook) -> None:
        """Call ``hook(task_id)`` when cancellation of a running task is requested."""
        self._cancel_hooks.setdefault(task_id, []).append(hook)

    # =========================================================================
    # Retention
    # =========================================================================

    def schedule_cleanup(self, task_id: str, delay: float | None = None) -> None:
        """Purge a finished task after the retention window.

        Rescheduling replaces the previous timer.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No event loop, retention cleanup for {task_id} not scheduled")
            return

        previous = self._cleanup_handles.pop(task_id, None)
        if previous is not None:
            previous.cancel()

        seconds = self.retention_seconds if delay is None else delay
        self._cleanup_handles[task_id] = loop.call_later(seconds, self._expire, task_id)

    def _expire(self, task_id: str) -> None:
        self._cleanup_handles.pop(task_id, None)
        tracker = self._trackers.get(task_id)
        if tracker is not None and not tracker.is_terminal:
            # Still working - the terminal transition schedules a fresh timer
            return
        self.remove_task(task_id)

    def remove_task(self, task_id: str) -> bool:
        """Forget a task completely."""
        handle = self._cleanup_handles.pop(task_id, None)
        if handle is not None:
            handle.cancel()
        self._admission.remove(task_id)
        self._cancelled.discard(task_id)
        self._cancel_hooks.pop(task_id, None)
        removed = self._trackers.pop(task_id, None) is not None
        if removed:
            logger.debug(f"Removed task {task_id} from registry")
        return removed

    # =========================================================================
    # Configuration & lifecycle
    # =========================================================================

    @property
    def max_parallel_tasks(self) -> int:
        """Current concurrency limit."""
        return self._admission.limit

    def set_max_parallel_tasks(self, value: int) -> int:
        """Apply a new concurrency limit (clamped to 1..10), draining if raised."""
        return self._admission.set_limit(value)

    @property
    def pending_queue(self) -> list[str]:
        """Queued task ids in promotion order."""
        return self._admission.queued_task_ids()

    @staticmethod
    async def yield_to_event_loop() -> None:
        """Let other coroutines (HTTP requests!) run."""
        await asyncio.sleep(0)

    async def shutdown(self) -> None:
        """Stop timers and in-process task coroutines (server shutdown)."""
        for handle in self._cleanup_handles.values():
            handle.cancel()
        self._cleanup_handles.clear()

        jobs = list(self._jobs.values())
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)
        logger.info(f"Task registry shut down ({len(jobs)} in-process tasks cancelled)")
