"""Admission controller: bounds how many tasks run at once.

Hey future me - every task is admitted exactly once, at creation. If fewer than
``limit`` tasks are running it starts as RUNNING, otherwise it's PENDING and its
run callable waits here in a FIFO queue. Whenever any task finishes, the
registry calls ``schedule_drain()`` and the oldest pending entries get promoted
until the slots are full again.

The drain is scheduled with ``loop.call_soon`` instead of running inline: when
fifty tiny tasks complete in a cascade, inline draining would nest
complete() -> drain() -> run() -> complete() fifty frames deep.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tvcurator.application.tasks.progress import TaskProgressTracker
from tvcurator.domain.entities import TaskStatus

logger = logging.getLogger(__name__)

MIN_PARALLEL_TASKS = 1
MAX_PARALLEL_TASKS = 10
DEFAULT_MAX_PARALLEL_TASKS = 3

RunCallable = Callable[[], Awaitable[None]]


def clamp_parallel_tasks(value: int) -> int:
    """Clamp a configured limit into [1, 10]. Never blocks admission completely."""
    return max(MIN_PARALLEL_TASKS, min(MAX_PARALLEL_TASKS, int(value)))


@dataclass(frozen=True)
class QueueEntry:
    """A pending task waiting for a slot."""

    task_id: str
    run: RunCallable


class AdmissionController:
    """FIFO queue plus a configurable running-task limit."""

    def __init__(
        self,
        running_count: Callable[[], int],
        get_tracker: Callable[[str], TaskProgressTracker | None],
        execute: Callable[[TaskProgressTracker, RunCallable], None],
        limit: int = DEFAULT_MAX_PARALLEL_TASKS,
    ) -> None:
        """Create the controller.

        Args:
            running_count: Returns how many tasks are currently RUNNING
            get_tracker: Looks up a tracker by task id (None if removed)
            execute: Starts a promoted task's run callable
            limit: Initial concurrency limit (clamped)
        """
        self._running_count = running_count
        self._get_tracker = get_tracker
        self._execute = execute
        self._limit = clamp_parallel_tasks(limit)
        self._queue: deque[QueueEntry] = deque()
        self._drain_scheduled = False
        self._draining = False

    @property
    def limit(self) -> int:
        """Current concurrency limit."""
        return self._limit

    @property
    def pending_count(self) -> int:
        """Number of queued entries."""
        return len(self._queue)

    def queued_task_ids(self) -> list[str]:
        """Queued task ids in promotion order."""
        return [entry.task_id for entry in self._queue]

    def set_limit(self, value: int) -> int:
        """Change the concurrency limit.

        Raising the limit immediately tries to promote pending tasks. Lowering it
        never stops running ones, it just admits nothing new until they finish.

        Returns:
            The clamped limit actually applied
        """
        clamped = clamp_parallel_tasks(value)
        if clamped != value:
            logger.warning(f"Max parallel tasks {value} out of range, using {clamped}")
        old = self._limit
        self._limit = clamped
        if clamped != old:
            logger.info(f"Max parallel tasks changed: {old} -> {clamped}")
        if clamped > old:
            self.schedule_drain()
        return clamped

    def decide(self) -> TaskStatus:
        """Admission decision for a task being created right now."""
        # A slot freed before the drain ran belongs to the oldest queued task, not to us
        if not self._queue and self._running_count() < self._limit:
            return TaskStatus.RUNNING
        return TaskStatus.PENDING

    def enqueue(self, task_id: str, run: RunCallable) -> None:
        """Park a pending task's run callable until a slot frees up."""
        self._queue.append(QueueEntry(task_id=task_id, run=run))
        logger.debug(f"Queued task {task_id} (position {len(self._queue)})")
        # The limit may have been raised between creation and now
        self.schedule_drain()

    def remove(self, task_id: str) -> bool:
        """Drop a task's queue entry without running it."""
        for entry in self._queue:
            if entry.task_id == task_id:
                self._queue.remove(entry)
                return True
        return False

    def schedule_drain(self) -> None:
        """Re-evaluate the queue on the next loop iteration."""
        if self._drain_scheduled or self._draining:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync startup code, plain unit tests): drain right here
            self.drain()
            return
        self._drain_scheduled = True
        loop.call_soon(self._scheduled_drain)

    def _scheduled_drain(self) -> None:
        self._drain_scheduled = False
        self.drain()

    # Listen up, the drain loop must survive ANY failure of a single entry. A run callable that
    # blows up synchronously fails its own task and we move on to the next entry - one broken
    # task never stalls the queue for everyone behind it.
    def drain(self) -> int:
        """Promote pending tasks while capacity remains.

        Returns:
            Number of tasks promoted
        """
        if self._draining:
            return 0
        self._draining = True
        promoted = 0
        try:
            while self._queue and self._running_count() < self._limit:
                entry = self._queue.popleft()
                tracker = self._get_tracker(entry.task_id)
                if tracker is None or tracker.status is not TaskStatus.PENDING:
                    # Cancelled or removed while waiting
                    logger.debug(f"Dropping stale queue entry {entry.task_id}")
                    continue

                tracker.start()
                promoted += 1
                logger.info(f"Promoted pending task {entry.task_id} to running")
                try:
                    self._execute(tracker, entry.run)
                except Exception as e:
                    logger.exception(f"Failed to start queued task {entry.task_id}")
                    tracker.fail(str(e) or type(e).__name__)
        finally:
            self._draining = False
        return promoted
