"""Progress tracker: the mutable record of one task plus its subscribers.

Hey future me - a tracker is pure bookkeeping. It never raises at its callers and
it never does I/O. The executor that owns the task (scan orchestrator, worker
dispatcher, in-process analysis loop) is the ONLY writer; HTTP handlers and SSE
streams only read snapshots or subscribe. All calls happen on the server's event
loop thread - the worker dispatcher marshals worker messages onto the loop
before touching a tracker.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from tvcurator.domain.entities import (
    ScanPhase,
    TaskError,
    TaskProgress,
    TaskStatus,
    serialize_progress,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TaskProgress], None]
FinishedCallback = Callable[["TaskProgressTracker"], None]

# Fields only the lifecycle methods may touch
_PROTECTED_FIELDS = frozenset({"task_id", "type", "status", "started_at", "completed_at"})
_COUNTER_FIELDS = ("processed", "succeeded", "failed")


class TaskProgressTracker:
    """Update/subscribe API around one TaskProgress record."""

    def __init__(
        self,
        progress: TaskProgress,
        on_finished: FinishedCallback | None = None,
    ) -> None:
        """Wrap a progress record.

        Args:
            progress: Initial state (status already decided by admission)
            on_finished: Called once after the terminal transition (registry hook)
        """
        self._progress = progress
        self._on_finished = on_finished
        self._subscribers: list[ProgressCallback] = []
        self._total_locked = progress.total > 0

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def task_id(self) -> str:
        """Stable id of the tracked task."""
        return self._progress.task_id

    @property
    def status(self) -> TaskStatus:
        """Current lifecycle state."""
        return self._progress.status

    @property
    def is_terminal(self) -> bool:
        """Check if the task reached completed/failed/cancelled."""
        return self._progress.status.is_terminal

    def get_progress(self) -> TaskProgress:
        """Snapshot copy, safe to keep and mutate."""
        return self._progress.copy()

    def get_serialized(self) -> dict[str, Any]:
        """Transport-safe snapshot for HTTP/SSE."""
        return serialize_progress(self._progress)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    # Yo, the new subscriber gets the CURRENT state right away, then every later change. SSE
    # streams rely on that replay, otherwise a client connecting to a finished task waits forever.
    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a change callback.

        Args:
            callback: Receives a TaskProgress snapshot

        Returns:
            Function that removes this subscription (safe to call twice)
        """
        self._subscribers.append(callback)
        self._deliver(callback, self._progress.copy())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        """Number of live subscriptions."""
        return len(self._subscribers)

    def _deliver(self, callback: ProgressCallback, snapshot: TaskProgress) -> None:
        try:
            callback(snapshot)
        except Exception:
            # A broken subscriber must never break the executor that is updating us
            logger.warning(
                f"Progress subscriber failed for task {self.task_id}", exc_info=True
            )

    def _notify(self) -> None:
        if not self._subscribers:
            return
        snapshot = self._progress.copy()
        for callback in list(self._subscribers):
            self._deliver(callback, snapshot)

    # =========================================================================
    # Mutations (owner only)
    # =========================================================================

    def update(self, **fields: Any) -> None:
        """Merge fields into the record, then notify subscribers.

        Accepts progress fields (processed, succeeded, failed, current_item,
        errors, total, title). Status changes go through start/complete/fail/
        cancel. Updates after the terminal transition are dropped.
        """
        if self.is_terminal:
            logger.debug(f"Ignoring update for finished task {self.task_id}")
            return

        progress = self._progress

        # Counters move as one group: all three or none, processed == succeeded + failed,
        # and processed never goes backwards. Anything else drops the whole group.
        counters = {name: fields[name] for name in _COUNTER_FIELDS if name in fields}
        if counters:
            reason: str | None = None
            if len(counters) != len(_COUNTER_FIELDS) or None in counters.values():
                reason = f"partial counter update {sorted(counters)}"
            elif counters["processed"] != counters["succeeded"] + counters["failed"]:
                reason = (
                    f"processed {counters['processed']} != "
                    f"{counters['succeeded']} + {counters['failed']}"
                )
            elif counters["processed"] < progress.processed:
                reason = (
                    f"counters going backwards ({progress.processed} -> {counters['processed']})"
                )
            if reason is not None:
                logger.warning(f"Task {self.task_id}: ignoring {reason}")
                for name in _COUNTER_FIELDS:
                    fields.pop(name, None)

        for name, value in fields.items():
            if name in _PROTECTED_FIELDS:
                logger.warning(f"Task {self.task_id}: field '{name}' can't be set via update()")
            elif name == "total":
                self._apply_total(value)
            elif name == "errors":
                progress.errors = [
                    e if isinstance(e, TaskError) else TaskError(str(e["item"]), str(e["error"]))
                    for e in value
                ]
            elif hasattr(progress, name):
                setattr(progress, name, value)
            else:
                logger.warning(f"Task {self.task_id}: unknown progress field '{name}'")

        self._notify()

    def _apply_total(self, total: int) -> None:
        if self._total_locked and total != self._progress.total:
            logger.warning(
                f"Task {self.task_id}: total already set to {self._progress.total}, "
                f"ignoring {total}"
            )
            return
        self._progress.total = total
        self._total_locked = True

    def set_total(self, total: int) -> None:
        """Set the number of items. Only the first value sticks."""
        self.update(total=total)

    def set_current_item(self, item: str | None) -> None:
        """Show which item is being worked on."""
        self.update(current_item=item)

    def set_phase(self, phase: ScanPhase) -> None:
        """Move a scan task to the next phase."""
        self.update_details(phase=phase)

    def update_details(self, **fields: Any) -> None:
        """Merge type-specific extension fields."""
        details = self._progress.details
        if details is None or self.is_terminal:
            logger.debug(f"Task {self.task_id}: no details to update")
            return
        for name, value in fields.items():
            if not hasattr(details, name) or name == "kind":
                logger.warning(
                    f"Task {self.task_id}: {type(details).__name__} has no field '{name}'"
                )
                continue
            setattr(details, name, value)
        self._notify()

    def increment_success(self, item: str | None = None) -> None:
        """Count one succeeded item."""
        self.increment_success_many(1, item)

    def increment_success_many(self, count: int, item: str | None = None) -> None:
        """Count ``count`` succeeded items at once (e.g. one saved batch)."""
        if self.is_terminal or count <= 0:
            return
        progress = self._progress
        progress.processed += count
        progress.succeeded += count
        if item is not None:
            progress.current_item = item
        self._notify()

    def increment_failed(self, item: str, error: str) -> None:
        """Count one failed item and remember why."""
        if self.is_terminal:
            return
        progress = self._progress
        progress.processed += 1
        progress.failed += 1
        progress.errors.append(TaskError(item=item, error=error))
        self._notify()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """pending -> running (admission promoted us). Resets started_at."""
        if self._progress.status is not TaskStatus.PENDING:
            logger.debug(f"Task {self.task_id} not pending, start() ignored")
            return
        self._progress.status = TaskStatus.RUNNING
        self._progress.started_at = datetime.now(UTC)
        self._notify()

    def complete(self) -> None:
        """Terminal: work finished (per-item failures allowed)."""
        self._finish(TaskStatus.COMPLETED)

    def fail(self, error: str) -> None:
        """Terminal: the task as a whole failed."""
        self._finish(TaskStatus.FAILED, error)

    def cancel(self) -> None:
        """Terminal: stopped on user request."""
        self._finish(TaskStatus.CANCELLED)

    def _finish(self, status: TaskStatus, error: str | None = None) -> None:
        progress = self._progress
        if progress.status.is_terminal:
            logger.debug(
                f"Task {self.task_id} already {progress.status.value}, "
                f"ignoring transition to {status.value}"
            )
            return

        progress.status = status
        progress.completed_at = datetime.now(UTC)
        if error is not None:
            progress.errors.append(TaskError(item="", error=error))

        if status is TaskStatus.FAILED:
            logger.warning(f"Task {self.task_id} ({progress.type.value}) failed: {error}")
        else:
            logger.info(
                f"Task {self.task_id} ({progress.type.value}) {status.value}: "
                f"{progress.succeeded} ok, {progress.failed} failed of {progress.total}"
            )

        self._notify()

        if self._on_finished is not None:
            try:
                self._on_finished(self)
            except Exception:
                logger.exception(f"Finish hook failed for task {self.task_id}")

