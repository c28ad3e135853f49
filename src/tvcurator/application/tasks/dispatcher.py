"""Worker dispatcher: runs bulk metadata tasks on isolated threads.

Hey future me - why threads with their OWN event loop and not just
``asyncio.create_task``? A bulk refresh of 800 shows is thousands of TMDB calls
plus thousands of small SQLite writes. On the server loop, every one of those
writes competes with HTTP requests. On a worker thread with a separate engine
the dashboard stays snappy no matter how slow TMDB is today.

Rules of the road:
- one worker thread == one task, tracked in ``_workers`` by task id
- nothing mutable crosses the boundary: the worker gets a frozen WorkerContext
  with JSON-copied task data and reports back with plain dict messages
- messages are applied on the server loop (``call_soon_threadsafe``), so the
  tracker still has a single writer
- Python can't kill a thread. "Terminate" cancels the worker's main coroutine
  from the outside; it stops at its next await (HTTP call, DB query, sleep)
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from tvcurator.application.tasks.progress import TaskProgressTracker
from tvcurator.application.tasks.registry import TaskRegistry
from tvcurator.application.tasks.worker_runtime import (
    ClientFactory,
    DatabaseFactory,
    PostMessage,
    WorkerContext,
    run_worker,
)
from tvcurator.config import TMDBSettings
from tvcurator.domain.entities import TaskStatus, TaskType
from tvcurator.infrastructure.persistence import normalize_database_url

logger = logging.getLogger(__name__)


@dataclass
class WorkerHandle:
    """Host-side handle of one worker thread."""

    task_id: str
    thread: threading.Thread | None = None
    loop: asyncio.AbstractEventLoop | None = None
    main_task: asyncio.Task[None] | None = None
    stop_requested: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def attach(self, loop: asyncio.AbstractEventLoop, main_task: asyncio.Task[None]) -> None:
        """Called from the worker thread once its loop runs."""
        with self._lock:
            self.loop = loop
            self.main_task = main_task
            if self.stop_requested:
                main_task.cancel()

    def terminate(self) -> None:
        """Cancel the worker's main coroutine (thread-safe, idempotent)."""
        with self._lock:
            self.stop_requested = True
            if self.loop is None or self.main_task is None:
                return
            try:
                self.loop.call_soon_threadsafe(self.main_task.cancel)
            except RuntimeError:
                # Worker loop already closed - nothing left to stop
                pass

    @property
    def is_alive(self) -> bool:
        """Check if the worker thread is still running."""
        return self.thread is not None and self.thread.is_alive()


class WorkerDispatcher:
    """Spawns one worker thread per metadata task and relays its messages."""

    def __init__(
        self,
        registry: TaskRegistry,
        database_url: str,
        tmdb_settings: TMDBSettings,
        client_factory: ClientFactory | None = None,
        database_factory: DatabaseFactory | None = None,
    ) -> None:
        """
        Args:
            registry: Task registry (admission, cancellation, retention)
            database_url: Server database URL, normalized before crossing threads
            tmdb_settings: TMDB settings copied into each worker context
            client_factory: Builds the TMDB client inside the worker (tests)
            database_factory: Builds the Database inside the worker (tests)
        """
        self.registry = registry
        self.database_url = normalize_database_url(database_url) if database_url else ""
        self.tmdb_settings = tmdb_settings
        self.client_factory = client_factory
        self.database_factory = database_factory
        self._workers: dict[str, WorkerHandle] = {}

    # =========================================================================
    # Public API
    # =========================================================================

    # Hey future me - PENDING tasks never get a thread! run_in_worker hands a tiny "spawn"
    # coroutine to registry.launch(); for a pending task that coroutine sits in the admission
    # queue until a slot frees up. If the user cancels while it's queued, the thread is never
    # created at all.
    def run_in_worker(
        self,
        task_id: str,
        task_type: TaskType,
        task_data: dict[str, Any],
        tracker: TaskProgressTracker,
    ) -> None:
        """Run a metadata task on a worker thread (now, or once promoted)."""
        if not self.database_url:
            tracker.fail("DATABASE_URL not configured")
            return

        try:
            payload = json.loads(json.dumps(task_data))
        except (TypeError, ValueError) as e:
            tracker.fail(f"Task data can't be sent to a worker: {e}")
            return

        context = WorkerContext(
            task_id=task_id,
            task_type=task_type.value,
            task_data=payload,
            database_url=self.database_url,
            tmdb={
                "api_key": self.tmdb_settings.api_key,
                "base_url": self.tmdb_settings.base_url,
                "timeout": self.tmdb_settings.timeout,
            },
            rate_limit_delay=self.tmdb_settings.rate_limit_delay,
            refresh_rate_limit_delay=self.tmdb_settings.refresh_rate_limit_delay,
        )
        self.registry.add_cancel_hook(task_id, self.terminate_worker)

        async def spawn() -> None:
            self._spawn(context, tracker)

        self.registry.launch(tracker, spawn)

    def terminate_worker(self, task_id: str) -> bool:
        """Stop a task's worker and mark the task cancelled.

        Returns:
            True if a worker was found
        """
        handle = self._workers.get(task_id)
        if handle is None:
            return False

        handle.terminate()
        tracker = self.registry.get_tracker(task_id)
        if tracker is not None and not tracker.is_terminal:
            tracker.cancel()
        logger.info(f"Terminated worker for task {task_id}")
        return True

    def is_worker_active(self, task_id: str) -> bool:
        """Check if a task currently has a live worker thread."""
        handle = self._workers.get(task_id)
        return handle is not None and handle.is_alive

    @property
    def active_count(self) -> int:
        """Number of live worker threads."""
        return sum(1 for h in self._workers.values() if h.is_alive)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Terminate all workers and wait for their threads."""
        handles = list(self._workers.values())
        for handle in handles:
            self.terminate_worker(handle.task_id)
        for handle in handles:
            if handle.thread is not None:
                await asyncio.to_thread(handle.thread.join, timeout)
        logger.info(f"Worker dispatcher shut down ({len(handles)} workers stopped)")

    # =========================================================================
    # Host side
    # =========================================================================

    def _spawn(self, context: WorkerContext, tracker: TaskProgressTracker) -> None:
        task_id = context.task_id
        if self.registry.is_cancelled(task_id):
            # Cancelled after promotion but before the thread existed
            if not tracker.is_terminal:
                tracker.cancel()
            return

        host_loop = asyncio.get_running_loop()
        handle = WorkerHandle(task_id=task_id)
        thread = threading.Thread(
            target=self._thread_main,
            args=(handle, context, host_loop),
            name=f"worker-{task_id[:8]}",
            daemon=True,
        )
        handle.thread = thread
        self._workers[task_id] = handle
        thread.start()
        logger.info(f"Spawned worker thread {thread.name} for task {task_id}")

    def _handle_message(self, task_id: str, message: dict[str, Any]) -> None:
        """Apply one worker message (runs on the server loop)."""
        kind = message.get("type")
        tracker = self.registry.get_tracker(task_id)

        if kind == "exit":
            self._on_exit(task_id, int(message.get("code", 1)), tracker)
            return
        if tracker is None:
            logger.debug(f"Dropping {kind} message for unknown task {task_id}")
            return

        if kind == "progress":
            tracker.update(
                processed=message["processed"],
                succeeded=message["succeeded"],
                failed=message["failed"],
                current_item=message.get("current_item"),
                errors=message.get("errors", []),
            )
        elif kind == "complete":
            tracker.complete()
            self.registry.schedule_cleanup(task_id)
        elif kind == "fail":
            tracker.fail(str(message.get("error") or "Worker failed"))
            self.registry.schedule_cleanup(task_id)
        else:
            logger.warning(f"Unknown worker message type {kind!r} for task {task_id}")

    # Yo, this is the "worker died silently" safety net. complete/fail always arrive BEFORE exit
    # (same FIFO queue), so a task still RUNNING at exit never got a result. Non-zero code means
    # the thread crashed; zero without a result shouldn't happen but we refuse to leave the task
    # hanging in running forever.
    def _on_exit(self, task_id: str, code: int, tracker: TaskProgressTracker | None) -> None:
        self._workers.pop(task_id, None)
        if tracker is None or tracker.status is not TaskStatus.RUNNING:
            return
        if code != 0:
            tracker.fail(f"Worker exited unexpectedly with code {code}")
        else:
            tracker.fail("Worker exited without reporting a result")

    # =========================================================================
    # Worker thread side
    # =========================================================================

    def _thread_main(
        self,
        handle: WorkerHandle,
        context: WorkerContext,
        host_loop: asyncio.AbstractEventLoop,
    ) -> None:
        def post(message: dict[str, Any]) -> None:
            try:
                host_loop.call_soon_threadsafe(self._handle_message, context.task_id, message)
            except RuntimeError:
                logger.debug(f"Server loop closed, dropping worker message for {context.task_id}")

        exit_code = 1
        try:
            asyncio.run(self._worker_main(handle, context, post))
            exit_code = 0
        except asyncio.CancelledError:
            logger.info(f"Worker for task {context.task_id} was terminated")
        except Exception:
            logger.exception(f"Worker thread for task {context.task_id} crashed")
        finally:
            post({"type": "exit", "task_id": context.task_id, "code": exit_code})

    async def _worker_main(
        self, handle: WorkerHandle, context: WorkerContext, post: PostMessage
    ) -> None:
        current = asyncio.current_task()
        if current is not None:
            handle.attach(asyncio.get_running_loop(), current)
        await run_worker(
            context,
            post,
            client_factory=self.client_factory,
            database_factory=self.database_factory,
        )
