"""Scan orchestration: discovering -> parsing -> saving -> cleanup -> complete."""

# Hey future me - this is the library scan as a background TASK. It runs as a plain coroutine on
# the server loop (no worker thread): discovery is already offloaded to threads, parsing is cheap
# regex, and the DB work happens in batches with a yield after each one. The HTTP request that
# starts a scan returns immediately with task_id + scan_id; the UI follows the task via SSE.

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from tvcurator.application.services.scanner.filesystem import DiscoveredFile, discover_files
from tvcurator.application.services.scanner.library_writer import LibraryBatchWriter, ScanItem
from tvcurator.application.tasks.progress import TaskProgressTracker
from tvcurator.application.tasks.registry import TaskRegistry
from tvcurator.config import Settings
from tvcurator.domain.entities import (
    ScanDetails,
    ScanPhase,
    ScanStatus,
    TaskProgress,
    TaskStatus,
    TaskType,
)
from tvcurator.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    ScanCancelledError,
    ValidationException,
)
from tvcurator.domain.value_objects import parse_episode_filename
from tvcurator.infrastructure.persistence import (
    Database,
    LibraryRepository,
    ScanHistoryRepository,
    ShowRepository,
)

logger = logging.getLogger(__name__)

PARSE_ERROR = "Unable to parse filename - could not extract show/season/episode"


@dataclass(frozen=True)
class ScanOptions:
    """What to scan."""

    scan_type: Literal["full", "show"] = "full"
    target_show_id: int | None = None
    target_folder_name: str | None = None


@dataclass(frozen=True)
class StartScanResult:
    """Returned to the caller right after the scan task was created."""

    scan_id: int
    task_id: str
    status: str


@dataclass
class _ScanStats:
    files_scanned: int = 0
    files_added: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    seen_paths: set[str] = field(default_factory=set)


class ScanOrchestrator:
    """Creates scan tasks and runs them through their phases."""

    def __init__(self, registry: TaskRegistry, database: Database, settings: Settings) -> None:
        """
        Args:
            registry: Task registry (task creation, admission, cancellation)
            database: Server database
            settings: Application settings (library roots, batch sizes)
        """
        self.registry = registry
        self.database = database
        self.settings = settings
        self._history_writes: set[asyncio.Task[None]] = set()

    async def start_scan(self, options: ScanOptions | None = None) -> StartScanResult:
        """Create a scan task and hand it to admission.

        Returns:
            scan history id, task id and initial task status ("running"/"pending")

        Raises:
            ValidationException: show scan without a target show id
        """
        options = options or ScanOptions()
        if options.scan_type == "show" and options.target_show_id is None:
            raise ValidationException("Show scan requires target_show_id")

        title = "Library scan"
        folder_name = options.target_folder_name
        async with self.database.session_scope() as session:
            if options.scan_type == "show":
                show = await ShowRepository(session).get(options.target_show_id)  # type: ignore[arg-type]
                label = show.title if show else f"show {options.target_show_id}"
                title = f"Scan: {label}"
                if show is not None and folder_name is None:
                    folder_name = show.folder_name or show.title
            record = await ScanHistoryRepository(session).start(options.scan_type)
            scan_id = record.id

        task_type = TaskType.SHOW_SCAN if options.scan_type == "show" else TaskType.SCAN
        tracker = self.registry.create_task(
            task_type,
            title=title,
            details=ScanDetails(scan_id=scan_id, target_show_id=options.target_show_id),
        )
        resolved = ScanOptions(options.scan_type, options.target_show_id, folder_name)

        started = False

        async def run() -> None:
            nonlocal started
            started = True
            await self._run_scan(tracker, scan_id, resolved)

        self.registry.launch(tracker, run)

        # A pending scan cancelled before promotion never reaches _run_scan, close its history here
        if tracker.status is TaskStatus.PENDING:

            def on_progress(progress: TaskProgress) -> None:
                if progress.status is TaskStatus.CANCELLED and not started:
                    write = asyncio.get_running_loop().create_task(
                        self._save_history(tracker, scan_id, ScanStatus.CANCELLED, _ScanStats())
                    )
                    self._history_writes.add(write)
                    write.add_done_callback(self._history_writes.discard)

            tracker.subscribe(on_progress)

        return StartScanResult(scan_id=scan_id, task_id=tracker.task_id, status=tracker.status.value)

    # =========================================================================
    # Task body
    # =========================================================================

    # Listen up, the ending matters more than the middle here:
    # 1. details (added/updated/deleted) are written BEFORE the terminal transition, the tracker
    #    ignores detail updates afterwards
    # 2. scan history is persisted no matter how we end (completed/failed/cancelled)
    # 3. cancelled beats failed: if the user hit cancel and something blew up on the way out,
    #    the task still says cancelled
    async def _run_scan(
        self, tracker: TaskProgressTracker, scan_id: int, options: ScanOptions
    ) -> None:
        stats = _ScanStats()
        status = ScanStatus.COMPLETED
        error: str | None = None

        try:
            await self._execute_phases(tracker, options, stats)
        except ScanCancelledError:
            status = ScanStatus.CANCELLED
        except Exception as e:
            if self.registry.is_cancelled(tracker.task_id):
                status = ScanStatus.CANCELLED
            else:
                status = ScanStatus.FAILED
                error = getattr(e, "message", None) or str(e) or type(e).__name__
                logger.error(f"Scan {scan_id} failed: {error}", exc_info=True)

        tracker.update_details(
            files_added=stats.files_added,
            files_updated=stats.files_updated,
            files_deleted=stats.files_deleted,
        )
        await self._save_history(tracker, scan_id, status, stats)

        if status is ScanStatus.COMPLETED:
            tracker.complete()
        elif status is ScanStatus.CANCELLED:
            tracker.cancel()
        else:
            tracker.fail(error or "Scan failed")

    async def _execute_phases(
        self, tracker: TaskProgressTracker, options: ScanOptions, stats: _ScanStats
    ) -> None:
        target_show_id = options.target_show_id if options.scan_type == "show" else None
        roots = await self._resolve_roots(options, target_show_id)

        # Phase 1: discovering
        tracker.set_phase(ScanPhase.DISCOVERING)
        files: list[DiscoveredFile] = []
        async for discovered in discover_files(roots, self.settings.tasks.scan_yield_interval):
            self._check_cancelled(tracker)
            files.append(discovered)
            stats.seen_paths.add(discovered.path)
        stats.files_scanned = len(files)
        tracker.set_total(len(files))
        logger.info(f"Scan discovered {len(files)} video files in {len(roots)} root(s)")
        self._check_cancelled(tracker)

        # Phase 2: parsing
        tracker.set_phase(ScanPhase.PARSING)
        items: list[ScanItem] = []
        for discovered in files:
            self._check_cancelled(tracker)
            parsed = parse_episode_filename(discovered.path)
            if parsed is None:
                tracker.increment_failed(Path(discovered.path).name, PARSE_ERROR)
                continue
            items.append(ScanItem(file=discovered, parsed=parsed))
        await self.registry.yield_to_event_loop()
        self._check_cancelled(tracker)

        # Phase 3: saving
        tracker.set_phase(ScanPhase.SAVING)
        await self._save_items(tracker, items, target_show_id, stats)
        self._check_cancelled(tracker)

        # Phase 4: cleanup
        tracker.set_phase(ScanPhase.CLEANUP)
        await self.registry.yield_to_event_loop()
        async with self.database.session_scope() as session:
            stats.files_deleted = await LibraryRepository(session).mark_missing_files(
                stats.seen_paths, show_id=target_show_id
            )
        if stats.files_deleted:
            logger.info(f"Marked {stats.files_deleted} missing files as deleted")
        await self.registry.yield_to_event_loop()

        tracker.set_phase(ScanPhase.COMPLETE)

    async def _save_items(
        self,
        tracker: TaskProgressTracker,
        items: list[ScanItem],
        target_show_id: int | None,
        stats: _ScanStats,
    ) -> None:
        writer = LibraryBatchWriter(self.database.session_scope, target_show_id=target_show_id)
        batch_size = self.settings.tasks.scan_batch_size

        for start in range(0, len(items), batch_size):
            self._check_cancelled(tracker)
            batch = items[start : start + batch_size]
            try:
                result = await writer.write_batch(batch)
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.warning(f"Scan batch of {len(batch)} files failed: {reason}")
                for item in batch:
                    tracker.increment_failed(item.label, reason)
            else:
                stats.files_added += result.added
                stats.files_updated += result.updated
                tracker.increment_success_many(len(batch), batch[-1].label)
                tracker.update_details(
                    files_added=stats.files_added, files_updated=stats.files_updated
                )
            await self.registry.yield_to_event_loop()

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _resolve_roots(
        self, options: ScanOptions, target_show_id: int | None
    ) -> list[Path]:
        library = self.settings.library
        if not library.is_configured:
            raise ConfigurationError("At least one of TV_SHOWS_PATH or MOVIES_PATH must be set")

        if target_show_id is None:
            return library.roots()

        async with self.database.session_scope() as session:
            await ShowRepository(session).get_or_raise(target_show_id)

        folder = options.target_folder_name
        candidates = [root / folder for root in library.roots() if folder]
        existing = [path for path in candidates if path.is_dir()]
        if not existing:
            raise EntityNotFoundException("Show folder", folder)
        return existing

    def _check_cancelled(self, tracker: TaskProgressTracker) -> None:
        if self.registry.is_cancelled(tracker.task_id):
            raise ScanCancelledError()

    async def _save_history(
        self,
        tracker: TaskProgressTracker,
        scan_id: int,
        status: ScanStatus,
        stats: _ScanStats,
    ) -> None:
        try:
            async with self.database.session_scope() as session:
                await ScanHistoryRepository(session).finish(
                    scan_id,
                    status=status,
                    files_scanned=stats.files_scanned,
                    files_added=stats.files_added,
                    files_updated=stats.files_updated,
                    files_deleted=stats.files_deleted,
                    errors=tracker.get_progress().errors,
                )
        except Exception:
            # History is bookkeeping, the task result still has to go out
            logger.exception(f"Failed to save history for scan {scan_id}")
