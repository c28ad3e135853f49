"""Tests for the library scan task."""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import func, select

from tvcurator.application.services.scanner import (
    PARSE_ERROR,
    LibraryBatchWriter,
    ScanOptions,
    ScanOrchestrator,
)
from tvcurator.application.tasks import TaskProgressTracker, TaskRegistry
from tvcurator.config import LibrarySettings, Settings, TaskSettings
from tvcurator.domain.entities import FileStatus, ScanPhase, TaskStatus, TaskType
from tvcurator.domain.exceptions import ValidationException
from tvcurator.infrastructure.persistence import (
    Database,
    EpisodeFileModel,
    ScanHistoryRepository,
    TVShowModel,
)


@pytest.fixture
def orchestrator(registry: TaskRegistry, database: Database, settings: Settings) -> ScanOrchestrator:
    """Scan orchestrator on the temp library."""
    return ScanOrchestrator(registry, database, settings)


@pytest.fixture
def sample_library(make_video: Callable[..., Path]) -> list[Path]:
    """Three well-named episodes plus one file nobody can parse."""
    return [
        make_video("Breaking Bad (2008)/Season 01/Breaking Bad - S01E01 - Pilot.mkv"),
        make_video("Breaking Bad (2008)/Season 01/Breaking Bad - S01E02 - Cat's in the Bag.mkv"),
        make_video("Lost/Season 01/Lost - S01E01.mkv"),
        make_video("random_home_video.mkv"),
    ]


async def run_scan(
    orchestrator: ScanOrchestrator,
    registry: TaskRegistry,
    wait_for_condition: Callable[..., Any],
    options: ScanOptions | None = None,
) -> TaskProgressTracker:
    result = await orchestrator.start_scan(options)
    tracker = registry.get_tracker(result.task_id)
    assert tracker is not None
    await wait_for_condition(lambda: tracker.is_terminal)
    return tracker


async def count_files(database: Database, **filters: Any) -> int:
    async with database.session_scope() as session:
        stmt = select(func.count(EpisodeFileModel.id)).filter_by(**filters)
        return int((await session.execute(stmt)).scalar_one())


class TestFullScan:
    """Test full library scans."""

    async def test_scan_counts_valid_and_unparsable_files(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        database: Database,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        """3 valid files + 1 unparsable: completes with one per-item error."""
        tracker = await run_scan(orchestrator, registry, wait_for_condition)

        progress = tracker.get_progress()
        assert progress.status is TaskStatus.COMPLETED
        assert progress.type is TaskType.SCAN
        assert progress.total == 4
        assert progress.processed == 4
        assert progress.succeeded == 3
        assert progress.failed == 1
        assert len(progress.errors) == 1
        assert progress.errors[0].item == "random_home_video.mkv"
        assert progress.errors[0].error == PARSE_ERROR
        assert progress.details.phase is ScanPhase.COMPLETE
        assert progress.details.files_added == 3
        assert await count_files(database) == 3

    async def test_scan_creates_shows_from_folders(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        database: Database,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        await run_scan(orchestrator, registry, wait_for_condition)

        async with database.session_scope() as session:
            shows = (await session.execute(select(TVShowModel).order_by(TVShowModel.title))).scalars().all()
            assert [(s.title, s.year, s.folder_name) for s in shows] == [
                ("Breaking Bad", 2008, "Breaking Bad (2008)"),
                ("Lost", None, "Lost"),
            ]

    async def test_rescan_of_unchanged_library_adds_nothing(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        database: Database,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        """Second scan classifies every file as unchanged."""
        await run_scan(orchestrator, registry, wait_for_condition)
        tracker = await run_scan(orchestrator, registry, wait_for_condition)

        progress = tracker.get_progress()
        assert progress.status is TaskStatus.COMPLETED
        assert progress.succeeded == 3
        assert progress.details.files_added == 0
        assert progress.details.files_updated == 0
        assert progress.details.files_deleted == 0
        assert await count_files(database) == 3

    async def test_changed_file_counts_as_updated(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        await run_scan(orchestrator, registry, wait_for_condition)
        sample_library[0].write_bytes(b"\x01" * 64)

        tracker = await run_scan(orchestrator, registry, wait_for_condition)

        details = tracker.get_progress().details
        assert details.files_added == 0
        assert details.files_updated == 1

    async def test_removed_file_marked_deleted(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        database: Database,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        await run_scan(orchestrator, registry, wait_for_condition)
        sample_library[2].unlink()

        tracker = await run_scan(orchestrator, registry, wait_for_condition)

        assert tracker.get_progress().details.files_deleted == 1
        assert await count_files(database, status=FileStatus.DELETED.value) == 1
        assert await count_files(database, file_exists=True) == 2

    async def test_scan_history_written(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        database: Database,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        await run_scan(orchestrator, registry, wait_for_condition)

        async with database.session_scope() as session:
            history = await ScanHistoryRepository(session).list_recent(5)

        assert len(history) == 1
        record = history[0]
        assert record.status == "completed"
        assert record.scan_type == "full"
        assert record.files_scanned == 4
        assert record.files_added == 3
        assert record.completed_at is not None
        assert record.errors == [{"item": "random_home_video.mkv", "error": PARSE_ERROR}]

    async def test_empty_library_completes(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        wait_for_condition,
    ) -> None:
        tracker = await run_scan(orchestrator, registry, wait_for_condition)

        progress = tracker.get_progress()
        assert progress.status is TaskStatus.COMPLETED
        assert progress.total == 0
        assert progress.processed == 0

    async def test_unconfigured_library_fails_task(
        self,
        registry: TaskRegistry,
        database: Database,
        settings: Settings,
        wait_for_condition,
    ) -> None:
        unconfigured = settings.model_copy(
            update={"library": LibrarySettings(tv_shows_path=None, movies_path=None)}
        )
        orchestrator = ScanOrchestrator(registry, database, unconfigured)

        tracker = await run_scan(orchestrator, registry, wait_for_condition)

        progress = tracker.get_progress()
        assert progress.status is TaskStatus.FAILED
        assert progress.errors[-1].error == (
            "At least one of TV_SHOWS_PATH or MOVIES_PATH must be set"
        )

        async with database.session_scope() as session:
            history = await ScanHistoryRepository(session).list_recent(1)
        assert history[0].status == "failed"


class TestBatchIsolation:
    """Test that one failed batch doesn't take the scan down."""

    async def test_failed_batch_marks_only_its_items(
        self,
        registry: TaskRegistry,
        database: Database,
        settings: Settings,
        make_video: Callable[..., Path],
        wait_for_condition,
        mocker,
    ) -> None:
        for number in range(1, 5):
            make_video(f"Show/Season 01/Show - S01E0{number}.mkv")
        small_batches = settings.model_copy(
            update={"tasks": TaskSettings(scan_batch_size=2, retention_seconds=60)}
        )
        orchestrator = ScanOrchestrator(registry, database, small_batches)

        original = LibraryBatchWriter.write_batch
        calls = 0

        async def flaky_write(self, items):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RuntimeError("database is locked")
            return await original(self, items)

        mocker.patch.object(LibraryBatchWriter, "write_batch", flaky_write)

        tracker = await run_scan(orchestrator, registry, wait_for_condition)

        progress = tracker.get_progress()
        assert progress.status is TaskStatus.COMPLETED
        assert progress.processed == 4
        assert progress.succeeded == 2
        assert progress.failed == 2
        assert [e.item for e in progress.errors] == ["Show - S01E03.mkv", "Show - S01E04.mkv"]
        assert all(e.error == "database is locked" for e in progress.errors)
        assert await count_files(database) == 2


class TestShowScan:
    """Test single-show scans."""

    async def test_show_scan_requires_show_id(self, orchestrator: ScanOrchestrator) -> None:
        with pytest.raises(ValidationException):
            await orchestrator.start_scan(ScanOptions(scan_type="show"))

    async def test_show_scan_only_touches_that_show(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        database: Database,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        async with database.session_scope() as session:
            show = TVShowModel(title="Lost", folder_name="Lost")
            session.add(show)
            await session.flush()
            show_id = show.id

        tracker = await run_scan(
            orchestrator,
            registry,
            wait_for_condition,
            ScanOptions(scan_type="show", target_show_id=show_id),
        )

        progress = tracker.get_progress()
        assert progress.type is TaskType.SHOW_SCAN
        assert progress.title == "Scan: Lost"
        assert progress.status is TaskStatus.COMPLETED
        assert progress.total == 1
        assert progress.details.target_show_id == show_id
        assert await count_files(database) == 1

    async def test_show_scan_with_missing_folder_fails(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        database: Database,
        wait_for_condition,
    ) -> None:
        async with database.session_scope() as session:
            show = TVShowModel(title="Gone", folder_name="Gone (1999)")
            session.add(show)
            await session.flush()
            show_id = show.id

        tracker = await run_scan(
            orchestrator,
            registry,
            wait_for_condition,
            ScanOptions(scan_type="show", target_show_id=show_id),
        )

        progress = tracker.get_progress()
        assert progress.status is TaskStatus.FAILED
        assert "Gone (1999)" in progress.errors[-1].error


class TestScanCancellation:
    """Test cancelling a scan."""

    async def test_cancel_before_discovery_finishes(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        database: Database,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        result = await orchestrator.start_scan()
        assert registry.request_cancellation(result.task_id) is True

        tracker = registry.get_tracker(result.task_id)
        await wait_for_condition(lambda: tracker.is_terminal)

        assert tracker.status is TaskStatus.CANCELLED
        assert await count_files(database) == 0
        async with database.session_scope() as session:
            history = await ScanHistoryRepository(session).list_recent(1)
        assert history[0].id == result.scan_id
        assert history[0].status == "cancelled"

    async def test_pending_scan_cancelled_without_running(
        self,
        database: Database,
        settings: Settings,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        registry = TaskRegistry(max_parallel_tasks=1)
        blocker = registry.create_task(TaskType.TMDB_BULK_MATCH)
        orchestrator = ScanOrchestrator(registry, database, settings)

        result = await orchestrator.start_scan()
        assert result.status == "pending"
        registry.request_cancellation(result.task_id)
        blocker.complete()

        tracker = registry.get_tracker(result.task_id)
        assert tracker.status is TaskStatus.CANCELLED
        assert tracker.get_progress().details.phase is ScanPhase.DISCOVERING
        assert await count_files(database) == 0

        # History row is closed even though the scan body never ran
        await asyncio.sleep(0.2)
        async with database.session_scope() as session:
            history = await ScanHistoryRepository(session).list_recent(1)
        assert history[0].id == result.scan_id
        assert history[0].status == "cancelled"
        assert history[0].completed_at is not None
        await registry.shutdown()


class TestEventLoopFairness:
    """Test that a scan hands control back to the loop between phases."""

    async def test_other_coroutines_run_between_parsing_and_saving(
        self,
        orchestrator: ScanOrchestrator,
        registry: TaskRegistry,
        sample_library: list[Path],
        wait_for_condition,
    ) -> None:
        ticks = 0

        async def ticker() -> None:
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0)

        ticker_task = asyncio.create_task(ticker())
        phase_ticks: dict[ScanPhase, int] = {}

        def on_progress(progress: Any) -> None:
            phase_ticks.setdefault(progress.details.phase, ticks)

        try:
            result = await orchestrator.start_scan()
            tracker = registry.get_tracker(result.task_id)
            tracker.subscribe(on_progress)
            await wait_for_condition(lambda: tracker.is_terminal)
        finally:
            ticker_task.cancel()

        assert tracker.status is TaskStatus.COMPLETED
        assert phase_ticks[ScanPhase.PARSING] < phase_ticks[ScanPhase.SAVING]
        assert phase_ticks[ScanPhase.CLEANUP] < phase_ticks[ScanPhase.COMPLETE]
