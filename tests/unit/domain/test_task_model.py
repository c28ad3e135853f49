"""Unit tests for the task domain model and its wire format."""

from datetime import UTC, datetime

import pytest

from tvcurator.domain.entities import (
    FileDetails,
    ScanDetails,
    ScanPhase,
    TaskError,
    TaskProgress,
    TaskStatus,
    TaskType,
    serialize_progress,
)

STARTED = datetime(2024, 5, 1, 20, 0, tzinfo=UTC)


def make_progress(**overrides) -> TaskProgress:
    fields = {
        "task_id": "abc",
        "type": TaskType.SCAN,
        "status": TaskStatus.RUNNING,
        "started_at": STARTED,
    }
    fields.update(overrides)
    return TaskProgress(**fields)


class TestTaskStatus:
    """Tests for TaskStatus."""

    @pytest.mark.parametrize(
        ("status", "terminal"),
        [
            (TaskStatus.PENDING, False),
            (TaskStatus.RUNNING, False),
            (TaskStatus.COMPLETED, True),
            (TaskStatus.FAILED, True),
            (TaskStatus.CANCELLED, True),
        ],
    )
    def test_is_terminal(self, status: TaskStatus, terminal: bool) -> None:
        assert status.is_terminal is terminal


class TestTaskType:
    """Tests for TaskType classification."""

    def test_scan_types(self) -> None:
        assert {t for t in TaskType if t.is_scan} == {TaskType.SCAN, TaskType.SHOW_SCAN}

    def test_worker_types(self) -> None:
        assert {t.value for t in TaskType if t.runs_in_worker} == {
            "tmdb-bulk-match",
            "tmdb-bulk-refresh",
            "tmdb-refresh-missing",
            "tmdb-single-refresh",
            "tmdb-import",
        }


class TestSerializeProgress:
    """Tests for serialize_progress."""

    def test_base_fields_are_camel_case(self) -> None:
        progress = make_progress(
            type=TaskType.TMDB_BULK_REFRESH,
            title="Bulk refresh",
            total=5,
            processed=2,
            succeeded=1,
            failed=1,
            current_item="Show 2",
            errors=[TaskError(item="Show 2", error="TMDB API error: 500")],
        )

        data = serialize_progress(progress)

        assert data == {
            "taskId": "abc",
            "type": "tmdb-bulk-refresh",
            "title": "Bulk refresh",
            "status": "running",
            "total": 5,
            "processed": 2,
            "succeeded": 1,
            "failed": 1,
            "currentItem": "Show 2",
            "errors": [{"item": "Show 2", "error": "TMDB API error: 500"}],
            "startedAt": "2024-05-01T20:00:00+00:00",
            "completedAt": None,
        }

    def test_scan_details_are_flattened(self) -> None:
        progress = make_progress(
            details=ScanDetails(phase=ScanPhase.SAVING, scan_id=7, files_added=3)
        )

        data = serialize_progress(progress)

        assert data["phase"] == "saving"
        assert data["scanId"] == 7
        assert data["targetShowId"] is None
        assert (data["filesAdded"], data["filesUpdated"], data["filesDeleted"]) == (3, 0, 0)
        assert "kind" not in data

    def test_file_details(self) -> None:
        data = serialize_progress(
            make_progress(type=TaskType.FFPROBE_ANALYZE, details=FileDetails(file_id=12))
        )

        assert data["fileId"] == 12
        assert "phase" not in data

    def test_copy_is_deep(self) -> None:
        progress = make_progress(errors=[TaskError(item="a", error="b")])
        clone = progress.copy()
        clone.errors.append(TaskError(item="c", error="d"))

        assert len(progress.errors) == 1
