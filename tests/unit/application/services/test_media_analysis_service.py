"""Tests for MediaAnalysisService (ffprobe itself is mocked)."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from tvcurator.application.services.media_analysis_service import MediaAnalysisService
from tvcurator.application.tasks import TaskRegistry
from tvcurator.config import FFprobeSettings
from tvcurator.domain.entities import TaskStatus
from tvcurator.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    MediaAnalysisError,
    ValidationException,
)
from tvcurator.infrastructure.media import parse_ffprobe_output
from tvcurator.infrastructure.persistence import (
    Database,
    EpisodeFileModel,
    LibraryRepository,
    MediaTrackModel,
    TVShowModel,
)

MTIME = datetime(2024, 3, 1, tzinfo=UTC)

FFPROBE_OUTPUT = {
    "streams": [
        {
            "index": 0,
            "codec_type": "video",
            "codec_name": "hevc",
            "width": 3840,
            "height": 2160,
            "color_transfer": "smpte2084",
            "side_data_list": [{"side_data_type": "Mastering display metadata"}],
        },
        {"index": 1, "codec_type": "audio", "codec_name": "eac3", "tags": {"language": "eng"}},
        {"index": 2, "codec_type": "audio", "codec_name": "aac", "tags": {"language": "ger"}},
        {"index": 3, "codec_type": "subtitle", "codec_name": "subrip", "tags": {"language": "eng"}},
    ],
    "format": {"format_name": "matroska,webm", "duration": "2580.48"},
}


@pytest.fixture
def service(registry: TaskRegistry, database: Database) -> MediaAnalysisService:
    """Service with a configured (never executed) ffprobe path."""
    return MediaAnalysisService(registry, database, FFprobeSettings(path="/usr/bin/ffprobe"))


@pytest.fixture
def mock_extract(mocker) -> AsyncMock:
    """Patch extract_media_info to return the canned 4K HDR analysis."""
    return mocker.patch(
        "tvcurator.application.services.media_analysis_service.extract_media_info",
        new_callable=AsyncMock,
        return_value=parse_ffprobe_output(FFPROBE_OUTPUT),
    )


async def seed_files(database: Database, *names: str, exists: bool = True) -> tuple[int, list[int]]:
    """Create Lost / season 1 with one episode per file, return (show id, file ids)."""
    async with database.session_scope() as session:
        show = TVShowModel(title="Lost")
        session.add(show)
        await session.flush()
        repo = LibraryRepository(session)
        season = await repo.upsert_season(show.id, 1)
        for number, name in enumerate(names, start=1):
            episode = await repo.upsert_episode(season.id, number)
            await repo.upsert_episode_file(episode.id, f"/tv/Lost/{name}", name, 10, MTIME)
        await session.flush()
        files = (await session.execute(select(EpisodeFileModel).order_by(EpisodeFileModel.id))).scalars().all()
        for file in files:
            file.file_exists = exists
        return show.id, [f.id for f in files]


class TestAnalyzeAndSave:
    """Test single-file analysis."""

    async def test_stores_summary_and_tracks(
        self, service: MediaAnalysisService, database: Database, mock_extract: AsyncMock
    ) -> None:
        _, (file_id,) = await seed_files(database, "S01E01.mkv")

        await service.analyze_and_save(file_id)

        mock_extract.assert_awaited_once_with("/usr/bin/ffprobe", "/tv/Lost/S01E01.mkv", 30.0)
        async with database.session_scope() as session:
            file = await session.get(EpisodeFileModel, file_id)
            tracks = (await session.execute(select(MediaTrackModel))).scalars().all()
        assert (file.codec, file.resolution, file.hdr_type) == ("hevc", "4K", "HDR10")
        assert file.audio_languages == ["eng", "ger"]
        assert file.metadata_source == "ffprobe"
        assert file.media_info_extracted_at is not None
        assert len(tracks) == 4

    async def test_reanalysis_replaces_tracks(
        self, service: MediaAnalysisService, database: Database, mock_extract: AsyncMock
    ) -> None:
        _, (file_id,) = await seed_files(database, "S01E01.mkv")

        await service.analyze_and_save(file_id)
        await service.analyze_and_save(file_id)

        async with database.session_scope() as session:
            tracks = (await session.execute(select(MediaTrackModel))).scalars().all()
        assert len(tracks) == 4

    async def test_failure_is_recorded_on_file(
        self, service: MediaAnalysisService, database: Database, mocker
    ) -> None:
        mocker.patch(
            "tvcurator.application.services.media_analysis_service.extract_media_info",
            new_callable=AsyncMock,
            side_effect=MediaAnalysisError("FFprobe failed with exit code 1"),
        )
        _, (file_id,) = await seed_files(database, "S01E01.mkv")

        with pytest.raises(MediaAnalysisError):
            await service.analyze_and_save(file_id)

        async with database.session_scope() as session:
            file = await session.get(EpisodeFileModel, file_id)
        assert file.media_info_error == "FFprobe failed with exit code 1"
        assert file.media_info_extracted_at is not None

    async def test_unknown_and_missing_files(
        self, service: MediaAnalysisService, database: Database
    ) -> None:
        _, (file_id,) = await seed_files(database, "S01E01.mkv", exists=False)

        with pytest.raises(EntityNotFoundException):
            await service.analyze_and_save(999)
        with pytest.raises(ValidationException, match="no longer exists"):
            await service.analyze_and_save(file_id)


class TestAnalysisTasks:
    """Test the ffprobe-analyze and ffprobe-bulk-analyze tasks."""

    async def test_file_analysis_task_completes(
        self,
        service: MediaAnalysisService,
        registry: TaskRegistry,
        database: Database,
        mock_extract: AsyncMock,
        wait_for_condition,
    ) -> None:
        _, (file_id,) = await seed_files(database, "S01E01.mkv")

        started = await service.start_file_analysis(file_id)
        tracker = registry.get_tracker(started.task_id)
        await wait_for_condition(lambda: tracker.is_terminal)

        assert started.message == "Analysis started"
        progress = tracker.get_progress()
        assert progress.status is TaskStatus.COMPLETED
        assert progress.title == "FFprobe: S01E01.mkv"
        assert progress.details.file_id == file_id

    async def test_file_analysis_failure_fails_task(
        self,
        service: MediaAnalysisService,
        registry: TaskRegistry,
        database: Database,
        mocker,
        wait_for_condition,
    ) -> None:
        mocker.patch(
            "tvcurator.application.services.media_analysis_service.extract_media_info",
            new_callable=AsyncMock,
            side_effect=MediaAnalysisError("FFprobe timed out analyzing: /tv/Lost/S01E01.mkv"),
        )
        _, (file_id,) = await seed_files(database, "S01E01.mkv")

        started = await service.start_file_analysis(file_id)
        tracker = registry.get_tracker(started.task_id)
        await wait_for_condition(lambda: tracker.is_terminal)

        progress = tracker.get_progress()
        assert progress.status is TaskStatus.FAILED
        assert progress.failed == 1
        assert progress.errors[0].item == "S01E01.mkv"

    async def test_bulk_analysis_counts_per_file(
        self,
        service: MediaAnalysisService,
        registry: TaskRegistry,
        database: Database,
        mocker,
        wait_for_condition,
    ) -> None:
        result = parse_ffprobe_output(FFPROBE_OUTPUT)
        mocker.patch(
            "tvcurator.application.services.media_analysis_service.extract_media_info",
            new_callable=AsyncMock,
            side_effect=[result, MediaAnalysisError("FFprobe failed with exit code 1"), result],
        )
        show_id, _ = await seed_files(database, "S01E01.mkv", "S01E02.mkv", "S01E03.mkv")

        started = await service.start_bulk_analysis("show", show_id=show_id)
        tracker = registry.get_tracker(started.task_id)
        await wait_for_condition(lambda: tracker.is_terminal)

        assert started.total == 3
        assert started.message == "Analysis started for 3 files"
        progress = tracker.get_progress()
        assert progress.title == "FFprobe: Lost"
        assert progress.status is TaskStatus.COMPLETED
        assert (progress.succeeded, progress.failed) == (2, 1)
        assert progress.errors[0].item == "S01E02.mkv"

    async def test_bulk_analysis_nothing_to_do(
        self, service: MediaAnalysisService, database: Database
    ) -> None:
        started = await service.start_bulk_analysis("library")

        assert started.task_id is None
        assert started.total == 0
        assert started.message == "All files already analyzed"

    async def test_bulk_analysis_scope_validation(self, service: MediaAnalysisService) -> None:
        with pytest.raises(ValidationException, match="showId is required"):
            await service.start_bulk_analysis("show")
        with pytest.raises(ValidationException, match="seasonId is required"):
            await service.start_bulk_analysis("season", show_id=1)

    async def test_unconfigured_ffprobe(self, registry: TaskRegistry, database: Database) -> None:
        service = MediaAnalysisService(registry, database, FFprobeSettings(path=""))

        with pytest.raises(ConfigurationError, match="FFPROBE_PATH"):
            await service.start_bulk_analysis("library")
