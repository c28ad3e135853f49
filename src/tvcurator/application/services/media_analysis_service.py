"""FFprobe media analysis as background tasks."""

import logging
from datetime import UTC, datetime
from typing import Literal

from sqlalchemy import delete

from tvcurator.application.tasks.registry import StartedTask, TaskRegistry
from tvcurator.config import FFprobeSettings
from tvcurator.domain.entities import FileDetails, TaskType
from tvcurator.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    ValidationException,
)
from tvcurator.infrastructure.media import ExtractionResult, extract_media_info
from tvcurator.infrastructure.persistence import (
    Database,
    EpisodeFileRepository,
    MediaTrackModel,
    SeasonModel,
    ShowRepository,
)

logger = logging.getLogger(__name__)

AnalysisScope = Literal["library", "show", "season"]


class MediaAnalysisService:
    """Runs ffprobe on episode files and stores the results."""

    def __init__(
        self, registry: TaskRegistry, database: Database, settings: FFprobeSettings
    ) -> None:
        self.registry = registry
        self.database = database
        self.settings = settings

    def ensure_configured(self) -> None:
        """Raise ConfigurationError if no ffprobe binary is configured."""
        if not self.settings.is_configured:
            raise ConfigurationError(
                "FFprobe is not configured. Set FFPROBE_PATH environment variable."
            )

    # Hey future me - on failure we still stamp media_info_extracted_at (with the error text),
    # so bulk runs without reanalyze=True don't hammer the same broken file forever.
    async def analyze_and_save(self, file_id: int) -> ExtractionResult:
        """Run ffprobe on one file and replace its stored media info.

        Raises:
            EntityNotFoundException: unknown file id
            ValidationException: file is marked as missing on disk
            ConfigurationError: no ffprobe binary configured
            MediaAnalysisError: ffprobe failed (error is recorded on the file)
        """
        async with self.database.session_scope() as session:
            file = await EpisodeFileRepository(session).get(file_id)
            if file is None:
                raise EntityNotFoundException("EpisodeFile", file_id)
            if not file.file_exists:
                raise ValidationException(f"File no longer exists on disk: {file.filepath}")
            filepath = file.filepath

        self.ensure_configured()

        try:
            result = await extract_media_info(self.settings.path, filepath, self.settings.timeout)
        except Exception as e:
            await self._record_error(file_id, str(e) or type(e).__name__)
            raise

        async with self.database.session_scope() as session:
            await session.execute(
                delete(MediaTrackModel).where(MediaTrackModel.episode_file_id == file_id)
            )
            file = await EpisodeFileRepository(session).get(file_id)
            if file is None:
                raise EntityNotFoundException("EpisodeFile", file_id)

            summary = result.summary
            file.codec = summary.codec
            file.resolution = summary.resolution
            file.bitrate = summary.bitrate
            file.container = summary.container
            file.audio_format = summary.audio_format
            file.hdr_type = summary.hdr_type
            file.duration = summary.duration
            file.audio_languages = summary.audio_languages
            file.subtitle_languages = summary.subtitle_languages
            file.metadata_source = "ffprobe"
            file.media_info_extracted_at = datetime.now(UTC)
            file.media_info_error = None

            for track in result.tracks:
                session.add(
                    MediaTrackModel(
                        episode_file_id=file_id,
                        track_type=track.track_type.value,
                        track_index=track.track_index,
                        codec=track.codec,
                        codec_long=track.codec_long,
                        width=track.width,
                        height=track.height,
                        bit_depth=track.bit_depth,
                        frame_rate=track.frame_rate,
                        hdr_type=track.hdr_type,
                        profile=track.profile,
                        channels=track.channels,
                        channel_layout=track.channel_layout,
                        sample_rate=track.sample_rate,
                        language=track.language,
                        title=track.title,
                        bitrate=track.bitrate,
                        is_default=track.is_default,
                        is_forced=track.is_forced,
                    )
                )

        logger.info(f"Analyzed file {file_id}: {len(result.tracks)} tracks")
        return result

    async def _record_error(self, file_id: int, message: str) -> None:
        async with self.database.session_scope() as session:
            file = await EpisodeFileRepository(session).get(file_id)
            if file is not None:
                file.media_info_extracted_at = datetime.now(UTC)
                file.media_info_error = message
        logger.warning(f"Media analysis failed for file {file_id}: {message}")

    # =========================================================================
    # Tasks
    # =========================================================================

    async def start_file_analysis(self, file_id: int) -> StartedTask:
        """Create an ffprobe-analyze task for one file."""
        async with self.database.session_scope() as session:
            file = await EpisodeFileRepository(session).get(file_id)
            if file is None:
                raise EntityNotFoundException("EpisodeFile", file_id)
            if not file.file_exists:
                raise ValidationException("File no longer exists on disk")
            filename = file.filename
        self.ensure_configured()

        tracker = self.registry.create_task(
            TaskType.FFPROBE_ANALYZE,
            total=1,
            title=f"FFprobe: {filename}",
            details=FileDetails(file_id=file_id),
        )

        async def run() -> None:
            tracker.set_current_item(filename)
            try:
                await self.analyze_and_save(file_id)
            except Exception as e:
                message = str(e) or "Analysis failed"
                tracker.increment_failed(filename, message)
                tracker.fail(message)
                return
            tracker.increment_success(filename)
            tracker.complete()

        self.registry.launch(tracker, run)
        status = tracker.status.value
        message = "Analysis queued" if status == "pending" else "Analysis started"
        return StartedTask(tracker.task_id, status, 1, message)

    async def start_bulk_analysis(
        self,
        scope: AnalysisScope,
        show_id: int | None = None,
        season_id: int | None = None,
        reanalyze: bool = False,
    ) -> StartedTask:
        """Create an ffprobe-bulk-analyze task for a library/show/season."""
        self.ensure_configured()
        if scope in ("show", "season") and show_id is None:
            raise ValidationException("showId is required for show and season scope.")
        if scope == "season" and season_id is None:
            raise ValidationException("seasonId is required for season scope.")

        title: str | None = None
        async with self.database.session_scope() as session:
            files = await EpisodeFileRepository(session).list_for_analysis(
                show_id=show_id if scope != "library" else None,
                season_id=season_id if scope == "season" else None,
                reanalyze=reanalyze,
            )
            targets = [(f.id, f.filename) for f in files]

            if scope == "show":
                show = await ShowRepository(session).get(show_id)  # type: ignore[arg-type]
                title = f"FFprobe: {show.title if show else 'Unknown Show'}"
            elif scope == "season":
                season = await session.get(SeasonModel, season_id)
                if season is not None:
                    show = await ShowRepository(session).get(season.tv_show_id)
                    show_title = show.title if show else "Unknown Show"
                    title = f"FFprobe: {show_title} S{season.season_number:02d}"

        if not targets:
            message = "No files found" if reanalyze else "All files already analyzed"
            return StartedTask(None, None, 0, message)

        tracker = self.registry.create_task(
            TaskType.FFPROBE_BULK_ANALYZE, total=len(targets), title=title
        )

        # Yo, cancellation is polled BEFORE each file. A file that's already inside ffprobe
        # finishes (max. ffprobe timeout), then the loop sees the flag and stops.
        async def run() -> None:
            for target_id, filename in targets:
                if self.registry.is_cancelled(tracker.task_id):
                    tracker.cancel()
                    return
                tracker.set_current_item(filename)
                try:
                    await self.analyze_and_save(target_id)
                    tracker.increment_success(filename)
                except Exception as e:
                    tracker.increment_failed(filename, str(e) or "Analysis failed")
                await self.registry.yield_to_event_loop()
            tracker.complete()

        self.registry.launch(tracker, run)
        status = tracker.status.value
        verb = "queued" if status == "pending" else "started"
        return StartedTask(
            tracker.task_id, status, len(targets), f"Analysis {verb} for {len(targets)} files"
        )
