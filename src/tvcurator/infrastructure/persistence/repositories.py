"""Repositories for the library hierarchy, scan history and app settings."""

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tvcurator.domain.entities import FileStatus, ScanStatus, TaskError, UpsertOutcome
from tvcurator.domain.exceptions import EntityNotFoundException

from .models import (
    AppSettingsModel,
    EpisodeFileModel,
    EpisodeModel,
    ScanHistoryModel,
    SeasonModel,
    TVShowModel,
    ensure_utc_aware,
    utc_now,
)

logger = logging.getLogger(__name__)


# Hey future me, same deal as everywhere: repos get an injected AsyncSession and NEVER commit.
# The caller's session_scope() commits (or rolls back the whole batch on error - the scanner
# depends on that for batch isolation!). Repos only stage changes and flush when they need ids.
class ShowRepository:
    """Queries and writes for TV shows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get(self, show_id: int) -> TVShowModel | None:
        """Get a show by id."""
        return await self.session.get(TVShowModel, show_id)

    async def get_or_raise(self, show_id: int) -> TVShowModel:
        """Get a show by id or raise EntityNotFoundException."""
        show = await self.get(show_id)
        if show is None:
            raise EntityNotFoundException("TVShow", show_id)
        return show

    async def list_all(self) -> list[TVShowModel]:
        """All shows ordered by title."""
        result = await self.session.execute(select(TVShowModel).order_by(TVShowModel.title))
        return list(result.scalars().all())

    async def list_unmatched(self) -> list[TVShowModel]:
        """Shows without a TMDB id (candidates for bulk match)."""
        stmt = (
            select(TVShowModel)
            .where(TVShowModel.tmdb_id.is_(None))
            .order_by(TVShowModel.title)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_matched(self) -> list[TVShowModel]:
        """Shows with a TMDB id (candidates for refresh)."""
        stmt = (
            select(TVShowModel)
            .where(TVShowModel.tmdb_id.is_not(None))
            .order_by(TVShowModel.title)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_missing_seasons(self) -> list[TVShowModel]:
        """Matched shows that have no seasons yet (refresh-missing candidates)."""
        season_count = (
            select(func.count(SeasonModel.id))
            .where(SeasonModel.tv_show_id == TVShowModel.id)
            .scalar_subquery()
        )
        stmt = (
            select(TVShowModel)
            .where(TVShowModel.tmdb_id.is_not(None), season_count == 0)
            .order_by(TVShowModel.title)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_metadata(self, show_id: int, **fields: Any) -> None:
        """Overwrite metadata columns of a show."""
        show = await self.get_or_raise(show_id)
        for name, value in fields.items():
            setattr(show, name, value)
        show.last_metadata_sync = utc_now()


class LibraryRepository:
    """Season/episode hierarchy and episode-file writes."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def upsert_season(
        self, show_id: int, season_number: int, **fields: Any
    ) -> SeasonModel:
        """Create or update a season by (show, number)."""
        stmt = select(SeasonModel).where(
            SeasonModel.tv_show_id == show_id,
            SeasonModel.season_number == season_number,
        )
        season = (await self.session.execute(stmt)).scalar_one_or_none()
        if season is None:
            season = SeasonModel(tv_show_id=show_id, season_number=season_number, **fields)
            self.session.add(season)
            await self.session.flush()
        else:
            for name, value in fields.items():
                setattr(season, name, value)
        return season

    async def upsert_episode(
        self, season_id: int, episode_number: int, **fields: Any
    ) -> EpisodeModel:
        """Create or update an episode by (season, number)."""
        stmt = select(EpisodeModel).where(
            EpisodeModel.season_id == season_id,
            EpisodeModel.episode_number == episode_number,
        )
        episode = (await self.session.execute(stmt)).scalar_one_or_none()
        if episode is None:
            episode = EpisodeModel(season_id=season_id, episode_number=episode_number, **fields)
            self.session.add(episode)
            await self.session.flush()
        else:
            for name, value in fields.items():
                setattr(episode, name, value)
        return episode

    async def list_seasons(self, show_id: int) -> list[SeasonModel]:
        """Existing seasons of a show, ordered by number."""
        stmt = (
            select(SeasonModel)
            .where(SeasonModel.tv_show_id == show_id)
            .order_by(SeasonModel.season_number)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_episodes(self, season_id: int) -> list[EpisodeModel]:
        """Existing episodes of a season."""
        stmt = select(EpisodeModel).where(EpisodeModel.season_id == season_id)
        return list((await self.session.execute(stmt)).scalars().all())

    # Yo, this is the change detector of the scanner! Size OR mtime differs -> updated. A row that
    # was marked missing (file_exists=False) and shows up again also counts as updated, so
    # re-mounted drives bring their files back to life.
    async def upsert_episode_file(
        self,
        episode_id: int,
        filepath: str,
        filename: str,
        file_size: int,
        date_modified: datetime,
    ) -> UpsertOutcome:
        """Create or update the file record for a discovered file.

        Returns:
            CREATED, UPDATED or UNCHANGED
        """
        stmt = select(EpisodeFileModel).where(EpisodeFileModel.filepath == filepath)
        existing = (await self.session.execute(stmt)).scalar_one_or_none()

        if existing is None:
            self.session.add(
                EpisodeFileModel(
                    episode_id=episode_id,
                    filepath=filepath,
                    filename=filename,
                    file_size=file_size,
                    date_modified=date_modified,
                    file_exists=True,
                    status=FileStatus.ACTIVE.value,
                )
            )
            return UpsertOutcome.CREATED

        changed = (
            existing.file_size != file_size
            or ensure_utc_aware(existing.date_modified) != ensure_utc_aware(date_modified)
            or not existing.file_exists
        )
        if not changed and existing.episode_id == episode_id:
            return UpsertOutcome.UNCHANGED

        existing.episode_id = episode_id
        existing.filename = filename
        existing.file_size = file_size
        existing.date_modified = date_modified
        existing.file_exists = True
        existing.status = FileStatus.ACTIVE.value
        return UpsertOutcome.UPDATED if changed else UpsertOutcome.UNCHANGED

    async def mark_missing_files(
        self, seen_paths: set[str], show_id: int | None = None
    ) -> int:
        """Mark every existing file not in ``seen_paths`` as deleted.

        Args:
            seen_paths: Paths observed during the current walk
            show_id: Restrict to one show's files (show scan), None = whole library

        Returns:
            Number of files newly marked as deleted
        """
        stmt = select(EpisodeFileModel.id, EpisodeFileModel.filepath).where(
            EpisodeFileModel.file_exists.is_(True)
        )
        if show_id is not None:
            stmt = (
                stmt.join(EpisodeModel, EpisodeFileModel.episode_id == EpisodeModel.id)
                .join(SeasonModel, EpisodeModel.season_id == SeasonModel.id)
                .where(SeasonModel.tv_show_id == show_id)
            )

        rows = (await self.session.execute(stmt)).all()
        missing_ids = [row.id for row in rows if row.filepath not in seen_paths]
        if not missing_ids:
            return 0

        await self.session.execute(
            update(EpisodeFileModel)
            .where(EpisodeFileModel.id.in_(missing_ids))
            .values(file_exists=False, status=FileStatus.DELETED.value)
        )
        return len(missing_ids)


class EpisodeFileRepository:
    """Reads for media analysis."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get(self, file_id: int) -> EpisodeFileModel | None:
        """Get a file record by id."""
        return await self.session.get(EpisodeFileModel, file_id)

    async def list_for_analysis(
        self,
        show_id: int | None = None,
        season_id: int | None = None,
        reanalyze: bool = False,
    ) -> list[EpisodeFileModel]:
        """Existing files in scope, only never-analyzed ones unless ``reanalyze``."""
        stmt = select(EpisodeFileModel).where(EpisodeFileModel.file_exists.is_(True))
        if not reanalyze:
            stmt = stmt.where(EpisodeFileModel.media_info_extracted_at.is_(None))
        if season_id is not None:
            stmt = stmt.join(EpisodeModel).where(EpisodeModel.season_id == season_id)
        elif show_id is not None:
            stmt = (
                stmt.join(EpisodeModel)
                .join(SeasonModel)
                .where(SeasonModel.tv_show_id == show_id)
            )
        stmt = stmt.order_by(EpisodeFileModel.id)
        return list((await self.session.execute(stmt)).scalars().all())


class ScanHistoryRepository:
    """Persisted scan statistics."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def start(self, scan_type: str) -> ScanHistoryModel:
        """Insert a running scan record and return it (with id)."""
        record = ScanHistoryModel(scan_type=scan_type, status=ScanStatus.RUNNING.value)
        self.session.add(record)
        await self.session.flush()
        return record

    async def finish(
        self,
        scan_id: int,
        status: ScanStatus,
        files_scanned: int,
        files_added: int,
        files_updated: int,
        files_deleted: int,
        errors: Iterable[TaskError],
    ) -> None:
        """Write the final counters of a scan."""
        record = await self.session.get(ScanHistoryModel, scan_id)
        if record is None:
            raise EntityNotFoundException("ScanHistory", scan_id)
        record.status = status.value
        record.completed_at = utc_now()
        record.files_scanned = files_scanned
        record.files_added = files_added
        record.files_updated = files_updated
        record.files_deleted = files_deleted
        error_list = [{"item": e.item, "error": e.error} for e in errors]
        record.errors = error_list or None

    async def list_recent(self, limit: int = 20) -> list[ScanHistoryModel]:
        """Latest scans first."""
        stmt = select(ScanHistoryModel).order_by(ScanHistoryModel.id.desc()).limit(limit)
        return list((await self.session.execute(stmt)).scalars().all())


class AppSettingsRepository:
    """Key-value runtime settings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get(self, key: str) -> AppSettingsModel | None:
        """Get a setting row."""
        return await self.session.get(AppSettingsModel, key)

    async def get_int(self, key: str, default: int | None = None) -> int | None:
        """Get an integer setting, ``default`` if unset or unparsable."""
        row = await self.get(key)
        if row is None or row.value is None:
            return default
        try:
            return int(json.loads(row.value))
        except (ValueError, TypeError):
            logger.warning(f"Ignoring non-integer value for setting {key}: {row.value!r}")
            return default

    async def set(
        self, key: str, value: Any, value_type: str = "string", category: str = "general"
    ) -> None:
        """Insert or overwrite a setting."""
        stored = json.dumps(value) if value_type != "string" else str(value)
        row = await self.get(key)
        if row is None:
            self.session.add(
                AppSettingsModel(
                    key=key, value=stored, value_type=value_type, category=category
                )
            )
        else:
            row.value = stored
            row.value_type = value_type
            row.category = category
