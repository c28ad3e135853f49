"""Batch persistence of parsed episode files."""

import logging
from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from pathlib import PurePath

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tvcurator.application.services.scanner.filesystem import DiscoveredFile
from tvcurator.domain.entities import UpsertOutcome
from tvcurator.domain.value_objects import ParsedEpisode, show_name_match_key
from tvcurator.domain.value_objects.episode_parsing import SEASON_FOLDER_PATTERN
from tvcurator.infrastructure.persistence import LibraryRepository, TVShowModel

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass(frozen=True)
class ScanItem:
    """A discovered file that parsed successfully."""

    file: DiscoveredFile
    parsed: ParsedEpisode

    @property
    def label(self) -> str:
        """Filename shown in errors and as current item."""
        return PurePath(self.file.path).name


@dataclass
class BatchResult:
    """Outcome counts of one committed batch."""

    added: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def saved(self) -> int:
        """Items that made it to the database (changed or not)."""
        return self.added + self.updated + self.unchanged


def show_folder_name(filepath: str) -> str | None:
    """Folder that holds the show (skipping a "Season 01" level)."""
    parents = PurePath(filepath).parents
    if not parents or not parents[0].name:
        return None
    folder = parents[0].name
    if SEASON_FOLDER_PATTERN.match(folder) and len(parents) > 1:
        folder = parents[1].name
    return folder or None


# Hey future me - ONE batch == ONE transaction. If anything in here raises, session_scope()
# rolls back the whole batch and the orchestrator records every item of it as failed. Earlier
# batches are already committed and stay put. That's the "batch isolation" the scan relies on,
# so don't sneak a commit() in here!
class LibraryBatchWriter:
    """Writes scan items (show -> season -> episode -> file) in batches."""

    def __init__(self, session_scope: SessionScope, target_show_id: int | None = None) -> None:
        """
        Args:
            session_scope: Factory for transactional sessions
            target_show_id: Pin every file to this show (show scans)
        """
        self.session_scope = session_scope
        self.target_show_id = target_show_id

    async def write_batch(self, items: Sequence[ScanItem]) -> BatchResult:
        """Persist one batch in a single transaction."""
        result = BatchResult()
        async with self.session_scope() as session:
            library = LibraryRepository(session)
            shows = await self._load_shows(session)

            for item in items:
                show_id = await self._resolve_show(session, shows, item)
                parsed = item.parsed
                season = await library.upsert_season(show_id, parsed.season_number)

                episode_fields = {"title": parsed.episode_title} if parsed.episode_title else {}
                episode = await library.upsert_episode(
                    season.id, parsed.episode_number, **episode_fields
                )

                outcome = await library.upsert_episode_file(
                    episode_id=episode.id,
                    filepath=item.file.path,
                    filename=item.label,
                    file_size=item.file.size,
                    date_modified=item.file.modified_at,
                )
                if outcome is UpsertOutcome.CREATED:
                    result.added += 1
                elif outcome is UpsertOutcome.UPDATED:
                    result.updated += 1
                else:
                    result.unchanged += 1

        logger.debug(
            f"Saved batch of {len(items)} files "
            f"({result.added} added, {result.updated} updated, {result.unchanged} unchanged)"
        )
        return result

    async def _load_shows(self, session: AsyncSession) -> dict[str, list[TVShowModel]]:
        rows = (await session.execute(select(TVShowModel).order_by(TVShowModel.id))).scalars()
        by_key: dict[str, list[TVShowModel]] = {}
        for show in rows:
            by_key.setdefault(show_name_match_key(show.title), []).append(show)
        return by_key

    # Yo, show matching rules: same match key ("The Office (US)" == "the.office.us"). If the file
    # carries a year, a show with THAT year wins, then a show without any year (which gets the year
    # back-filled). Two shows with the same name but different years ("Doctor Who" 1963 vs 2005)
    # stay separate.
    async def _resolve_show(
        self,
        session: AsyncSession,
        shows: dict[str, list[TVShowModel]],
        item: ScanItem,
    ) -> int:
        if self.target_show_id is not None:
            return self.target_show_id

        parsed = item.parsed
        key = show_name_match_key(parsed.show_name)
        candidates = shows.get(key, [])

        show: TVShowModel | None = None
        if parsed.year is None:
            show = candidates[0] if candidates else None
        else:
            show = next((s for s in candidates if s.year == parsed.year), None)
            if show is None:
                show = next((s for s in candidates if s.year is None), None)
                if show is not None:
                    show.year = parsed.year

        if show is None:
            show = TVShowModel(
                title=parsed.show_name,
                year=parsed.year,
                folder_name=show_folder_name(item.file.path),
            )
            session.add(show)
            await session.flush()
            shows.setdefault(key, []).append(show)
            logger.info(f"Created show '{parsed.show_name}' ({parsed.year or 'no year'})")

        return show.id
