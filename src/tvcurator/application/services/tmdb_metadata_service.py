"""TMDB metadata matching and synchronisation for TV shows."""

# Hey future me - this service is what the metadata WORKERS run (see application/tasks/
# worker_runtime.py). Every public method opens its own session_scope, so one show == one
# transaction: if show #3 blows up, shows #1 and #2 are already committed and the worker just
# records an error for #3 and moves on.

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from tvcurator.domain.exceptions import InvalidStateException
from tvcurator.domain.ports import ITMDBClient
from tvcurator.infrastructure.persistence.repositories import LibraryRepository, ShowRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# Below this a search hit is a guess, not a match
MIN_MATCH_CONFIDENCE = 0.7


@dataclass(frozen=True)
class MatchResult:
    """Best TMDB candidate for a local show."""

    tmdb_id: int
    confidence: float


def parse_tmdb_date(value: str | None) -> datetime | None:
    """Parse TMDB's "YYYY-MM-DD" dates (empty string means unknown)."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=UTC)
    except ValueError:
        return None


def _show_fields(details: dict[str, Any]) -> dict[str, Any]:
    return {
        "poster_path": details.get("poster_path"),
        "backdrop_path": details.get("backdrop_path"),
        "description": details.get("overview"),
        "vote_average": details.get("vote_average"),
        "first_air_date": parse_tmdb_date(details.get("first_air_date")),
        "network_status": details.get("status"),
        "tmdb_season_count": details.get("number_of_seasons"),
        "tmdb_episode_count": details.get("number_of_episodes"),
    }


def _season_fields(season: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": season.get("name"),
        "tmdb_season_id": season.get("id"),
        "poster_path": season.get("poster_path"),
        "description": season.get("overview"),
        "air_date": parse_tmdb_date(season.get("air_date")),
    }


def _episode_fields(episode: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": episode.get("name"),
        "tmdb_episode_id": episode.get("id"),
        "still_path": episode.get("still_path"),
        "description": episode.get("overview"),
        "air_date": parse_tmdb_date(episode.get("air_date")),
        "runtime": episode.get("runtime"),
        "vote_average": episode.get("vote_average"),
    }


class TMDBMetadataService:
    """Match local shows to TMDB and pull season/episode metadata."""

    def __init__(
        self,
        client: ITMDBClient,
        session_scope: SessionScope,
        season_delay: float = 0.25,
    ) -> None:
        """
        Args:
            client: TMDB client
            session_scope: Factory for transactional sessions (Database.session_scope)
            season_delay: Pause between season requests (rate limit)
        """
        self.client = client
        self.session_scope = session_scope
        self.season_delay = season_delay

    # Yo, the confidence ladder: exact title + matching year = 1.0, exact title with a different
    # year = 0.9, one title containing the other (only checked on the TOP hit) = 0.7. Anything
    # else is None - better to leave a show unmatched than to glue the wrong poster on it.
    async def auto_match_show(self, title: str, year: int | None = None) -> MatchResult | None:
        """Find the most likely TMDB show for a local title."""
        results = await self.client.search_tv(title, year)
        if not results:
            return None

        wanted = title.lower().strip()
        exact_title: MatchResult | None = None
        for result in results:
            name = str(result.get("name") or "").lower().strip()
            if name != wanted:
                continue
            result_year = str(result.get("first_air_date") or "")[:4]
            if not year or result_year == str(year):
                return MatchResult(tmdb_id=int(result["id"]), confidence=1.0)
            # Remakes share titles ("Doctor Who" 1963/2005), keep looking for the right year
            exact_title = exact_title or MatchResult(tmdb_id=int(result["id"]), confidence=0.9)
        if exact_title is not None:
            return exact_title

        first = results[0]
        first_name = str(first.get("name") or "").lower().strip()
        if first_name and (wanted in first_name or first_name in wanted):
            return MatchResult(tmdb_id=int(first["id"]), confidence=0.7)
        return None

    async def match_show(self, show_id: int, tmdb_id: int, sync_seasons: bool = False) -> None:
        """Link a show to a TMDB id and copy its metadata."""
        details = await self.client.get_show(tmdb_id)
        async with self.session_scope() as session:
            await ShowRepository(session).update_metadata(
                show_id, tmdb_id=int(details["id"]), **_show_fields(details)
            )
        logger.debug(f"Matched show {show_id} to TMDB {tmdb_id}")

        if sync_seasons and details.get("seasons"):
            await self.sync_show_seasons(show_id, tmdb_id)

    async def sync_show_seasons(self, show_id: int, tmdb_id: int) -> None:
        """Create/update ALL seasons and episodes TMDB knows about."""
        details = await self.client.get_show(tmdb_id)
        for tmdb_season in details.get("seasons") or []:
            number = int(tmdb_season["season_number"])
            season_details = await self.client.get_season(tmdb_id, number)

            async with self.session_scope() as session:
                library = LibraryRepository(session)
                season = await library.upsert_season(show_id, number, **_season_fields(tmdb_season))
                for tmdb_episode in season_details.get("episodes") or []:
                    await library.upsert_episode(
                        season.id,
                        int(tmdb_episode["episode_number"]),
                        **_episode_fields(tmdb_episode),
                    )

            await asyncio.sleep(self.season_delay)

    async def refresh_show_metadata(self, show_id: int) -> None:
        """Re-pull metadata of a matched show. Never creates seasons/episodes."""
        async with self.session_scope() as session:
            show = await ShowRepository(session).get_or_raise(show_id)
            tmdb_id = show.tmdb_id

        if not tmdb_id:
            raise InvalidStateException("Show is not matched to TMDB")

        details = await self.client.get_show(tmdb_id)
        async with self.session_scope() as session:
            await ShowRepository(session).update_metadata(show_id, **_show_fields(details))

        await self.update_existing_season_metadata(show_id, tmdb_id)

    async def update_existing_season_metadata(self, show_id: int, tmdb_id: int) -> None:
        """Update seasons/episodes we already have; skip ones TMDB doesn't know."""
        async for season_number, season_details in self._existing_seasons(show_id, tmdb_id):
            async with self.session_scope() as session:
                library = LibraryRepository(session)
                season = await library.upsert_season(
                    show_id, season_number, **_season_fields(season_details)
                )
                by_number = {
                    int(e["episode_number"]): e for e in season_details.get("episodes") or []
                }
                for episode in await library.list_episodes(season.id):
                    tmdb_episode = by_number.get(episode.episode_number)
                    if tmdb_episode is None:
                        continue
                    for name, value in _episode_fields(tmdb_episode).items():
                        setattr(episode, name, value)
            await asyncio.sleep(self.season_delay)

    async def _existing_seasons(
        self, show_id: int, tmdb_id: int
    ) -> AsyncIterator[tuple[int, dict[str, Any]]]:
        async with self.session_scope() as session:
            numbers = [s.season_number for s in await LibraryRepository(session).list_seasons(show_id)]

        for number in numbers:
            try:
                season_details = await self.client.get_season(tmdb_id, number)
            except Exception as e:
                # Specials and fan-made seasons often don't exist on TMDB
                logger.debug(f"Skipping season {number} of show {show_id}: {e}")
                continue
            yield number, season_details

    async def import_season(
        self, show_id: int, season: dict[str, Any]
    ) -> int:
        """Upsert one season from an import payload, returning its id."""
        async with self.session_scope() as session:
            model = await LibraryRepository(session).upsert_season(
                show_id,
                int(season["season_number"]),
                name=season.get("name"),
                tmdb_season_id=season.get("tmdb_season_id"),
                poster_path=season.get("poster_path"),
                description=season.get("description"),
                air_date=parse_tmdb_date(season.get("air_date")),
            )
            return model.id

    async def import_episode(self, season_id: int, episode: dict[str, Any]) -> None:
        """Upsert one episode from an import payload."""
        fields: dict[str, Any] = {
            "title": episode.get("title"),
            "tmdb_episode_id": episode.get("tmdb_episode_id"),
            "still_path": episode.get("still_path"),
            "description": episode.get("description"),
            "air_date": parse_tmdb_date(episode.get("air_date")),
            "runtime": episode.get("runtime"),
            "vote_average": episode.get("vote_average"),
        }
        if episode.get("monitor_status"):
            fields["monitor_status"] = episode["monitor_status"]
        async with self.session_scope() as session:
            await LibraryRepository(session).upsert_episode(
                season_id, int(episode["episode_number"]), **fields
            )
