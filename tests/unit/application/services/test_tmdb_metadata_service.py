"""Tests for TMDBMetadataService matching and sync."""

from datetime import UTC, datetime

import pytest
from sqlalchemy import select

from tvcurator.application.services.tmdb_metadata_service import (
    TMDBMetadataService,
    parse_tmdb_date,
)
from tvcurator.domain.exceptions import InvalidStateException
from tvcurator.infrastructure.persistence import (
    Database,
    EpisodeModel,
    LibraryRepository,
    SeasonModel,
    TVShowModel,
)


@pytest.fixture
def service(fake_tmdb, database: Database) -> TMDBMetadataService:
    """Metadata service on the fake client without rate-limit sleeps."""
    return TMDBMetadataService(fake_tmdb, database.session_scope, season_delay=0)


class TestParseTmdbDate:
    """Test TMDB date parsing."""

    def test_valid(self) -> None:
        assert parse_tmdb_date("2004-09-22") == datetime(2004, 9, 22, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "2004", "not-a-date"])
    def test_unknown(self, value: str | None) -> None:
        assert parse_tmdb_date(value) is None


class TestAutoMatch:
    """Test the confidence ladder."""

    async def test_exact_title_and_year(self, service: TMDBMetadataService, fake_tmdb) -> None:
        fake_tmdb.search_results["Lost"] = [
            {"id": 1, "name": "Lost Girl", "first_air_date": "2010-09-12"},
            {"id": 4607, "name": "Lost", "first_air_date": "2004-09-22"},
        ]

        result = await service.auto_match_show("Lost", 2004)

        assert (result.tmdb_id, result.confidence) == (4607, 1.0)

    async def test_year_picks_between_remakes(
        self, service: TMDBMetadataService, fake_tmdb
    ) -> None:
        fake_tmdb.search_results["Doctor Who"] = [
            {"id": 121, "name": "Doctor Who", "first_air_date": "1963-11-23"},
            {"id": 57243, "name": "Doctor Who", "first_air_date": "2005-03-26"},
        ]

        result = await service.auto_match_show("Doctor Who", 2005)

        assert (result.tmdb_id, result.confidence) == (57243, 1.0)

    async def test_exact_title_wrong_year(self, service: TMDBMetadataService, fake_tmdb) -> None:
        fake_tmdb.search_results["Fargo"] = [
            {"id": 60622, "name": "Fargo", "first_air_date": "2014-04-15"}
        ]

        result = await service.auto_match_show("Fargo", 1996)

        assert (result.tmdb_id, result.confidence) == (60622, 0.9)

    async def test_partial_title_on_top_hit(
        self, service: TMDBMetadataService, fake_tmdb
    ) -> None:
        fake_tmdb.search_results["The Office"] = [{"id": 2316, "name": "The Office (US)"}]

        result = await service.auto_match_show("The Office")

        assert (result.tmdb_id, result.confidence) == (2316, 0.7)

    async def test_no_match(self, service: TMDBMetadataService, fake_tmdb) -> None:
        fake_tmdb.search_results["Home Movies 1987"] = [{"id": 9, "name": "Family Guy"}]

        assert await service.auto_match_show("Home Movies 1987") is None
        assert await service.auto_match_show("Nothing At All") is None


class TestRefresh:
    """Test metadata refresh of existing hierarchy."""

    async def test_refresh_updates_only_existing_episodes(
        self, service: TMDBMetadataService, fake_tmdb, database: Database
    ) -> None:
        async with database.session_scope() as session:
            show = TVShowModel(title="Lost", tmdb_id=4607)
            session.add(show)
            await session.flush()
            season = await LibraryRepository(session).upsert_season(show.id, 1)
            await LibraryRepository(session).upsert_episode(season.id, 1)
            show_id = show.id
        fake_tmdb.shows[4607] = {"id": 4607, "overview": "Plane crash.", "status": "Ended"}
        fake_tmdb.seasons[(4607, 1)] = {
            "name": "Season 1",
            "episodes": [
                {"episode_number": 1, "name": "Pilot (1)"},
                {"episode_number": 2, "name": "Pilot (2)"},
            ],
        }

        await service.refresh_show_metadata(show_id)

        async with database.session_scope() as session:
            show = await session.get(TVShowModel, show_id)
            seasons = (await session.execute(select(SeasonModel))).scalars().all()
            episodes = (await session.execute(select(EpisodeModel))).scalars().all()
        assert show.network_status == "Ended"
        assert [s.name for s in seasons] == ["Season 1"]
        assert [e.title for e in episodes] == ["Pilot (1)"]

    async def test_season_unknown_to_tmdb_is_skipped(
        self, service: TMDBMetadataService, fake_tmdb, database: Database
    ) -> None:
        async with database.session_scope() as session:
            show = TVShowModel(title="Lost", tmdb_id=4607)
            session.add(show)
            await session.flush()
            await LibraryRepository(session).upsert_season(show.id, 0, name="Specials")
            show_id = show.id
        fake_tmdb.shows[4607] = {"id": 4607}

        await service.refresh_show_metadata(show_id)

        async with database.session_scope() as session:
            (season,) = (await session.execute(select(SeasonModel))).scalars().all()
        assert season.name == "Specials"

    async def test_unmatched_show_cannot_refresh(
        self, service: TMDBMetadataService, database: Database
    ) -> None:
        async with database.session_scope() as session:
            show = TVShowModel(title="Lost")
            session.add(show)
            await session.flush()
            show_id = show.id

        with pytest.raises(InvalidStateException):
            await service.refresh_show_metadata(show_id)
