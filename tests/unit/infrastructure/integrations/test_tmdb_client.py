"""Tests for TMDB client implementation."""

import pytest
from pytest_httpx import HTTPXMock

from tvcurator.config import TMDBSettings
from tvcurator.domain.exceptions import MetadataProviderError
from tvcurator.infrastructure.integrations import TMDBClient

BASE = "https://api.themoviedb.org/3"


@pytest.fixture
def tmdb_settings() -> TMDBSettings:
    """Create TMDB settings for testing."""
    return TMDBSettings(api_key="read-token")


@pytest.fixture
async def tmdb_client(tmdb_settings: TMDBSettings):
    """Create TMDB client and close it after the test."""
    client = TMDBClient(tmdb_settings)
    yield client
    await client.close()


class TestTMDBClientSearch:
    """Test TV search."""

    async def test_search_sends_bearer_token(
        self, tmdb_client: TMDBClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=f"{BASE}/search/tv?query=Lost",
            match_headers={"Authorization": "Bearer read-token"},
            json={"results": [{"id": 4607, "name": "Lost"}]},
        )

        results = await tmdb_client.search_tv("Lost")

        assert results == [{"id": 4607, "name": "Lost"}]

    async def test_search_with_year(self, tmdb_client: TMDBClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{BASE}/search/tv?query=Lost&first_air_date_year=2004",
            json={"results": []},
        )

        assert await tmdb_client.search_tv("Lost", 2004) == []

    async def test_missing_results_key(
        self, tmdb_client: TMDBClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=f"{BASE}/search/tv?query=Nope", json={})

        assert await tmdb_client.search_tv("Nope") == []


class TestTMDBClientDetails:
    """Test show and season details."""

    async def test_get_show(self, tmdb_client: TMDBClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{BASE}/tv/4607", json={"id": 4607, "name": "Lost"})

        assert (await tmdb_client.get_show(4607))["name"] == "Lost"

    async def test_get_season(self, tmdb_client: TMDBClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{BASE}/tv/4607/season/1",
            json={"season_number": 1, "episodes": [{"episode_number": 1}]},
        )

        season = await tmdb_client.get_season(4607, 1)

        assert season["episodes"] == [{"episode_number": 1}]

    @pytest.mark.parametrize("status_code", [401, 404, 500])
    async def test_error_status_raises(
        self, tmdb_client: TMDBClient, httpx_mock: HTTPXMock, status_code: int
    ) -> None:
        httpx_mock.add_response(url=f"{BASE}/tv/1", status_code=status_code)

        with pytest.raises(MetadataProviderError) as exc_info:
            await tmdb_client.get_show(1)

        assert exc_info.value.status_code == status_code
        assert exc_info.value.message == f"TMDB API error: {status_code}"


class TestTMDBClientLifecycle:
    """Test client creation and close."""

    async def test_close_is_idempotent(self, tmdb_settings: TMDBSettings) -> None:
        client = TMDBClient(tmdb_settings)
        client._get_client()

        await client.close()
        await client.close()

        assert client._client is None

    def test_is_configured(self) -> None:
        assert TMDBSettings(api_key="x").is_configured
        assert not TMDBSettings(api_key="").is_configured
