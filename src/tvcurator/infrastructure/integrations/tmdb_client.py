"""TMDB HTTP client implementation."""

import logging
from typing import Any, cast

import httpx

from tvcurator.config import TMDBSettings
from tvcurator.domain.exceptions import MetadataProviderError
from tvcurator.domain.ports import ITMDBClient

logger = logging.getLogger(__name__)


class TMDBClient(ITMDBClient):
    """HTTP client for TMDB v3 TV endpoints.

    Rate limiting is NOT done here - the metadata workers sleep a fixed delay
    between items, which keeps us well under TMDB's limits without a lock.
    """

    # Hey future me, TMDB accepts the v4 "API Read Access Token" as a Bearer header on the v3
    # endpoints. That's what users paste into TMDB_API_KEY. The old v3 api_key query param also
    # works but we don't support it - one auth style is enough.
    def __init__(self, settings: TMDBSettings, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize TMDB client.

        Args:
            settings: TMDB configuration settings
            client: Optional preconfigured httpx client (tests)
        """
        self.settings = settings
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                headers={
                    "Authorization": f"Bearer {self.settings.api_key}",
                    "Accept": "application/json",
                },
                timeout=self.settings.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET a TMDB endpoint and decode JSON.

        Raises:
            MetadataProviderError: On any non-2xx response
        """
        response = await self._get_client().get(path, params=params)
        if response.is_error:
            logger.debug(f"TMDB {path} returned {response.status_code}")
            raise MetadataProviderError(
                f"TMDB API error: {response.status_code}",
                status_code=response.status_code,
            )
        return cast(dict[str, Any], response.json())

    async def search_tv(self, query: str, year: int | None = None) -> list[dict[str, Any]]:
        """Search TV shows by name (optionally by first-air year)."""
        params: dict[str, Any] = {"query": query}
        if year:
            params["first_air_date_year"] = year
        data = await self._get("/search/tv", params=params)
        return cast(list[dict[str, Any]], data.get("results") or [])

    async def get_show(self, tmdb_id: int) -> dict[str, Any]:
        """Get show details."""
        return await self._get(f"/tv/{tmdb_id}")

    async def get_season(self, tmdb_id: int, season_number: int) -> dict[str, Any]:
        """Get season details with episodes."""
        return await self._get(f"/tv/{tmdb_id}/season/{season_number}")
