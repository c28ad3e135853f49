"""Domain ports (interfaces) for external services."""

from abc import ABC, abstractmethod
from typing import Any


class ITMDBClient(ABC):
    """Port for TMDB TV metadata operations.

    Hey future me - worker threads build their own implementation through a
    factory (see application/tasks/worker_runtime.py), so tests can swap in a
    fake without touching HTTP at all.
    """

    @abstractmethod
    async def search_tv(self, query: str, year: int | None = None) -> list[dict[str, Any]]:
        """
        Search TV shows by name.

        Args:
            query: Show title
            year: Optional first-air-date year filter

        Returns:
            Raw search results (id, name, first_air_date, ...)
        """
        pass

    @abstractmethod
    async def get_show(self, tmdb_id: int) -> dict[str, Any]:
        """
        Get show details including the season list.

        Args:
            tmdb_id: TMDB show id

        Returns:
            Raw show details
        """
        pass

    @abstractmethod
    async def get_season(self, tmdb_id: int, season_number: int) -> dict[str, Any]:
        """
        Get one season including its episodes.

        Args:
            tmdb_id: TMDB show id
            season_number: Season number (0 = specials)

        Returns:
            Raw season details
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP resources."""
        pass


__all__ = ["ITMDBClient"]
