"""External service integrations."""

from tvcurator.infrastructure.integrations.tmdb_client import TMDBClient

__all__ = ["TMDBClient"]
