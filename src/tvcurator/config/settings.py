"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./data/tvcurator.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")
    pool_pre_ping: bool = Field(default=True)


# Hey future me - TV_SHOWS_PATH and MOVIES_PATH are the library ROOTS the scanner walks!
# At least one of them must be set, otherwise a scan fails immediately with a
# ConfigurationError (we don't guess paths). Movies are walked too, files that
# don't parse as SxxEyy just end up as per-item errors.
class LibrarySettings(BaseSettings):
    """Media library locations."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    tv_shows_path: Path | None = Field(default=None, description="Root folder of TV shows")
    movies_path: Path | None = Field(default=None, description="Root folder of movies")

    def roots(self) -> list[Path]:
        """Return configured library roots, TV first."""
        return [p for p in (self.tv_shows_path, self.movies_path) if p is not None]

    @property
    def is_configured(self) -> bool:
        """Check if at least one library root is set."""
        return bool(self.roots())


class TaskSettings(BaseSettings):
    """Background task core settings."""

    model_config = SettingsConfigDict(env_prefix="TASK_", extra="ignore")

    # Env default only - the value stored in app_settings (Settings page) wins at startup
    max_parallel_tasks: int = Field(default=3, description="Concurrently running tasks")
    retention_seconds: float = Field(
        default=3600.0, description="How long finished tasks stay queryable"
    )
    scan_batch_size: int = Field(default=100, ge=1, description="Files per DB batch")
    scan_yield_interval: int = Field(
        default=10, ge=1, description="Discovered files between event loop yields"
    )


class TMDBSettings(BaseSettings):
    """TMDB metadata provider settings."""

    model_config = SettingsConfigDict(env_prefix="TMDB_", extra="ignore")

    api_key: str = Field(default="", description="TMDB v4 read access token")
    base_url: str = Field(default="https://api.themoviedb.org/3")
    timeout: float = Field(default=30.0)
    # Delay between items inside metadata workers (TMDB allows ~40 req/10s)
    rate_limit_delay: float = Field(default=0.25, ge=0)
    refresh_rate_limit_delay: float = Field(default=0.5, ge=0)

    @property
    def is_configured(self) -> bool:
        """Check if an API key is set."""
        return bool(self.api_key)


class FFprobeSettings(BaseSettings):
    """FFprobe binary settings."""

    model_config = SettingsConfigDict(env_prefix="FFPROBE_", extra="ignore")

    path: str = Field(default="", description="Path to the ffprobe binary")
    timeout: float = Field(default=30.0, description="Seconds before ffprobe is killed")

    @property
    def is_configured(self) -> bool:
        """Check if an ffprobe path is set."""
        return bool(self.path)


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    log_json_format: bool = Field(default=False, description="Emit JSON log lines")


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = Field(default="tvcurator")
    log_level: str = Field(default="INFO")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    library: LibrarySettings = Field(default_factory=LibrarySettings)
    tasks: TaskSettings = Field(default_factory=TaskSettings)
    tmdb: TMDBSettings = Field(default_factory=TMDBSettings)
    ffprobe: FFprobeSettings = Field(default_factory=FFprobeSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    # Yo, returns None for anything that isn't a file-backed SQLite URL (postgres, :memory:)
    def _get_sqlite_db_path(self) -> Path | None:
        """Extract the SQLite database file path from the database URL."""
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path.startswith(":memory:"):
            return None
        return Path(path.split("?", 1)[0])

    def ensure_directories(self) -> None:
        """Create the directory holding the SQLite database if needed."""
        db_path = self._get_sqlite_db_path()
        if db_path is not None and str(db_path.parent) not in ("", "."):
            db_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
