"""Shared fixtures for the tvcurator test suite."""

import asyncio
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest

from tvcurator.application.tasks import TaskRegistry
from tvcurator.config import (
    DatabaseSettings,
    FFprobeSettings,
    LibrarySettings,
    Settings,
    TaskSettings,
    TMDBSettings,
)
from tvcurator.domain.ports import ITMDBClient
from tvcurator.infrastructure.persistence import Database


class FakeTMDBClient(ITMDBClient):
    """In-memory TMDB stand-in for worker and metadata service tests.

    ``shows`` maps tmdb id -> show details (with a "seasons" list), ``seasons``
    maps (tmdb id, season number) -> season details, ``search_results`` maps a
    query -> result list. ``fail_on`` makes search/get_show raise for a title or id.
    """

    def __init__(self) -> None:
        self.shows: dict[int, dict[str, Any]] = {}
        self.seasons: dict[tuple[int, int], dict[str, Any]] = {}
        self.search_results: dict[str, list[dict[str, Any]]] = {}
        self.fail_on: set[Any] = set()
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    async def search_tv(self, query: str, year: int | None = None) -> list[dict[str, Any]]:
        self.calls.append(("search_tv", query))
        if query in self.fail_on:
            raise RuntimeError(f"TMDB API error: 500 for {query}")
        return self.search_results.get(query, [])

    async def get_show(self, tmdb_id: int) -> dict[str, Any]:
        self.calls.append(("get_show", tmdb_id))
        if tmdb_id in self.fail_on:
            raise RuntimeError("TMDB API error: 500")
        return self.shows[tmdb_id]

    async def get_season(self, tmdb_id: int, season_number: int) -> dict[str, Any]:
        self.calls.append(("get_season", (tmdb_id, season_number)))
        return self.seasons[(tmdb_id, season_number)]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_tmdb() -> FakeTMDBClient:
    """Fresh fake TMDB client."""
    return FakeTMDBClient()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """File-backed SQLite URL (worker threads need a real file, not :memory:)."""
    return f"sqlite+aiosqlite:///{tmp_path / 'tvcurator-test.db'}"


@pytest.fixture
def library_root(tmp_path: Path) -> Path:
    """Empty TV library root."""
    root = tmp_path / "tv"
    root.mkdir()
    return root


@pytest.fixture
def settings(database_url: str, library_root: Path) -> Settings:
    """Settings pointing at the temp database and library."""
    return Settings(
        database=DatabaseSettings(url=database_url),
        library=LibrarySettings(tv_shows_path=library_root, movies_path=None),
        tasks=TaskSettings(
            max_parallel_tasks=3,
            retention_seconds=60,
            scan_batch_size=100,
            scan_yield_interval=10,
        ),
        tmdb=TMDBSettings(api_key="test-token", rate_limit_delay=0, refresh_rate_limit_delay=0),
        ffprobe=FFprobeSettings(path="/usr/bin/ffprobe", timeout=5),
    )


@pytest.fixture
async def database(database_url: str) -> AsyncGenerator[Database, None]:
    """Database with all tables created."""
    db = Database(database_url)
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
async def registry() -> AsyncGenerator[TaskRegistry, None]:
    """Registry with the default limit and a long retention window."""
    task_registry = TaskRegistry(max_parallel_tasks=3, retention_seconds=60)
    yield task_registry
    await task_registry.shutdown()


@pytest.fixture
def make_video(library_root: Path) -> Callable[..., Path]:
    """Create a fake video file below the library root."""

    def _make(relative: str, content: bytes = b"\x00" * 16) -> Path:
        path = library_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _make


async def wait_until(
    predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01
) -> None:
    """Poll ``predicate`` on the running loop until it's true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_for_condition() -> Callable[..., Any]:
    """Expose ``wait_until`` to tests as a fixture."""
    return wait_until
