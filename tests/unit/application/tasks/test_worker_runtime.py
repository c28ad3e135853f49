"""Tests for the code that runs inside metadata worker threads."""

from typing import Any

import pytest
from sqlalchemy import select

from tvcurator.application.tasks.worker_runtime import WorkerContext, run_worker
from tvcurator.domain.entities import TaskType
from tvcurator.infrastructure.persistence import (
    Database,
    EpisodeModel,
    SeasonModel,
    TVShowModel,
)


def make_context(
    database_url: str, task_type: TaskType | str, task_data: dict[str, Any]
) -> WorkerContext:
    return WorkerContext(
        task_id="task-42",
        task_type=task_type.value if isinstance(task_type, TaskType) else task_type,
        task_data=task_data,
        database_url=database_url,
        rate_limit_delay=0,
        refresh_rate_limit_delay=0,
    )


async def add_shows(database: Database, *shows: dict[str, Any]) -> list[int]:
    async with database.session_scope() as session:
        models = [TVShowModel(**fields) for fields in shows]
        session.add_all(models)
        await session.flush()
        return [m.id for m in models]


def progress_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [m for m in messages if m["type"] == "progress"]


class TestBulkRefresh:
    """Test tmdb-bulk-refresh inside a worker."""

    async def test_one_failing_item_does_not_fail_task(
        self, database: Database, database_url: str, fake_tmdb
    ) -> None:
        """Item 2 of 5 throws: the task completes with 4 ok and 1 error naming item 2."""
        ids = await add_shows(
            database, *({"title": f"Show {n}", "tmdb_id": 100 + n} for n in range(1, 6))
        )
        for n in range(1, 6):
            fake_tmdb.shows[100 + n] = {"id": 100 + n, "overview": f"About show {n}", "seasons": []}
        fake_tmdb.fail_on.add(102)

        messages: list[dict[str, Any]] = []
        context = make_context(
            database_url,
            TaskType.TMDB_BULK_REFRESH,
            {"shows": [{"id": i, "title": f"Show {n}"} for n, i in enumerate(ids, start=1)]},
        )
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        last = progress_messages(messages)[-1]
        assert last["processed"] == 5
        assert last["succeeded"] == 4
        assert last["failed"] == 1
        assert last["errors"] == [{"item": "Show 2", "error": "TMDB API error: 500"}]
        assert messages[-1] == {"type": "complete", "task_id": "task-42"}
        assert fake_tmdb.closed

        async with database.session_scope() as session:
            show = await session.get(TVShowModel, ids[0])
            assert show.description == "About show 1"
            assert show.last_metadata_sync is not None

    async def test_progress_after_every_item(
        self, database: Database, database_url: str, fake_tmdb
    ) -> None:
        ids = await add_shows(
            database, {"title": "A", "tmdb_id": 1}, {"title": "B", "tmdb_id": 2}
        )
        fake_tmdb.shows = {1: {"id": 1}, 2: {"id": 2}}

        messages: list[dict[str, Any]] = []
        context = make_context(
            database_url,
            TaskType.TMDB_BULK_REFRESH,
            {"shows": [{"id": ids[0], "title": "A"}, {"id": ids[1], "title": "B"}]},
        )
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        assert [(m["processed"], m["current_item"]) for m in progress_messages(messages)] == [
            (1, "A"),
            (2, "B"),
        ]


class TestBulkMatch:
    """Test tmdb-bulk-match inside a worker."""

    async def test_match_and_no_confident_match(
        self, database: Database, database_url: str, fake_tmdb
    ) -> None:
        ids = await add_shows(
            database, {"title": "Lost", "year": 2004}, {"title": "Home Movies 1987"}
        )
        fake_tmdb.search_results["Lost"] = [
            {"id": 4607, "name": "Lost", "first_air_date": "2004-09-22"}
        ]
        fake_tmdb.shows[4607] = {"id": 4607, "overview": "Plane crash.", "number_of_seasons": 6}

        messages: list[dict[str, Any]] = []
        context = make_context(
            database_url,
            TaskType.TMDB_BULK_MATCH,
            {
                "shows": [
                    {"id": ids[0], "title": "Lost", "year": 2004},
                    {"id": ids[1], "title": "Home Movies 1987", "year": None},
                ]
            },
        )
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        last = progress_messages(messages)[-1]
        assert (last["succeeded"], last["failed"]) == (1, 1)
        assert last["errors"] == [
            {"item": "Home Movies 1987", "error": "No confident match found"}
        ]

        async with database.session_scope() as session:
            lost = await session.get(TVShowModel, ids[0])
            assert lost.tmdb_id == 4607
            assert lost.tmdb_season_count == 6
            unmatched = await session.get(TVShowModel, ids[1])
            assert unmatched.tmdb_id is None


class TestRefreshMissing:
    """Test tmdb-refresh-missing inside a worker."""

    async def test_creates_seasons_and_episodes(
        self, database: Database, database_url: str, fake_tmdb
    ) -> None:
        (show_id,) = await add_shows(database, {"title": "Lost", "tmdb_id": 4607})
        fake_tmdb.shows[4607] = {
            "id": 4607,
            "seasons": [{"season_number": 1, "name": "Season 1", "id": 14041}],
        }
        fake_tmdb.seasons[(4607, 1)] = {
            "episodes": [
                {"episode_number": 1, "name": "Pilot (1)", "air_date": "2004-09-22"},
                {"episode_number": 2, "name": "Pilot (2)", "air_date": ""},
            ]
        }

        messages: list[dict[str, Any]] = []
        context = make_context(
            database_url,
            TaskType.TMDB_REFRESH_MISSING,
            {"shows": [{"id": show_id, "title": "Lost", "tmdb_id": 4607}]},
        )
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        assert messages[-1]["type"] == "complete"
        async with database.session_scope() as session:
            season = (await session.execute(select(SeasonModel))).scalar_one()
            episodes = (
                (await session.execute(select(EpisodeModel).order_by(EpisodeModel.episode_number)))
                .scalars()
                .all()
            )
        assert season.name == "Season 1"
        assert season.tmdb_season_id == 14041
        assert [e.title for e in episodes] == ["Pilot (1)", "Pilot (2)"]
        assert episodes[0].air_date is not None
        assert episodes[1].air_date is None


class TestSingleRefresh:
    """Test tmdb-single-refresh inside a worker."""

    async def test_failure_is_item_error(
        self, database: Database, database_url: str, fake_tmdb
    ) -> None:
        (show_id,) = await add_shows(database, {"title": "Lost", "tmdb_id": 4607})
        fake_tmdb.fail_on.add(4607)

        messages: list[dict[str, Any]] = []
        context = make_context(
            database_url,
            TaskType.TMDB_SINGLE_REFRESH,
            {"show_id": show_id, "show_title": "Lost"},
        )
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        last = progress_messages(messages)[-1]
        assert (last["processed"], last["failed"]) == (1, 1)
        assert last["errors"][0]["item"] == "Lost"
        assert messages[-1]["type"] == "complete"


class TestImport:
    """Test tmdb-import inside a worker."""

    async def test_imports_per_episode(
        self, database: Database, database_url: str, fake_tmdb
    ) -> None:
        (show_id,) = await add_shows(database, {"title": "Lost"})
        payload = {
            "show_id": show_id,
            "seasons": [
                {
                    "season_number": 1,
                    "name": "Season 1",
                    "episodes": [
                        {"episode_number": 1, "title": "Pilot (1)"},
                        {"episode_number": 2, "title": "Pilot (2)", "monitor_status": "unwanted"},
                    ],
                },
                {"season_number": 2, "episodes": [{"episode_number": 1, "title": "Man of Science"}]},
            ],
        }

        messages: list[dict[str, Any]] = []
        context = make_context(database_url, TaskType.TMDB_IMPORT, payload)
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        progress = progress_messages(messages)
        assert [m["current_item"] for m in progress] == ["S1E1", "S1E2", "S2E1"]
        assert progress[-1]["succeeded"] == 3
        assert messages[-1]["type"] == "complete"

        async with database.session_scope() as session:
            episodes = (await session.execute(select(EpisodeModel))).scalars().all()
        by_title = {e.title: e for e in episodes}
        assert set(by_title) == {"Pilot (1)", "Pilot (2)", "Man of Science"}
        assert by_title["Pilot (2)"].monitor_status == "unwanted"
        assert by_title["Pilot (1)"].monitor_status == "wanted"

    async def test_failed_season_fails_its_episodes(
        self, database: Database, database_url: str, fake_tmdb
    ) -> None:
        payload = {
            "show_id": 999,  # no such show: the season insert violates the foreign key
            "seasons": [
                {
                    "season_number": 1,
                    "episodes": [{"episode_number": 1}, {"episode_number": 2}],
                }
            ],
        }

        messages: list[dict[str, Any]] = []
        context = make_context(database_url, TaskType.TMDB_IMPORT, payload)
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        last = progress_messages(messages)[-1]
        assert (last["processed"], last["succeeded"], last["failed"]) == (2, 0, 2)
        assert [e["item"] for e in last["errors"]] == ["S1E1", "S1E2"]
        assert messages[-1]["type"] == "complete"


class TestWorkerFailures:
    """Test task-level failures."""

    async def test_unknown_task_type(self, database: Database, database_url: str, fake_tmdb) -> None:
        messages: list[dict[str, Any]] = []
        context = make_context(database_url, "tmdb-teleport", {})
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        assert messages == [
            {"type": "fail", "task_id": "task-42", "error": "Unknown task type: tmdb-teleport"}
        ]

    async def test_crash_outside_item_loop_fails_task(
        self, database: Database, database_url: str, fake_tmdb
    ) -> None:
        messages: list[dict[str, Any]] = []
        context = make_context(database_url, TaskType.TMDB_IMPORT, {"seasons": []})
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        assert len(messages) == 1
        assert messages[0]["type"] == "fail"
        assert fake_tmdb.closed

    @pytest.mark.parametrize("task_type", [TaskType.TMDB_BULK_MATCH, TaskType.TMDB_BULK_REFRESH])
    async def test_empty_work_list_completes(
        self, database: Database, database_url: str, fake_tmdb, task_type: TaskType
    ) -> None:
        messages: list[dict[str, Any]] = []
        context = make_context(database_url, task_type, {"shows": []})
        await run_worker(context, messages.append, client_factory=lambda _: fake_tmdb)

        assert messages == [{"type": "complete", "task_id": "task-42"}]
