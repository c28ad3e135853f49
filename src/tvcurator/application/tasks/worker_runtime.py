"""Code that runs INSIDE a metadata worker thread.

Hey future me - everything in this module executes on the worker's own thread
with its own event loop (``asyncio.run`` in WorkerDispatcher), its own database
engine and its own TMDB client. It must never touch the task registry or a
tracker. The only way out is ``post(message)``, which hands a plain dict to the
server loop.

Message shapes (all plain JSON-able dicts):
    {"type": "progress", "task_id", "processed", "succeeded", "failed",
     "current_item", "errors": [{"item", "error"}, ...]}
    {"type": "complete", "task_id"}
    {"type": "fail", "task_id", "error"}
    {"type": "exit", "task_id", "code"}   # sent by the dispatcher's thread wrapper

Per-item failures become entries in ``errors`` and the loop keeps going; only a
crash outside the item loop turns into a ``fail`` message.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from tvcurator.application.services.tmdb_metadata_service import (
    MIN_MATCH_CONFIDENCE,
    TMDBMetadataService,
)
from tvcurator.config import TMDBSettings
from tvcurator.domain.entities import TaskType
from tvcurator.domain.exceptions import NoConfidentMatchError
from tvcurator.domain.ports import ITMDBClient
from tvcurator.infrastructure.integrations import TMDBClient
from tvcurator.infrastructure.observability import set_correlation_id
from tvcurator.infrastructure.persistence import Database

logger = logging.getLogger(__name__)

PostMessage = Callable[[dict[str, Any]], None]
ClientFactory = Callable[["WorkerContext"], ITMDBClient]
DatabaseFactory = Callable[[str], Database]


@dataclass(frozen=True)
class WorkerContext:
    """Everything a worker gets from the server. Plain values only."""

    task_id: str
    task_type: str
    task_data: dict[str, Any]
    database_url: str
    tmdb: dict[str, Any] = field(default_factory=dict)
    rate_limit_delay: float = 0.25
    refresh_rate_limit_delay: float = 0.5


def default_client_factory(context: WorkerContext) -> ITMDBClient:
    """Build a real TMDB client from the settings copied into the context."""
    return TMDBClient(TMDBSettings(**context.tmdb))


def _error_text(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


class WorkerTaskRunner:
    """Runs one metadata task and reports through ``post``."""

    def __init__(
        self,
        context: WorkerContext,
        post: PostMessage,
        metadata: TMDBMetadataService,
    ) -> None:
        self.context = context
        self.post = post
        self.metadata = metadata
        self._runners: dict[str, Callable[[], Awaitable[None]]] = {
            TaskType.TMDB_BULK_MATCH.value: self.run_bulk_match,
            TaskType.TMDB_BULK_REFRESH.value: self.run_bulk_refresh,
            TaskType.TMDB_REFRESH_MISSING.value: self.run_refresh_missing,
            TaskType.TMDB_SINGLE_REFRESH.value: self.run_single_refresh,
            TaskType.TMDB_IMPORT.value: self.run_import,
        }

    async def run(self) -> None:
        """Dispatch on task type."""
        runner = self._runners.get(self.context.task_type)
        if runner is None:
            self._send_fail(f"Unknown task type: {self.context.task_type}")
            return
        await runner()

    # =========================================================================
    # Messages
    # =========================================================================

    def _send_progress(
        self,
        processed: int,
        succeeded: int,
        failed: int,
        current_item: str | None,
        errors: list[dict[str, str]],
    ) -> None:
        self.post(
            {
                "type": "progress",
                "task_id": self.context.task_id,
                "processed": processed,
                "succeeded": succeeded,
                "failed": failed,
                "current_item": current_item,
                "errors": list(errors),
            }
        )

    def _send_complete(self) -> None:
        self.post({"type": "complete", "task_id": self.context.task_id})

    def _send_fail(self, error: str) -> None:
        self.post({"type": "fail", "task_id": self.context.task_id, "error": error})

    # =========================================================================
    # Item loop
    # =========================================================================

    # Yo, this is the loop every bulk runner shares: try the item, count it, report progress,
    # sleep the rate-limit delay. The sleep is the ONLY throttling against TMDB - don't drop it
    # to "speed things up", TMDB answers with 429s and then every remaining item fails.
    async def _run_items(
        self,
        items: Sequence[dict[str, Any]],
        action: Callable[[dict[str, Any]], Awaitable[None]],
        delay: float,
    ) -> None:
        errors: list[dict[str, str]] = []
        succeeded = 0
        failed = 0

        for index, item in enumerate(items, start=1):
            label = str(item.get("title") or item.get("id"))
            try:
                await action(item)
                succeeded += 1
            except Exception as e:
                failed += 1
                errors.append({"item": label, "error": _error_text(e)})
                logger.debug(f"Item {label} failed: {e}")

            self._send_progress(index, succeeded, failed, label, errors)
            await asyncio.sleep(delay)

        self._send_complete()

    # =========================================================================
    # Runners
    # =========================================================================

    async def run_bulk_match(self) -> None:
        """Auto-match unmatched shows by title/year."""

        async def match(show: dict[str, Any]) -> None:
            result = await self.metadata.auto_match_show(show["title"], show.get("year"))
            if result is None or result.confidence < MIN_MATCH_CONFIDENCE:
                raise NoConfidentMatchError()
            await self.metadata.match_show(int(show["id"]), result.tmdb_id)

        await self._run_items(
            self.context.task_data.get("shows", []), match, self.context.rate_limit_delay
        )

    async def run_bulk_refresh(self) -> None:
        """Refresh metadata of matched shows (existing seasons/episodes only)."""

        async def refresh(show: dict[str, Any]) -> None:
            await self.metadata.refresh_show_metadata(int(show["id"]))

        await self._run_items(
            self.context.task_data.get("shows", []),
            refresh,
            self.context.refresh_rate_limit_delay,
        )

    async def run_refresh_missing(self) -> None:
        """Create missing seasons/episodes for matched shows."""

        async def sync(show: dict[str, Any]) -> None:
            await self.metadata.sync_show_seasons(int(show["id"]), int(show["tmdb_id"]))

        await self._run_items(
            self.context.task_data.get("shows", []),
            sync,
            self.context.refresh_rate_limit_delay,
        )

    async def run_single_refresh(self) -> None:
        """Refresh one show; a failure is an item error, not a task failure."""
        data = self.context.task_data
        show = {"id": data["show_id"], "title": data.get("show_title") or data["show_id"]}

        async def refresh(item: dict[str, Any]) -> None:
            await self.metadata.refresh_show_metadata(int(item["id"]))

        await self._run_items([show], refresh, 0)

    # Listen up, import is per EPISODE (items are labelled S1E5), seasons are just containers.
    # If the season upsert itself fails, every episode of that season is recorded as failed
    # with the season's error so the counters still add up to the task total.
    async def run_import(self) -> None:
        """Import a season/episode hierarchy payload for one show."""
        show_id = int(self.context.task_data["show_id"])
        errors: list[dict[str, str]] = []
        processed = succeeded = failed = 0

        for season in self.context.task_data.get("seasons", []):
            season_number = int(season["season_number"])
            episodes = season.get("episodes") or []
            season_error: str | None = None
            season_id: int | None = None
            try:
                season_id = await self.metadata.import_season(show_id, season)
            except Exception as e:
                season_error = _error_text(e)
                logger.debug(f"Season {season_number} of show {show_id} failed: {e}")

            for episode in episodes:
                label = f"S{season_number}E{int(episode['episode_number'])}"
                try:
                    if season_id is None:
                        raise RuntimeError(season_error or "Season import failed")
                    await self.metadata.import_episode(season_id, episode)
                    succeeded += 1
                except Exception as e:
                    failed += 1
                    errors.append({"item": label, "error": _error_text(e)})

                processed += 1
                self._send_progress(processed, succeeded, failed, label, errors)

        self._send_complete()


# Hey future me - this is the worker's "main". It owns the per-thread resources (DB engine,
# HTTP client) and ALWAYS closes them, even when the dispatcher cancels us mid-request.
async def run_worker(
    context: WorkerContext,
    post: PostMessage,
    client_factory: ClientFactory | None = None,
    database_factory: DatabaseFactory | None = None,
) -> None:
    """Execute one worker task end to end."""
    set_correlation_id(context.task_id)
    logger.info(f"Worker started for task {context.task_id} ({context.task_type})")

    database = (database_factory or Database)(context.database_url)
    try:
        client = (client_factory or default_client_factory)(context)
    except Exception:
        # No client means no result message, the dispatcher's exit handler fails the task
        await database.close()
        raise

    try:
        metadata = TMDBMetadataService(
            client, database.session_scope, season_delay=context.rate_limit_delay
        )
        await WorkerTaskRunner(context, post, metadata).run()
    except Exception as e:
        logger.exception(f"Worker for task {context.task_id} crashed")
        post({"type": "fail", "task_id": context.task_id, "error": _error_text(e)})
    finally:
        await client.close()
        await database.close()
        logger.info(f"Worker finished for task {context.task_id}")
