"""Database session management."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from tvcurator.config import Settings

logger = logging.getLogger(__name__)


# Hey future me - worker threads build their OWN engine from this URL. A relative SQLite path
# like "sqlite+aiosqlite:///./data/tvcurator.db" is resolved against the CWD of whoever opens
# it, so we make it absolute BEFORE handing it across the thread boundary. Non-SQLite URLs
# (postgres etc.) and in-memory databases pass through untouched.
def normalize_database_url(url: str, base_dir: Path | None = None) -> str:
    """Resolve relative SQLite file paths in a database URL to absolute paths.

    Args:
        url: SQLAlchemy database URL
        base_dir: Directory relative paths are resolved against (default: CWD)

    Returns:
        URL with an absolute database path
    """
    if not url.startswith("sqlite"):
        return url

    scheme, sep, path = url.partition(":///")
    if not sep or not path or path.startswith(":memory:"):
        return url

    raw_path, query_sep, query = path.partition("?")
    db_path = Path(raw_path)
    if db_path.is_absolute():
        return url

    resolved = ((base_dir or Path.cwd()) / db_path).resolve()
    return f"{scheme}:///{resolved}{query_sep}{query}"


class Database:
    """Database connection and session manager."""

    def __init__(self, url: str, echo: bool = False, pool_pre_ping: bool = True) -> None:
        """Initialize the async engine and session factory.

        Args:
            url: SQLAlchemy async URL (sqlite+aiosqlite:///... by default)
            echo: Log SQL statements
            pool_pre_ping: Check connections before handing them out
        """
        self.url = url

        engine_kwargs: dict[str, Any] = {
            "echo": echo,
            "pool_pre_ping": pool_pre_ping,
        }
        if "sqlite" in url:
            # Worker threads and the server loop write to the same file, wait for locks
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": 30,
            }

        self._engine = create_async_engine(url, **engine_kwargs)

        if "sqlite" in url:
            self._enable_sqlite_foreign_keys()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Database":
        """Build the server's database from application settings."""
        return cls(
            settings.database.url,
            echo=settings.database.echo,
            pool_pre_ping=settings.database.pool_pre_ping,
        )

    def _enable_sqlite_foreign_keys(self) -> None:
        """Enable foreign key constraints for SQLite.

        SQLite has foreign keys disabled by default, cascades need them.
        """

        @event.listens_for(self._engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            logger.debug("Enabled foreign keys for SQLite connection")

    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get database session (FastAPI dependency style)."""
        async with self.session_scope() as session:
            yield session

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for database operations."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                # Broad on purpose: any failure rolls back, then re-raises
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self._engine.dispose()

    async def create_tables(self) -> None:
        """Create all tables (first boot and tests)."""
        from tvcurator.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        """Drop all tables (for testing only)."""
        from tvcurator.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
