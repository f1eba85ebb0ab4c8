"""Database engine and session management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from transit_sync.logging import get_logger
from transit_sync.models import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from transit_sync.config import Settings

logger = get_logger(__name__)


def _is_memory_url(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.split("://", 1)[-1] in ("", "/"))


class Database:
    """Owns the async engine and its bounded connection pool.

    Usage:
        db = Database.from_settings(settings)
        await db.create_schema()
        async with db.session() as session:
            ...
        await db.close()
    """

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ) -> None:
        self.url = url
        engine_kwargs: dict[str, object] = {"echo": echo}
        if _is_memory_url(url):
            # One shared connection, otherwise every checkout sees an empty database
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_pre_ping"] = True
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["max_overflow"] = max_overflow

        self._engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        if url.startswith("sqlite"):
            event.listen(self._engine.sync_engine, "connect", _sqlite_pragmas)

        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        return cls(
            settings.database_url,
            echo=settings.debug,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Acquire a session for one unit of work and release it afterwards."""
        async with self._session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready", url=_redact(self.url))

    async def check_connection(self) -> bool:
        """Check if database is reachable."""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError):
            return False

    async def close(self) -> None:
        """Dispose pooled connections."""
        await self._engine.dispose()


def _sqlite_pragmas(dbapi_connection: object, _record: object) -> None:
    cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def _redact(url: str) -> str:
    """Hide credentials in a database URL for logging."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
