"""Relational backing store for the ledger.

One :class:`LedgerStore` owns the async SQLAlchemy engine behind the ledger.
It hands out sessions to :class:`doauth.ledger.client.Ledger` and creates
the vault, item, allow-list, service and grant tables on start-up.

SQLite (aiosqlite) is the default and the test backend. PostgreSQL (asyncpg)
gets a bounded connection pool sized from :class:`DatabaseConfig`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from doauth.engine.models.base import Base

if TYPE_CHECKING:
    from doauth.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)


def _pool_options(config: DatabaseConfig) -> dict[str, Any]:
    if config.dsn.startswith("sqlite"):
        return {}
    idle = config.max_idle_connections
    return {
        "pool_size": idle,
        "max_overflow": max(config.max_open_connections - idle, 0),
        "pool_pre_ping": True,
    }


def _enforce_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    # SQLite checks item, capability and allow-list references only when
    # foreign keys are switched on per connection.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()


class LedgerStore:
    """Engine and session factory for the ledger tables."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_running(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            msg = "Ledger store is not running. Call start() first."
            raise RuntimeError(msg)
        return self._engine

    async def start(self, *, create_schema: bool = True) -> None:
        """Connect to the configured database and, by default, create missing tables."""
        engine = create_async_engine(
            self._config.dsn, echo=self._config.debug_sql, **_pool_options(self._config)
        )
        if self._config.dsn.startswith("sqlite"):
            _enforce_sqlite_foreign_keys(engine)
        self._engine = engine
        # Records stay readable after their transaction commits.
        self._sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        if create_schema:
            await self.create_schema()
        logger.info("Ledger store started (%s)", self._config.engine.value)

    async def stop(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None

    def session(self) -> AsyncSession:
        """New session bound to the store. Use it as an async context manager."""
        if self._sessions is None:
            msg = "Ledger store is not running. Call start() first."
            raise RuntimeError(msg)
        return self._sessions()

    async def create_schema(self) -> None:
        """Create every ledger table that does not exist yet."""
        import doauth.engine.models  # noqa: F401  (registers the mapped tables)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_schema(self) -> None:
        """Drop every ledger table. Tests only."""
        import doauth.engine.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
