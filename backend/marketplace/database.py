"""
Specialist Marketplace Backend — Database Handle
=================================================

What:  Declarative base, an explicitly constructed async database handle,
       and the per-request session lifecycle.
Why:   Business logic receives a session; it never reaches for a global
       connection. The process entry point owns connect/dispose.
How:   `Database` wraps an async engine + session factory. `connect()` is
       idempotent (connect once, reuse), `dispose()` closes the pool.
Who:   Constructed by `create_app()`, connected by the lifespan handler,
       consumed by the `get_db_session` dependency (see deps.py).

Connection Pooling Strategy (PostgreSQL):
    pool_size=20:      Persistent connections for normal load
    max_overflow=10:   Temporary connections for traffic spikes (total max = 30)
    pool_pre_ping:     Validates connections before use (catches stale connections)
    pool_recycle=3600: Recycles connections every hour

    SQLite URLs (used by the test-suite) skip the pool arguments; the
    aiosqlite dialect picks its own pool class.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Timezone-aware UTC now, used as the default for every timestamp column."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models share this metadata, which `Database.create_schema()` uses to
    create missing tables.
    """
    pass


class Database:
    """
    Async SQLAlchemy engine and session factory with a connect-once lifecycle.

    Example:
        db = Database("postgresql+asyncpg://...")
        await db.connect()
        async with db.session_factory() as session:
            ...
        await db.dispose()
    """

    def __init__(
        self,
        url: str,
        connect_args: Optional[Dict[str, Any]] = None,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
        echo: bool = False,
    ):
        self.url = url
        self.connect_args = connect_args or {}
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_pre_ping = pool_pre_ping
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings) -> "Database":
        url, connect_args = settings.database_connection()
        return cls(
            url,
            connect_args=connect_args,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            # SQL logging is noisy; only useful while debugging
            echo=settings.log_level == "DEBUG",
        )

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._session_factory

    async def connect(self) -> None:
        """
        Create the engine and session factory. Safe to call more than once.

        The engine connects lazily; this only builds the pool, so it never
        blocks on an unreachable server.
        """
        if self._engine is not None:
            return

        options: Dict[str, Any] = {
            "echo": self.echo,
            "connect_args": self.connect_args,
        }
        if not self.url.startswith("sqlite"):
            options.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_pre_ping=self.pool_pre_ping,
                pool_recycle=3600,
            )

        self._engine = create_async_engine(self.url, **options)

        # expire_on_commit=False: attributes stay readable after commit
        # (lazy reloads are not possible outside an awaited context)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("Database engine created for %s", self._engine.url.render_as_string(hide_password=True))

    async def create_schema(self) -> None:
        """Create any missing tables and indexes from the ORM metadata."""
        # Register every model with Base.metadata before create_all
        import marketplace.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured (%d tables)", len(Base.metadata.tables))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Open one session per unit of work (one per request via deps.py).

        On success: commits the transaction.
        On error: rolls back, then re-raises for the global error handler.
        Always: closes the session (returns the connection to the pool).
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def dispose(self) -> None:
        """Close all pooled connections. Called on application shutdown."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database engine disposed")
