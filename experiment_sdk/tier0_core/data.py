"""
experiment_sdk.tier0_core.data
───────────────────────────────
DB connection lifecycle and transaction boundaries for the SQL experiment
store. Engines are built explicitly and handed to the store, so tests and
multiple store instances never share hidden state.

Stack: SQLAlchemy 2.x async (aiosqlite for SQLite, any async driver otherwise)
Configure via: DATABASE_URL, DATABASE_ECHO, DATABASE_POOL_SIZE
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from experiment_sdk.tier0_core.config import ExperimentConfig


# ── Base model ────────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """All ORM models inherit from this base."""
    pass


# ── Engine / session factory ──────────────────────────────────────────────────

def build_engine(
    url: str,
    *,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create an async engine. SQLite connections get foreign keys switched on,
    and an in-memory SQLite database is pinned to a single connection so
    every session sees the same tables.
    """
    kwargs: dict[str, Any] = {"echo": echo}
    is_sqlite = url.startswith("sqlite")

    if is_sqlite and (":memory:" in url or url.rstrip("/").endswith("aiosqlite:")):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    elif not is_sqlite:
        kwargs["pool_size"] = pool_size
        kwargs["max_overflow"] = max_overflow

    engine = create_async_engine(url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def engine_from_config(config: ExperimentConfig) -> AsyncEngine:
    """Build an engine from the DATABASE_* settings."""
    return build_engine(
        config.database_url,
        echo=config.database_echo,
        pool_size=config.database_pool_size,
        max_overflow=config.database_max_overflow,
    )


def shares_connection(engine: AsyncEngine) -> bool:
    """
    True when every session of *engine* runs on one pinned connection, so
    concurrent transactions would interleave on it and must be serialized.
    """
    return isinstance(engine.sync_engine.pool, StaticPool)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory bound to *engine*."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session wrapped in one transaction.
    Commits on clean exit, rolls back on exception, always closes.

    Usage:
        async with session_scope(factory) as session:
            row = await session.get(ExperimentRow, experiment_id)
    """
    async with factory() as session:
        async with session.begin():
            yield session


async def create_all(engine: AsyncEngine) -> None:
    """Create every table registered on Base."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine(engine: AsyncEngine) -> None:
    """Dispose the engine. Call on application shutdown."""
    await engine.dispose()


__all__ = [
    "Base", "build_engine", "engine_from_config", "shares_connection",
    "build_session_factory",
    "session_scope", "create_all", "dispose_engine",
]
