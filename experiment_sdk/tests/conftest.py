"""
experiment_sdk test configuration.

Stores run in-process: the memory backend, or SQLite in memory via aiosqlite
for the SQL backend. No external services required.
"""
from __future__ import annotations

import itertools
import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

# ── Test environment ───────────────────────────────────────────────────────
# These must be set before any experiment_sdk modules read their config.

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("EXPERIMENT_LOG_LEVEL", "WARNING")
os.environ.setdefault("EXPERIMENT_ERROR_BACKEND", "none")
os.environ.setdefault("EXPERIMENT_STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

MEMORY_DB_URL = "sqlite+aiosqlite://"
EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_config_cache():
    """Each test reads config from the current environment."""
    from experiment_sdk.tier0_core.config import _reset_config

    _reset_config()
    yield
    _reset_config()


@pytest.fixture
def clock():
    """A clock that moves one second forward on every read, so created_at orders experiments."""
    from experiment_sdk.tier1_runtime.clock import Clock

    ticks = itertools.count()
    return Clock(now_fn=lambda: EPOCH + timedelta(seconds=next(ticks)))


@pytest.fixture
def memory_store(clock):
    from experiment_sdk.tier2_reliability.store import InMemoryExperimentStore

    return InMemoryExperimentStore(clock=clock)


@pytest_asyncio.fixture
async def sql_store(clock):
    from experiment_sdk.tier0_core.data import build_engine, dispose_engine
    from experiment_sdk.tier2_reliability.store import SqlExperimentStore

    engine = build_engine(MEMORY_DB_URL)
    store = SqlExperimentStore(engine, clock=clock)
    await store.create_schema()
    yield store
    await dispose_engine(engine)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, clock):
    """Both store backends, to check they honor the same contract."""
    if request.param == "memory":
        from experiment_sdk.tier2_reliability.store import InMemoryExperimentStore

        yield InMemoryExperimentStore(clock=clock)
        return

    from experiment_sdk.tier0_core.data import build_engine, dispose_engine
    from experiment_sdk.tier2_reliability.store import SqlExperimentStore

    engine = build_engine(MEMORY_DB_URL)
    sql = SqlExperimentStore(engine, clock=clock)
    await sql.create_schema()
    yield sql
    await dispose_engine(engine)


@pytest.fixture
def engine(memory_store):
    from experiment_sdk.tier3_platform.experiments import AssignmentEngine

    return AssignmentEngine(memory_store)
