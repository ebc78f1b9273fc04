"""
experiment_sdk.service
───────────────────────
Wiring surface for services embedding the assignment engine. Builds explicit
store and engine instances from ExperimentConfig; nothing here is cached at
module level, so each caller (and each test) owns its instances.

Usage::

    from experiment_sdk.service import build_store, build_engine

    store = await build_store()
    engine = build_engine(store)
    variant_id = await engine.assign("pricing-page", participant_id)
"""
from __future__ import annotations

from experiment_sdk.tier0_core.config import ExperimentConfig, get_config
from experiment_sdk.tier0_core.data import engine_from_config
from experiment_sdk.tier0_core.logging import get_logger
from experiment_sdk.tier2_reliability.store import (
    ExperimentStore,
    InMemoryExperimentStore,
    SqlExperimentStore,
)
from experiment_sdk.tier3_platform.experiments import AssignmentEngine
from experiment_sdk.tier3_platform.hashing import AssignmentHasher

log = get_logger(__name__)


async def build_store(
    config: ExperimentConfig | None = None,
    *,
    create_schema: bool = True,
) -> ExperimentStore:
    """
    Construct the store selected by EXPERIMENT_STORE_BACKEND.
    For the sql backend, tables are created unless *create_schema* is False.
    """
    config = config or get_config()
    if config.store_backend == "memory":
        store: ExperimentStore = InMemoryExperimentStore(epsilon=config.distribution_epsilon)
    else:
        sql_store = SqlExperimentStore(
            engine_from_config(config),
            epsilon=config.distribution_epsilon,
        )
        if create_schema:
            await sql_store.create_schema()
        store = sql_store
    log.info("store.ready", backend=config.store_backend)
    return store


def build_engine(
    store: ExperimentStore,
    config: ExperimentConfig | None = None,
) -> AssignmentEngine:
    """Construct an AssignmentEngine over *store* using the configured hash."""
    config = config or get_config()
    return AssignmentEngine(store, AssignmentHasher(config.hash_algorithm))


__all__ = ["build_store", "build_engine"]
