"""
experiment_sdk
──────────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from experiment_sdk.tier0_core.logging import bind_context, clear_context, configure_logging, get_logger
from experiment_sdk.tier0_core.errors import (
    ExperimentError,
    ValidationError,
    NotFoundError,
    ConflictError,
    ConfigurationError,
    DuplicateNameError,
    InvalidDistributionError,
    AlreadyFinishedError,
    ExperimentFinishedError,
    StorageUnavailableError,
)
from experiment_sdk.tier0_core.config import get_config, ExperimentConfig
from experiment_sdk.tier0_core.metrics import start_metrics_server

from experiment_sdk.tier1_runtime.clock import Clock
from experiment_sdk.tier1_runtime.validate import VariantSpec
from experiment_sdk.tier1_runtime.serialize import encode_payload, decode_payload
from experiment_sdk.tier1_runtime.retry import retry_policy

from experiment_sdk.tier2_reliability.store import (
    ExperimentStore,
    InMemoryExperimentStore,
    SqlExperimentStore,
)

from experiment_sdk.tier3_platform.variants import Assignment, Experiment, Variant, VariantSet
from experiment_sdk.tier3_platform.hashing import AssignmentHasher
from experiment_sdk.tier3_platform.experiments import AssignmentEngine

from experiment_sdk.service import build_store, build_engine

__version__ = "0.1.0"
__all__ = [
    # logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    # errors
    "ExperimentError", "ValidationError", "NotFoundError", "ConflictError",
    "ConfigurationError", "DuplicateNameError", "InvalidDistributionError",
    "AlreadyFinishedError", "ExperimentFinishedError", "StorageUnavailableError",
    # config
    "get_config", "ExperimentConfig",
    # metrics
    "start_metrics_server",
    # runtime
    "Clock", "VariantSpec", "encode_payload", "decode_payload", "retry_policy",
    # store
    "ExperimentStore", "InMemoryExperimentStore", "SqlExperimentStore",
    # assignment
    "Assignment", "Experiment", "Variant", "VariantSet",
    "AssignmentHasher", "AssignmentEngine",
    # wiring
    "build_store", "build_engine",
]
