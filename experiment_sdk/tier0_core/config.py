"""
experiment_sdk.tier0_core.config
─────────────────────────────────
Typed configuration with env layering (.env → environment variables).
Invalid values raise at load time, not on the first assignment.

Stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

import hashlib
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExperimentConfig(BaseSettings):
    """
    Settings for the experiment store and assignment engine.
    Env vars are prefixed with EXPERIMENT_ unless an alias says otherwise.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="experiments", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Storage ───────────────────────────────────────────────────────────────
    store_backend: str = Field(default="sql", alias="EXPERIMENT_STORE_BACKEND")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./experiments.db",
        alias="DATABASE_URL",
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    database_pool_size: int = Field(default=5, alias="DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(default=10, alias="DATABASE_MAX_OVERFLOW")

    # ── Assignment ────────────────────────────────────────────────────────────
    distribution_epsilon: float = Field(default=1e-6, alias="EXPERIMENT_DISTRIBUTION_EPSILON")
    hash_algorithm: str = Field(default="sha256", alias="EXPERIMENT_HASH_ALGORITHM")

    # ── Retry (caller-side, StorageUnavailableError only) ─────────────────────
    retry_max_attempts: int = Field(default=3, alias="EXPERIMENT_RETRY_MAX_ATTEMPTS")
    retry_min_wait: float = Field(default=0.5, alias="EXPERIMENT_RETRY_MIN_WAIT")
    retry_max_wait: float = Field(default=10.0, alias="EXPERIMENT_RETRY_MAX_WAIT")

    # ── Logging / errors / metrics ────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="EXPERIMENT_LOG_LEVEL")
    log_format: str = Field(default="json", alias="EXPERIMENT_LOG_FORMAT")
    error_backend: str = Field(default="none", alias="EXPERIMENT_ERROR_BACKEND")
    metrics_port: int = Field(default=8001, alias="EXPERIMENT_METRICS_PORT")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        allowed = {"memory", "sql"}
        if v.lower() not in allowed:
            raise ValueError(f"store_backend must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("distribution_epsilon")
    @classmethod
    def validate_epsilon(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError(f"distribution_epsilon must be in (0, 1), got {v!r}")
        return v

    @field_validator("hash_algorithm")
    @classmethod
    def validate_hash_algorithm(cls, v: str) -> str:
        if v.lower() not in hashlib.algorithms_available:
            raise ValueError(f"unsupported hash algorithm {v!r}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


@lru_cache(maxsize=1)
def get_config() -> ExperimentConfig:
    """
    Return the cached config. Call _reset_config() in tests to pick up new
    env vars.
    """
    return ExperimentConfig()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__all__ = ["ExperimentConfig", "get_config"]
