"""
experiment_sdk.tier0_core.config
──────────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic. Invalid values raise at
startup, not in the middle of an experiment run.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DIGEST_BITS = (256, 384, 512)


class ExperimentConfig(BaseSettings):
    """
    Typed experiment configuration. Per-experiment overrides (secret key,
    digest size, rollout, cache store) are declared on the experiment class
    and take precedence over these values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="experiments", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Run keys ──────────────────────────────────────────────────────────────
    secret_key: str = Field(default="", alias="EXPERIMENT_SECRET_KEY")
    digest_bits: int = Field(default=256, alias="EXPERIMENT_DIGEST_BITS")

    # ── Defaults for new experiment classes ───────────────────────────────────
    default_rollout: str = Field(default="percent", alias="EXPERIMENT_DEFAULT_ROLLOUT")
    default_cache_store: str = Field(default="null", alias="EXPERIMENT_DEFAULT_CACHE_STORE")

    # ── Cache stores ──────────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    database_url: str = Field(default="sqlite:///./experiments.db", alias="DATABASE_URL")
    cache_table_name: str = Field(
        default="experiment_cache_entries", alias="EXPERIMENT_CACHE_TABLE"
    )

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="EXPERIMENT_LOG_LEVEL")
    log_format: str = Field(default="json", alias="EXPERIMENT_LOG_FORMAT")

    # ── Metrics ───────────────────────────────────────────────────────────────
    metrics_enabled: bool = Field(default=True, alias="EXPERIMENT_METRICS_ENABLED")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("digest_bits")
    @classmethod
    def validate_digest_bits(cls, v: int) -> int:
        if v not in _DIGEST_BITS:
            raise ValueError(f"digest_bits must be one of {_DIGEST_BITS}, got {v!r}")
        return v

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


@lru_cache(maxsize=1)
def get_config() -> ExperimentConfig:
    """
    Return the singleton experiment config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return ExperimentConfig()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__all__ = ["ExperimentConfig", "get_config"]
