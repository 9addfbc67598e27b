"""
Runtime configuration loading for the SimLab backend.

We read defaults from `.env.example` and allow environment overrides for local
development, the worker process and CI.
"""

from __future__ import annotations

from typing import List

from dotenv import dotenv_values
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from simlab.models.jobs import MAX_DURATION


class Settings(BaseModel):
    """Typed settings derived from .env.example with environment overrides."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    mongo_uri: str = Field(alias="MONGO_URI")
    jwt_secret: str = Field(alias="JWT_SECRET")
    jwt_expires_minutes: int = Field(alias="JWT_EXPIRES_MINUTES", gt=0)
    cors_origins: List[str] = Field(alias="CORS_ORIGINS")

    max_batch_size: int = Field(alias="MAX_BATCH_SIZE", ge=1)
    worker_retry_limit: int = Field(alias="WORKER_RETRY_LIMIT", ge=0)
    compute_timeout_s: float = Field(alias="COMPUTE_TIMEOUT_S", gt=0)
    seconds_per_duration_unit: float = Field(alias="SECONDS_PER_DURATION_UNIT", ge=0)
    running_stale_after_s: float = Field(alias="RUNNING_STALE_AFTER_S", gt=0)
    submitted_grace_s: float = Field(alias="SUBMITTED_GRACE_S", gt=0)
    reconcile_interval_s: float = Field(alias="RECONCILE_INTERVAL_S", gt=0)

    queue_name: str = Field(alias="QUEUE_NAME", min_length=1)
    queue_lease_s: float = Field(alias="QUEUE_LEASE_S", gt=0)
    queue_poll_interval_ms: int = Field(alias="QUEUE_POLL_INTERVAL_MS", gt=0)
    queue_requeue_delay_ms: int = Field(alias="QUEUE_REQUEUE_DELAY_MS", ge=0)

    infra_retry_attempts: int = Field(alias="INFRA_RETRY_ATTEMPTS", ge=1)
    infra_retry_backoff_ms: int = Field(alias="INFRA_RETRY_BACKOFF_MS", ge=0)

    max_import_bytes: int = Field(alias="MAX_IMPORT_BYTES", gt=0)
    run_worker_in_process: bool = Field(alias="RUN_WORKER_IN_PROCESS")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("run_worker_in_process", mode="before")
    @classmethod
    def parse_bool(cls, value: bool | int | str) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value != 0
        normalized = value.strip().lower()
        return normalized in {"1", "true", "yes", "on"}

    @model_validator(mode="after")
    def timeouts_are_consistent(self) -> "Settings":
        # An expired lease hands the message to another consumer mid-compute.
        if self.queue_lease_s <= self.compute_timeout_s:
            raise ValueError("QUEUE_LEASE_S must be greater than COMPUTE_TIMEOUT_S")
        # The stale sweep must not reset a job that is still computing.
        if self.running_stale_after_s <= self.compute_timeout_s:
            raise ValueError("RUNNING_STALE_AFTER_S must be greater than COMPUTE_TIMEOUT_S")
        longest = MAX_DURATION * self.seconds_per_duration_unit
        if longest >= self.compute_timeout_s:
            raise ValueError(
                f"SECONDS_PER_DURATION_UNIT={self.seconds_per_duration_unit:g} makes a duration-{MAX_DURATION} "
                f"simulation take {longest:g}s, which COMPUTE_TIMEOUT_S={self.compute_timeout_s:g} does not allow"
            )
        return self


def load_settings() -> Settings:
    """Load configuration using `.env.example` as the baseline."""

    from pathlib import Path

    repo_root = Path(__file__).resolve().parents[2]
    env_example = repo_root / ".env.example"
    defaults = dotenv_values(env_example) if env_example.exists() else {}

    # Environment variables override the example defaults.
    import os

    merged: dict[str, str | None] = {**defaults, **dict(os.environ)}

    required = {
        "MONGO_URI": "mongodb://localhost:27017/simlab",
        "JWT_SECRET": "changeme",
        "JWT_EXPIRES_MINUTES": "1440",
        "CORS_ORIGINS": "http://localhost:5173",
        "MAX_BATCH_SIZE": "1000",
        "WORKER_RETRY_LIMIT": "3",
        "COMPUTE_TIMEOUT_S": "300",
        "SECONDS_PER_DURATION_UNIT": "0.1",
        "RUNNING_STALE_AFTER_S": "900",
        "SUBMITTED_GRACE_S": "120",
        "RECONCILE_INTERVAL_S": "60",
        "QUEUE_NAME": "simulation_jobs",
        "QUEUE_LEASE_S": "600",
        "QUEUE_POLL_INTERVAL_MS": "500",
        "QUEUE_REQUEUE_DELAY_MS": "1000",
        "INFRA_RETRY_ATTEMPTS": "5",
        "INFRA_RETRY_BACKOFF_MS": "200",
        "MAX_IMPORT_BYTES": str(1024 * 1024),
        "RUN_WORKER_IN_PROCESS": "0",
    }
    for key, fallback in required.items():
        if not merged.get(key):
            merged[key] = fallback

    settings = Settings(**merged)  # type: ignore[arg-type]

    # Security: require a strong JWT secret in all environments
    secret = settings.jwt_secret or ""
    if secret == "changeme" or len(secret) < 32:
        raise RuntimeError(
            "JWT_SECRET is weak or unset. Set a random 32+ char secret via environment."
        )
    return settings


settings = load_settings()
