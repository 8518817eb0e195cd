# api/app/config.py
from __future__ import annotations

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application configuration.

    Loads environment variables from `.env` and provides
    typed access across API, worker, and services.
    """

    # ─────────────────────────────────────────────
    # Pydantic Settings Config
    # ─────────────────────────────────────────────
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────
    database_url: str
    database_url_sync: str | None = None
    store_timeout_seconds: float = 10.0

    # ─────────────────────────────────────────────
    # API
    # ─────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    service_api_key: str
    log_level: str = "INFO"

    # ─────────────────────────────────────────────
    # Executor (browser automation bot)
    # ─────────────────────────────────────────────
    executor_url: str = "http://localhost:8100/execute"
    executor_timeout_seconds: float = 120.0

    # ─────────────────────────────────────────────
    # Scheduling
    # ─────────────────────────────────────────────
    lease_seconds: int = 300
    max_attempts: int = 3
    claim_batch_size: int = 10
    retry_backoff_seconds: int = 30

    # ─────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────
    worker_role: str = "all"  # claim | reconcile | all
    claim_poll_interval: float = 60.0
    reconcile_interval: float = 30.0

    @model_validator(mode="after")
    def _check_scheduling(self) -> Settings:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.claim_batch_size < 1:
            raise ValueError("claim_batch_size must be at least 1")
        # A lease shorter than the executor timeout lets the reconciler
        # hand a job to a second worker while the first is still running it.
        if self.lease_seconds <= self.executor_timeout_seconds:
            raise ValueError("lease_seconds must exceed executor_timeout_seconds")
        if self.worker_role not in ("claim", "reconcile", "all"):
            raise ValueError("worker_role must be one of: claim, reconcile, all")
        return self


# ─────────────────────────────────────────────
# Cached Settings Instance
# ─────────────────────────────────────────────
@lru_cache
def get_settings() -> Settings:
    """
    Returns a cached Settings instance so config
    is only loaded once per process.
    """
    return Settings()
