"""Environment-driven defaults for breakers, retries and logging.

``ResilienceSettings`` gathers the knobs operators usually want to tune
without a code change (failure threshold, open duration, retry backoff,
log level). Values come from ``RESILIENT_*`` environment variables or a
``.env`` file and are validated by pydantic at startup.

Examples:
    >>> from resilient.core.settings import ResilienceSettings
    >>> settings = ResilienceSettings(failure_threshold=3)
    >>> settings.open_duration
    30.0

    With the environment::

        RESILIENT_FAILURE_THRESHOLD=10
        RESILIENT_RETRY_BASE_DELAY=0.5

Tags:
    settings, configuration, pydantic, environment, resilient-core
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResilienceSettings(BaseSettings):
    """Defaults shared by every breaker, retry policy and logger.

    Fields
    ──────
    failure_threshold   : Consecutive failures that open a circuit
    open_duration       : Seconds a circuit stays open before probing
    retry_max_attempts  : Total attempts, including the first
    retry_base_delay    : Seconds to wait before the first retry
    retry_multiplier    : Backoff growth factor per attempt
    log_level           : Structlog log level
    json_logs           : JSON output (None = auto-detect from tty)
    service_name        : Value of ``service.name`` in every log record
    """

    model_config = SettingsConfigDict(
        env_prefix="RESILIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Circuit breaker ──────────────────────────────────────────
    failure_threshold: int = Field(default=5, ge=1)
    open_duration: float = Field(default=30.0, ge=0)

    # ── Retry ────────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None
    service_name: str = "resilient"


@lru_cache(maxsize=1)
def get_settings() -> ResilienceSettings:
    """Process-wide settings, read once from the environment."""
    return ResilienceSettings()


__all__ = ["ResilienceSettings", "get_settings"]
