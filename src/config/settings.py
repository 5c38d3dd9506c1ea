"""Application settings using Pydantic Settings.

Centralized configuration for the benefit rules platform. Each concern
gets its own settings group with a dedicated environment prefix so that
workers, the web app and the CLI can be tuned independently:

- APP_*         general application settings
- EVAL_*        evaluation harness (tolerance, concurrency, dispatch)
- REFERENCE_*   external reference calculator (PolicyEngine)
- MATCHING_*    provision-to-rule matching (scoring weights, OpenAI)
- RESILIENCE_*  retry and circuit breaker defaults
- REDIS_* / CELERY_*  background task queue
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RedisSettings(BaseSettings):
    """Redis configuration for the Celery broker."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    ssl: bool = Field(default=False, description="Use SSL for Redis connection")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")

    @property
    def url(self) -> str:
        """Get Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class CelerySettings(BaseSettings):
    """Celery task queue configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CELERY_",
        extra="ignore",
    )

    broker_db: int = Field(default=1, description="Redis DB for Celery broker")
    result_db: int = Field(default=2, description="Redis DB for Celery results")

    task_serializer: str = Field(default="json", description="Task serialization format")
    result_serializer: str = Field(default="json", description="Result serialization format")
    accept_content: list = Field(default=["json"], description="Accepted content types")

    task_acks_late: bool = Field(default=True, description="Acknowledge tasks after completion")
    task_reject_on_worker_lost: bool = Field(default=True, description="Reject tasks if worker lost")

    worker_prefetch_multiplier: int = Field(default=1, description="Tasks to prefetch per worker")
    task_time_limit: int = Field(default=1800, description="Hard task time limit in seconds")
    task_soft_time_limit: int = Field(default=1500, description="Soft task time limit")

    reverification_interval: float = Field(
        default=300.0,
        description="Seconds between re-verification obligation sweeps",
    )


class ResilienceSettings(BaseSettings):
    """Resilience patterns configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RESILIENCE_",
        extra="ignore",
    )

    # Retry settings
    retry_max_attempts: int = Field(default=3, description="Max retry attempts")
    retry_initial_delay: float = Field(default=0.5, description="Initial delay in seconds")
    retry_backoff_multiplier: float = Field(default=2.0, description="Backoff multiplier")
    retry_max_delay: float = Field(default=10.0, description="Max delay between retries")

    # Circuit breaker settings
    circuit_failure_threshold: int = Field(default=5, description="Failures to open circuit")
    circuit_recovery_timeout: int = Field(default=30, description="Seconds before half-open")
    circuit_half_open_requests: int = Field(default=2, description="Successes to close from half-open")


class EvaluationSettings(BaseSettings):
    """Evaluation harness configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EVAL_",
        extra="ignore",
    )

    default_tolerance: float = Field(
        default=2.00,
        gt=0,
        description="Default variance tolerance in percent for new test cases",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Concurrent test cases per run (thread dispatch)",
    )
    dispatch_mode: str = Field(
        default="thread",
        description="How runs execute: 'thread' (in-process) or 'celery'",
    )
    recent_runs_window: int = Field(
        default=20,
        ge=1,
        description="Number of recent runs included in summary statistics",
    )
    reverification_claim_timeout: int = Field(
        default=900,
        ge=0,
        description="Seconds before a claimed obligation that never got a run is claimable again",
    )

    @field_validator("dispatch_mode")
    @classmethod
    def validate_dispatch_mode(cls, v: str) -> str:
        mode = v.lower()
        if mode not in ("thread", "celery"):
            raise ValueError(f"dispatch_mode must be 'thread' or 'celery', got {v!r}")
        return mode


class ReferenceSettings(BaseSettings):
    """External reference calculator (PolicyEngine) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="REFERENCE_",
        extra="ignore",
    )

    base_url: str = Field(
        default="https://api.policyengine.org",
        description="Reference calculator base URL",
    )
    country: str = Field(default="us", description="PolicyEngine country model")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Read timeout per request")
    connect_timeout_seconds: float = Field(default=5.0, gt=0, description="Connect timeout")
    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts before giving up")
    retry_base_delay: float = Field(default=0.5, ge=0, description="Initial retry delay")
    state_code: str = Field(default="MD", description="Default state for reference households")


class MatchingSettings(BaseSettings):
    """Provision-to-rule matching configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MATCHING_",
        extra="ignore",
    )

    citation_weight: float = Field(default=0.4, ge=0, le=1, description="Weight of citation score")
    semantic_weight: float = Field(default=0.6, ge=0, le=1, description="Weight of semantic score")
    semantic_threshold: float = Field(
        default=0.75, ge=0, le=1,
        description="Minimum semantic similarity for automatic candidate proposals",
    )
    citation_threshold: float = Field(
        default=0.7, ge=0, le=1,
        description="Minimum citation score for automatic candidate proposals",
    )

    urgent_window_days: int = Field(default=30, description="Effective within N days -> urgent")
    high_window_days: int = Field(default=90, description="Effective within N days -> high")
    broad_impact_programs: int = Field(
        default=3,
        description="Provisions touching at least this many programs are escalated",
    )

    openai_model: str = Field(default="gpt-4o-mini", description="Model for text matching")
    openai_timeout: float = Field(default=30.0, description="OpenAI request timeout")
    max_text_chars: int = Field(default=6000, description="Provision text truncation limit")

    @model_validator(mode="after")
    def validate_weights(self) -> "MatchingSettings":
        total = self.citation_weight + self.semantic_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(
                f"citation_weight + semantic_weight must equal 1.0 (got {total:.3f})"
            )
        return self


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="Benefit Rules Platform", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Root log level")

    # API settings
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins"
    )

    default_jurisdiction: str = Field(default="MD", description="Jurisdiction when none is given")
    federal_jurisdiction: str = Field(
        default="US",
        description="Fallback jurisdiction for federally defined rules",
    )
    seed_rules_on_startup: bool = Field(
        default=False,
        description="Load YAML rule parameters into an empty rule store at startup",
    )

    # Nested settings (loaded separately)
    @property
    def redis(self) -> RedisSettings:
        return RedisSettings()

    @property
    def celery(self) -> CelerySettings:
        return CelerySettings()

    @property
    def resilience(self) -> ResilienceSettings:
        return ResilienceSettings()

    @property
    def evaluation(self) -> EvaluationSettings:
        return EvaluationSettings()

    @property
    def reference(self) -> ReferenceSettings:
        return ReferenceSettings()

    @property
    def matching(self) -> MatchingSettings:
        return MatchingSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()
