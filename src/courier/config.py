"""Configuration management for Courier."""

import logging
import warnings
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Delay in seconds before attempt n (index n - 1). Attempt 1 is immediate.
DEFAULT_RETRY_SCHEDULE: tuple[int, ...] = (0, 60, 300, 3600, 86400)


class Settings(BaseSettings):
    """Courier configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the COURIER_ prefix. For example:
        COURIER_STORE_BACKEND=qdrant
        COURIER_RETRY_SCHEDULE_SECONDS='[0, 30, 120]'
        COURIER_DISABLE_THRESHOLD=3

    The retry schedule and the disablement threshold are coupled: the
    threshold must equal the schedule length, otherwise a subscription
    would be disabled before (or long after) its first job exhausts.
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    store_backend: Literal["memory", "qdrant"] = Field(
        default="memory",
        description="Store adapter: 'memory' (single process, volatile) or 'qdrant'",
    )
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="courier",
        description="Prefix for Qdrant collection names",
    )

    # Retry and health
    retry_schedule_seconds: list[int] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_SCHEDULE),
        min_length=1,
        description="Delay before each attempt; its length is the attempt budget",
    )
    disable_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failed attempts that disable a subscription",
    )

    # Dispatch
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Per-attempt HTTP timeout",
    )
    max_in_flight: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum concurrent delivery attempts",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Sleep between scheduling loop passes",
    )
    claim_batch_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum due jobs selected per scheduling loop pass",
    )
    worker_enabled: bool = Field(
        default=True,
        description="Run the scheduling loop inside the API process",
    )
    stale_claim_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="In-flight claims older than this are recovered by the scheduling loop",
    )

    # Signing
    signature_tolerance_seconds: int = Field(
        default=300,
        ge=1,
        description="Maximum allowed skew between signed timestamp and receive time",
    )

    # Registration
    allow_insecure_urls: bool = Field(
        default=False,
        description="Permit http:// target URLs (development only)",
    )

    # Operator notifications
    operator_webhook_url: str | None = Field(
        default=None,
        description="If set, disablement notices are POSTed here; otherwise they are logged",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    model_config = {
        "env_prefix": "COURIER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @field_validator("retry_schedule_seconds")
    @classmethod
    def validate_retry_schedule(cls, value: list[int]) -> list[int]:
        """Require an immediate first attempt and non-decreasing delays."""
        if value[0] != 0:
            raise ValueError("retry_schedule_seconds must start with 0 (immediate first attempt)")
        if any(delay < 0 for delay in value):
            raise ValueError("retry_schedule_seconds must not contain negative delays")
        if any(later < earlier for earlier, later in zip(value, value[1:], strict=False)):
            raise ValueError("retry_schedule_seconds must be non-decreasing")
        return value

    @model_validator(mode="after")
    def validate_threshold_matches_schedule(self) -> "Settings":
        """Keep the disablement threshold coupled to the attempt budget."""
        if self.disable_threshold != len(self.retry_schedule_seconds):
            raise ValueError(
                f"disable_threshold ({self.disable_threshold}) must equal the number of "
                f"scheduled attempts ({len(self.retry_schedule_seconds)})"
            )
        return self

    @model_validator(mode="after")
    def validate_stale_claim_window(self) -> "Settings":
        """A live attempt must never look stale."""
        if self.stale_claim_seconds <= self.request_timeout_seconds:
            raise ValueError("stale_claim_seconds must exceed request_timeout_seconds")
        return self

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Warn about development-only options in production."""
        if self.env == "production":
            if self.allow_insecure_urls:
                warnings.warn(
                    "allow_insecure_urls is enabled in production. "
                    "Subscriptions may receive signed payloads over plain HTTP.",
                    UserWarning,
                    stacklevel=2,
                )
                logger.warning("Insecure target URLs allowed in production")
            if self.store_backend == "memory":
                logger.warning(
                    "In-memory store in production: delivery state is lost on restart"
                )
        return self

    @property
    def max_attempts(self) -> int:
        """Attempt budget per delivery job."""
        return len(self.retry_schedule_seconds)


settings = Settings()
