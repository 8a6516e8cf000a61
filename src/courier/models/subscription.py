"""Subscription model - a registered webhook endpoint and its health."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id


class HealthState(str, Enum):
    """Endpoint health. There is no terminal state."""

    ENABLED = "enabled"
    DISABLED = "disabled"


class DisabledReason(str, Enum):
    """Why a subscription was disabled."""

    FAILURE_THRESHOLD = "failure_threshold"
    OPERATOR = "operator"


class Subscription(BaseModel):
    """A subscriber endpoint registered for one or more event types.

    Attributes:
        id: Unique identifier for this subscription.
        target_url: Endpoint that receives signed POST requests.
        signing_secret: Engine-generated HMAC key, returned once at registration.
        event_types: Event types this subscriber wants.
        health_state: enabled or disabled.
        consecutive_failures: Failed attempts since the last success.
        description: Optional human-readable description.
        created_at: When the subscription was registered.
        updated_at: When the subscription was last written.
        disabled_at: When the subscription was last disabled.
        disabled_reason: Why it was last disabled.
        version: Incremented on every store write, for conditional updates.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("sub"))
    target_url: str = Field(description="Endpoint receiving deliveries")
    signing_secret: str = Field(min_length=16, repr=False, description="HMAC signing key")
    event_types: set[str] = Field(min_length=1, description="Subscribed event types")
    health_state: HealthState = Field(default=HealthState.ENABLED)
    consecutive_failures: int = Field(default=0, ge=0)
    description: str | None = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    disabled_at: datetime | None = Field(default=None)
    disabled_reason: DisabledReason | None = Field(default=None)
    version: int = Field(default=0, ge=0)

    @property
    def is_enabled(self) -> bool:
        return self.health_state is HealthState.ENABLED

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this subscription is enabled and wants the given event type."""
        return self.is_enabled and event_type in self.event_types
