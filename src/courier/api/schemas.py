"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from courier.models import (
    DeliveryAttemptRecord,
    DeliveryJob,
    DeliveryOutcome,
    DisabledReason,
    HealthState,
    JobStatus,
    Subscription,
)


class RegisterSubscriptionRequest(BaseModel):
    """Request body for registering a webhook endpoint.

    Signing secrets are always generated by the server; a request that
    carries one (or any other unknown field) is rejected.

    Attributes:
        url: HTTPS endpoint that will receive deliveries.
        events: Event types to subscribe to.
        description: Optional human-readable description.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=1, max_length=2048, description="Target endpoint URL")
    events: list[str] = Field(min_length=1, description="Event types to subscribe to")
    description: str | None = Field(default=None, max_length=500)


class SubscriptionResponse(BaseModel):
    """A subscription as shown to operators. Never includes the secret.

    Attributes:
        id: Subscription ID.
        target_url: Endpoint receiving deliveries.
        event_types: Subscribed event types, sorted.
        health_state: enabled or disabled.
        consecutive_failures: Failed attempts since the last success.
        description: Optional description.
        created_at: Registration time.
        updated_at: Last write time.
        disabled_at: When last disabled, if disabled.
        disabled_reason: Why it was disabled, if disabled.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    target_url: str
    event_types: list[str]
    health_state: HealthState
    consecutive_failures: int
    description: str | None = None
    created_at: datetime
    updated_at: datetime
    disabled_at: datetime | None = None
    disabled_reason: DisabledReason | None = None

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> SubscriptionResponse:
        return cls(
            id=subscription.id,
            target_url=subscription.target_url,
            event_types=sorted(subscription.event_types),
            health_state=subscription.health_state,
            consecutive_failures=subscription.consecutive_failures,
            description=subscription.description,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
            disabled_at=subscription.disabled_at,
            disabled_reason=subscription.disabled_reason,
        )


class RegistrationResponse(BaseModel):
    """Response for registration and secret rotation.

    Attributes:
        subscription: The registered subscription.
        signing_secret: HMAC signing secret. Shown only in this response.
    """

    model_config = ConfigDict(extra="forbid")

    subscription: SubscriptionResponse
    signing_secret: str


class SubscriptionListResponse(BaseModel):
    """Response for listing subscriptions."""

    model_config = ConfigDict(extra="forbid")

    subscriptions: list[SubscriptionResponse]
    count: int


class AttemptResponse(BaseModel):
    """One delivery attempt from the attempt log."""

    model_config = ConfigDict(extra="forbid")

    job_id: str
    subscription_id: str
    event_id: str
    attempt_number: int
    sent_at: datetime
    http_status: int | None = None
    error_code: str | None = None
    error_detail: str | None = None
    latency_ms: int
    outcome: DeliveryOutcome

    @classmethod
    def from_record(cls, record: DeliveryAttemptRecord) -> AttemptResponse:
        return cls(**record.model_dump())


class AttemptListResponse(BaseModel):
    """Response for attempt log queries, newest first."""

    model_config = ConfigDict(extra="forbid")

    attempts: list[AttemptResponse]
    count: int


class SubscriptionDetailResponse(SubscriptionResponse):
    """A subscription with its most recent failed attempt.

    Attributes:
        last_failure: Most recent failed attempt, if any.
    """

    last_failure: AttemptResponse | None = None


class JobResponse(BaseModel):
    """Delivery job state."""

    model_config = ConfigDict(extra="forbid")

    id: str
    event_id: str
    subscription_id: str
    attempt_number: int
    next_attempt_at: datetime
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    last_outcome: DeliveryOutcome | None = None

    @classmethod
    def from_job(cls, job: DeliveryJob) -> JobResponse:
        return cls(**job.model_dump(exclude={"claimed_at", "health_recorded"}))


class PublishEventRequest(BaseModel):
    """Request body for publishing an event.

    Attributes:
        type: Event type, e.g. "order.completed".
        data: JSON payload; serialized compactly with sorted keys.
        id: Optional event ID for idempotent re-publishing.
        occurred_at: Optional event time.
    """

    model_config = ConfigDict(extra="forbid")

    type: str = Field(min_length=1, max_length=200)
    data: Any = Field(default_factory=dict)
    id: str | None = Field(default=None, min_length=1, max_length=200)
    occurred_at: datetime | None = None


class PublishEventResponse(BaseModel):
    """Response for publishing an event.

    Attributes:
        event_id: ID of the accepted event.
        jobs: Jobs created by this request (empty on an idempotent re-publish).
    """

    model_config = ConfigDict(extra="forbid")

    event_id: str
    jobs: list[JobResponse]


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, unhealthy).
        version: API version.
        store_connected: Whether the store is initialized.
        worker_running: Whether the scheduling loop runs in this process.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    store_connected: bool
    worker_running: bool = False
