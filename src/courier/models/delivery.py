"""Delivery job and attempt record models.

A DeliveryJob is the unit of retryable work for one (event, subscription)
pair. Every HTTP attempt made for a job produces exactly one immutable
DeliveryAttemptRecord, keyed by (job_id, attempt_number).
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base import job_id_for


class JobStatus(str, Enum):
    """Lifecycle of a delivery job."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.EXHAUSTED)


class DeliveryOutcome(str, Enum):
    """Classified result of a single delivery attempt."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    PERMANENT_FAILURE = "permanent_failure"

    @property
    def is_failure(self) -> bool:
        return self is not DeliveryOutcome.SUCCESS


class DeliveryJob(BaseModel):
    """A pending or finished delivery of one event to one subscription.

    Attributes:
        id: Deterministic ID derived from (event_id, subscription_id).
        event_id: Event being delivered.
        subscription_id: Subscription receiving the event.
        attempt_number: Number of the next (or current) attempt, 1-indexed. Once
            terminal, the number of attempts made.
        next_attempt_at: Earliest time the job may be claimed.
        status: pending, in_flight, succeeded or exhausted.
        created_at: When the job was created.
        updated_at: When the job was last written.
        claimed_at: When the current in-flight claim was taken.
        last_outcome: Outcome of the most recent attempt.
        health_recorded: Whether the current attempt has been counted on the
            subscription. Reset when the job is claimed.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default="", description="Derived from event_id and subscription_id")
    event_id: str = Field(min_length=1)
    subscription_id: str = Field(min_length=1)
    attempt_number: int = Field(default=1, ge=0)
    next_attempt_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: JobStatus = Field(default=JobStatus.PENDING)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    claimed_at: datetime | None = Field(default=None)
    last_outcome: DeliveryOutcome | None = Field(default=None)
    health_recorded: bool = Field(default=False)

    @model_validator(mode="after")
    def _derive_id(self) -> "DeliveryJob":
        expected = job_id_for(self.event_id, self.subscription_id)
        if not self.id:
            self.id = expected
        elif self.id != expected:
            raise ValueError("job id does not match (event_id, subscription_id)")
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.event_id, self.subscription_id)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def exhausted_before_attempt(self, now: datetime) -> "DeliveryJob":
        """Exhaust a job whose next attempt will never be made.

        attempt_number drops back to the number of attempts actually made
        (possibly 0), so a terminal job's attempt_number always equals its
        attempt record count.
        """
        return self.model_copy(
            update={
                "status": JobStatus.EXHAUSTED,
                "attempt_number": self.attempt_number - 1,
                "claimed_at": None,
                "updated_at": now,
            }
        )


class DeliveryAttemptRecord(BaseModel):
    """Append-only audit record of a single delivery attempt.

    Attributes:
        job_id: Job the attempt belongs to.
        subscription_id: Subscription the attempt was sent to.
        event_id: Event that was sent.
        attempt_number: Attempt number within the job.
        sent_at: When the request was issued.
        http_status: Response status code, if a response was received.
        error_code: Transport error code (timeout, connect_error, ...), if none was.
        error_detail: Truncated error message or response body excerpt.
        latency_ms: Time from send to response or error.
        outcome: Classified outcome.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    job_id: str = Field(min_length=1)
    subscription_id: str = Field(min_length=1)
    event_id: str = Field(min_length=1)
    attempt_number: int = Field(ge=1)
    sent_at: datetime
    http_status: int | None = Field(default=None, ge=100, le=599)
    error_code: str | None = Field(default=None)
    error_detail: str | None = Field(default=None, max_length=1000)
    latency_ms: int = Field(ge=0)
    outcome: DeliveryOutcome

    @property
    def key(self) -> tuple[str, int]:
        return (self.job_id, self.attempt_number)


class DeliverySnapshot(BaseModel):
    """Read-only view of a claimed job, as handed to the dispatcher.

    Attributes:
        job_id: Job being attempted.
        event_id: Event ID, sent as X-Webhook-ID.
        subscription_id: Target subscription.
        target_url: Where to POST.
        signing_secret: HMAC key for this subscription.
        payload: Raw event body.
        attempt_number: Attempt being made.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    job_id: str
    event_id: str
    subscription_id: str
    target_url: str
    signing_secret: str = Field(repr=False)
    payload: bytes
    attempt_number: int = Field(ge=1)
