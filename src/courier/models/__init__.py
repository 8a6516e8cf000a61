"""Data models for Courier.

Core Types:
    - Event: Immutable domain event with its raw JSON payload
    - Subscription: Registered endpoint, secret, event types and health
    - DeliveryJob: Retryable unit of work for one (event, subscription) pair
    - DeliveryAttemptRecord: Append-only audit record of one attempt

Supporting Types:
    - HealthState, DisabledReason: Endpoint health state machine values
    - JobStatus, DeliveryOutcome: Job lifecycle and attempt classification
    - DeliverySnapshot: What the dispatcher sees of a claimed job
"""

from .base import generate_id, job_id_for, utc_now
from .delivery import (
    DeliveryAttemptRecord,
    DeliveryJob,
    DeliveryOutcome,
    DeliverySnapshot,
    JobStatus,
)
from .event import Event
from .subscription import DisabledReason, HealthState, Subscription

__all__ = [
    # Helpers
    "generate_id",
    "job_id_for",
    "utc_now",
    # Events and subscriptions
    "Event",
    "Subscription",
    "HealthState",
    "DisabledReason",
    # Delivery
    "DeliveryJob",
    "DeliveryAttemptRecord",
    "DeliveryOutcome",
    "DeliverySnapshot",
    "JobStatus",
]
