"""Store interfaces required by the delivery engine.

The engine assumes no particular persistence technology. Any backing store
that implements these protocols satisfies the contract:

- Subscriptions, keyed by id, updated only through compare-and-set on
  their ``version``
- Events, keyed by id, write-once
- Delivery jobs, unique per (event_id, subscription_id), scanned by
  (status, next_attempt_at), changed only by conditional status updates
- Attempt records, append-only, unique per (job_id, attempt_number)
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from courier.models import (
    DeliveryAttemptRecord,
    DeliveryJob,
    Event,
    JobStatus,
    Subscription,
)


@runtime_checkable
class SubscriptionStore(Protocol):
    """Endpoint registry."""

    async def create_subscription(self, subscription: Subscription) -> Subscription: ...

    async def get_subscription(self, subscription_id: str) -> Subscription | None: ...

    async def list_subscriptions(
        self,
        event_type: str | None = None,
        enabled_only: bool = False,
        limit: int | None = 100,
    ) -> list[Subscription]:
        """Subscriptions ordered by creation time. limit=None returns every match."""
        ...

    async def compare_and_set_subscription(
        self,
        subscription: Subscription,
        expected_version: int,
    ) -> Subscription | None:
        """Replace the stored subscription if its version still matches.

        Returns the stored subscription (with version incremented) on
        success, or None if the version changed underneath the caller.
        """
        ...


@runtime_checkable
class EventStore(Protocol):
    """Write-once event storage, needed to rebuild the signed body on retry."""

    async def store_event(self, event: Event) -> bool:
        """Store an event. Returns False if the id already exists."""
        ...

    async def get_event(self, event_id: str) -> Event | None: ...


@runtime_checkable
class JobStore(Protocol):
    """Delivery job storage with conditional status transitions."""

    async def create_job(self, job: DeliveryJob) -> bool:
        """Create a job. Returns False if one exists for the same pair."""
        ...

    async def get_job(self, job_id: str) -> DeliveryJob | None: ...

    async def list_due_jobs(self, now: datetime, limit: int = 100) -> list[DeliveryJob]:
        """Pending jobs with next_attempt_at <= now, earliest first."""
        ...

    async def list_jobs(
        self,
        subscription_id: str | None = None,
        event_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[DeliveryJob]: ...

    async def claim_job(self, job_id: str, now: datetime) -> DeliveryJob | None:
        """Atomically move a due job from pending to in_flight.

        Returns the claimed job, or None if another worker got there first
        or the job is no longer pending.
        """
        ...

    async def transition_job(self, job: DeliveryJob, expected_status: JobStatus) -> bool:
        """Write job if the stored status equals expected_status."""
        ...

    async def exhaust_pending_jobs(self, subscription_id: str, now: datetime) -> int:
        """Mark every pending job of a subscription exhausted. Returns the count."""
        ...


@runtime_checkable
class AttemptLog(Protocol):
    """Append-only delivery log."""

    async def append_attempt(self, record: DeliveryAttemptRecord) -> None:
        """Append a record.

        Raises:
            DuplicateAttemptError: If (job_id, attempt_number) was already logged.
        """
        ...

    async def list_attempts(
        self,
        subscription_id: str | None = None,
        event_id: str | None = None,
        job_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[DeliveryAttemptRecord]:
        """Query attempts, newest first."""
        ...

    async def count_attempts(self, job_id: str) -> int: ...


@runtime_checkable
class DeliveryStore(SubscriptionStore, EventStore, JobStore, AttemptLog, Protocol):
    """Everything the engine needs from persistence."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

