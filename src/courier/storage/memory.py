"""In-process delivery store.

Keeps every collection in dictionaries guarded by a single asyncio lock.
Suitable for tests, development and single-process deployments that can
afford to lose delivery state on restart.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from courier.exceptions import DuplicateAttemptError, InvalidStateError
from courier.models import (
    DeliveryAttemptRecord,
    DeliveryJob,
    Event,
    JobStatus,
    Subscription,
)

logger = logging.getLogger(__name__)


class InMemoryDeliveryStore:
    """Dictionary-backed implementation of the DeliveryStore protocol.

    Mutable models are copied on the way in and out so callers can never
    change stored state without going through a conditional update.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._subscriptions: dict[str, Subscription] = {}
        self._events: dict[str, Event] = {}
        self._jobs: dict[str, DeliveryJob] = {}
        self._attempts: dict[tuple[str, int], DeliveryAttemptRecord] = {}

    async def initialize(self) -> None:
        logger.debug("In-memory delivery store ready")

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> InMemoryDeliveryStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # Subscriptions

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        async with self._lock:
            if subscription.id in self._subscriptions:
                raise InvalidStateError(f"subscription already exists: {subscription.id}")
            stored = subscription.model_copy(deep=True)
            self._subscriptions[stored.id] = stored
            return stored.model_copy(deep=True)

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        stored = self._subscriptions.get(subscription_id)
        return stored.model_copy(deep=True) if stored is not None else None

    async def list_subscriptions(
        self,
        event_type: str | None = None,
        enabled_only: bool = False,
        limit: int | None = 100,
    ) -> list[Subscription]:
        matches = [
            sub
            for sub in self._subscriptions.values()
            if (event_type is None or event_type in sub.event_types)
            and (not enabled_only or sub.is_enabled)
        ]
        matches.sort(key=lambda s: s.created_at)
        return [sub.model_copy(deep=True) for sub in matches[:limit]]

    async def compare_and_set_subscription(
        self,
        subscription: Subscription,
        expected_version: int,
    ) -> Subscription | None:
        async with self._lock:
            current = self._subscriptions.get(subscription.id)
            if current is None or current.version != expected_version:
                return None
            stored = subscription.model_copy(update={"version": expected_version + 1}, deep=True)
            self._subscriptions[stored.id] = stored
            return stored.model_copy(deep=True)

    # Events

    async def store_event(self, event: Event) -> bool:
        async with self._lock:
            if event.id in self._events:
                return False
            self._events[event.id] = event
            return True

    async def get_event(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    # Jobs

    async def create_job(self, job: DeliveryJob) -> bool:
        async with self._lock:
            if job.id in self._jobs:
                return False
            self._jobs[job.id] = job.model_copy(deep=True)
            return True

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        stored = self._jobs.get(job_id)
        return stored.model_copy(deep=True) if stored is not None else None

    async def list_due_jobs(self, now: datetime, limit: int = 100) -> list[DeliveryJob]:
        due = [
            job
            for job in self._jobs.values()
            if job.status is JobStatus.PENDING and job.next_attempt_at <= now
        ]
        due.sort(key=lambda j: (j.next_attempt_at, j.created_at))
        return [job.model_copy(deep=True) for job in due[:limit]]

    async def list_jobs(
        self,
        subscription_id: str | None = None,
        event_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[DeliveryJob]:
        matches = [
            job
            for job in self._jobs.values()
            if (subscription_id is None or job.subscription_id == subscription_id)
            and (event_id is None or job.event_id == event_id)
            and (status is None or job.status is status)
        ]
        matches.sort(key=lambda j: j.created_at)
        return [job.model_copy(deep=True) for job in matches[:limit]]

    async def claim_job(self, job_id: str, now: datetime) -> DeliveryJob | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PENDING or job.next_attempt_at > now:
                return None
            claimed = job.model_copy(
                update={
                    "status": JobStatus.IN_FLIGHT,
                    "claimed_at": now,
                    "updated_at": now,
                    "health_recorded": False,
                },
                deep=True,
            )
            self._jobs[job_id] = claimed
            return claimed.model_copy(deep=True)

    async def transition_job(self, job: DeliveryJob, expected_status: JobStatus) -> bool:
        async with self._lock:
            current = self._jobs.get(job.id)
            if current is None or current.status is not expected_status:
                return False
            self._jobs[job.id] = job.model_copy(deep=True)
            return True

    async def exhaust_pending_jobs(self, subscription_id: str, now: datetime) -> int:
        async with self._lock:
            count = 0
            for job_id, job in self._jobs.items():
                if job.subscription_id == subscription_id and job.status is JobStatus.PENDING:
                    self._jobs[job_id] = job.exhausted_before_attempt(now)
                    count += 1
            return count

    # Attempt log

    async def append_attempt(self, record: DeliveryAttemptRecord) -> None:
        async with self._lock:
            if record.key in self._attempts:
                raise DuplicateAttemptError(record.job_id, record.attempt_number)
            self._attempts[record.key] = record

    async def list_attempts(
        self,
        subscription_id: str | None = None,
        event_id: str | None = None,
        job_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[DeliveryAttemptRecord]:
        matches = [
            rec
            for rec in self._attempts.values()
            if (subscription_id is None or rec.subscription_id == subscription_id)
            and (event_id is None or rec.event_id == event_id)
            and (job_id is None or rec.job_id == job_id)
            and (since is None or rec.sent_at >= since)
            and (until is None or rec.sent_at <= until)
        ]
        matches.sort(key=lambda r: (r.sent_at, r.attempt_number), reverse=True)
        return matches[:limit]

    async def count_attempts(self, job_id: str) -> int:
        return sum(1 for rec in self._attempts.values() if rec.job_id == job_id)
