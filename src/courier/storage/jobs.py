"""Delivery job operations for the Qdrant delivery store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from qdrant_client import models

from courier.models import DeliveryJob, JobStatus


def _job_payload(job: DeliveryJob) -> dict[str, Any]:
    payload = job.model_dump(mode="json")
    payload["next_attempt_ts"] = job.next_attempt_at.timestamp()
    payload["created_ts"] = job.created_at.timestamp()
    return payload


class JobMixin:
    """Mixin providing delivery job operations for QdrantDeliveryStore.

    Jobs are keyed by their deterministic ID, so the (event, subscription)
    uniqueness constraint is the point-ID uniqueness of the collection.
    Status changes go through the write lock and re-check the stored status.
    """

    _upsert: Any
    _retrieve: Any
    _scroll: Any
    _scroll_ordered: Any
    _payload_to_model: Any
    _match: Any
    _write_lock: Any

    async def create_job(self, job: DeliveryJob) -> bool:
        async with self._write_lock:
            if await self._retrieve("jobs", job.id) is not None:
                return False
            await self._upsert("jobs", job.id, _job_payload(job))
            return True

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        payload = await self._retrieve("jobs", job_id)
        if payload is None:
            return None
        job: DeliveryJob = self._payload_to_model(payload, DeliveryJob)
        return job

    async def list_due_jobs(self, now: datetime, limit: int = 100) -> list[DeliveryJob]:
        """Get pending jobs whose next_attempt_at has passed, earliest first."""
        payloads = await self._scroll_ordered(
            "jobs",
            models.Filter(
                must=[
                    self._match("status", JobStatus.PENDING.value),
                    models.FieldCondition(
                        key="next_attempt_ts",
                        range=models.Range(lte=now.timestamp()),
                    ),
                ]
            ),
            "next_attempt_ts",
            limit=limit,
        )
        jobs: list[DeliveryJob] = [self._payload_to_model(p, DeliveryJob) for p in payloads]
        jobs.sort(key=lambda j: (j.next_attempt_at, j.created_at))
        return jobs

    async def list_jobs(
        self,
        subscription_id: str | None = None,
        event_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[DeliveryJob]:
        conditions: list[models.Condition] = []
        if subscription_id is not None:
            conditions.append(self._match("subscription_id", subscription_id))
        if event_id is not None:
            conditions.append(self._match("event_id", event_id))
        if status is not None:
            conditions.append(self._match("status", status.value))

        payloads = await self._scroll_ordered(
            "jobs",
            models.Filter(must=conditions) if conditions else None,
            "created_ts",
            limit=limit,
        )
        jobs: list[DeliveryJob] = [self._payload_to_model(p, DeliveryJob) for p in payloads]
        jobs.sort(key=lambda j: j.created_at)
        return jobs

    async def claim_job(self, job_id: str, now: datetime) -> DeliveryJob | None:
        async with self._write_lock:
            job = await self.get_job(job_id)
            if job is None or job.status is not JobStatus.PENDING or job.next_attempt_at > now:
                return None
            claimed = job.model_copy(
                update={
                    "status": JobStatus.IN_FLIGHT,
                    "claimed_at": now,
                    "updated_at": now,
                    "health_recorded": False,
                }
            )
            await self._upsert("jobs", claimed.id, _job_payload(claimed))
            return claimed

    async def transition_job(self, job: DeliveryJob, expected_status: JobStatus) -> bool:
        async with self._write_lock:
            current = await self.get_job(job.id)
            if current is None or current.status is not expected_status:
                return False
            await self._upsert("jobs", job.id, _job_payload(job))
            return True

    async def exhaust_pending_jobs(self, subscription_id: str, now: datetime) -> int:
        async with self._write_lock:
            payloads = await self._scroll(
                "jobs",
                models.Filter(
                    must=[
                        self._match("subscription_id", subscription_id),
                        self._match("status", JobStatus.PENDING.value),
                    ]
                ),
            )
            for payload in payloads:
                job: DeliveryJob = self._payload_to_model(payload, DeliveryJob)
                exhausted = job.exhausted_before_attempt(now)
                await self._upsert("jobs", exhausted.id, _job_payload(exhausted))
            return len(payloads)
