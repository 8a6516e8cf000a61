"""Append-only delivery attempt log for the Qdrant delivery store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from qdrant_client import models

from courier.exceptions import DuplicateAttemptError
from courier.models import DeliveryAttemptRecord


def _attempt_key(job_id: str, attempt_number: int) -> str:
    return f"{job_id}#{attempt_number}"


class AttemptMixin:
    """Mixin providing attempt log operations for QdrantDeliveryStore.

    Records are keyed by (job_id, attempt_number); appending an existing
    key raises instead of overwriting, so the log is never rewritten.
    """

    _upsert: Any
    _retrieve: Any
    _scroll_ordered: Any
    _count: Any
    _payload_to_model: Any
    _match: Any
    _write_lock: Any

    async def append_attempt(self, record: DeliveryAttemptRecord) -> None:
        """Append a delivery attempt record.

        Raises:
            DuplicateAttemptError: If the attempt was already logged.
        """
        key = _attempt_key(record.job_id, record.attempt_number)
        payload = record.model_dump(mode="json")
        payload["sent_ts"] = record.sent_at.timestamp()

        async with self._write_lock:
            if await self._retrieve("attempts", key) is not None:
                raise DuplicateAttemptError(record.job_id, record.attempt_number)
            await self._upsert("attempts", key, payload)

    async def list_attempts(
        self,
        subscription_id: str | None = None,
        event_id: str | None = None,
        job_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[DeliveryAttemptRecord]:
        """Query the attempt log.

        Args:
            subscription_id: Only attempts sent to this subscription.
            event_id: Only attempts carrying this event.
            job_id: Only attempts of this job.
            since: Only attempts sent at or after this time.
            until: Only attempts sent at or before this time.
            limit: Maximum records to return.

        Returns:
            Records sorted by sent_at, newest first.
        """
        conditions: list[models.Condition] = []
        if subscription_id is not None:
            conditions.append(self._match("subscription_id", subscription_id))
        if event_id is not None:
            conditions.append(self._match("event_id", event_id))
        if job_id is not None:
            conditions.append(self._match("job_id", job_id))
        if since is not None or until is not None:
            conditions.append(
                models.FieldCondition(
                    key="sent_ts",
                    range=models.Range(
                        gte=since.timestamp() if since is not None else None,
                        lte=until.timestamp() if until is not None else None,
                    ),
                )
            )

        payloads = await self._scroll_ordered(
            "attempts",
            models.Filter(must=conditions) if conditions else None,
            "sent_ts",
            limit=limit,
            descending=True,
        )
        records: list[DeliveryAttemptRecord] = [
            self._payload_to_model(p, DeliveryAttemptRecord) for p in payloads
        ]
        records.sort(key=lambda r: (r.sent_at, r.attempt_number), reverse=True)
        return records

    async def count_attempts(self, job_id: str) -> int:
        count: int = await self._count(
            "attempts", models.Filter(must=[self._match("job_id", job_id)])
        )
        return count
