"""Qdrant delivery store for Courier.

This module provides the QdrantDeliveryStore class that combines all store
operations through mixins.

Example:
    ```python
    from courier.storage import QdrantDeliveryStore

    async with QdrantDeliveryStore(url="http://localhost:6333") as store:
        await store.create_subscription(subscription)
        due = await store.list_due_jobs(now)
    ```
"""

from __future__ import annotations

from .attempts import AttemptMixin
from .base import QdrantStoreBase
from .jobs import JobMixin
from .subscriptions import SubscriptionMixin


class QdrantDeliveryStore(SubscriptionMixin, JobMixin, AttemptMixin, QdrantStoreBase):
    """Async Qdrant implementation of the DeliveryStore protocol.

    This class combines functionality from multiple mixins:
    - SubscriptionMixin: subscriptions (compare-and-set on version) and events
    - JobMixin: job creation, due-job scans, claims and status transitions
    - AttemptMixin: append-only attempt log and its queries

    Attributes:
        client: Async Qdrant client instance.
    """
