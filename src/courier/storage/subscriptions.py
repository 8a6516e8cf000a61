"""Subscription and event operations for the Qdrant delivery store."""

from __future__ import annotations

import base64
from typing import Any

from qdrant_client import models

from courier.exceptions import InvalidStateError
from courier.models import Event, HealthState, Subscription


def _subscription_payload(subscription: Subscription) -> dict[str, Any]:
    payload = subscription.model_dump(mode="json")
    payload["created_ts"] = subscription.created_at.timestamp()
    return payload


class SubscriptionMixin:
    """Mixin providing subscription and event operations for QdrantDeliveryStore.

    This mixin expects the following attributes/methods from the base class:
    - _upsert(kind, key, payload), _retrieve(kind, key), _scroll(kind, filter)
    - _scroll_ordered(kind, filter, order_key, limit, descending)
    - _payload_to_model(payload, model_class), _match(key, value)
    - _write_lock: asyncio.Lock
    """

    _upsert: Any
    _retrieve: Any
    _scroll: Any
    _scroll_ordered: Any
    _payload_to_model: Any
    _match: Any
    _write_lock: Any

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        """Store a newly registered subscription.

        Raises:
            InvalidStateError: If a subscription with the same ID exists.
        """
        async with self._write_lock:
            if await self._retrieve("subscriptions", subscription.id) is not None:
                raise InvalidStateError(f"subscription already exists: {subscription.id}")
            await self._upsert(
                "subscriptions", subscription.id, _subscription_payload(subscription)
            )
        return subscription

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        payload = await self._retrieve("subscriptions", subscription_id)
        if payload is None:
            return None
        subscription: Subscription = self._payload_to_model(payload, Subscription)
        return subscription

    async def list_subscriptions(
        self,
        event_type: str | None = None,
        enabled_only: bool = False,
        limit: int | None = 100,
    ) -> list[Subscription]:
        """List subscriptions, optionally only enabled ones for an event type.

        Args:
            event_type: Only subscriptions whose event_types contain this type.
            enabled_only: If True, only return enabled subscriptions.
            limit: Maximum subscriptions to return, or None for all of them.

        Returns:
            Subscriptions ordered by creation time.
        """
        conditions: list[models.Condition] = []
        if event_type is not None:
            conditions.append(self._match("event_types", event_type))
        if enabled_only:
            conditions.append(self._match("health_state", HealthState.ENABLED.value))

        scroll_filter = models.Filter(must=conditions) if conditions else None
        if limit is None:
            payloads = await self._scroll("subscriptions", scroll_filter)
        else:
            payloads = await self._scroll_ordered(
                "subscriptions", scroll_filter, "created_ts", limit=limit
            )
        subscriptions: list[Subscription] = [
            self._payload_to_model(p, Subscription) for p in payloads
        ]
        subscriptions.sort(key=lambda s: s.created_at)
        return subscriptions

    async def compare_and_set_subscription(
        self,
        subscription: Subscription,
        expected_version: int,
    ) -> Subscription | None:
        async with self._write_lock:
            current = await self.get_subscription(subscription.id)
            if current is None or current.version != expected_version:
                return None
            stored = subscription.model_copy(update={"version": expected_version + 1})
            await self._upsert("subscriptions", stored.id, _subscription_payload(stored))
            return stored

    async def store_event(self, event: Event) -> bool:
        """Store an event once. Payload bytes are kept base64-encoded."""
        async with self._write_lock:
            if await self._retrieve("events", event.id) is not None:
                return False
            await self._upsert(
                "events",
                event.id,
                {
                    "id": event.id,
                    "type": event.type,
                    "payload_b64": base64.b64encode(event.payload).decode("ascii"),
                    "occurred_at": event.occurred_at.isoformat(),
                },
            )
            return True

    async def get_event(self, event_id: str) -> Event | None:
        payload = await self._retrieve("events", event_id)
        if payload is None:
            return None
        return Event(
            id=payload["id"],
            type=payload["type"],
            payload=base64.b64decode(payload["payload_b64"]),
            occurred_at=payload["occurred_at"],
        )
