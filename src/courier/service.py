"""Core Courier service layer.

CourierService ties the store, the delivery coordinator and the settings
together behind the registration, publishing and admin operations used by
the HTTP API.

Example:
    ```python
    from courier.service import CourierService

    async with CourierService.create() as courier:
        registration = await courier.register_subscription(
            url="https://hooks.example.com/orders",
            events=["order.completed"],
        )
        print(f"Secret (shown once): {registration.signing_secret}")

        await courier.publish_event("order.completed", {"order_id": 42})
        await courier.coordinator.drain()
    ```
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from courier.config import Settings
from courier.exceptions import NotFoundError, ValidationError
from courier.logging import get_logger
from courier.models import (
    DeliveryAttemptRecord,
    DeliveryJob,
    Event,
    Subscription,
    utc_now,
)
from courier.storage import DeliveryStore, get_store
from courier.webhooks import (
    DeliveryCoordinator,
    HealthTransition,
    HttpNotifier,
    LogNotifier,
    Notifier,
    generate_secret,
    mutate_subscription,
)

logger = get_logger(__name__)

# How far back the attempt log is searched for a subscription's last failure.
LAST_FAILURE_LOOKBACK = 100


@dataclass(frozen=True)
class Registration:
    """A subscription together with its signing secret.

    Only returned by register_subscription and rotate_secret; the secret is
    never exposed again afterwards.
    """

    subscription: Subscription
    signing_secret: str = field(repr=False)


@dataclass(frozen=True)
class SubscriptionHealth:
    """Health view of a subscription for operators."""

    subscription: Subscription
    last_failure: DeliveryAttemptRecord | None = None


@dataclass(frozen=True)
class PublishResult:
    """An accepted event and the jobs created for it."""

    event: Event
    jobs: list[DeliveryJob]


def build_notifier(settings: Settings) -> Notifier:
    """HttpNotifier when an operator URL is configured, else LogNotifier."""
    if settings.operator_webhook_url:
        return HttpNotifier(
            settings.operator_webhook_url,
            timeout_seconds=settings.request_timeout_seconds,
        )
    return LogNotifier()


@dataclass
class CourierService:
    """High-level webhook delivery service.

    This service provides:
    - register_subscription(): Register an endpoint and get its secret once
    - publish_event(): Accept an event and fan it out to delivery jobs
    - subscription_health() / enable / disable: Operator health controls
    - list_*_attempts(): Read-only queries over the attempt log

    Attributes:
        store: Storage backend (in-memory or Qdrant).
        coordinator: Delivery coordinator driving the jobs.
        settings: Configuration settings.
    """

    store: DeliveryStore
    coordinator: DeliveryCoordinator
    settings: Settings
    clock: Callable[[], datetime] = field(default=utc_now, repr=False)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        store: DeliveryStore | None = None,
        notifier: Notifier | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> CourierService:
        """Create a CourierService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.
            store: Optional store; built from settings.store_backend if None.
            notifier: Optional disablement notifier; built from settings if None.
            transport: Optional httpx transport for outbound deliveries.
            clock: Source of "now".

        Returns:
            Configured CourierService instance.
        """
        if settings is None:
            settings = Settings()
        if store is None:
            store = get_store(settings)
        if notifier is None:
            notifier = build_notifier(settings)

        coordinator = DeliveryCoordinator.from_settings(
            store,
            settings,
            notifier=notifier,
            transport=transport,
            clock=clock,
        )
        return cls(store=store, coordinator=coordinator, settings=settings, clock=clock)

    async def initialize(self) -> None:
        """Initialize the service (store collections, etc.)."""
        await self.store.initialize()

    async def close(self) -> None:
        """Stop the scheduling loop if running and release the store."""
        await self.coordinator.stop(timeout=self.settings.request_timeout_seconds)
        await self.store.close()

    async def __aenter__(self) -> CourierService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Registration

    async def register_subscription(
        self,
        url: str,
        events: Iterable[str],
        description: str | None = None,
    ) -> Registration:
        """Register a webhook endpoint.

        The signing secret is generated here and returned exactly once.

        Raises:
            ValidationError: If the URL is malformed or not HTTPS, or no
                event types are given.
        """
        target_url = self._validate_url(url)
        event_types = self._validate_events(events)
        if description is not None and len(description) > 500:
            raise ValidationError("description", "must be at most 500 characters")

        now = self.clock()
        secret = generate_secret()
        subscription = await self.store.create_subscription(
            Subscription(
                target_url=target_url,
                signing_secret=secret,
                event_types=event_types,
                description=description,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            "Subscription registered",
            subscription_id=subscription.id,
            target_url=target_url,
            event_types=sorted(event_types),
        )
        return Registration(subscription=subscription, signing_secret=secret)

    async def rotate_secret(self, subscription_id: str) -> Registration:
        """Replace a subscription's signing secret and return the new one once.

        Attempts already in flight keep the secret they were signed with.
        """
        secret = generate_secret()
        now = self.clock()
        transition = await mutate_subscription(
            self.store,
            subscription_id,
            lambda sub: HealthTransition(
                subscription=sub.model_copy(update={"signing_secret": secret, "updated_at": now})
            ),
        )
        logger.info("Signing secret rotated", subscription_id=subscription_id)
        return Registration(subscription=transition.subscription, signing_secret=secret)

    def _validate_url(self, url: str) -> str:
        try:
            parsed = httpx.URL(url.strip())
        except (httpx.InvalidURL, TypeError) as e:
            raise ValidationError("url", f"malformed URL: {e}") from e

        allowed = {"https", "http"} if self.settings.allow_insecure_urls else {"https"}
        if parsed.scheme not in allowed:
            raise ValidationError("url", f"scheme must be one of {sorted(allowed)}")
        if not parsed.host:
            raise ValidationError("url", "URL must include a host")
        return str(parsed)

    @staticmethod
    def _validate_events(events: Iterable[str]) -> set[str]:
        if isinstance(events, str):
            raise ValidationError("events", "must be a list of event types")
        event_types = {e.strip() for e in events}
        if not event_types:
            raise ValidationError("events", "at least one event type is required")
        if "" in event_types:
            raise ValidationError("events", "event types must be non-empty")
        return event_types

    # Subscriptions

    async def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.store.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def list_subscriptions(
        self,
        event_type: str | None = None,
        enabled_only: bool = False,
        limit: int = 100,
    ) -> list[Subscription]:
        return await self.store.list_subscriptions(
            event_type=event_type, enabled_only=enabled_only, limit=limit
        )

    async def subscription_health(self, subscription_id: str) -> SubscriptionHealth:
        """Get a subscription with the details of its most recent failed attempt."""
        subscription = await self.get_subscription(subscription_id)
        recent = await self.store.list_attempts(
            subscription_id=subscription_id, limit=LAST_FAILURE_LOOKBACK
        )
        last_failure = next((r for r in recent if r.outcome.is_failure), None)
        return SubscriptionHealth(subscription=subscription, last_failure=last_failure)

    async def enable_subscription(self, subscription_id: str) -> Subscription:
        """Re-enable a disabled subscription. Enabling an enabled one is a no-op."""
        transition = await self.coordinator.enable_subscription(subscription_id)
        return transition.subscription

    async def disable_subscription(self, subscription_id: str) -> Subscription:
        """Disable a subscription. Disabling a disabled one is a no-op."""
        transition = await self.coordinator.disable_subscription(subscription_id)
        return transition.subscription

    # Events and jobs

    async def publish_event(
        self,
        event_type: str,
        data: Any = None,
        *,
        payload: bytes | None = None,
        event_id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> PublishResult:
        """Accept an event for delivery.

        Either data (serialized to compact JSON) or a raw payload is used as
        the wire body.

        Raises:
            ValidationError: If both data and payload are given.
            InvalidStateError: If event_id exists with different content.
        """
        if payload is not None and data is not None:
            raise ValidationError("payload", "give either data or a raw payload, not both")

        try:
            if payload is not None:
                fields: dict[str, Any] = {"type": event_type, "payload": payload}
                if event_id is not None:
                    fields["id"] = event_id
                if occurred_at is not None:
                    fields["occurred_at"] = occurred_at
                event = Event(**fields)
            else:
                event = Event.from_data(event_type, data, id=event_id, occurred_at=occurred_at)
        except PydanticValidationError as e:
            raise ValidationError("event", str(e)) from e
        except TypeError as e:
            raise ValidationError("data", f"not JSON serializable: {e}") from e

        jobs = await self.coordinator.publish(event)
        return PublishResult(event=event, jobs=jobs)

    async def get_job(self, job_id: str) -> DeliveryJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    async def list_jobs_for_event(self, event_id: str, limit: int = 100) -> list[DeliveryJob]:
        return await self.store.list_jobs(event_id=event_id, limit=limit)

    # Attempt log

    async def list_subscription_attempts(
        self,
        subscription_id: str,
        limit: int = 100,
    ) -> list[DeliveryAttemptRecord]:
        await self.get_subscription(subscription_id)
        return await self.store.list_attempts(subscription_id=subscription_id, limit=limit)

    async def list_event_attempts(
        self,
        event_id: str,
        limit: int = 100,
    ) -> list[DeliveryAttemptRecord]:
        if await self.store.get_event(event_id) is None:
            raise NotFoundError("event", event_id)
        return await self.store.list_attempts(event_id=event_id, limit=limit)

    async def list_attempts(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[DeliveryAttemptRecord]:
        """Attempts sent within [since, until], newest first."""
        if since is not None and until is not None and since > until:
            raise ValidationError("since", "must not be after until")
        return await self.store.list_attempts(since=since, until=until, limit=limit)


__all__ = [
    "CourierService",
    "PublishResult",
    "Registration",
    "SubscriptionHealth",
    "build_notifier",
]
