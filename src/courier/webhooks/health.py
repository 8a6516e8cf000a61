"""Endpoint health state machine.

    enabled --(consecutive_failures reaches threshold)--> disabled
    enabled --(operator disable)-----------------------> disabled
    disabled --(operator enable, counter reset)--------> enabled
    any success resets consecutive_failures to 0

Transitions are pure: each function returns a new Subscription plus the
edge that fired. mutate_subscription applies them through the store's
version compare-and-set, never as an unchecked read-modify-write.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from courier.exceptions import NotFoundError, StorageError
from courier.models import DisabledReason, HealthState, Subscription

if TYPE_CHECKING:
    from courier.storage.protocols import SubscriptionStore


@dataclass(frozen=True)
class HealthTransition:
    """Result of applying a health event to a subscription.

    Attributes:
        subscription: Subscription after the transition.
        disabled: True if this call moved the subscription enabled -> disabled.
        enabled: True if this call moved the subscription disabled -> enabled.
    """

    subscription: Subscription
    disabled: bool = False
    enabled: bool = False

    @property
    def changed_state(self) -> bool:
        return self.disabled or self.enabled


def apply_success(subscription: Subscription, now: datetime) -> HealthTransition:
    """A delivery succeeded: reset the failure counter. State is unchanged."""
    if subscription.consecutive_failures == 0:
        return HealthTransition(subscription=subscription)
    updated = subscription.model_copy(update={"consecutive_failures": 0, "updated_at": now})
    return HealthTransition(subscription=updated)


def apply_failure(
    subscription: Subscription,
    threshold: int,
    now: datetime,
) -> HealthTransition:
    """A delivery attempt failed: count it and disable at the threshold.

    Failures recorded while already disabled (in-flight attempts finishing
    after disablement) still count, but cannot fire the edge a second time.
    """
    failures = subscription.consecutive_failures + 1
    update: dict[str, object] = {"consecutive_failures": failures, "updated_at": now}

    fire = subscription.is_enabled and failures >= threshold
    if fire:
        update.update(
            health_state=HealthState.DISABLED,
            disabled_at=now,
            disabled_reason=DisabledReason.FAILURE_THRESHOLD,
        )
    return HealthTransition(subscription=subscription.model_copy(update=update), disabled=fire)


def apply_disable(
    subscription: Subscription,
    now: datetime,
    reason: DisabledReason = DisabledReason.OPERATOR,
) -> HealthTransition:
    """Operator disablement. No-op if already disabled."""
    if not subscription.is_enabled:
        return HealthTransition(subscription=subscription)
    updated = subscription.model_copy(
        update={
            "health_state": HealthState.DISABLED,
            "disabled_at": now,
            "disabled_reason": reason,
            "updated_at": now,
        }
    )
    return HealthTransition(subscription=updated, disabled=True)


def apply_enable(subscription: Subscription, now: datetime) -> HealthTransition:
    """Operator re-enable. Resets the failure counter. No-op if already enabled."""
    if subscription.is_enabled:
        return HealthTransition(subscription=subscription)
    updated = subscription.model_copy(
        update={
            "health_state": HealthState.ENABLED,
            "consecutive_failures": 0,
            "disabled_at": None,
            "disabled_reason": None,
            "updated_at": now,
        }
    )
    return HealthTransition(subscription=updated, enabled=True)


async def mutate_subscription(
    store: SubscriptionStore,
    subscription_id: str,
    transition: Callable[[Subscription], HealthTransition],
    max_conflicts: int = 20,
) -> HealthTransition:
    """Apply a health transition with an optimistic compare-and-set loop.

    Reads the subscription, computes the transition, and writes it only if
    the version is unchanged; on conflict the transition is recomputed
    from the fresh state. Concurrent workers never lose a counter update,
    and an edge such as enabled -> disabled is reported to exactly one caller.

    Raises:
        NotFoundError: If the subscription does not exist.
        StorageError: If the update keeps conflicting.
    """
    for _ in range(max_conflicts):
        current = await store.get_subscription(subscription_id)
        if current is None:
            raise NotFoundError("subscription", subscription_id)

        result = transition(current)
        if result.subscription is current:
            return result

        stored = await store.compare_and_set_subscription(result.subscription, current.version)
        if stored is not None:
            return HealthTransition(
                subscription=stored,
                disabled=result.disabled,
                enabled=result.enabled,
            )

    raise StorageError(f"subscription {subscription_id} update conflicted {max_conflicts} times")


async def record_success(
    store: SubscriptionStore,
    subscription_id: str,
    now: datetime,
) -> HealthTransition:
    """Reset a subscription's failure counter after a successful attempt."""
    return await mutate_subscription(store, subscription_id, lambda sub: apply_success(sub, now))


async def record_failure(
    store: SubscriptionStore,
    subscription_id: str,
    threshold: int,
    now: datetime,
) -> HealthTransition:
    """Count a failed attempt. transition.disabled is True for exactly one caller."""
    return await mutate_subscription(
        store, subscription_id, lambda sub: apply_failure(sub, threshold, now)
    )
