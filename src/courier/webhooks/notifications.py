"""Operator notifications for subscription disablement.

A silently disabled subscription loses data without anyone noticing, so the
coordinator raises a notice on every enabled -> disabled edge. Notifier
failures are logged and never propagate into the delivery path.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from courier.logging import get_logger
from courier.models import DisabledReason, Subscription, utc_now

logger = get_logger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Receives disablement notices for operators."""

    async def notify_disabled(self, subscription: Subscription, reason: DisabledReason) -> None:
        ...


def _notice(subscription: Subscription, reason: DisabledReason) -> dict[str, object]:
    return {
        "type": "subscription.disabled",
        "subscription_id": subscription.id,
        "target_url": subscription.target_url,
        "reason": reason.value,
        "consecutive_failures": subscription.consecutive_failures,
        "disabled_at": (subscription.disabled_at or utc_now()).isoformat(),
    }


class LogNotifier:
    """Writes disablement notices to the structured log."""

    async def notify_disabled(self, subscription: Subscription, reason: DisabledReason) -> None:
        logger.warning("Subscription disabled", **_notice(subscription, reason))


class HttpNotifier:
    """POSTs disablement notices as JSON to an operator endpoint.

    Args:
        url: Operator endpoint.
        timeout_seconds: Request timeout.
        transport: Optional httpx transport (for tests).
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport

    async def notify_disabled(self, subscription: Subscription, reason: DisabledReason) -> None:
        notice = _notice(subscription, reason)
        client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        try:
            async with client:
                response = await client.post(self._url, json=notice)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "Failed to deliver disablement notice",
                subscription_id=subscription.id,
                operator_url=self._url,
                error=str(e),
            )
            return
        logger.info("Disablement notice sent", subscription_id=subscription.id)
