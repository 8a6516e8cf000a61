"""Test doubles shared across the test suite."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import httpx

from courier.models import Subscription
from courier.webhooks import generate_secret

START = datetime(2026, 1, 1, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock shared by the dispatcher and coordinator."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


Reply = int | Exception | Callable[[httpx.Request], Awaitable[httpx.Response]]


class Receiver:
    """Scripted subscriber endpoint backed by httpx.MockTransport.

    Each request consumes the next scripted reply: a status code, an
    exception to raise, or an async callable producing the response. When
    the script runs out, `default` is returned.
    """

    def __init__(self, replies: list[Reply] | None = None, default: int = 200) -> None:
        self.replies = list(replies or [])
        self.default = default
        self.requests: list[httpx.Request] = []

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply: Reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return await reply(request)
        return httpx.Response(reply, text="ok" if 200 <= reply < 300 else "nope")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def timestamps(self) -> list[int]:
        return [int(r.headers["X-Webhook-Timestamp"]) for r in self.requests]


def make_subscription(
    event_types: set[str] | None = None,
    url: str = "https://hooks.example.com/orders",
    **overrides: object,
) -> Subscription:
    """Create a subscription with an engine-style generated secret."""
    fields: dict[str, object] = {
        "target_url": url,
        "signing_secret": generate_secret(),
        "event_types": event_types or {"order.completed"},
        "created_at": START,
        "updated_at": START,
    }
    fields.update(overrides)
    return Subscription(**fields)
