"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import FakeClock, Receiver  # noqa: E402

from courier.storage import InMemoryDeliveryStore  # noqa: E402
from courier.webhooks import DeliveryCoordinator, Dispatcher  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest.fixture
async def store():
    """In-memory delivery store."""
    async with InMemoryDeliveryStore() as memory_store:
        yield memory_store


@pytest.fixture
def notifier() -> AsyncMock:
    """Disablement notifier mock."""
    return AsyncMock()


@pytest.fixture
def coordinator(store, receiver, clock, notifier) -> DeliveryCoordinator:
    """Coordinator wired to the in-memory store, the scripted receiver and the fake clock."""
    dispatcher = Dispatcher(store, timeout_seconds=5.0, transport=receiver.transport, clock=clock)
    return DeliveryCoordinator(
        store,
        dispatcher,
        notifier=notifier,
        max_in_flight=10,
        poll_interval_seconds=0.01,
        clock=clock,
    )
