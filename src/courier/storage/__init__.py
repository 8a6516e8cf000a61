"""Store adapters for Courier.

The delivery engine depends only on the protocols in
``courier.storage.protocols``. Two adapters are provided:

- InMemoryDeliveryStore: dictionaries under an asyncio lock
- QdrantDeliveryStore: Qdrant collections used as a filtered document store

Example:
    ```python
    from courier.config import Settings
    from courier.storage import get_store

    store = get_store(Settings(store_backend="memory"))
    await store.initialize()
    ```
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from courier.exceptions import ConfigurationError

from .base import COLLECTION_NAMES
from .client import QdrantDeliveryStore
from .memory import InMemoryDeliveryStore
from .protocols import AttemptLog, DeliveryStore, EventStore, JobStore, SubscriptionStore

if TYPE_CHECKING:
    from courier.config import Settings

logger = logging.getLogger(__name__)


def get_store(settings: Settings) -> DeliveryStore:
    """Get the store adapter selected by settings.store_backend.

    Raises:
        ConfigurationError: If the configured backend is unknown.
    """
    backend = settings.store_backend.lower()

    if backend == "memory":
        logger.info("Using in-memory delivery store (no durability)")
        return InMemoryDeliveryStore()

    if backend == "qdrant":
        logger.info("Using Qdrant delivery store at %s", settings.qdrant_url)
        return QdrantDeliveryStore(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            prefix=settings.collection_prefix,
        )

    raise ConfigurationError(f"Unknown store backend: {settings.store_backend}")


__all__ = [
    "AttemptLog",
    "COLLECTION_NAMES",
    "DeliveryStore",
    "EventStore",
    "InMemoryDeliveryStore",
    "JobStore",
    "QdrantDeliveryStore",
    "SubscriptionStore",
    "get_store",
]
