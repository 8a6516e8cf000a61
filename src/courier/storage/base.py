"""Base class for the Qdrant-backed delivery store.

Contains initialization, collection management, and shared helpers. Qdrant
is used here as a document store with payload filtering: every point gets
a one-dimensional zero vector and all queries are payload filters.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from courier.config import settings

from .retry import qdrant_retry

ModelT = TypeVar("ModelT", bound=BaseModel)

COLLECTION_NAMES = {
    "subscriptions": "subscriptions",
    "events": "events",
    "jobs": "jobs",
    "attempts": "attempts",
}

# Keyword and float payload indexes per collection
COLLECTION_INDEXES: dict[str, dict[str, models.PayloadSchemaType]] = {
    "subscriptions": {
        "health_state": models.PayloadSchemaType.KEYWORD,
        "event_types": models.PayloadSchemaType.KEYWORD,
        "created_ts": models.PayloadSchemaType.FLOAT,
    },
    "events": {
        "type": models.PayloadSchemaType.KEYWORD,
    },
    "jobs": {
        "status": models.PayloadSchemaType.KEYWORD,
        "subscription_id": models.PayloadSchemaType.KEYWORD,
        "event_id": models.PayloadSchemaType.KEYWORD,
        "next_attempt_ts": models.PayloadSchemaType.FLOAT,
        "created_ts": models.PayloadSchemaType.FLOAT,
    },
    "attempts": {
        "job_id": models.PayloadSchemaType.KEYWORD,
        "subscription_id": models.PayloadSchemaType.KEYWORD,
        "event_id": models.PayloadSchemaType.KEYWORD,
        "sent_ts": models.PayloadSchemaType.FLOAT,
    },
}

# Derived payload fields that exist only for filtering and ordering
_DERIVED_FIELDS = ("next_attempt_ts", "sent_ts", "created_ts")

VECTOR_SIZE = 1
ZERO_VECTOR = [0.0]
SCROLL_PAGE_SIZE = 256


class QdrantStoreBase:
    """Base class for the Qdrant delivery store.

    Provides:
    - Client initialization and lifecycle management
    - Collection creation and indexing
    - Point ID derivation and payload (de)serialization
    - A write lock serializing conditional updates

    Qdrant has no conditional writes, so compare-and-set style operations
    are serialized by an in-process lock. Run a single scheduling worker
    process per collection prefix when using this store.
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
    ) -> None:
        """Initialize store settings.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._client: AsyncQdrantClient | None = None
        self._collections_initialized = False
        self._write_lock = asyncio.Lock()

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Initialize the client and ensure collections exist."""
        if self._client is None:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        await self._ensure_collections()
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collections_initialized = False

    async def __aenter__(self) -> QdrantStoreBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _collection_name(self, kind: str) -> str:
        """Get full collection name with prefix."""
        suffix = COLLECTION_NAMES.get(kind, kind)
        return f"{self._prefix}_{suffix}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert a storage key to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers.
        We hash the key to create a deterministic UUID-format string.
        """
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist with their indexes."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for kind in COLLECTION_NAMES:
            collection_name = self._collection_name(kind)
            if collection_name not in existing:
                await self.client.create_collection(
                    collection_name=collection_name,
                    vectors_config=models.VectorParams(
                        size=VECTOR_SIZE,
                        distance=models.Distance.DOT,
                    ),
                )
            # Ordered scrolls need every index, including ones added since creation
            await self._create_indexes(kind, collection_name)

    async def _create_indexes(self, kind: str, collection_name: str) -> None:
        """Create payload indexes for efficient filtering."""
        for field_name, schema in COLLECTION_INDEXES.get(kind, {}).items():
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=schema,
            )

    @staticmethod
    def _payload_to_model(payload: dict[str, Any], model_class: type[ModelT]) -> ModelT:
        """Convert a Qdrant payload back to a model, dropping derived fields."""
        data = {k: v for k, v in payload.items() if k not in _DERIVED_FIELDS}
        return model_class.model_validate(data)

    @qdrant_retry
    async def _upsert(self, kind: str, key: str, payload: dict[str, Any]) -> None:
        await self.client.upsert(
            collection_name=self._collection_name(kind),
            points=[
                models.PointStruct(
                    id=self._key_to_point_id(key),
                    vector=ZERO_VECTOR,
                    payload=payload,
                )
            ],
        )

    @qdrant_retry
    async def _retrieve(self, kind: str, key: str) -> dict[str, Any] | None:
        results = await self.client.retrieve(
            collection_name=self._collection_name(kind),
            ids=[self._key_to_point_id(key)],
            with_payload=True,
        )
        if not results:
            return None
        return results[0].payload

    @qdrant_retry
    async def _scroll_page(
        self,
        kind: str,
        scroll_filter: models.Filter | None,
        limit: int,
        offset: Any = None,
    ) -> tuple[list[dict[str, Any]], Any]:
        points, next_offset = await self.client.scroll(
            collection_name=self._collection_name(kind),
            scroll_filter=scroll_filter,
            limit=limit,
            offset=offset,
            with_payload=True,
            with_vectors=False,
        )
        return [p.payload for p in points if p.payload is not None], next_offset

    async def _scroll(
        self,
        kind: str,
        scroll_filter: models.Filter | None,
    ) -> list[dict[str, Any]]:
        """Collect every payload matching a filter, in point-ID order."""
        payloads: list[dict[str, Any]] = []
        offset: Any = None
        while True:
            page, offset = await self._scroll_page(
                kind, scroll_filter, limit=SCROLL_PAGE_SIZE, offset=offset
            )
            payloads.extend(page)
            if offset is None:
                return payloads

    @qdrant_retry
    async def _scroll_ordered(
        self,
        kind: str,
        scroll_filter: models.Filter | None,
        order_key: str,
        limit: int,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Get the first limit payloads matching a filter, ordered by a FLOAT index.

        Qdrant does the ordering, so the result is the true head of the
        ordering however many points match.
        """
        points, _ = await self.client.scroll(
            collection_name=self._collection_name(kind),
            scroll_filter=scroll_filter,
            limit=limit,
            order_by=models.OrderBy(
                key=order_key,
                direction=models.Direction.DESC if descending else models.Direction.ASC,
            ),
            with_payload=True,
            with_vectors=False,
        )
        return [p.payload for p in points if p.payload is not None]

    @qdrant_retry
    async def _count(self, kind: str, count_filter: models.Filter | None) -> int:
        result = await self.client.count(
            collection_name=self._collection_name(kind),
            count_filter=count_filter,
            exact=True,
        )
        return result.count

    @staticmethod
    def _match(key: str, value: Any) -> models.FieldCondition:
        return models.FieldCondition(key=key, match=models.MatchValue(value=value))
