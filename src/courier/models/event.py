"""Event model - immutable domain events handed to the delivery engine."""

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id


class Event(BaseModel):
    """A domain event to be delivered to subscribers.

    Events are created by the producer and never mutated. The payload is
    the exact byte sequence that goes on the wire and is signed, so it
    must not be re-serialized between signing and sending.

    Attributes:
        id: Unique identifier, sent as X-Webhook-ID.
        type: Event type, e.g. "order.completed".
        payload: JSON body as raw bytes.
        occurred_at: When the event happened.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("evt"), min_length=1)
    type: str = Field(min_length=1, max_length=200, description="Event type")
    payload: bytes = Field(description="Raw JSON body")
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the event occurred",
    )

    @classmethod
    def from_data(
        cls,
        type: str,
        data: Any,
        id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> "Event":
        """Create an event by serializing data to compact, key-sorted JSON."""
        payload = json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")
        fields: dict[str, Any] = {"type": type, "payload": payload}
        if id is not None:
            fields["id"] = id
        if occurred_at is not None:
            fields["occurred_at"] = occurred_at
        return cls(**fields)

    def same_content(self, other: "Event") -> bool:
        """Whether two events with the same id carry the same type and payload."""
        return self.type == other.type and self.payload == other.payload
