"""Shared helpers for Courier models."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("sub") -> "sub_a1b2c3d4e5f6"
        generate_id("evt") -> "evt_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def job_id_for(event_id: str, subscription_id: str) -> str:
    """Deterministic job ID for an (event, subscription) pair.

    The same pair always maps to the same ID, so creating a job twice
    collides on the key instead of producing a duplicate.
    """
    digest = hashlib.sha256(f"{event_id}/{subscription_id}".encode()).hexdigest()[:24]
    return f"job_{digest}"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)
