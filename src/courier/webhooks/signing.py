"""HMAC-SHA256 request signing with replay protection.

The signature covers "{timestamp}.{body}" so that a captured request cannot
be replayed with a fresh timestamp. Receivers must verify against the raw
bytes they received; re-encoding the JSON body breaks the signature.

Example:
    ```python
    from courier.webhooks.signing import sign, verify

    signature = sign(secret, 1700000000, body)
    assert verify(secret, 1700000000, body, signature, now=1700000010)
    ```
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import Mapping
from datetime import datetime

from courier.config import settings

SIGNATURE_PREFIX = "sha256="

HEADER_ID = "X-Webhook-ID"
HEADER_TIMESTAMP = "X-Webhook-Timestamp"
HEADER_SIGNATURE = "X-Webhook-Signature"

Timestamp = int | str | datetime


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def _to_unix(value: Timestamp) -> int:
    """Normalize a timestamp to integer unix seconds.

    Strings must be the canonical decimal form produced by the sender
    ("1700000000", not "01700000000" or "1.7e9").

    Raises:
        ValueError: If the value cannot be interpreted.
    """
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, datetime):
        return int(value.timestamp())
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        parsed = int(value)
        if str(parsed) != value:
            raise ValueError(f"non-canonical timestamp: {value!r}")
        return parsed
    raise ValueError(f"unsupported timestamp type: {type(value).__name__}")


def generate_secret() -> str:
    """Generate a new signing secret.

    Secrets are only ever generated by the engine, never accepted from callers.
    """
    return f"whsec_{secrets.token_urlsafe(32)}"


def sign(secret: str | bytes, timestamp: Timestamp, body: str | bytes) -> str:
    """Compute the signature for a delivery.

    Args:
        secret: Subscription signing secret.
        timestamp: Unix seconds the request is stamped with.
        body: Exact body bytes sent on the wire.

    Returns:
        Signature in format "sha256=<lowercase hex digest>".
    """
    message = f"{_to_unix(timestamp)}.".encode() + _to_bytes(body)
    digest = hmac.new(
        key=_to_bytes(secret),
        msg=message,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify(
    secret: str | bytes,
    timestamp: Timestamp,
    body: str | bytes,
    signature: str,
    now: Timestamp,
    max_skew_seconds: int | None = None,
) -> bool:
    """Verify a delivery signature and its freshness.

    Args:
        secret: Subscription signing secret.
        timestamp: Signed timestamp (X-Webhook-Timestamp).
        body: Raw received body.
        signature: Received signature (X-Webhook-Signature).
        now: Current time at the receiver.
        max_skew_seconds: Maximum allowed |now - timestamp|. Defaults to
            settings.signature_tolerance_seconds.

    Returns:
        True only if the timestamp is fresh and the signature matches.
    """
    if not isinstance(signature, str):
        return False
    try:
        signed_at = _to_unix(timestamp)
        current = _to_unix(now)
    except (TypeError, ValueError):
        return False

    if max_skew_seconds is None:
        max_skew_seconds = settings.signature_tolerance_seconds
    if abs(current - signed_at) > max_skew_seconds:
        return False

    expected = sign(secret, signed_at, body)
    # Compared as bytes so non-ASCII input cannot raise inside compare_digest
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def build_signature_headers(
    event_id: str,
    secret: str | bytes,
    body: str | bytes,
    timestamp: int,
) -> dict[str, str]:
    """Build the signed header set for an outbound delivery."""
    return {
        "Content-Type": "application/json",
        HEADER_ID: event_id,
        HEADER_TIMESTAMP: str(timestamp),
        HEADER_SIGNATURE: sign(secret, timestamp, body),
    }


def verify_request(
    secret: str | bytes,
    headers: Mapping[str, str],
    body: bytes,
    now: Timestamp | None = None,
    max_skew_seconds: int | None = None,
) -> bool:
    """Receiver-side helper: verify a request from its headers and raw body.

    Header lookup is case-insensitive. Missing headers fail verification.
    The allowed skew defaults to settings.signature_tolerance_seconds.
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    timestamp = lowered.get(HEADER_TIMESTAMP.lower())
    signature = lowered.get(HEADER_SIGNATURE.lower())
    if timestamp is None or signature is None:
        return False
    if now is None:
        now = datetime.now().astimezone()
    return verify(secret, timestamp, body, signature, now, max_skew_seconds)
