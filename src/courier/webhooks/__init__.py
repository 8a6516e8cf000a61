"""Webhook delivery components.

- signing: HMAC-SHA256 signatures and receiver-side verification
- dispatcher: one signed POST per claimed job, classified and logged
- scheduler: retry decisions over the backoff table
- health: per-subscription failure counter and disablement state machine
- coordinator: job creation, claiming and the scheduling loop
- notifications: operator notices on disablement
"""

from .coordinator import DeliveryCoordinator
from .dispatcher import DispatchResult, Dispatcher, classify_status
from .health import (
    HealthTransition,
    apply_disable,
    apply_enable,
    apply_failure,
    apply_success,
    mutate_subscription,
    record_failure,
    record_success,
)
from .notifications import HttpNotifier, LogNotifier, Notifier
from .scheduler import RetryDecision, RetryScheduler
from .signing import (
    HEADER_ID,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    build_signature_headers,
    generate_secret,
    sign,
    verify,
    verify_request,
)

__all__ = [
    # Signing
    "sign",
    "verify",
    "verify_request",
    "generate_secret",
    "build_signature_headers",
    "HEADER_ID",
    "HEADER_TIMESTAMP",
    "HEADER_SIGNATURE",
    # Dispatch
    "Dispatcher",
    "DispatchResult",
    "classify_status",
    # Scheduling
    "RetryScheduler",
    "RetryDecision",
    # Health
    "HealthTransition",
    "apply_success",
    "apply_failure",
    "apply_disable",
    "apply_enable",
    "mutate_subscription",
    "record_success",
    "record_failure",
    # Coordination
    "DeliveryCoordinator",
    # Notifications
    "Notifier",
    "LogNotifier",
    "HttpNotifier",
]
