"""Courier: signed, retried outbound webhook delivery.

Delivers domain events to subscriber endpoints over HTTP POST, signs every
request with a per-subscription HMAC secret, retries failed deliveries on a
fixed backoff table, and disables endpoints that keep failing.

Quick Start:
    from courier.service import CourierService

    async with CourierService.create() as courier:
        registration = await courier.register_subscription(
            url="https://hooks.example.com/orders",
            events=["order.completed"],
        )
        await courier.publish_event("order.completed", {"order_id": 42})
        await courier.coordinator.drain()

Core Types:
    - Event: Immutable domain event and its exact wire payload
    - Subscription: Endpoint, signing secret, event types and health
    - DeliveryJob: One retryable delivery of one event to one subscription
    - DeliveryAttemptRecord: Append-only record of a single attempt

Receivers verify requests with courier.webhooks.verify_request.
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    CourierError,
    DuplicateAttemptError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryAttemptRecord,
    DeliveryJob,
    DeliveryOutcome,
    DisabledReason,
    Event,
    HealthState,
    JobStatus,
    Subscription,
)

# Service
from .service import CourierService, PublishResult, Registration, SubscriptionHealth

# Signing
from .webhooks import sign, verify, verify_request

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "CourierError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "StorageError",
    "DuplicateAttemptError",
    "ConfigurationError",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "Event",
    "Subscription",
    "HealthState",
    "DisabledReason",
    "DeliveryJob",
    "DeliveryAttemptRecord",
    "DeliveryOutcome",
    "JobStatus",
    # Service
    "CourierService",
    "Registration",
    "SubscriptionHealth",
    "PublishResult",
    # Signing
    "sign",
    "verify",
    "verify_request",
]
