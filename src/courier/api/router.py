"""FastAPI router for Courier API endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from courier import __version__
from courier.exceptions import CourierError
from courier.models import DeliveryAttemptRecord
from courier.service import CourierService

from .schemas import (
    AttemptListResponse,
    AttemptResponse,
    HealthResponse,
    JobResponse,
    PublishEventRequest,
    PublishEventResponse,
    RegisterSubscriptionRequest,
    RegistrationResponse,
    SubscriptionDetailResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: CourierService | None = None


def set_service(service: CourierService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> CourierService:
    """Dependency to get the CourierService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[CourierService, Depends(get_service)]
LimitQuery = Annotated[int, Query(ge=1, le=1000)]


def _attempts(records: list[DeliveryAttemptRecord]) -> AttemptListResponse:
    return AttemptListResponse(
        attempts=[AttemptResponse.from_record(r) for r in records],
        count=len(records),
    )


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    if _service is None:
        return HealthResponse(status="unhealthy", version=__version__, store_connected=False)
    return HealthResponse(
        status="healthy",
        version=__version__,
        store_connected=True,
        worker_running=_service.coordinator.is_running,
    )


# Subscriptions


@router.post(
    "/subscriptions",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["subscriptions"],
)
async def register_subscription(
    request: RegisterSubscriptionRequest,
    service: ServiceDep,
) -> RegistrationResponse:
    """Register a webhook endpoint.

    The response carries the signing secret. It is not retrievable later;
    use rotate-secret to issue a new one.
    """
    registration = await service.register_subscription(
        url=request.url,
        events=request.events,
        description=request.description,
    )
    return RegistrationResponse(
        subscription=SubscriptionResponse.from_subscription(registration.subscription),
        signing_secret=registration.signing_secret,
    )


@router.get("/subscriptions", response_model=SubscriptionListResponse, tags=["subscriptions"])
async def list_subscriptions(
    service: ServiceDep,
    event_type: str | None = None,
    enabled_only: bool = False,
    limit: LimitQuery = 100,
) -> SubscriptionListResponse:
    """List subscriptions, optionally filtered by event type or health."""
    subscriptions = await service.list_subscriptions(
        event_type=event_type, enabled_only=enabled_only, limit=limit
    )
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_subscription(s) for s in subscriptions],
        count=len(subscriptions),
    )


@router.get(
    "/subscriptions/{subscription_id}",
    response_model=SubscriptionDetailResponse,
    tags=["subscriptions"],
)
async def get_subscription(subscription_id: str, service: ServiceDep) -> SubscriptionDetailResponse:
    """Get a subscription's health state, failure counter and last failure."""
    health = await service.subscription_health(subscription_id)
    response = SubscriptionDetailResponse.from_subscription(health.subscription)
    if health.last_failure is not None:
        response.last_failure = AttemptResponse.from_record(health.last_failure)
    return response


@router.post(
    "/subscriptions/{subscription_id}/enable",
    response_model=SubscriptionResponse,
    tags=["subscriptions"],
)
async def enable_subscription(subscription_id: str, service: ServiceDep) -> SubscriptionResponse:
    """Re-enable a disabled subscription and reset its failure counter."""
    subscription = await service.enable_subscription(subscription_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.post(
    "/subscriptions/{subscription_id}/disable",
    response_model=SubscriptionResponse,
    tags=["subscriptions"],
)
async def disable_subscription(subscription_id: str, service: ServiceDep) -> SubscriptionResponse:
    """Disable a subscription. Its pending jobs are exhausted."""
    subscription = await service.disable_subscription(subscription_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.post(
    "/subscriptions/{subscription_id}/rotate-secret",
    response_model=RegistrationResponse,
    tags=["subscriptions"],
)
async def rotate_secret(subscription_id: str, service: ServiceDep) -> RegistrationResponse:
    """Issue a new signing secret. The new secret is shown only in this response."""
    registration = await service.rotate_secret(subscription_id)
    return RegistrationResponse(
        subscription=SubscriptionResponse.from_subscription(registration.subscription),
        signing_secret=registration.signing_secret,
    )


@router.get(
    "/subscriptions/{subscription_id}/attempts",
    response_model=AttemptListResponse,
    tags=["attempts"],
)
async def list_subscription_attempts(
    subscription_id: str,
    service: ServiceDep,
    limit: LimitQuery = 100,
) -> AttemptListResponse:
    """Delivery attempts for a subscription, newest first."""
    return _attempts(await service.list_subscription_attempts(subscription_id, limit=limit))


# Events, jobs and attempts


@router.post(
    "/events",
    response_model=PublishEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
)
async def publish_event(request: PublishEventRequest, service: ServiceDep) -> PublishEventResponse:
    """Accept an event for delivery to every enabled matching subscription."""
    try:
        result = await service.publish_event(
            request.type,
            request.data,
            event_id=request.id,
            occurred_at=request.occurred_at,
        )
    except CourierError:
        raise
    except Exception as e:
        logger.exception("Failed to publish event")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred while publishing the event",
        ) from e

    return PublishEventResponse(
        event_id=result.event.id,
        jobs=[JobResponse.from_job(job) for job in result.jobs],
    )


@router.get("/events/{event_id}/attempts", response_model=AttemptListResponse, tags=["attempts"])
async def list_event_attempts(
    event_id: str,
    service: ServiceDep,
    limit: LimitQuery = 100,
) -> AttemptListResponse:
    """Delivery attempts for an event across all subscriptions, newest first."""
    return _attempts(await service.list_event_attempts(event_id, limit=limit))


@router.get("/attempts", response_model=AttemptListResponse, tags=["attempts"])
async def list_attempts(
    service: ServiceDep,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: LimitQuery = 100,
) -> AttemptListResponse:
    """Delivery attempts sent within a time range, newest first."""
    return _attempts(await service.list_attempts(since=since, until=until, limit=limit))


@router.get("/jobs/{job_id}", response_model=JobResponse, tags=["events"])
async def get_job(job_id: str, service: ServiceDep) -> JobResponse:
    """Get a delivery job's status and attempt number."""
    return JobResponse.from_job(await service.get_job(job_id))
