"""Tests for Courier REST API."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from helpers import START, make_subscription

from courier.api.app import create_app
from courier.api.router import router, set_service
from courier.api.schemas import RegisterSubscriptionRequest, SubscriptionResponse
from courier.config import Settings
from courier.exceptions import StorageError
from courier.models import (
    DeliveryAttemptRecord,
    DeliveryJob,
    DeliveryOutcome,
    Event,
    HealthState,
)
from courier.service import (
    CourierService,
    PublishResult,
    Registration,
    SubscriptionHealth,
)


def make_record(**overrides) -> DeliveryAttemptRecord:
    fields = {
        "job_id": "job_abc",
        "subscription_id": "sub_1",
        "event_id": "evt_1",
        "attempt_number": 1,
        "sent_at": START,
        "http_status": 503,
        "error_detail": "HTTP 503: nope",
        "latency_ms": 40,
        "outcome": DeliveryOutcome.RETRYABLE_FAILURE,
    }
    fields.update(overrides)
    return DeliveryAttemptRecord(**fields)


@pytest.fixture
def mock_service():
    """Create a mock CourierService."""
    service = MagicMock(spec=CourierService)
    service.register_subscription = AsyncMock()
    service.rotate_secret = AsyncMock()
    service.list_subscriptions = AsyncMock(return_value=[])
    service.subscription_health = AsyncMock()
    service.enable_subscription = AsyncMock()
    service.disable_subscription = AsyncMock()
    service.publish_event = AsyncMock()
    service.get_job = AsyncMock()
    service.list_subscription_attempts = AsyncMock(return_value=[])
    service.list_event_attempts = AsyncMock(return_value=[])
    service.list_attempts = AsyncMock(return_value=[])
    service.coordinator = MagicMock()
    service.coordinator.is_running = True
    return service


@pytest.fixture
def test_app(mock_service):
    """Create a test FastAPI app with mocked service."""
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    set_service(mock_service)
    yield app
    set_service(None)


@pytest.fixture
def client(test_app):
    return TestClient(test_app)


@pytest.fixture
def live_client(receiver, clock):
    """Client for the full application over a real in-memory service."""
    settings = Settings(_env_file=None, worker_enabled=False, log_format="text")
    service = CourierService.create(
        settings=settings,
        notifier=AsyncMock(),
        transport=receiver.transport,
        clock=clock,
    )
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_when_service_initialized(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["store_connected"] is True
        assert data["worker_running"] is True
        assert "version" in data

    def test_health_when_service_not_initialized(self):
        app = FastAPI()
        app.include_router(router, prefix="/api/v1")
        set_service(None)
        response = TestClient(app).get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "unhealthy"
        assert response.json()["store_connected"] is False

    def test_other_endpoints_unavailable_without_service(self):
        app = FastAPI()
        app.include_router(router, prefix="/api/v1")
        set_service(None)
        response = TestClient(app).get("/api/v1/subscriptions")
        assert response.status_code == 503


class TestSubscriptionEndpoints:
    """Tests for /subscriptions endpoints."""

    def test_register_returns_secret(self, client, mock_service):
        sub = make_subscription({"order.completed"})
        mock_service.register_subscription.return_value = Registration(
            subscription=sub, signing_secret=sub.signing_secret
        )

        response = client.post(
            "/api/v1/subscriptions",
            json={"url": "https://hooks.example.com/orders", "events": ["order.completed"]},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["signing_secret"] == sub.signing_secret
        assert data["subscription"]["id"] == sub.id
        assert "signing_secret" not in data["subscription"]
        mock_service.register_subscription.assert_awaited_once_with(
            url="https://hooks.example.com/orders",
            events=["order.completed"],
            description=None,
        )

    def test_register_rejects_caller_secret(self, client, mock_service):
        """Secrets are engine-generated only."""
        response = client.post(
            "/api/v1/subscriptions",
            json={
                "url": "https://hooks.example.com/orders",
                "events": ["order.completed"],
                "signing_secret": "whsec_mine",
            },
        )
        assert response.status_code == 422
        mock_service.register_subscription.assert_not_awaited()

    def test_register_requires_events(self, client):
        response = client.post(
            "/api/v1/subscriptions", json={"url": "https://hooks.example.com", "events": []}
        )
        assert response.status_code == 422

    def test_list_never_exposes_secrets(self, client, mock_service):
        subs = [make_subscription(), make_subscription({"user.created"})]
        mock_service.list_subscriptions.return_value = subs

        response = client.get("/api/v1/subscriptions?event_type=order.completed&enabled_only=true")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert all("signing_secret" not in s for s in data["subscriptions"])
        assert all(sub.signing_secret not in response.text for sub in subs)
        mock_service.list_subscriptions.assert_awaited_once_with(
            event_type="order.completed", enabled_only=True, limit=100
        )

    def test_get_includes_last_failure(self, client, mock_service):
        sub = make_subscription(consecutive_failures=2)
        mock_service.subscription_health.return_value = SubscriptionHealth(
            subscription=sub, last_failure=make_record(subscription_id=sub.id)
        )

        response = client.get(f"/api/v1/subscriptions/{sub.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["consecutive_failures"] == 2
        assert data["health_state"] == "enabled"
        assert data["last_failure"]["http_status"] == 503
        assert data["last_failure"]["outcome"] == "retryable_failure"

    def test_disable(self, client, mock_service):
        sub = make_subscription(health_state=HealthState.DISABLED)
        mock_service.disable_subscription.return_value = sub

        response = client.post(f"/api/v1/subscriptions/{sub.id}/disable")

        assert response.status_code == 200
        assert response.json()["health_state"] == "disabled"
        mock_service.disable_subscription.assert_awaited_once_with(sub.id)

    def test_enable(self, client, mock_service):
        sub = make_subscription()
        mock_service.enable_subscription.return_value = sub

        response = client.post(f"/api/v1/subscriptions/{sub.id}/enable")

        assert response.status_code == 200
        assert response.json()["consecutive_failures"] == 0

    def test_rotate_secret(self, client, mock_service):
        sub = make_subscription()
        mock_service.rotate_secret.return_value = Registration(
            subscription=sub, signing_secret="whsec_rotated_secret_value"
        )

        response = client.post(f"/api/v1/subscriptions/{sub.id}/rotate-secret")

        assert response.status_code == 200
        assert response.json()["signing_secret"] == "whsec_rotated_secret_value"

    def test_subscription_attempts(self, client, mock_service):
        mock_service.list_subscription_attempts.return_value = [
            make_record(attempt_number=2),
            make_record(attempt_number=1),
        ]

        response = client.get("/api/v1/subscriptions/sub_1/attempts?limit=5")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [a["attempt_number"] for a in data["attempts"]] == [2, 1]
        mock_service.list_subscription_attempts.assert_awaited_once_with("sub_1", limit=5)

    def test_limit_bounds(self, client):
        assert client.get("/api/v1/subscriptions?limit=0").status_code == 422
        assert client.get("/api/v1/subscriptions?limit=1001").status_code == 422


class TestEventEndpoints:
    """Tests for /events, /jobs and /attempts endpoints."""

    def test_publish(self, client, mock_service):
        event = Event(id="evt_1", type="order.completed", payload=b'{"order_id":42}')
        job = DeliveryJob(event_id="evt_1", subscription_id="sub_1", next_attempt_at=START)
        mock_service.publish_event.return_value = PublishResult(event=event, jobs=[job])

        response = client.post(
            "/api/v1/events",
            json={"type": "order.completed", "data": {"order_id": 42}, "id": "evt_1"},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["event_id"] == "evt_1"
        assert data["jobs"][0]["id"] == job.id
        assert data["jobs"][0]["status"] == "pending"
        assert "claimed_at" not in data["jobs"][0]
        mock_service.publish_event.assert_awaited_once_with(
            "order.completed", {"order_id": 42}, event_id="evt_1", occurred_at=None
        )

    def test_publish_unexpected_error(self, client, mock_service):
        mock_service.publish_event.side_effect = RuntimeError("store down")

        response = client.post("/api/v1/events", json={"type": "order.completed"})

        assert response.status_code == 500
        assert "store down" not in response.text

    def test_publish_requires_type(self, client):
        assert client.post("/api/v1/events", json={"data": {}}).status_code == 422

    def test_get_job(self, client, mock_service):
        job = DeliveryJob(event_id="evt_1", subscription_id="sub_1", attempt_number=3)
        mock_service.get_job.return_value = job

        response = client.get(f"/api/v1/jobs/{job.id}")

        assert response.status_code == 200
        assert response.json()["attempt_number"] == 3
        assert "health_recorded" not in response.json()

    def test_event_attempts(self, client, mock_service):
        mock_service.list_event_attempts.return_value = [make_record()]
        response = client.get("/api/v1/events/evt_1/attempts")
        assert response.status_code == 200
        assert response.json()["attempts"][0]["event_id"] == "evt_1"

    def test_attempts_time_range(self, client, mock_service):
        response = client.get(
            "/api/v1/attempts",
            params={"since": "2026-01-01T00:00:00Z", "until": "2026-01-02T00:00:00Z"},
        )

        assert response.status_code == 200
        kwargs = mock_service.list_attempts.await_args.kwargs
        assert kwargs["since"] == START
        assert kwargs["until"].day == 2


class TestErrorMapping:
    """Service errors map to status codes through the application handlers."""

    def test_invalid_url_is_400(self, live_client):
        response = live_client.post(
            "/api/v1/subscriptions",
            json={"url": "http://hooks.example.com", "events": ["order.completed"]},
        )
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "url"

    def test_missing_subscription_is_404(self, live_client):
        response = live_client.get("/api/v1/subscriptions/sub_missing")
        assert response.status_code == 404
        assert response.json()["error"]["resource_type"] == "subscription"

    def test_missing_job_is_404(self, live_client):
        assert live_client.get("/api/v1/jobs/job_missing").status_code == 404

    def test_conflicting_republish_is_409(self, live_client):
        body = {"type": "order.completed", "data": {"a": 1}, "id": "evt_dup"}
        assert live_client.post("/api/v1/events", json=body).status_code == 202
        assert live_client.post("/api/v1/events", json=body).status_code == 202

        body["data"] = {"a": 2}
        response = live_client.post("/api/v1/events", json=body)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "invalid_state"

    def test_inverted_range_is_400(self, live_client):
        response = live_client.get(
            "/api/v1/attempts",
            params={"since": "2026-01-02T00:00:00Z", "until": "2026-01-01T00:00:00Z"},
        )
        assert response.status_code == 400

    def test_storage_error_is_500(self, mock_service):
        mock_service.settings = Settings(_env_file=None, worker_enabled=False)
        mock_service.initialize = AsyncMock()
        mock_service.close = AsyncMock()
        mock_service.list_subscriptions.side_effect = StorageError("qdrant unavailable")

        with TestClient(create_app(service=mock_service)) as test_client:
            response = test_client.get("/api/v1/subscriptions")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "storage_error"

    def test_register_then_fetch(self, live_client):
        created = live_client.post(
            "/api/v1/subscriptions",
            json={"url": "https://hooks.example.com/orders", "events": ["order.completed"]},
        ).json()
        sub_id = created["subscription"]["id"]

        fetched = live_client.get(f"/api/v1/subscriptions/{sub_id}").json()
        assert fetched["id"] == sub_id
        assert fetched["last_failure"] is None
        assert created["signing_secret"] not in str(fetched)


class TestSchemas:
    def test_subscription_response_sorts_event_types(self):
        sub = make_subscription({"b.event", "a.event"})
        assert SubscriptionResponse.from_subscription(sub).event_types == ["a.event", "b.event"]

    def test_register_request_forbids_extra(self):
        with pytest.raises(ValueError):
            RegisterSubscriptionRequest(url="https://x.example.com", events=["x"], secret="s")
