"""Store contract tests.

Every test runs against both adapters: the in-memory store and the Qdrant
store on qdrant-client's local in-memory mode (no server required).
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from helpers import START, make_subscription
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import UnexpectedResponse

from courier.config import Settings
from courier.exceptions import ConfigurationError, DuplicateAttemptError, InvalidStateError
from courier.models import (
    DeliveryAttemptRecord,
    DeliveryJob,
    DeliveryOutcome,
    Event,
    HealthState,
    JobStatus,
)
from courier.storage import DeliveryStore, InMemoryDeliveryStore, QdrantDeliveryStore, get_store
from courier.storage.retry import is_transient_store_error, qdrant_retry


@pytest.fixture(params=["memory", "qdrant"])
async def any_store(request):
    """Each store adapter, freshly initialized."""
    if request.param == "memory":
        adapter = InMemoryDeliveryStore()
        await adapter.initialize()
    else:
        adapter = QdrantDeliveryStore(prefix="test")
        adapter._client = AsyncQdrantClient(location=":memory:")
        await adapter.initialize()

    yield adapter

    await adapter.close()


def make_job(event_id: str = "evt_1", subscription_id: str = "sub_1", **overrides) -> DeliveryJob:
    fields = {
        "event_id": event_id,
        "subscription_id": subscription_id,
        "next_attempt_at": START,
        "created_at": START,
        "updated_at": START,
    }
    fields.update(overrides)
    return DeliveryJob(**fields)


def make_record(job_id: str, attempt_number: int = 1, seconds: int = 0, **overrides):
    fields = {
        "job_id": job_id,
        "subscription_id": "sub_1",
        "event_id": "evt_1",
        "attempt_number": attempt_number,
        "sent_at": START + timedelta(seconds=seconds),
        "http_status": 503,
        "latency_ms": 40,
        "outcome": DeliveryOutcome.RETRYABLE_FAILURE,
    }
    fields.update(overrides)
    return DeliveryAttemptRecord(**fields)


class TestProtocol:
    def test_adapters_satisfy_protocol(self, any_store):
        assert isinstance(any_store, DeliveryStore)


class TestQdrantCollections:
    async def test_initialize_creates_collections(self):
        store = QdrantDeliveryStore(prefix="test")
        store._client = AsyncQdrantClient(location=":memory:")
        await store.initialize()

        collections = await store.client.get_collections()
        names = {c.name for c in collections.collections}
        assert names == {"test_subscriptions", "test_events", "test_jobs", "test_attempts"}

        # Idempotent
        await store.initialize()
        await store.close()

    def test_uninitialized_client_raises(self):
        store = QdrantDeliveryStore(prefix="test")
        with pytest.raises(RuntimeError):
            _ = store.client

    def test_point_ids_deterministic(self):
        assert QdrantDeliveryStore._key_to_point_id("job_x") == (
            QdrantDeliveryStore._key_to_point_id("job_x")
        )
        assert QdrantDeliveryStore._key_to_point_id("job_x") != (
            QdrantDeliveryStore._key_to_point_id("job_y")
        )


class TestSubscriptions:
    async def test_create_and_get(self, any_store):
        sub = make_subscription({"order.completed", "order.refunded"})
        await any_store.create_subscription(sub)

        stored = await any_store.get_subscription(sub.id)
        assert stored == sub
        assert stored.signing_secret == sub.signing_secret

    async def test_get_missing(self, any_store):
        assert await any_store.get_subscription("sub_missing") is None

    async def test_duplicate_id_rejected(self, any_store):
        sub = make_subscription()
        await any_store.create_subscription(sub)
        with pytest.raises(InvalidStateError):
            await any_store.create_subscription(sub)

    async def test_list_filters(self, any_store):
        orders = await any_store.create_subscription(make_subscription({"order.completed"}))
        users = await any_store.create_subscription(make_subscription({"user.created"}))
        disabled = await any_store.create_subscription(
            make_subscription({"order.completed"}, health_state=HealthState.DISABLED)
        )

        all_subs = await any_store.list_subscriptions()
        assert {s.id for s in all_subs} == {orders.id, users.id, disabled.id}

        for_orders = await any_store.list_subscriptions(event_type="order.completed")
        assert {s.id for s in for_orders} == {orders.id, disabled.id}

        enabled = await any_store.list_subscriptions(
            event_type="order.completed", enabled_only=True
        )
        assert [s.id for s in enabled] == [orders.id]

    async def test_list_ordered_by_creation(self, any_store):
        created = []
        for n in reversed(range(5)):
            sub = make_subscription(created_at=START + timedelta(minutes=n))
            created.append(await any_store.create_subscription(sub))

        first_two = await any_store.list_subscriptions(limit=2)
        assert [s.id for s in first_two] == [created[-1].id, created[-2].id]

    async def test_unbounded_list_returns_every_match(self, any_store):
        for n in range(300):
            await any_store.create_subscription(
                make_subscription(url=f"https://hooks.example.com/{n}")
            )
        await any_store.create_subscription(make_subscription({"user.created"}))

        matching = await any_store.list_subscriptions(
            event_type="order.completed", enabled_only=True, limit=None
        )
        assert len(matching) == 300

    async def test_compare_and_set(self, any_store):
        sub = await any_store.create_subscription(make_subscription())

        updated = await any_store.compare_and_set_subscription(
            sub.model_copy(update={"consecutive_failures": 1}), expected_version=sub.version
        )
        assert updated is not None
        assert updated.version == sub.version + 1
        assert updated.consecutive_failures == 1

        stale = await any_store.compare_and_set_subscription(
            sub.model_copy(update={"consecutive_failures": 7}), expected_version=sub.version
        )
        assert stale is None
        assert (await any_store.get_subscription(sub.id)).consecutive_failures == 1

    async def test_returned_copies_are_detached(self, any_store):
        sub = await any_store.create_subscription(make_subscription())
        fetched = await any_store.get_subscription(sub.id)
        fetched.consecutive_failures = 99
        assert (await any_store.get_subscription(sub.id)).consecutive_failures == 0


class TestEvents:
    async def test_store_once(self, any_store):
        event = Event(id="evt_1", type="order.completed", payload=b'{"a":1}', occurred_at=START)
        assert await any_store.store_event(event)
        assert not await any_store.store_event(event)

        stored = await any_store.get_event("evt_1")
        assert stored == event
        assert stored.payload == b'{"a":1}'

    async def test_binary_payload_round_trip(self, any_store):
        payload = '{"name":"Zoë","emoji":"📦"}'.encode()
        await any_store.store_event(Event(id="evt_u", type="t", payload=payload))
        assert (await any_store.get_event("evt_u")).payload == payload

    async def test_get_missing(self, any_store):
        assert await any_store.get_event("evt_missing") is None


class TestJobs:
    async def test_one_job_per_pair(self, any_store):
        assert await any_store.create_job(make_job())
        assert not await any_store.create_job(make_job())
        assert await any_store.create_job(make_job(subscription_id="sub_2"))
        assert len(await any_store.list_jobs(event_id="evt_1")) == 2

    async def test_due_jobs_ordered(self, any_store):
        await any_store.create_job(
            make_job("evt_late", next_attempt_at=START + timedelta(seconds=30))
        )
        await any_store.create_job(make_job("evt_early", next_attempt_at=START))
        await any_store.create_job(
            make_job("evt_future", next_attempt_at=START + timedelta(hours=1))
        )

        due = await any_store.list_due_jobs(START + timedelta(seconds=60))
        assert [j.event_id for j in due] == ["evt_early", "evt_late"]

        assert len(await any_store.list_due_jobs(START + timedelta(seconds=60), limit=1)) == 1

    async def test_earliest_due_first_beyond_one_page(self, any_store):
        # Created latest-first so insertion order cannot produce the answer
        for n in reversed(range(300)):
            await any_store.create_job(
                make_job(f"evt_{n}", next_attempt_at=START + timedelta(seconds=n))
            )

        due = await any_store.list_due_jobs(START + timedelta(hours=1), limit=2)
        assert [j.event_id for j in due] == ["evt_0", "evt_1"]

    async def test_due_jobs_only_pending(self, any_store):
        job = make_job()
        await any_store.create_job(job)
        await any_store.claim_job(job.id, START)
        assert await any_store.list_due_jobs(START) == []

    async def test_claim_is_conditional(self, any_store):
        job = make_job()
        await any_store.create_job(job)

        claimed = await any_store.claim_job(job.id, START)
        assert claimed is not None
        assert claimed.status is JobStatus.IN_FLIGHT
        assert claimed.claimed_at == START

        assert await any_store.claim_job(job.id, START) is None

    async def test_claim_not_due(self, any_store):
        job = make_job(next_attempt_at=START + timedelta(seconds=60))
        await any_store.create_job(job)
        assert await any_store.claim_job(job.id, START) is None

    async def test_claim_missing(self, any_store):
        assert await any_store.claim_job("job_missing", START) is None

    async def test_transition_checks_status(self, any_store):
        job = make_job()
        await any_store.create_job(job)
        claimed = await any_store.claim_job(job.id, START)

        done = claimed.model_copy(update={"status": JobStatus.SUCCEEDED})
        assert not await any_store.transition_job(done, JobStatus.PENDING)
        assert await any_store.transition_job(done, JobStatus.IN_FLIGHT)
        assert not await any_store.transition_job(done, JobStatus.IN_FLIGHT)
        assert (await any_store.get_job(job.id)).status is JobStatus.SUCCEEDED

    async def test_exhaust_pending_jobs(self, any_store):
        pending = make_job("evt_1", attempt_number=3)
        other_sub = make_job("evt_2", subscription_id="sub_2")
        in_flight = make_job("evt_3")
        for job in (pending, other_sub, in_flight):
            await any_store.create_job(job)
        await any_store.claim_job(in_flight.id, START)

        assert await any_store.exhaust_pending_jobs("sub_1", START) == 1

        exhausted = await any_store.get_job(pending.id)
        assert exhausted.status is JobStatus.EXHAUSTED
        assert exhausted.attempt_number == 2
        assert (await any_store.get_job(other_sub.id)).status is JobStatus.PENDING
        assert (await any_store.get_job(in_flight.id)).status is JobStatus.IN_FLIGHT

    async def test_list_jobs_by_status(self, any_store):
        a, b = make_job("evt_a"), make_job("evt_b")
        await any_store.create_job(a)
        await any_store.create_job(b)
        await any_store.claim_job(b.id, START)

        in_flight = await any_store.list_jobs(status=JobStatus.IN_FLIGHT)
        assert [j.id for j in in_flight] == [b.id]
        assert len(await any_store.list_jobs(subscription_id="sub_1")) == 2


class TestAttemptLog:
    async def test_append_and_count(self, any_store):
        await any_store.append_attempt(make_record("job_a", 1))
        await any_store.append_attempt(make_record("job_a", 2, seconds=60))
        assert await any_store.count_attempts("job_a") == 2
        assert await any_store.count_attempts("job_b") == 0

    async def test_duplicate_key_rejected(self, any_store):
        await any_store.append_attempt(make_record("job_a", 1))
        with pytest.raises(DuplicateAttemptError) as exc_info:
            await any_store.append_attempt(make_record("job_a", 1, http_status=200))
        assert exc_info.value.attempt_number == 1

        [record] = await any_store.list_attempts(job_id="job_a")
        assert record.http_status == 503

    async def test_newest_first(self, any_store):
        for n in range(1, 4):
            await any_store.append_attempt(make_record("job_a", n, seconds=n * 60))
        records = await any_store.list_attempts(job_id="job_a")
        assert [r.attempt_number for r in records] == [3, 2, 1]

    async def test_newest_first_beyond_one_page(self, any_store):
        for n in range(300):
            await any_store.append_attempt(make_record(f"job_{n}", 1, seconds=n))

        records = await any_store.list_attempts(subscription_id="sub_1", limit=3)
        assert [r.job_id for r in records] == ["job_299", "job_298", "job_297"]

    async def test_filters(self, any_store):
        await any_store.append_attempt(make_record("job_a", 1))
        await any_store.append_attempt(
            make_record("job_b", 1, seconds=10, subscription_id="sub_2", event_id="evt_2")
        )

        assert [r.job_id for r in await any_store.list_attempts(subscription_id="sub_2")] == [
            "job_b"
        ]
        assert [r.job_id for r in await any_store.list_attempts(event_id="evt_1")] == ["job_a"]

    async def test_time_range(self, any_store):
        for n in range(5):
            await any_store.append_attempt(make_record(f"job_{n}", 1, seconds=n * 100))

        records = await any_store.list_attempts(
            since=START + timedelta(seconds=100),
            until=START + timedelta(seconds=300),
        )
        assert [r.job_id for r in records] == ["job_3", "job_2", "job_1"]

        assert len(await any_store.list_attempts(limit=2)) == 2


class TestGetStore:
    def test_memory_backend(self):
        assert isinstance(get_store(Settings(_env_file=None)), InMemoryDeliveryStore)

    def test_qdrant_backend(self):
        store = get_store(
            Settings(_env_file=None, store_backend="qdrant", collection_prefix="hooks")
        )
        assert isinstance(store, QdrantDeliveryStore)
        assert store._collection_name("jobs") == "hooks_jobs"

    def test_unknown_backend(self):
        unvalidated = Settings.model_construct(store_backend="redis")
        with pytest.raises(ConfigurationError, match="redis"):
            get_store(unvalidated)


class TestStoreRetry:
    """Tests for the transient-error predicate behind qdrant_retry."""

    @pytest.mark.parametrize("status_code", [500, 502, 503, 429])
    def test_server_errors_are_transient(self, status_code):
        error = UnexpectedResponse(status_code, "err", b"", httpx.Headers())
        assert is_transient_store_error(error)

    @pytest.mark.parametrize("status_code", [400, 404, 409])
    def test_client_errors_are_not(self, status_code):
        error = UnexpectedResponse(status_code, "err", b"", httpx.Headers())
        assert not is_transient_store_error(error)

    def test_transport_errors_are_transient(self):
        assert is_transient_store_error(httpx.ConnectError("refused"))
        assert is_transient_store_error(httpx.ReadTimeout("slow"))

    def test_other_errors_are_not(self):
        assert not is_transient_store_error(ValueError("bad payload"))

    async def test_retries_then_succeeds(self):
        calls = 0

        @qdrant_retry
        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 2:
                raise httpx.ConnectError("refused")
            return "ok"

        with patch("asyncio.sleep", new=AsyncMock()):
            assert await flaky() == "ok"
        assert calls == 2
