"""Delivery coordinator - owns every delivery job state transition.

Job lifecycle:

    pending --claim--> in_flight --success--> succeeded
                                 --retryable, budget left--> pending (re-armed)
                                 --retryable, budget spent--> exhausted
                                 --permanent--> exhausted
    pending --subscription disabled--> exhausted

Claiming (the conditional pending -> in_flight store update) is the only
serialization point between workers. No lock is held while a request is
on the wire; the dispatcher appends the attempt record and the coordinator
then applies the retry decision and the health transition.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import httpx

from courier.exceptions import DuplicateAttemptError, InvalidStateError, StorageError
from courier.logging import get_logger, job_context
from courier.models import (
    DeliveryAttemptRecord,
    DeliveryJob,
    DeliveryOutcome,
    DeliverySnapshot,
    DisabledReason,
    Event,
    JobStatus,
    Subscription,
    utc_now,
)

from .dispatcher import Dispatcher
from .health import (
    HealthTransition,
    apply_disable,
    apply_enable,
    mutate_subscription,
    record_failure,
    record_success,
)
from .notifications import LogNotifier, Notifier
from .scheduler import RetryScheduler

if TYPE_CHECKING:
    from courier.config import Settings
    from courier.storage.protocols import DeliveryStore

logger = get_logger(__name__)


class DeliveryCoordinator:
    """Turns published events into delivery jobs and drives them to completion.

    Example:
        ```python
        coordinator = DeliveryCoordinator(store, Dispatcher(store))
        await coordinator.publish(Event.from_data("order.completed", {"id": 1}))
        await coordinator.drain()
        ```

    Args:
        store: Subscription, event, job and attempt storage.
        dispatcher: Makes single signed delivery attempts.
        scheduler: Retry table; defaults to the standard five-attempt schedule.
        notifier: Receives disablement notices; defaults to LogNotifier.
        disable_threshold: Consecutive failures that disable a subscription.
            Defaults to the scheduler's attempt budget.
        max_in_flight: Maximum concurrent dispatches.
        claim_batch_size: Maximum due jobs selected per pass.
        poll_interval_seconds: Sleep between idle background passes.
        stale_claim_seconds: Age after which an in-flight claim is recovered.
        clock: Source of "now" for scheduling decisions.
    """

    def __init__(
        self,
        store: DeliveryStore,
        dispatcher: Dispatcher,
        scheduler: RetryScheduler | None = None,
        notifier: Notifier | None = None,
        disable_threshold: int | None = None,
        max_in_flight: int = 10,
        claim_batch_size: int = 100,
        poll_interval_seconds: float = 1.0,
        stale_claim_seconds: float = 300.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._scheduler = scheduler or RetryScheduler()
        self._notifier = notifier or LogNotifier()
        self._threshold = (
            disable_threshold if disable_threshold is not None else self._scheduler.max_attempts
        )
        self._semaphore = asyncio.Semaphore(max_in_flight)
        self._batch_size = claim_batch_size
        self._poll_interval = poll_interval_seconds
        self._stale_after = timedelta(seconds=stale_claim_seconds)
        self._clock = clock

        self._running = False
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        store: DeliveryStore,
        settings: Settings,
        notifier: Notifier | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> DeliveryCoordinator:
        """Build a coordinator (and its dispatcher) from settings."""
        dispatcher = Dispatcher(
            store,
            timeout_seconds=settings.request_timeout_seconds,
            transport=transport,
            clock=clock,
        )
        return cls(
            store,
            dispatcher,
            scheduler=RetryScheduler(settings.retry_schedule_seconds),
            notifier=notifier,
            disable_threshold=settings.disable_threshold,
            max_in_flight=settings.max_in_flight,
            claim_batch_size=settings.claim_batch_size,
            poll_interval_seconds=settings.poll_interval_seconds,
            stale_claim_seconds=settings.stale_claim_seconds,
            clock=clock,
        )

    @property
    def scheduler(self) -> RetryScheduler:
        return self._scheduler

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # Publishing

    async def publish(self, event: Event) -> list[DeliveryJob]:
        """Persist an event and create one pending job per matching subscription.

        Re-publishing an event ID with identical content is idempotent: jobs
        that already exist are left alone, and only subscriptions that were
        not matched before get a new job.

        Returns:
            The jobs created by this call.

        Raises:
            InvalidStateError: If the event ID exists with different content.
        """
        if not await self._store.store_event(event):
            existing = await self._store.get_event(event.id)
            if existing is not None and not existing.same_content(event):
                raise InvalidStateError(f"event {event.id} already exists with different content")

        subscriptions = await self._store.list_subscriptions(
            event_type=event.type, enabled_only=True, limit=None
        )

        now = self._clock()
        created: list[DeliveryJob] = []
        for subscription in subscriptions:
            if not subscription.subscribes_to(event.type):
                continue
            job = DeliveryJob(
                event_id=event.id,
                subscription_id=subscription.id,
                next_attempt_at=now,
                created_at=now,
                updated_at=now,
            )
            if await self._store.create_job(job):
                created.append(job)

        logger.info(
            "Event published",
            event_id=event.id,
            event_type=event.type,
            matched=len(subscriptions),
            jobs_created=len(created),
        )
        return created

    # Scheduling passes

    async def run_once(self) -> int:
        """Run one scheduling pass over the due jobs.

        Each due job is claimed, dispatched and settled independently under
        the in-flight semaphore. A failure while processing one job is
        logged and does not affect the others.

        Returns:
            Number of jobs dispatched in this pass.
        """
        due = await self._store.list_due_jobs(self._clock(), limit=self._batch_size)
        if not due:
            return 0

        results = await asyncio.gather(
            *(self._process_job(job) for job in due),
            return_exceptions=True,
        )

        dispatched = 0
        for job, result in zip(due, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Delivery job processing failed",
                    job_id=job.id,
                    subscription_id=job.subscription_id,
                    error=str(result),
                    exc_info=result,
                )
            elif isinstance(result, BaseException):
                raise result
            elif result:
                dispatched += 1
        return dispatched

    async def drain(self, max_passes: int = 1000) -> int:
        """Run passes until no due job is dispatched.

        Jobs re-armed with a future next_attempt_at are not waited for.

        Returns:
            Total number of jobs dispatched.
        """
        total = 0
        for _ in range(max_passes):
            dispatched = await self.run_once()
            if dispatched == 0:
                break
            total += dispatched
        return total

    async def recover_stale_claims(self) -> int:
        """Finish or release in-flight jobs whose claim has gone stale.

        A stale claim means the worker holding it died or failed to record
        the result. If the attempt was logged, its recorded outcome is
        applied, counting it on the subscription unless the job says that
        already happened; otherwise the job goes back to pending for the
        same attempt.

        Returns:
            Number of jobs recovered.
        """
        now = self._clock()
        cutoff = now - self._stale_after
        in_flight = await self._store.list_jobs(status=JobStatus.IN_FLIGHT, limit=self._batch_size)

        recovered = 0
        for job in in_flight:
            if job.claimed_at is None or job.claimed_at > cutoff:
                continue
            try:
                record = await self._find_attempt(job)
                if record is not None:
                    done = await self._settle(job, record.outcome, now)
                else:
                    done = await self._release(job, now)
            except Exception:
                logger.exception("Failed to recover stale claim", job_id=job.id)
                continue
            if done:
                recovered += 1
                logger.warning(
                    "Recovered stale claim",
                    job_id=job.id,
                    attempt=job.attempt_number,
                    attempt_recorded=record is not None,
                )
        return recovered

    # Background loop

    async def start(self) -> None:
        """Start the background scheduling loop."""
        if self.is_running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Delivery coordinator started", poll_interval=self._poll_interval)

    async def stop(self, timeout: float | None = None) -> None:
        """Stop the background loop.

        The current pass is given up to `timeout` seconds to finish so
        in-flight attempts get recorded; after that the task is cancelled
        and any claim it held is left for stale-claim recovery.
        """
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Delivery coordinator stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.recover_stale_claims()
                dispatched = await self.run_once()
            except Exception:
                logger.exception("Scheduling pass failed")
                dispatched = 0
            if dispatched == 0 and self._running:
                await asyncio.sleep(self._poll_interval)

    # Operator actions

    async def disable_subscription(
        self,
        subscription_id: str,
        reason: DisabledReason = DisabledReason.OPERATOR,
    ) -> HealthTransition:
        """Disable a subscription and exhaust its pending jobs.

        In-flight attempts are left to complete; their outcome is recorded
        and a retryable result will not re-arm the job.
        """
        now = self._clock()
        transition = await mutate_subscription(
            self._store, subscription_id, lambda sub: apply_disable(sub, now, reason)
        )
        if transition.disabled:
            await self._on_disabled(transition.subscription, reason, now)
        return transition

    async def enable_subscription(self, subscription_id: str) -> HealthTransition:
        """Re-enable a subscription with a fresh failure counter.

        Jobs exhausted while it was disabled stay exhausted.
        """
        now = self._clock()
        transition = await mutate_subscription(
            self._store, subscription_id, lambda sub: apply_enable(sub, now)
        )
        if transition.enabled:
            logger.info("Subscription enabled", subscription_id=subscription_id)
        return transition

    # Per-job processing

    async def _process_job(self, job: DeliveryJob) -> bool:
        with job_context(job.id, job.subscription_id, job.event_id):
            async with self._semaphore:
                return await self._attempt(job)

    async def _attempt(self, job: DeliveryJob) -> bool:
        subscription = await self._store.get_subscription(job.subscription_id)
        if subscription is None or not subscription.is_enabled:
            exhausted = await self._store.exhaust_pending_jobs(
                job.subscription_id, self._clock()
            )
            logger.info(
                "Jobs exhausted, subscription disabled",
                subscription_id=job.subscription_id,
                jobs_exhausted=exhausted,
            )
            return False

        claimed = await self._store.claim_job(job.id, self._clock())
        if claimed is None:
            return False

        try:
            snapshot = await self._snapshot(claimed)
        except Exception:
            await self._release(claimed, self._clock())
            raise
        if snapshot is None:
            # Disabled between the check and the claim.
            await self._store.transition_job(
                claimed.exhausted_before_attempt(self._clock()), JobStatus.IN_FLIGHT
            )
            return False

        try:
            result = await self._dispatcher.dispatch(snapshot)
        except DuplicateAttemptError:
            # Already recorded; stale-claim recovery settles it from the log.
            raise
        except Exception:
            await self._release(claimed, self._clock())
            raise

        await self._settle(claimed, result.outcome, self._clock())
        return True

    async def _snapshot(self, job: DeliveryJob) -> DeliverySnapshot | None:
        subscription = await self._store.get_subscription(job.subscription_id)
        if subscription is None or not subscription.is_enabled:
            return None
        event = await self._store.get_event(job.event_id)
        if event is None:
            raise StorageError(f"event {job.event_id} missing for job {job.id}")
        return DeliverySnapshot(
            job_id=job.id,
            event_id=event.id,
            subscription_id=subscription.id,
            target_url=subscription.target_url,
            signing_secret=subscription.signing_secret,
            payload=event.payload,
            attempt_number=job.attempt_number,
        )

    async def _settle(self, job: DeliveryJob, outcome: DeliveryOutcome, now: datetime) -> bool:
        """Apply the health transition and retry decision for an attempt.

        The subscription counter is written while the job is still in
        flight, and the job is marked once it has been. If settling stops
        between the two writes, the job stays in flight with its attempt
        logged, and stale-claim recovery finishes it from the mark.

        Returns False if another worker already settled the job.
        """
        if not job.health_recorded:
            transition = await self._record_health(job.subscription_id, outcome, now)
            marked = job.model_copy(update={"health_recorded": True, "updated_at": now})
            still_ours = await self._store.transition_job(marked, JobStatus.IN_FLIGHT)
            if transition.disabled:
                await self._on_disabled(
                    transition.subscription, DisabledReason.FAILURE_THRESHOLD, now
                )
            if not still_ours:
                logger.warning("Job already settled", job_id=job.id, attempt=job.attempt_number)
                return False
            job = marked

        decision = self._scheduler.decide(outcome, job.attempt_number, now)
        update: dict[str, object] = {
            "status": decision.status,
            "attempt_number": decision.attempt_number,
            "claimed_at": None,
            "updated_at": now,
            "last_outcome": outcome,
        }
        if decision.rearmed:
            subscription = await self._store.get_subscription(job.subscription_id)
            if subscription is None or not subscription.is_enabled:
                update.update(status=JobStatus.EXHAUSTED, attempt_number=job.attempt_number)
            else:
                update["next_attempt_at"] = decision.next_attempt_at

        settled = job.model_copy(update=update)
        if not await self._store.transition_job(settled, JobStatus.IN_FLIGHT):
            logger.warning("Job already settled", job_id=job.id, attempt=job.attempt_number)
            return False

        logger.info(
            "Job settled",
            job_id=job.id,
            subscription_id=job.subscription_id,
            attempt=job.attempt_number,
            outcome=outcome.value,
            status=settled.status.value,
        )
        return True

    async def _record_health(
        self, subscription_id: str, outcome: DeliveryOutcome, now: datetime
    ) -> HealthTransition:
        if outcome is DeliveryOutcome.SUCCESS:
            return await record_success(self._store, subscription_id, now)
        return await record_failure(self._store, subscription_id, self._threshold, now)

    async def _release(self, job: DeliveryJob, now: datetime) -> bool:
        """Return an in-flight job to pending for the same attempt."""
        released = job.model_copy(
            update={"status": JobStatus.PENDING, "claimed_at": None, "updated_at": now}
        )
        return await self._store.transition_job(released, JobStatus.IN_FLIGHT)

    async def _find_attempt(self, job: DeliveryJob) -> DeliveryAttemptRecord | None:
        records = await self._store.list_attempts(job_id=job.id, limit=job.attempt_number)
        for record in records:
            if record.attempt_number == job.attempt_number:
                return record
        return None

    async def _on_disabled(
        self,
        subscription: Subscription,
        reason: DisabledReason,
        now: datetime,
    ) -> None:
        exhausted = await self._store.exhaust_pending_jobs(subscription.id, now)
        logger.warning(
            "Subscription disabled",
            subscription_id=subscription.id,
            reason=reason.value,
            consecutive_failures=subscription.consecutive_failures,
            jobs_exhausted=exhausted,
        )
        await self._notifier.notify_disabled(subscription, reason)
