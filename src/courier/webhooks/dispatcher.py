"""Single-attempt webhook dispatch.

The dispatcher makes exactly one signed POST for a claimed job, classifies
the result and appends one attempt record. It never retries and never
raises for HTTP or transport problems; retry policy lives in the scheduler
and all job state lives with the coordinator.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import httpx

from courier.logging import get_logger
from courier.models import DeliveryAttemptRecord, DeliveryOutcome, DeliverySnapshot, utc_now

from .signing import build_signature_headers

if TYPE_CHECKING:
    from courier.storage.protocols import AttemptLog

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


def classify_status(status_code: int) -> DeliveryOutcome:
    """Classify an HTTP response status.

    2xx is success. 5xx and 429 are retryable. Every other status is a
    permanent failure: other 4xx are explicit rejections, and 1xx/3xx mean
    the endpoint did not accept the POST (redirects are not followed).
    """
    if 200 <= status_code < 300:
        return DeliveryOutcome.SUCCESS
    if status_code == 429 or status_code >= 500:
        return DeliveryOutcome.RETRYABLE_FAILURE
    return DeliveryOutcome.PERMANENT_FAILURE


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one delivery attempt.

    Attributes:
        outcome: Classified outcome.
        http_status: Response status, if a response was received.
        error_code: Transport error code, if no response was received.
        latency_ms: Time from send to response or error.
        record: The attempt record that was appended to the log.
    """

    outcome: DeliveryOutcome
    http_status: int | None
    error_code: str | None
    latency_ms: int
    record: DeliveryAttemptRecord


class Dispatcher:
    """Executes single delivery attempts.

    Example:
        ```python
        dispatcher = Dispatcher(store, timeout_seconds=10.0)
        result = await dispatcher.dispatch(snapshot)
        if result.outcome is DeliveryOutcome.SUCCESS:
            ...
        ```
    """

    def __init__(
        self,
        attempt_log: AttemptLog,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            attempt_log: Where every attempt is recorded.
            timeout_seconds: Upper bound on a whole attempt, connect to body.
            transport: Optional httpx transport (tests pass httpx.MockTransport).
            clock: Source of the signed timestamp and sent_at.
        """
        self._attempt_log = attempt_log
        self._timeout = timeout_seconds
        self._transport = transport
        self._clock = clock

    async def dispatch(self, snapshot: DeliverySnapshot) -> DispatchResult:
        """Make one delivery attempt and record it.

        Args:
            snapshot: Claimed job data (URL, secret, payload, attempt number).

        Returns:
            The classified result. The attempt record has already been appended.

        Raises:
            StorageError: Only if appending the attempt record fails.
        """
        sent_at = self._clock()
        headers = build_signature_headers(
            event_id=snapshot.event_id,
            secret=snapshot.signing_secret,
            body=snapshot.payload,
            timestamp=int(sent_at.timestamp()),
        )

        http_status: int | None = None
        error_code: str | None = None
        error_detail: str | None = None

        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                response = await asyncio.wait_for(
                    client.post(snapshot.target_url, content=snapshot.payload, headers=headers),
                    timeout=self._timeout,
                )
            http_status = response.status_code
            outcome = classify_status(http_status)
            if outcome.is_failure:
                error_detail = f"HTTP {http_status}: {response.text[:200]}"
        except (TimeoutError, httpx.TimeoutException):
            outcome = DeliveryOutcome.RETRYABLE_FAILURE
            error_code = "timeout"
            error_detail = f"no response within {self._timeout}s"
        except httpx.ConnectError as e:
            outcome = DeliveryOutcome.RETRYABLE_FAILURE
            error_code = "connect_error"
            error_detail = str(e)[:500]
        except httpx.RequestError as e:
            outcome = DeliveryOutcome.RETRYABLE_FAILURE
            error_code = "network_error"
            error_detail = str(e)[:500]
        except httpx.InvalidURL as e:
            outcome = DeliveryOutcome.PERMANENT_FAILURE
            error_code = "invalid_url"
            error_detail = str(e)[:500]
        except Exception as e:
            outcome = DeliveryOutcome.RETRYABLE_FAILURE
            error_code = "unexpected_error"
            error_detail = f"{type(e).__name__}: {e}"[:500]
            logger.exception("Unexpected webhook dispatch error", job_id=snapshot.job_id)
        latency_ms = int((time.monotonic() - started) * 1000)

        record = DeliveryAttemptRecord(
            job_id=snapshot.job_id,
            subscription_id=snapshot.subscription_id,
            event_id=snapshot.event_id,
            attempt_number=snapshot.attempt_number,
            sent_at=sent_at,
            http_status=http_status,
            error_code=error_code,
            error_detail=error_detail,
            latency_ms=latency_ms,
            outcome=outcome,
        )
        await self._attempt_log.append_attempt(record)

        log = logger.info if outcome is DeliveryOutcome.SUCCESS else logger.warning
        log(
            "Webhook attempt finished",
            job_id=snapshot.job_id,
            subscription_id=snapshot.subscription_id,
            event_id=snapshot.event_id,
            attempt=snapshot.attempt_number,
            outcome=outcome.value,
            http_status=http_status,
            error_code=error_code,
            latency_ms=latency_ms,
        )

        return DispatchResult(
            outcome=outcome,
            http_status=http_status,
            error_code=error_code,
            latency_ms=latency_ms,
            record=record,
        )
