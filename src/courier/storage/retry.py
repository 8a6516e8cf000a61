"""Retries for transient Qdrant failures.

Store calls are retried with exponential backoff when Qdrant is briefly
unreachable or answers 5xx/429. Webhook delivery retries are a separate
mechanism, scheduled by the coordinator from the attempt log.
"""

from __future__ import annotations

import logging

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

STORE_RETRY_ATTEMPTS = 3


def is_transient_store_error(exc: BaseException) -> bool:
    """Whether a Qdrant client error is worth retrying.

    Connection problems, timeouts and server-side statuses are; a 4xx
    (bad filter, missing collection) would fail the same way again.
    """
    if isinstance(exc, httpx.TransportError | ResponseHandlingException):
        return True
    if isinstance(exc, UnexpectedResponse):
        status = exc.status_code
        return status is not None and (status >= 500 or status == 429)
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Qdrant call %s failed (attempt %d/%d), retrying: %s",
        retry_state.fn.__name__ if retry_state.fn else "unknown",
        retry_state.attempt_number,
        STORE_RETRY_ATTEMPTS,
        exc,
    )


qdrant_retry = retry(
    stop=stop_after_attempt(STORE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(is_transient_store_error),
    before_sleep=_log_retry,
    reraise=True,
)
