"""Retry scheduling decisions.

The scheduler is a pure function of (outcome, attempt_number, now). It owns
no queue and no clock; the coordinator applies its decisions to jobs.

Default schedule, as delay before each attempt:

    attempt 1 -> immediate
    attempt 2 -> +60s
    attempt 3 -> +300s
    attempt 4 -> +3600s
    attempt 5 -> +86400s
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from courier.config import DEFAULT_RETRY_SCHEDULE
from courier.exceptions import ConfigurationError
from courier.models import DeliveryOutcome, JobStatus


@dataclass(frozen=True)
class RetryDecision:
    """What happens to a job after an attempt.

    Attributes:
        status: New job status (pending, succeeded or exhausted).
        attempt_number: Attempt number the job carries afterwards.
        next_attempt_at: When a re-armed job becomes due, else None.
    """

    status: JobStatus
    attempt_number: int
    next_attempt_at: datetime | None = None

    @property
    def rearmed(self) -> bool:
        return self.status is JobStatus.PENDING


class RetryScheduler:
    """Decides the next step for a job from its latest attempt outcome.

    Args:
        schedule: Delay in seconds before each attempt; index 0 is the
            first attempt and must be 0, and delays never decrease. Its
            length is the attempt budget.

    Raises:
        ConfigurationError: If the schedule is empty or malformed.
    """

    def __init__(self, schedule: Sequence[int] = DEFAULT_RETRY_SCHEDULE) -> None:
        delays = tuple(int(delay) for delay in schedule)
        if not delays:
            raise ConfigurationError("retry schedule must not be empty")
        if delays[0] != 0:
            raise ConfigurationError("first attempt must be immediate")
        if any(later < earlier for earlier, later in zip(delays, delays[1:], strict=False)):
            raise ConfigurationError(f"retry schedule must be non-decreasing: {list(delays)}")
        self._schedule = delays

    @property
    def schedule(self) -> tuple[int, ...]:
        return self._schedule

    @property
    def max_attempts(self) -> int:
        return len(self._schedule)

    def delay_before(self, attempt_number: int) -> timedelta:
        """Delay between the previous attempt and attempt_number."""
        if not 1 <= attempt_number <= self.max_attempts:
            raise ValueError(f"attempt_number out of range: {attempt_number}")
        return timedelta(seconds=self._schedule[attempt_number - 1])

    def decide(
        self,
        outcome: DeliveryOutcome,
        attempt_number: int,
        now: datetime,
    ) -> RetryDecision:
        """Decide the job transition after attempt_number produced outcome."""
        if outcome is DeliveryOutcome.SUCCESS:
            return RetryDecision(status=JobStatus.SUCCEEDED, attempt_number=attempt_number)

        if outcome is DeliveryOutcome.PERMANENT_FAILURE:
            return RetryDecision(status=JobStatus.EXHAUSTED, attempt_number=attempt_number)

        if attempt_number >= self.max_attempts:
            return RetryDecision(status=JobStatus.EXHAUSTED, attempt_number=attempt_number)

        next_attempt = attempt_number + 1
        return RetryDecision(
            status=JobStatus.PENDING,
            attempt_number=next_attempt,
            next_attempt_at=now + self.delay_before(next_attempt),
        )
