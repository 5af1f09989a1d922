"""
Retry policy.

Pure functions mapping a job's failure count onto the backoff ladder and the
retry-or-dead-letter decision. No I/O, no clock.
"""

from dataclasses import dataclass
from datetime import timedelta

from jobqueue.constants import RETRY_DELAYS


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a failed attempt."""

    retry: bool
    delay: timedelta | None = None

    @property
    def dead_letter(self) -> bool:
        return not self.retry


def backoff_delay(
    retry_count: int,
    delays: tuple[timedelta, ...] = RETRY_DELAYS,
) -> timedelta:
    """
    Get the delay applied after the `retry_count`-th failure.

    The ladder is 1-based: the first failure uses the first entry. Counts past
    the end of the ladder reuse the last entry.

    Args:
        retry_count: Number of failed attempts so far (after incrementing).
        delays: The backoff ladder.

    Returns:
        The delay before the job becomes eligible again.
    """
    if not delays:
        raise ValueError("Backoff ladder must not be empty")
    index = min(max(retry_count, 1), len(delays)) - 1
    return delays[index]


def should_retry(retry_count: int, max_retries: int) -> bool:
    """Check whether a job with `retry_count` failures goes back to the queue."""
    return retry_count < max_retries


def decide(
    retry_count: int,
    max_retries: int,
    delays: tuple[timedelta, ...] = RETRY_DELAYS,
) -> RetryDecision:
    """
    Decide what happens after a failed attempt.

    Args:
        retry_count: Failure count including the attempt that just failed.
        max_retries: The job's fixed retry budget.
        delays: The backoff ladder.

    Returns:
        RetryDecision with the delay when the job is requeued.
    """
    if should_retry(retry_count, max_retries):
        return RetryDecision(retry=True, delay=backoff_delay(retry_count, delays))
    return RetryDecision(retry=False)
