"""
Unit tests for the retry policy.
"""

from datetime import timedelta

import pytest

from jobqueue.constants import RETRY_DELAYS
from jobqueue.retry import backoff_delay, decide, should_retry


class TestBackoffDelay:
    """Tests for the backoff ladder lookup."""

    @pytest.mark.parametrize(
        "retry_count,expected_seconds",
        [(1, 1), (2, 5), (3, 15), (4, 60), (5, 300)],
    )
    def test_ladder_is_one_based(self, retry_count: int, expected_seconds: int):
        assert backoff_delay(retry_count) == timedelta(seconds=expected_seconds)

    def test_counts_past_the_ladder_reuse_last_delay(self):
        assert backoff_delay(9) == timedelta(seconds=300)

    def test_zero_count_uses_first_delay(self):
        assert backoff_delay(0) == RETRY_DELAYS[0]

    def test_custom_ladder(self):
        ladder = (timedelta(seconds=2), timedelta(seconds=4))

        assert backoff_delay(1, ladder) == timedelta(seconds=2)
        assert backoff_delay(3, ladder) == timedelta(seconds=4)

    def test_empty_ladder_rejected(self):
        with pytest.raises(ValueError):
            backoff_delay(1, ())


class TestRetryDecision:
    """Tests for the retry-or-dead-letter decision."""

    def test_should_retry_below_budget(self):
        assert should_retry(1, 3) is True
        assert should_retry(2, 3) is True

    def test_budget_exhausted(self):
        assert should_retry(3, 3) is False

    def test_decide_requeues_with_delay(self):
        decision = decide(2, 3)

        assert decision.retry is True
        assert decision.dead_letter is False
        assert decision.delay == timedelta(seconds=5)

    def test_decide_dead_letters_on_last_failure(self):
        decision = decide(3, 3)

        assert decision.dead_letter is True
        assert decision.delay is None

    def test_max_retries_three_walks_the_ladder(self):
        """Three failures: requeue after 1s, requeue after 5s, then dead letter."""
        outcomes = [decide(count, 3) for count in (1, 2, 3)]

        assert [o.retry for o in outcomes] == [True, True, False]
        assert [o.delay for o in outcomes[:2]] == [
            timedelta(seconds=1),
            timedelta(seconds=5),
        ]
