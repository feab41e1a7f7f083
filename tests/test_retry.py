"""Tests for backoff math."""

import pytest

from src.retry import AttemptSchedule, BackoffPolicy, calculate_delay, item_retry_delay_ms


class TestCalculateDelay:
    @pytest.mark.parametrize(
        "attempt,expected",
        [(0, 1000), (1, 2000), (2, 4000), (3, 5000), (10, 5000)],
    )
    def test_exponential_with_cap(self, attempt, expected):
        assert calculate_delay(attempt, base_delay_ms=1000, max_delay_ms=5000) == expected

    def test_non_decreasing(self):
        delays = [calculate_delay(a, max_delay_ms=60000) for a in range(12)]
        assert delays == sorted(delays)
        assert max(delays) == 60000

    def test_jitter_stays_within_range(self):
        for _ in range(50):
            delay = calculate_delay(2, base_delay_ms=1000, max_delay_ms=60000, jitter=True)
            assert 3000 <= delay <= 5000


class TestAttemptSchedule:
    def test_provider_backoff_sequence(self):
        """Test delay(attempt) = min(1000 * 2^(attempt-1), 5000)."""
        schedule = AttemptSchedule(BackoffPolicy(max_attempts=5))
        delays = []
        while not schedule.exhausted:
            schedule.begin()
            delays.append(schedule.next_delay_ms())

        assert delays == [1000, 2000, 4000, 5000, None]

    def test_default_policy_allows_two_attempts(self):
        schedule = AttemptSchedule(BackoffPolicy())

        assert schedule.begin() == 1
        assert schedule.next_delay_ms() == 1000
        assert schedule.begin() == 2
        assert schedule.next_delay_ms() is None
        assert schedule.exhausted

    def test_begin_after_exhaustion_raises(self):
        schedule = AttemptSchedule(BackoffPolicy(max_attempts=1))
        schedule.begin()

        with pytest.raises(RuntimeError):
            schedule.begin()


class TestItemRetryDelay:
    policy = BackoffPolicy(max_attempts=5, base_delay_ms=1000, max_delay_ms=60000)

    @pytest.mark.parametrize("retry_count,expected", [(0, 1000), (1, 2000), (2, 4000), (3, 8000)])
    def test_delay_uses_count_before_failure(self, retry_count, expected):
        assert item_retry_delay_ms(retry_count, self.policy) == expected

    def test_fifth_failure_is_not_rescheduled(self):
        assert item_retry_delay_ms(4, self.policy) is None
        assert item_retry_delay_ms(5, self.policy) is None

    def test_delay_is_capped(self):
        policy = BackoffPolicy(max_attempts=20, base_delay_ms=1000, max_delay_ms=60000)
        assert item_retry_delay_ms(10, policy) == 60000
