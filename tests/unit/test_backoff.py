"""
Unit tests for the retry backoff policy.
"""

from datetime import datetime, timedelta

import pytest

from queuectl.backoff import compute_backoff_seconds, next_available_at
from queuectl.constants import MAX_BACKOFF_SECONDS


class TestBackoff:
    """Tests for backoff computation."""

    @pytest.mark.parametrize(
        ("base", "attempts", "expected"),
        [
            (2, 1, 2.0),
            (2, 2, 4.0),
            (2, 3, 8.0),
            (3, 2, 9.0),
            (1, 5, 1.0),
            (0.5, 2, 0.25),
        ],
    )
    def test_compute_backoff_seconds(self, base, attempts, expected):
        assert compute_backoff_seconds(base, attempts) == pytest.approx(expected)

    def test_zero_attempts_is_one_second(self):
        assert compute_backoff_seconds(2, 0) == 1.0

    def test_negative_attempts_rejected(self):
        with pytest.raises(ValueError):
            compute_backoff_seconds(2, -1)

    def test_next_available_at(self):
        now = datetime(2024, 1, 1, 12, 0, 0)

        assert next_available_at(now, 2, 3) == now + timedelta(seconds=8)

    def test_delay_capped(self):
        assert compute_backoff_seconds(2, 40) == MAX_BACKOFF_SECONDS
        assert compute_backoff_seconds(10, 12) == MAX_BACKOFF_SECONDS

    def test_float_overflow_capped(self):
        assert compute_backoff_seconds(10, 400) == MAX_BACKOFF_SECONDS

    def test_next_available_at_large_attempts(self):
        now = datetime(2024, 1, 1, 12, 0, 0)

        assert next_available_at(now, 10, 20) == now + timedelta(seconds=MAX_BACKOFF_SECONDS)

    def test_next_available_at_clamped_to_max_datetime(self):
        now = datetime.max - timedelta(seconds=5)

        assert next_available_at(now, 2, 30) == datetime.max
