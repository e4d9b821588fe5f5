"""Tests for the retry backoff policy."""
from datetime import timedelta

import pytest

from hookrelay.services.backoff import compute_backoff


def no_jitter():
    return 0.0


def full_jitter():
    return 0.999999


class TestComputeBackoff:
    def test_doubles_per_attempt(self):
        delays = [compute_backoff(n, rand=no_jitter) for n in (0, 1, 2, 3)]
        assert delays == [
            timedelta(seconds=60),
            timedelta(seconds=120),
            timedelta(seconds=240),
            timedelta(seconds=480),
        ]

    def test_capped_at_max(self):
        assert compute_backoff(20, rand=no_jitter) == timedelta(seconds=3600)
        assert compute_backoff(3, max_seconds=100, rand=no_jitter) == timedelta(seconds=100)

    def test_jitter_only_adds(self):
        low = compute_backoff(1, rand=no_jitter)
        high = compute_backoff(1, rand=full_jitter)
        assert low <= high < timedelta(seconds=120 * 1.1)

    def test_never_below_one_second(self):
        assert compute_backoff(0, base_seconds=0, rand=no_jitter) == timedelta(seconds=1)

    def test_rejects_negative_attempts(self):
        with pytest.raises(ValueError):
            compute_backoff(-1)
