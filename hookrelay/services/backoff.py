"""
Retry backoff policy for webhook deliveries.

Kept free of storage and clock access so it can be tested directly.
"""
import random
from datetime import timedelta
from typing import Callable


# Defaults: 1 minute base, capped at 1 hour
DEFAULT_BASE_SECONDS = 60
DEFAULT_MAX_SECONDS = 3600
DEFAULT_JITTER = 0.1


def compute_backoff(
    attempts: int,
    base_seconds: float = DEFAULT_BASE_SECONDS,
    max_seconds: float = DEFAULT_MAX_SECONDS,
    jitter: float = DEFAULT_JITTER,
    rand: Callable[[], float] = random.random,
) -> timedelta:
    """
    Compute the delay before the next delivery attempt.

    The base is jittered upwards by up to `jitter` (a fraction), then doubled
    once per attempt already made and capped at `max_seconds`.

    Args:
        attempts: Attempts already made (after incrementing for the failed one)
        base_seconds: Delay unit
        max_seconds: Upper bound for the delay
        jitter: Maximum fractional jitter applied to the base
        rand: Source of values in [0, 1)

    Returns:
        Delay as a timedelta, always positive
    """
    if attempts < 0:
        raise ValueError(f"attempts must be >= 0, got {attempts}")

    jittered_base = base_seconds * (1 + jitter * rand())
    delay = min(jittered_base * (2 ** attempts), max_seconds)
    return timedelta(seconds=max(delay, 1))
