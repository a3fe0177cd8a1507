"""Retry and backoff policy.

Pure functions: the caller supplies the random sample so results are
reproducible in tests.
"""

from __future__ import annotations

from pushbridge.config import BackoffPolicy
from pushbridge.state.lifecycle import FailureReason

_RETRYABLE: frozenset[FailureReason] = frozenset(
    {
        FailureReason.CREDENTIAL_TIMEOUT,
        FailureReason.EXCHANGE_TIMEOUT,
        FailureReason.EXCHANGE_UNAVAILABLE,
    }
)


def is_retryable(reason: FailureReason) -> bool:
    """Denied credentials and rejected exchanges wait for the host or a new credential."""
    return reason in _RETRYABLE


def should_schedule(policy: BackoffPolicy, attempt: int) -> bool:
    if attempt < 1:
        return False
    if policy.max_attempts is None:
        return True
    return attempt <= policy.max_attempts


def backoff_delay(policy: BackoffPolicy, attempt: int, sample: float) -> float:
    """Delay before automatic retry number ``attempt`` (1-based).

    ``sample`` is a uniform draw from ``[0, 1)``; it spreads the delay by
    ``±policy.jitter``. The result never exceeds ``policy.maximum``.
    """
    exponent = max(attempt, 1) - 1
    try:
        base = policy.initial * (policy.multiplier**exponent)
    except OverflowError:
        base = policy.maximum
    base = min(base, policy.maximum)
    spread = 1.0 + policy.jitter * (2.0 * sample - 1.0)
    return max(0.0, min(base * spread, policy.maximum))
