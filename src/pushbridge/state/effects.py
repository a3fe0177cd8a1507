"""Side effects requested by the transition function.

The coordinator runtime carries these out after the state has been
committed: collaborator calls and subscriber notifications outside the
lock, timers inside it.
"""

from __future__ import annotations

from dataclasses import dataclass

from pushbridge.models.credential import DeviceCredential
from pushbridge.models.token import DeliveryToken
from pushbridge.state.lifecycle import FailureReason, LifecyclePhase


@dataclass(frozen=True)
class RequestCredential:
    """Ask the platform registration shim for a (new) credential."""


@dataclass(frozen=True)
class RequestExchange:
    credential: DeviceCredential
    epoch: int


@dataclass(frozen=True)
class ArmTimeout:
    """Bound the wait in ``phase``; fires ``TimerExpired(generation)``."""

    generation: int
    phase: LifecyclePhase


@dataclass(frozen=True)
class ScheduleRetry:
    """Fire ``RetryDue(generation)`` after the backoff for ``attempt``."""

    generation: int
    attempt: int


@dataclass(frozen=True)
class PublishToken:
    token: DeliveryToken


@dataclass(frozen=True)
class PublishFailure:
    reason: FailureReason
    detail: str = ""


Effect = RequestCredential | RequestExchange | ArmTimeout | ScheduleRetry | PublishToken | PublishFailure
