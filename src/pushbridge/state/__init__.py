"""Token lifecycle state layer.

This package holds the pure part of the coordinator: state and event
types, the deterministic transition function and the retry policy.
Nothing here performs I/O or takes locks.
"""

from pushbridge.state.effects import (
    ArmTimeout,
    Effect,
    PublishFailure,
    PublishToken,
    RequestCredential,
    RequestExchange,
    ScheduleRetry,
)
from pushbridge.state.events import (
    CredentialFailed,
    CredentialIssued,
    LifecycleEvent,
    RetryDue,
    RetryRequested,
    Start,
    TimerExpired,
    TokenFailed,
    TokenIssued,
    TokenRefreshed,
)
from pushbridge.state.lifecycle import (
    AwaitingCredential,
    AwaitingToken,
    Failed,
    FailureReason,
    LifecyclePhase,
    LifecycleSnapshot,
    LifecycleState,
    Ready,
    Uninitialized,
)
from pushbridge.state.machine import Transition, transition

__all__ = [
    "ArmTimeout",
    "AwaitingCredential",
    "AwaitingToken",
    "CredentialFailed",
    "CredentialIssued",
    "Effect",
    "Failed",
    "FailureReason",
    "LifecycleEvent",
    "LifecyclePhase",
    "LifecycleSnapshot",
    "LifecycleState",
    "PublishFailure",
    "PublishToken",
    "Ready",
    "RequestCredential",
    "RequestExchange",
    "RetryDue",
    "RetryRequested",
    "ScheduleRetry",
    "Start",
    "TimerExpired",
    "TokenFailed",
    "TokenIssued",
    "TokenRefreshed",
    "Transition",
    "Uninitialized",
    "transition",
]
