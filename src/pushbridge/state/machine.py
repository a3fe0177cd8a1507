"""Deterministic token lifecycle transitions.

``transition(snapshot, event)`` returns the next snapshot plus the effects
the runtime must carry out. Given the same sequence of events it always
produces the same snapshots, which is what makes the epoch rules testable
without threads, timers or a network.

Staleness rules:

- exchange results (``TokenIssued``/``TokenFailed``) count only when their
  epoch equals the current epoch;
- timers (``TimerExpired``/``RetryDue``) count only when their generation
  equals the current generation, i.e. nothing happened since they were armed.

Dropped events leave the snapshot untouched and are reported with
``accepted=False``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pushbridge.models.token import DeliveryToken
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
)
from pushbridge.state.policy import is_retryable


@dataclass(frozen=True)
class Transition:
    snapshot: LifecycleSnapshot
    effects: tuple[Effect, ...] = ()
    accepted: bool = True


def _drop(snapshot: LifecycleSnapshot) -> Transition:
    return Transition(snapshot=snapshot, accepted=False)


def _enter(snapshot: LifecycleSnapshot, state: LifecycleState, **changes: Any) -> LifecycleSnapshot:
    update: dict[str, Any] = {"state": state, "generation": snapshot.generation + 1}
    update.update(changes)
    return snapshot.model_copy(update=update)


def _await_credential(snapshot: LifecycleSnapshot, *, attempt: int) -> Transition:
    new = _enter(snapshot, AwaitingCredential(), attempt=attempt)
    return Transition(
        snapshot=new,
        effects=(
            RequestCredential(),
            ArmTimeout(generation=new.generation, phase=LifecyclePhase.AWAITING_CREDENTIAL),
        ),
    )


def _fail(snapshot: LifecycleSnapshot, reason: FailureReason, detail: str) -> Transition:
    retry = is_retryable(reason)
    attempt = snapshot.attempt + 1 if retry else snapshot.attempt
    new = _enter(
        snapshot,
        Failed(reason=reason, detail=detail, epoch=snapshot.epoch),
        attempt=attempt,
        published=None,
    )
    effects: list[Effect] = [PublishFailure(reason=reason, detail=detail)]
    if retry:
        effects.append(ScheduleRetry(generation=new.generation, attempt=attempt))
    return Transition(snapshot=new, effects=tuple(effects))


def _is_current(snapshot: LifecycleSnapshot, epoch: int) -> bool:
    return snapshot.credential is not None and epoch == snapshot.epoch


def _on_start(snapshot: LifecycleSnapshot) -> Transition:
    if snapshot.phase != LifecyclePhase.UNINITIALIZED:
        return _drop(snapshot)
    return _await_credential(snapshot, attempt=snapshot.attempt)


def _on_credential(snapshot: LifecycleSnapshot, event: CredentialIssued) -> Transition:
    # Every issuance opens a new epoch, which orphans any exchange in flight.
    epoch = snapshot.epoch + 1
    new = _enter(
        snapshot,
        AwaitingToken(credential=event.credential, epoch=epoch),
        epoch=epoch,
        credential=event.credential,
    )
    return Transition(
        snapshot=new,
        effects=(
            RequestExchange(credential=event.credential, epoch=epoch),
            ArmTimeout(generation=new.generation, phase=LifecyclePhase.AWAITING_TOKEN),
        ),
    )


def _on_token(snapshot: LifecycleSnapshot, event: TokenIssued) -> Transition:
    if snapshot.phase == LifecyclePhase.UNINITIALIZED or not _is_current(snapshot, event.epoch):
        return _drop(snapshot)

    value = event.value.strip()
    if not value:
        return _fail(snapshot, FailureReason.EXCHANGE_REJECTED, "backend returned an empty token")

    current = snapshot.token
    if current is not None and current.value == value:
        return _drop(snapshot)

    token = DeliveryToken(value=value, epoch=event.epoch, issued_at=event.received_at)
    new = _enter(snapshot, Ready(token=token), attempt=0, published=token)
    # Deduplicated on (value, epoch); a reissued value under a new epoch is
    # still announced.
    last = snapshot.published
    if last is not None and last.value == value and last.epoch == event.epoch:
        return Transition(snapshot=new)
    return Transition(snapshot=new, effects=(PublishToken(token=token),))


def _on_refresh(snapshot: LifecycleSnapshot, event: TokenRefreshed) -> Transition:
    if snapshot.credential is None:
        return _drop(snapshot)
    return _on_token(
        snapshot,
        TokenIssued(epoch=snapshot.epoch, value=event.value, received_at=event.received_at),
    )


def _on_credential_error(snapshot: LifecycleSnapshot, event: CredentialFailed) -> Transition:
    if snapshot.phase == LifecyclePhase.UNINITIALIZED:
        return _drop(snapshot)
    return _fail(snapshot, event.reason, event.detail)


def _on_token_error(snapshot: LifecycleSnapshot, event: TokenFailed) -> Transition:
    if not _is_current(snapshot, event.epoch):
        return _drop(snapshot)
    # Only an outstanding exchange or a live token can fail; once the wait
    # has already failed, a late error for the same epoch adds nothing.
    if snapshot.phase not in (LifecyclePhase.AWAITING_TOKEN, LifecyclePhase.READY):
        return _drop(snapshot)
    return _fail(snapshot, event.reason, event.detail)


def _on_timer(snapshot: LifecycleSnapshot, event: TimerExpired) -> Transition:
    if event.generation != snapshot.generation:
        return _drop(snapshot)
    if snapshot.phase == LifecyclePhase.AWAITING_CREDENTIAL:
        return _fail(snapshot, FailureReason.CREDENTIAL_TIMEOUT, "no device credential received in time")
    if snapshot.phase == LifecyclePhase.AWAITING_TOKEN:
        return _fail(snapshot, FailureReason.EXCHANGE_TIMEOUT, "no exchange result received in time")
    return _drop(snapshot)


def _on_retry_requested(snapshot: LifecycleSnapshot) -> Transition:
    if snapshot.phase != LifecyclePhase.FAILED:
        return _drop(snapshot)
    return _await_credential(snapshot, attempt=0)


def _on_retry_due(snapshot: LifecycleSnapshot, event: RetryDue) -> Transition:
    if snapshot.phase != LifecyclePhase.FAILED or event.generation != snapshot.generation:
        return _drop(snapshot)
    return _await_credential(snapshot, attempt=snapshot.attempt)


def transition(snapshot: LifecycleSnapshot, event: LifecycleEvent) -> Transition:
    """Apply one driving event."""
    if isinstance(event, Start):
        return _on_start(snapshot)
    if isinstance(event, CredentialIssued):
        return _on_credential(snapshot, event)
    if isinstance(event, TokenIssued):
        return _on_token(snapshot, event)
    if isinstance(event, TokenRefreshed):
        return _on_refresh(snapshot, event)
    if isinstance(event, CredentialFailed):
        return _on_credential_error(snapshot, event)
    if isinstance(event, TokenFailed):
        return _on_token_error(snapshot, event)
    if isinstance(event, TimerExpired):
        return _on_timer(snapshot, event)
    if isinstance(event, RetryRequested):
        return _on_retry_requested(snapshot)
    if isinstance(event, RetryDue):
        return _on_retry_due(snapshot, event)
    raise TypeError(f"unsupported lifecycle event: {type(event).__name__}")
