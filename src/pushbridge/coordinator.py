"""Token lifecycle coordinator.

Owns the authoritative token state and is the only component allowed to
change it. Collaborator callbacks may arrive on any thread; each one is
turned into a lifecycle event and applied under a single lock through the
pure :func:`pushbridge.state.machine.transition`.

Side effects are queued in an outbox while the lock is held and executed
after it is released, by one thread at a time. That keeps subscriber
notifications in transition order and lets subscribers call back into the
coordinator without deadlocking.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import partial
from typing import Any

from pydantic import ValidationError

from pushbridge.collaborators import CredentialRegistrar, FailureInput, TokenExchanger
from pushbridge.config import BridgeConfig
from pushbridge.exceptions import PushBridgeError
from pushbridge.models.credential import DeviceCredential
from pushbridge.models.token import DeliveryToken
from pushbridge.scheduling import Scheduler, ThreadingScheduler, TimerHandle
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
    Failed,
    FailureReason,
    LifecyclePhase,
    LifecycleSnapshot,
    LifecycleState,
    Ready,
)
from pushbridge.state.machine import transition
from pushbridge.state.policy import backoff_delay, should_schedule

_logger = logging.getLogger(__name__)

TokenCallback = Callable[[DeliveryToken], None]
FailureCallback = Callable[[FailureReason, str], None]


@dataclass(eq=False, slots=True)
class SubscriptionHandle:
    """A registered interest in token (and optionally failure) updates.

    Only useful as an argument to ``unsubscribe``.
    """

    on_token: TokenCallback
    on_failure: FailureCallback | None = None
    active: bool = True


def _coerce_failure(reason: FailureInput, default: FailureReason, detail: str) -> tuple[FailureReason, str]:
    if isinstance(reason, FailureReason):
        return reason, detail
    if isinstance(reason, BaseException):
        return default, detail or f"{type(reason).__name__}: {reason}"
    text = str(reason)
    try:
        return FailureReason(text), detail
    except ValueError:
        return default, detail or text


class TokenLifecycleCoordinator:
    """Acquires, exchanges, rotates and publishes the push delivery token.

    Usage::

        coordinator = TokenLifecycleCoordinator(exchanger, registrar=registrar)
        handle = coordinator.subscribe(lambda token: register_device(token.value))
        coordinator.start()
        ...
        coordinator.close()

    Parameters
    ----------
    exchanger : TokenExchanger
        Backend client; ``exchange(credential, epoch, self)`` is called for
        every accepted credential.
    registrar : CredentialRegistrar or None
        Platform registration shim; ``register(self)`` is called on start and
        on every retry. Without one the host must push credentials in.
    config : BridgeConfig or None
        Timeouts, exchange delay and backoff policy.
    scheduler : Scheduler or None
        Timer backend. Defaults to daemon threads.
    rand : callable
        Uniform ``[0, 1)`` source for backoff jitter.
    """

    def __init__(
        self,
        exchanger: TokenExchanger,
        *,
        registrar: CredentialRegistrar | None = None,
        config: BridgeConfig | None = None,
        scheduler: Scheduler | None = None,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self._exchanger = exchanger
        self._registrar = registrar
        self._config = config or BridgeConfig()
        self._scheduler = scheduler or ThreadingScheduler()
        self._rand = rand

        self._lock = threading.Lock()
        self._snapshot = LifecycleSnapshot()
        self._subscriptions: list[SubscriptionHandle] = []
        self._outbox: deque[Callable[[], None]] = deque()
        self._draining = False
        self._timer: TimerHandle | None = None
        self._exchange_timer: TimerHandle | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> TokenLifecycleCoordinator:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        """Cancel timers, drop subscribers and ignore any further events."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_timers()
            for handle in self._subscriptions:
                handle.active = False
            self._subscriptions.clear()
            self._outbox.clear()
        _logger.debug("Token lifecycle coordinator closed")

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Host hooks
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin acquiring a credential. Calling it again has no effect."""
        self._dispatch(Start())

    def retry(self) -> None:
        """Leave ``Failed`` and ask the platform for a credential again."""
        self._dispatch(RetryRequested())

    # ------------------------------------------------------------------
    # Platform registration callbacks
    # ------------------------------------------------------------------

    def on_credential(self, data: bytes | bytearray | DeviceCredential) -> None:
        if isinstance(data, DeviceCredential):
            credential = data
        else:
            try:
                credential = DeviceCredential(data=bytes(data))
            except ValidationError:
                _logger.warning("Platform delivered an empty device credential")
                self._dispatch(
                    CredentialFailed(
                        reason=FailureReason.CREDENTIAL_DENIED,
                        detail="empty device credential",
                    )
                )
                return
        _logger.debug("Device credential received fingerprint=%s", credential.fingerprint)
        self._dispatch(CredentialIssued(credential=credential))

    def on_credential_error(
        self,
        reason: FailureInput = FailureReason.CREDENTIAL_DENIED,
        detail: str = "",
    ) -> None:
        failure, text = _coerce_failure(reason, FailureReason.CREDENTIAL_DENIED, detail)
        self._dispatch(CredentialFailed(reason=failure, detail=text))

    # ------------------------------------------------------------------
    # Exchange callbacks
    # ------------------------------------------------------------------

    def on_token(self, epoch: int, token: str | None) -> None:
        if not isinstance(token, str) or not token.strip():
            _logger.warning("Exchange returned no usable token epoch=%d", epoch)
            self._dispatch(
                TokenFailed(
                    epoch=epoch,
                    reason=FailureReason.EXCHANGE_REJECTED,
                    detail="backend returned an empty token",
                )
            )
            return
        self._dispatch(TokenIssued(epoch=epoch, value=token))

    def on_token_error(
        self,
        epoch: int,
        reason: FailureInput = FailureReason.EXCHANGE_REJECTED,
        detail: str = "",
    ) -> None:
        failure, text = _coerce_failure(reason, FailureReason.EXCHANGE_REJECTED, detail)
        self._dispatch(TokenFailed(epoch=epoch, reason=failure, detail=text))

    def on_token_refreshed(self, token: str | None) -> None:
        """Backend rotated the token for the active credential."""
        if not isinstance(token, str) or not token.strip():
            _logger.debug("Ignoring empty token refresh")
            return
        self._dispatch(TokenRefreshed(value=token))

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(
        self,
        on_token: TokenCallback,
        *,
        on_failure: FailureCallback | None = None,
    ) -> SubscriptionHandle:
        """Register for token updates.

        If a token is already current, ``on_token`` receives it right away;
        if the lifecycle is currently failed, ``on_failure`` receives the
        reason. Callbacks may run on whichever thread drives the coordinator.
        """
        handle = SubscriptionHandle(on_token=on_token, on_failure=on_failure)
        with self._lock:
            if self._closed:
                raise PushBridgeError("Token lifecycle coordinator is closed")
            self._subscriptions.append(handle)
            state = self._snapshot.state
            if isinstance(state, Ready):
                self._outbox.append(partial(self._deliver_token, (handle,), state.token))
            elif isinstance(state, Failed) and on_failure is not None:
                self._outbox.append(partial(self._deliver_failure, (handle,), state.reason, state.detail))
            drain = self._claim_drain()
        if drain:
            self._drain()
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop deliveries to ``handle``; unknown handles are ignored."""
        with self._lock:
            handle.active = False
            try:
                self._subscriptions.remove(handle)
            except ValueError:
                pass

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def current_token(self) -> DeliveryToken | None:
        with self._lock:
            return self._snapshot.token

    @property
    def state(self) -> LifecycleState:
        with self._lock:
            return self._snapshot.state

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._snapshot.epoch

    def snapshot(self) -> LifecycleSnapshot:
        with self._lock:
            return self._snapshot

    async def wait_for_token(self, timeout: float | None = None) -> DeliveryToken | None:
        """Return the current token, or wait for the next one.

        Returns ``None`` if nothing arrives within ``timeout`` seconds.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[DeliveryToken] = loop.create_future()

        def _resolve(token: DeliveryToken) -> None:
            if not future.done():
                future.set_result(token)

        def _on_token(token: DeliveryToken) -> None:
            loop.call_soon_threadsafe(_resolve, token)

        handle = self.subscribe(_on_token)
        try:
            return await asyncio.wait_for(future, timeout)
        except TimeoutError:
            return None
        finally:
            self.unsubscribe(handle)

    # ------------------------------------------------------------------
    # Internal: transitions
    # ------------------------------------------------------------------

    def _dispatch(self, event: LifecycleEvent) -> None:
        with self._lock:
            if self._closed:
                _logger.debug("Ignoring %s: coordinator closed", type(event).__name__)
                return
            before = self._snapshot
            result = transition(before, event)
            if not result.accepted:
                _logger.debug(
                    "Dropped %s phase=%s epoch=%d generation=%d",
                    type(event).__name__,
                    before.phase,
                    before.epoch,
                    before.generation,
                )
                return
            self._snapshot = result.snapshot
            _logger.debug(
                "Token lifecycle %s -> %s on %s epoch=%d generation=%d",
                before.phase,
                result.snapshot.phase,
                type(event).__name__,
                result.snapshot.epoch,
                result.snapshot.generation,
            )
            # Any pending timer belongs to the previous generation.
            self._cancel_timer()
            for effect in result.effects:
                self._apply(effect)
            drain = self._claim_drain()
        if drain:
            self._drain()

    def _apply(self, effect: Effect) -> None:
        """Carry out one effect. Caller holds the lock."""
        if isinstance(effect, RequestCredential):
            self._outbox.append(self._request_credential)
        elif isinstance(effect, RequestExchange):
            self._request_exchange(effect.credential, effect.epoch)
        elif isinstance(effect, ArmTimeout):
            self._arm_timeout(effect)
        elif isinstance(effect, ScheduleRetry):
            self._schedule_retry(effect)
        elif isinstance(effect, PublishToken):
            _logger.debug(
                "Publishing delivery token fingerprint=%s epoch=%d",
                effect.token.fingerprint,
                effect.token.epoch,
            )
            self._outbox.append(partial(self._deliver_token, tuple(self._subscriptions), effect.token))
        elif isinstance(effect, PublishFailure):
            _logger.warning("Push token unavailable: %s %s", effect.reason, effect.detail)
            self._outbox.append(
                partial(self._deliver_failure, tuple(self._subscriptions), effect.reason, effect.detail)
            )

    def _arm_timeout(self, effect: ArmTimeout) -> None:
        if effect.phase == LifecyclePhase.AWAITING_TOKEN:
            delay: float | None = self._config.token_timeout
        else:
            delay = self._config.credential_timeout
        if delay is None:
            return
        self._timer = self._scheduler.call_later(
            delay,
            partial(self._dispatch, TimerExpired(generation=effect.generation)),
        )

    def _schedule_retry(self, effect: ScheduleRetry) -> None:
        policy = self._config.backoff
        if not should_schedule(policy, effect.attempt):
            _logger.warning(
                "Automatic retry budget exhausted after %d attempts; waiting for retry()",
                effect.attempt - 1,
            )
            return
        delay = backoff_delay(policy, effect.attempt, self._rand())
        _logger.debug("Automatic retry %d scheduled in %.2fs", effect.attempt, delay)
        self._timer = self._scheduler.call_later(
            delay,
            partial(self._dispatch, RetryDue(generation=effect.generation)),
        )

    def _request_exchange(self, credential: DeviceCredential, epoch: int) -> None:
        if self._exchange_timer is not None:
            self._exchange_timer.cancel()
            self._exchange_timer = None
        delay = self._config.exchange_delay
        if delay <= 0:
            self._outbox.append(partial(self._send_exchange, credential, epoch))
            return
        self._exchange_timer = self._scheduler.call_later(delay, partial(self._exchange_due, credential, epoch))

    def _exchange_due(self, credential: DeviceCredential, epoch: int) -> None:
        with self._lock:
            if (
                self._closed
                or self._snapshot.epoch != epoch
                or self._snapshot.phase != LifecyclePhase.AWAITING_TOKEN
            ):
                _logger.debug("Skipping exchange for superseded epoch=%d", epoch)
                return
            self._exchange_timer = None
            self._outbox.append(partial(self._send_exchange, credential, epoch))
            drain = self._claim_drain()
        if drain:
            self._drain()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_timers(self) -> None:
        self._cancel_timer()
        if self._exchange_timer is not None:
            self._exchange_timer.cancel()
            self._exchange_timer = None

    # ------------------------------------------------------------------
    # Internal: outbox (runs without the lock)
    # ------------------------------------------------------------------

    def _claim_drain(self) -> bool:
        """Caller holds the lock. True if the caller must drain the outbox."""
        if self._draining or not self._outbox:
            return False
        self._draining = True
        return True

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._outbox:
                    self._draining = False
                    return
                action = self._outbox.popleft()
            try:
                action()
            except Exception:
                _logger.exception("Token lifecycle action failed")

    def _request_credential(self) -> None:
        registrar = self._registrar
        if registrar is None:
            _logger.debug("No registrar configured; waiting for the platform to deliver a credential")
            return
        try:
            registrar.register(self)
        except Exception as exc:
            _logger.warning("Platform registration could not be started", exc_info=True)
            self._dispatch(
                CredentialFailed(
                    reason=FailureReason.CREDENTIAL_DENIED,
                    detail=f"{type(exc).__name__}: {exc}",
                )
            )

    def _send_exchange(self, credential: DeviceCredential, epoch: int) -> None:
        _logger.debug("Requesting delivery token epoch=%d credential=%s", epoch, credential.fingerprint)
        try:
            self._exchanger.exchange(credential, epoch, self)
        except Exception as exc:
            _logger.warning("Token exchange could not be started", exc_info=True)
            self._dispatch(
                TokenFailed(
                    epoch=epoch,
                    reason=FailureReason.EXCHANGE_UNAVAILABLE,
                    detail=f"{type(exc).__name__}: {exc}",
                )
            )

    @staticmethod
    def _deliver_token(handles: Sequence[SubscriptionHandle], token: DeliveryToken) -> None:
        for handle in handles:
            if not handle.active:
                continue
            try:
                handle.on_token(token)
            except Exception:
                _logger.exception("Token subscriber raised")

    @staticmethod
    def _deliver_failure(handles: Sequence[SubscriptionHandle], reason: FailureReason, detail: str) -> None:
        for handle in handles:
            if not handle.active or handle.on_failure is None:
                continue
            try:
                handle.on_failure(reason, detail)
            except Exception:
                _logger.exception("Failure subscriber raised")
