from __future__ import annotations

import asyncio
import random
import threading
from collections.abc import Callable
from typing import Any

import pytest

from pushbridge.collaborators import CredentialSink, ExchangeSink
from pushbridge.config import BackoffPolicy, BridgeConfig
from pushbridge.coordinator import TokenLifecycleCoordinator
from pushbridge.exceptions import PushBridgeError
from pushbridge.models.credential import DeviceCredential
from pushbridge.models.token import DeliveryToken
from pushbridge.state.lifecycle import (
    AwaitingCredential,
    AwaitingToken,
    Failed,
    FailureReason,
    Ready,
)

C1 = b"\xaa\x01"
C2 = b"\xbb\x02"


class _ManualTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


class _ManualScheduler:
    def __init__(self) -> None:
        self.timers: list[_ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[_ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]


class _RecordingExchanger:
    def __init__(self) -> None:
        self.requests: list[tuple[DeviceCredential, int, ExchangeSink]] = []
        self._lock = threading.Lock()

    def exchange(self, credential: DeviceCredential, epoch: int, sink: ExchangeSink) -> None:
        with self._lock:
            self.requests.append((credential, epoch, sink))


class _RecordingRegistrar:
    def __init__(self) -> None:
        self.calls = 0

    def register(self, sink: CredentialSink) -> None:
        self.calls += 1


def _config(**overrides: Any) -> BridgeConfig:
    values: dict[str, Any] = {
        "exchange_delay": 0.0,
        "token_timeout": 5.0,
        "credential_timeout": None,
        "backoff": BackoffPolicy(initial=1.0, multiplier=2.0, maximum=30.0, jitter=0.0),
    }
    values.update(overrides)
    return BridgeConfig(**values)


def _make(
    **overrides: Any,
) -> tuple[TokenLifecycleCoordinator, _RecordingExchanger, _RecordingRegistrar, _ManualScheduler]:
    exchanger = _RecordingExchanger()
    registrar = _RecordingRegistrar()
    scheduler = _ManualScheduler()
    coordinator = TokenLifecycleCoordinator(
        exchanger,
        registrar=registrar,
        config=_config(**overrides),
        scheduler=scheduler,
        rand=lambda: 0.5,
    )
    return coordinator, exchanger, registrar, scheduler


def test_credential_then_token_publishes_ready_token() -> None:
    coordinator, exchanger, registrar, _ = _make()
    received: list[str] = []
    coordinator.subscribe(lambda token: received.append(token.value))

    coordinator.start()
    coordinator.on_credential(C1)
    assert [(cred.data, epoch) for cred, epoch, _ in exchanger.requests] == [(C1, 1)]

    coordinator.on_token(1, "T1")

    assert registrar.calls == 1
    state = coordinator.state
    assert isinstance(state, Ready)
    assert state.token.value == "T1"
    assert received == ["T1"]
    token = coordinator.current_token()
    assert token is not None and token.value == "T1"


def test_superseded_exchange_never_publishes() -> None:
    coordinator, _, _, _ = _make()
    received: list[str] = []
    coordinator.subscribe(lambda token: received.append(token.value))

    coordinator.start()
    coordinator.on_credential(C1)
    coordinator.on_credential(C2)
    coordinator.on_token(1, "T1")
    coordinator.on_token(2, "T2")

    assert received == ["T2"]
    token = coordinator.current_token()
    assert token is not None and token.value == "T2" and token.epoch == 2


def test_slow_older_exchange_cannot_overwrite_newer_token() -> None:
    coordinator, _, _, _ = _make()
    received: list[str] = []
    coordinator.subscribe(lambda token: received.append(token.value))

    coordinator.start()
    coordinator.on_credential(C1)
    coordinator.on_credential(C2)
    coordinator.on_token(2, "T2")
    coordinator.on_token(1, "T1")
    coordinator.on_token_error(1, FailureReason.EXCHANGE_REJECTED)

    assert received == ["T2"]
    assert isinstance(coordinator.state, Ready)


def test_start_is_idempotent() -> None:
    coordinator, _, registrar, scheduler = _make(credential_timeout=10.0)

    coordinator.start()
    first = coordinator.snapshot()
    coordinator.start()

    assert coordinator.snapshot() == first
    assert registrar.calls == 1
    assert len(scheduler.timers) == 1
    assert isinstance(coordinator.state, AwaitingCredential)


def test_late_subscriber_receives_current_token_immediately() -> None:
    coordinator, _, _, _ = _make()
    coordinator.start()
    coordinator.on_credential(C1)
    coordinator.on_token(1, "T1")

    received: list[str] = []
    coordinator.subscribe(lambda token: received.append(token.value))

    assert received == ["T1"]


def test_late_subscriber_receives_current_failure() -> None:
    coordinator, _, _, _ = _make()
    coordinator.start()
    coordinator.on_credential_error("denied")

    failures: list[tuple[FailureReason, str]] = []
    coordinator.subscribe(lambda _token: None, on_failure=lambda reason, detail: failures.append((reason, detail)))

    assert failures == [(FailureReason.CREDENTIAL_DENIED, "denied")]


def test_unsubscribe_during_publish_skips_removed_subscriber() -> None:
    coordinator, _, _, _ = _make()
    calls: list[str] = []
    handles: dict[str, Any] = {}

    def first(token: DeliveryToken) -> None:
        calls.append("first")
        coordinator.unsubscribe(handles["second"])

    def second(token: DeliveryToken) -> None:
        calls.append("second")

    handles["first"] = coordinator.subscribe(first)
    handles["second"] = coordinator.subscribe(second)

    coordinator.start()
    coordinator.on_credential(C1)
    coordinator.on_token(1, "T1")

    assert calls == ["first"]

    coordinator.on_token_refreshed("T1b")
    assert calls == ["first", "first"]


def test_unsubscribe_unknown_handle_is_ignored() -> None:
    coordinator, _, _, _ = _make()
    handle = coordinator.subscribe(lambda _token: None)

    coordinator.unsubscribe(handle)
    coordinator.unsubscribe(handle)


def test_credential_denied_fails_without_automatic_retry() -> None:
    coordinator, _, registrar, scheduler = _make()
    failures: list[tuple[FailureReason, str]] = []
    coordinator.subscribe(lambda _token: None, on_failure=lambda reason, detail: failures.append((reason, detail)))

    coordinator.start()
    coordinator.on_credential_error("denied")

    state = coordinator.state
    assert isinstance(state, Failed)
    assert state.reason == FailureReason.CREDENTIAL_DENIED
    assert failures == [(FailureReason.CREDENTIAL_DENIED, "denied")]
    assert scheduler.pending() == []
    assert registrar.calls == 1


def test_exchange_timeout_fails_then_retries_after_backoff() -> None:
    coordinator, _, registrar, scheduler = _make()
    coordinator.start()
    coordinator.on_credential(C1)

    [timeout] = scheduler.pending()
    assert timeout.delay == 5.0
    timeout.fire()

    state = coordinator.state
    assert isinstance(state, Failed)
    assert state.reason == FailureReason.EXCHANGE_TIMEOUT

    [retry] = scheduler.pending()
    assert retry.delay == pytest.approx(1.0)
    retry.fire()

    assert isinstance(coordinator.state, AwaitingCredential)
    assert registrar.calls == 2


def test_backoff_grows_across_consecutive_failures() -> None:
    coordinator, _, _, scheduler = _make(credential_timeout=5.0)
    coordinator.start()

    delays: list[float] = []
    for _ in range(3):
        [timeout] = scheduler.pending()
        timeout.fire()
        [retry] = scheduler.pending()
        delays.append(retry.delay)
        retry.fire()

    assert delays == pytest.approx([1.0, 2.0, 4.0])


def test_retry_budget_exhaustion_waits_for_manual_retry() -> None:
    coordinator, _, registrar, scheduler = _make(
        credential_timeout=5.0,
        backoff=BackoffPolicy(initial=1.0, jitter=0.0, max_attempts=1),
    )
    coordinator.start()

    scheduler.pending()[0].fire()  # credential timeout
    scheduler.pending()[0].fire()  # automatic retry 1
    scheduler.pending()[0].fire()  # credential timeout again

    assert isinstance(coordinator.state, Failed)
    assert scheduler.pending() == []

    coordinator.retry()

    assert isinstance(coordinator.state, AwaitingCredential)
    assert coordinator.snapshot().attempt == 0
    assert registrar.calls == 3


def test_timeout_timer_is_cancelled_by_token() -> None:
    coordinator, _, _, scheduler = _make()
    coordinator.start()
    coordinator.on_credential(C1)
    [timeout] = scheduler.pending()

    coordinator.on_token(1, "T1")

    assert timeout.cancelled
    # Even if the timer thread raced past cancel(), the generation check drops it.
    timeout.fire()
    assert isinstance(coordinator.state, Ready)


def test_exchange_delay_skips_superseded_credentials() -> None:
    coordinator, exchanger, _, scheduler = _make(exchange_delay=0.5)
    coordinator.start()

    coordinator.on_credential(C1)
    assert exchanger.requests == []
    coordinator.on_credential(C2)

    delayed = [t for t in scheduler.timers if t.delay == 0.5]
    assert len(delayed) == 2
    assert delayed[0].cancelled
    delayed[0].fire()
    delayed[1].fire()

    assert [(cred.data, epoch) for cred, epoch, _ in exchanger.requests] == [(C2, 2)]


def test_synchronous_exchanger_does_not_deadlock() -> None:
    class _InstantExchanger:
        def exchange(self, credential: DeviceCredential, epoch: int, sink: ExchangeSink) -> None:
            sink.on_token(epoch, f"token-{credential.hex}")

    coordinator = TokenLifecycleCoordinator(
        _InstantExchanger(),
        config=_config(),
        scheduler=_ManualScheduler(),
    )
    received: list[str] = []
    coordinator.subscribe(lambda token: received.append(token.value))

    coordinator.start()
    coordinator.on_credential(C1)

    assert received == ["token-aa01"]


def test_synchronous_registrar_drives_full_lifecycle() -> None:
    class _InstantRegistrar:
        def register(self, sink: CredentialSink) -> None:
            sink.on_credential(C1)

    exchanger = _RecordingExchanger()
    coordinator = TokenLifecycleCoordinator(
        exchanger,
        registrar=_InstantRegistrar(),
        config=_config(),
        scheduler=_ManualScheduler(),
    )

    coordinator.start()

    assert isinstance(coordinator.state, AwaitingToken)
    assert [epoch for _, epoch, _ in exchanger.requests] == [1]


def test_subscriber_can_call_back_into_coordinator() -> None:
    coordinator, _, _, _ = _make()
    seen: list[DeliveryToken | None] = []

    def on_token(token: DeliveryToken) -> None:
        seen.append(coordinator.current_token())
        coordinator.retry()

    coordinator.subscribe(on_token)
    coordinator.start()
    coordinator.on_credential(C1)
    coordinator.on_token(1, "T1")

    assert len(seen) == 1
    assert seen[0] is not None and seen[0].value == "T1"


def test_raising_exchanger_is_reported_as_unavailable() -> None:
    class _BrokenExchanger:
        def exchange(self, credential: DeviceCredential, epoch: int, sink: ExchangeSink) -> None:
            raise RuntimeError("no network stack")

    scheduler = _ManualScheduler()
    coordinator = TokenLifecycleCoordinator(_BrokenExchanger(), config=_config(), scheduler=scheduler)

    coordinator.start()
    coordinator.on_credential(C1)

    state = coordinator.state
    assert isinstance(state, Failed)
    assert state.reason == FailureReason.EXCHANGE_UNAVAILABLE
    assert "no network stack" in state.detail
    assert len(scheduler.pending()) == 1


def test_raising_subscriber_does_not_block_others() -> None:
    coordinator, _, _, _ = _make()
    received: list[str] = []

    def broken(_token: DeliveryToken) -> None:
        raise ValueError("boom")

    coordinator.subscribe(broken)
    coordinator.subscribe(lambda token: received.append(token.value))

    coordinator.start()
    coordinator.on_credential(C1)
    coordinator.on_token(1, "T1")

    assert received == ["T1"]


def test_empty_credential_is_a_denial() -> None:
    coordinator, exchanger, _, _ = _make()
    coordinator.start()

    coordinator.on_credential(b"")

    state = coordinator.state
    assert isinstance(state, Failed)
    assert state.reason == FailureReason.CREDENTIAL_DENIED
    assert exchanger.requests == []


def test_token_error_accepts_exceptions() -> None:
    coordinator, _, _, _ = _make()
    coordinator.start()
    coordinator.on_credential(C1)

    coordinator.on_token_error(1, PermissionError("credential revoked"))

    state = coordinator.state
    assert isinstance(state, Failed)
    assert state.reason == FailureReason.EXCHANGE_REJECTED
    assert state.detail == "PermissionError: credential revoked"


def test_close_ignores_further_events() -> None:
    coordinator, exchanger, _, scheduler = _make(credential_timeout=5.0)
    coordinator.start()

    with coordinator:
        pass

    assert coordinator.closed
    assert all(t.cancelled for t in scheduler.timers)
    coordinator.on_credential(C1)
    assert exchanger.requests == []
    with pytest.raises(PushBridgeError):
        coordinator.subscribe(lambda _token: None)


def test_concurrent_rotation_publishes_only_newest_token() -> None:
    coordinator, exchanger, _, _ = _make()
    received: list[str] = []
    coordinator.subscribe(lambda token: received.append(token.value))
    coordinator.start()

    issuers = [
        threading.Thread(target=coordinator.on_credential, args=(bytes([i + 1]),))
        for i in range(16)
    ]
    for thread in issuers:
        thread.start()
    for thread in issuers:
        thread.join()

    requests = list(exchanger.requests)
    random.Random(7).shuffle(requests)
    resolvers = [
        threading.Thread(target=sink.on_token, args=(epoch, f"T{epoch}"))
        for _credential, epoch, sink in requests
    ]
    for thread in resolvers:
        thread.start()
    for thread in resolvers:
        thread.join()

    assert coordinator.epoch == 16
    assert received == ["T16"]
    token = coordinator.current_token()
    assert token is not None and token.epoch == 16


@pytest.mark.asyncio
async def test_wait_for_token_resolves_from_another_thread() -> None:
    coordinator, _, _, _ = _make()
    coordinator.start()
    coordinator.on_credential(C1)

    waiter = asyncio.create_task(coordinator.wait_for_token(timeout=1.0))
    await asyncio.sleep(0)
    await asyncio.to_thread(coordinator.on_token, 1, "T1")

    token = await waiter
    assert token is not None
    assert token.value == "T1"


@pytest.mark.asyncio
async def test_wait_for_token_times_out_with_none() -> None:
    coordinator, _, _, _ = _make()
    coordinator.start()

    assert await coordinator.wait_for_token(timeout=0.05) is None


def test_reissued_value_for_rotated_credential_is_published_with_new_epoch() -> None:
    coordinator, _, _, _ = _make()
    received: list[tuple[str, int]] = []
    coordinator.subscribe(lambda token: received.append((token.value, token.epoch)))

    coordinator.start()
    coordinator.on_credential(C1)
    coordinator.on_token(1, "T")
    coordinator.on_credential(C2)
    coordinator.on_token(2, "T")
    coordinator.on_token_refreshed("T")

    assert received == [("T", 1), ("T", 2)]
    token = coordinator.current_token()
    assert token is not None and token.epoch == 2


@pytest.mark.parametrize("token", [None, "", "   "])
def test_missing_token_is_a_rejection(token: str | None) -> None:
    coordinator, _, _, scheduler = _make()
    failures: list[FailureReason] = []
    coordinator.subscribe(lambda _token: None, on_failure=lambda reason, _detail: failures.append(reason))
    coordinator.start()
    coordinator.on_credential(C1)

    coordinator.on_token(1, token)

    state = coordinator.state
    assert isinstance(state, Failed)
    assert state.reason == FailureReason.EXCHANGE_REJECTED
    assert failures == [FailureReason.EXCHANGE_REJECTED]
    assert scheduler.pending() == []


def test_missing_token_for_stale_epoch_is_dropped() -> None:
    coordinator, _, _, _ = _make()
    coordinator.start()
    coordinator.on_credential(C1)
    coordinator.on_credential(C2)

    coordinator.on_token(1, None)
    coordinator.on_token_refreshed(None)

    assert isinstance(coordinator.state, AwaitingToken)
