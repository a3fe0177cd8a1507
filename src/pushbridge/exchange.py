"""Credential-for-token exchange against an HTTP messaging backend."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any

from pydantic import ValidationError

from pushbridge._constants import REJECTED_STATUS_CODES
from pushbridge._transport import Transport
from pushbridge.collaborators import ExchangeSink
from pushbridge.config import BridgeConfig
from pushbridge.exceptions import (
    PushApiError,
    PushConfigError,
    PushExchangeRejectedError,
    PushTimeoutError,
    PushTransportError,
)
from pushbridge.models.credential import DeviceCredential
from pushbridge.models.exchange import ExchangeRequest, ExchangeResponse
from pushbridge.state.lifecycle import FailureReason

_logger = logging.getLogger(__name__)


def build_exchange_request(config: BridgeConfig, credential: DeviceCredential) -> ExchangeRequest:
    return ExchangeRequest(
        credential=credential.hex,
        platform=config.platform,
        app_id=config.app_id,
        sandbox=config.sandbox,
    )


def parse_exchange_response(response: dict[str, Any], endpoint: str) -> str:
    """Extract the delivery token from an exchange reply.

    Raises
    ------
    PushExchangeRejectedError
        The backend reported an error or returned no token.
    """
    try:
        parsed = ExchangeResponse.model_validate(response)
    except ValidationError as exc:
        raise PushApiError(f"Malformed exchange response from {endpoint}", endpoint=endpoint) from exc

    if parsed.error is not None:
        raise PushExchangeRejectedError(
            f"{endpoint} rejected credential: {parsed.error}",
            code=parsed.error_code or "",
            endpoint=endpoint,
        )
    if not parsed.ok or parsed.token is None:
        raise PushExchangeRejectedError(f"{endpoint} returned no token", endpoint=endpoint)
    return parsed.token.strip()


def classify_exchange_error(exc: BaseException) -> FailureReason:
    """Map an exchange exception onto the lifecycle failure taxonomy."""
    if isinstance(exc, PushTimeoutError):
        return FailureReason.EXCHANGE_TIMEOUT
    if isinstance(exc, PushExchangeRejectedError):
        return FailureReason.EXCHANGE_REJECTED
    if isinstance(exc, PushTransportError):
        if exc.status_code in REJECTED_STATUS_CODES:
            return FailureReason.EXCHANGE_REJECTED
        return FailureReason.EXCHANGE_UNAVAILABLE
    if isinstance(exc, PushApiError):
        return FailureReason.EXCHANGE_REJECTED
    return FailureReason.EXCHANGE_UNAVAILABLE


async def exchange_credential(
    config: BridgeConfig,
    transport: Transport,
    credential: DeviceCredential,
) -> str:
    """Exchange ``credential`` for a delivery token and return it."""
    if not config.exchange_url:
        raise PushConfigError("exchange_url is not configured")
    request = build_exchange_request(config, credential)
    response = await transport.post_json(config.exchange_url, request.to_payload())
    return parse_exchange_response(response, config.exchange_url)


class HttpTokenExchanger:
    """``TokenExchanger`` that runs each exchange as a task on an event loop.

    ``exchange`` may be called from any thread; it returns immediately and
    reports the outcome to the sink tagged with the caller's epoch.
    """

    def __init__(
        self,
        config: BridgeConfig,
        transport: Transport,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        if not config.exchange_url:
            raise PushConfigError("exchange_url is required for HttpTokenExchanger")
        self._config = config
        self._transport = transport
        self._loop = loop
        self._lock = threading.Lock()
        self._in_flight: set[concurrent.futures.Future[None]] = set()
        self._closed = False

    def exchange(self, credential: DeviceCredential, epoch: int, sink: ExchangeSink) -> None:
        with self._lock:
            if self._closed:
                _logger.debug("Exchanger closed; dropping exchange epoch=%d", epoch)
                return
            future = asyncio.run_coroutine_threadsafe(self._run(credential, epoch, sink), self._loop)
            self._in_flight.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: concurrent.futures.Future[None]) -> None:
        with self._lock:
            self._in_flight.discard(future)

    async def _run(self, credential: DeviceCredential, epoch: int, sink: ExchangeSink) -> None:
        try:
            token = await exchange_credential(self._config, self._transport, credential)
        except asyncio.CancelledError:
            _logger.debug("Exchange cancelled epoch=%d", epoch)
            raise
        except Exception as exc:
            reason = classify_exchange_error(exc)
            _logger.debug("Exchange failed epoch=%d reason=%s", epoch, reason, exc_info=True)
            sink.on_token_error(epoch, reason, str(exc))
            return
        sink.on_token(epoch, token)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def close(self) -> None:
        """Cancel every exchange still running; later calls are dropped."""
        with self._lock:
            self._closed = True
            pending = list(self._in_flight)
            self._in_flight.clear()
        for future in pending:
            future.cancel()
