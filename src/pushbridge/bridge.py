"""High-level async facade wiring the coordinator to an HTTP backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from pushbridge._transport import ExchangeTransport, Transport
from pushbridge.collaborators import CredentialRegistrar
from pushbridge.config import BridgeConfig
from pushbridge.coordinator import (
    FailureCallback,
    SubscriptionHandle,
    TokenCallback,
    TokenLifecycleCoordinator,
)
from pushbridge.exceptions import PushBridgeError
from pushbridge.exchange import HttpTokenExchanger
from pushbridge.models.token import DeliveryToken
from pushbridge.scheduling import LoopScheduler
from pushbridge.state.lifecycle import LifecycleState

_logger = logging.getLogger(__name__)


class PushTokenBridge:
    """Owns everything the token lifecycle needs for one app run.

    Usage::

        async with PushTokenBridge(config, registrar=apns) as bridge:
            bridge.subscribe(on_token)
            bridge.start()
            token = await bridge.wait_for_token(timeout=30)

    The platform side feeds credentials through ``bridge.coordinator``
    (``on_credential`` / ``on_credential_error``), usually from the
    registrar it was handed.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        registrar: CredentialRegistrar | None = None,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._registrar = registrar
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._exchanger: HttpTokenExchanger | None = None
        self._coordinator: TokenLifecycleCoordinator | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PushTokenBridge:
        loop = asyncio.get_running_loop()
        external_transport = self._transport is not None
        try:
            if self._transport is None:
                if self._http_session is None:
                    self._http_session = aiohttp.ClientSession()
                self._transport = ExchangeTransport(self._config, self._http_session)
            self._exchanger = HttpTokenExchanger(self._config, self._transport, loop)
            self._coordinator = TokenLifecycleCoordinator(
                self._exchanger,
                registrar=self._registrar,
                config=self._config,
                scheduler=LoopScheduler(loop),
            )
        except BaseException:
            _logger.debug("Push token bridge setup failed", exc_info=True)
            self._exchanger = None
            if not external_transport:
                self._transport = None
            if not self._external_session and self._http_session is not None:
                await self._http_session.close()
                self._http_session = None
            raise
        _logger.debug("Push token bridge opened exchange_url=%s", self._config.exchange_url)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._coordinator is not None:
            self._coordinator.close()
            self._coordinator = None
        if self._exchanger is not None:
            self._exchanger.close()
            self._exchanger = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._transport = None
        _logger.debug("Push token bridge closed")

    # ------------------------------------------------------------------
    # Delegates
    # ------------------------------------------------------------------

    @property
    def coordinator(self) -> TokenLifecycleCoordinator:
        if self._coordinator is None:
            raise PushBridgeError("Bridge not initialized. Use 'async with PushTokenBridge(...) as bridge:'")
        return self._coordinator

    @property
    def state(self) -> LifecycleState:
        return self.coordinator.state

    def start(self) -> None:
        self.coordinator.start()

    def retry(self) -> None:
        self.coordinator.retry()

    def subscribe(
        self,
        on_token: TokenCallback,
        *,
        on_failure: FailureCallback | None = None,
    ) -> SubscriptionHandle:
        return self.coordinator.subscribe(on_token, on_failure=on_failure)

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self.coordinator.unsubscribe(handle)

    def current_token(self) -> DeliveryToken | None:
        return self.coordinator.current_token()

    async def wait_for_token(self, timeout: float | None = None) -> DeliveryToken | None:
        return await self.coordinator.wait_for_token(timeout)
