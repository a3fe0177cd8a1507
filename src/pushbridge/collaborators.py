"""Interfaces between the coordinator and its external collaborators.

Both collaborators are fire-and-forget: the coordinator calls them and
never waits. Completions come back through the sink the coordinator
passes in, from whatever thread the collaborator happens to run on.
"""

from __future__ import annotations

from typing import Protocol

from pushbridge.models.credential import DeviceCredential
from pushbridge.state.lifecycle import FailureReason

FailureInput = FailureReason | str | BaseException


class CredentialSink(Protocol):
    def on_credential(self, data: bytes | bytearray | DeviceCredential) -> None: ...

    def on_credential_error(
        self,
        reason: FailureInput = FailureReason.CREDENTIAL_DENIED,
        detail: str = "",
    ) -> None: ...


class ExchangeSink(Protocol):
    def on_token(self, epoch: int, token: str | None) -> None: ...

    def on_token_error(
        self,
        epoch: int,
        reason: FailureInput = FailureReason.EXCHANGE_REJECTED,
        detail: str = "",
    ) -> None: ...


class CredentialRegistrar(Protocol):
    """Platform registration shim (OS-level remote notification registration)."""

    def register(self, sink: CredentialSink) -> None:
        """Start a registration attempt; report at most once to ``sink``."""
        ...


class TokenExchanger(Protocol):
    """Messaging backend client that turns credentials into delivery tokens."""

    def exchange(self, credential: DeviceCredential, epoch: int, sink: ExchangeSink) -> None:
        """Start an exchange; report the result tagged with ``epoch`` to ``sink``."""
        ...
