"""Custom exception hierarchy for pushbridge."""

from __future__ import annotations


class PushBridgeError(Exception):
    """Base exception for all pushbridge errors."""


class PushConfigError(PushBridgeError):
    """Invalid or missing configuration."""


class PushTransportError(PushBridgeError):
    """HTTP-level failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class PushTimeoutError(PushTransportError):
    """The exchange backend did not answer within the configured timeout."""


class PushApiError(PushBridgeError):
    """Backend answered but reported an application-level error."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class PushExchangeRejectedError(PushApiError):
    """Backend refused the device credential.

    The same credential must not be exchanged again; a fresh credential
    from the platform is required.
    """
