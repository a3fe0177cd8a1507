"""Bridge configuration for pushbridge."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pushbridge._constants import (
    DEFAULT_API_KEY_HEADER,
    DEFAULT_CREDENTIAL_TIMEOUT,
    DEFAULT_EXCHANGE_DELAY,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_PLATFORM,
    DEFAULT_TOKEN_TIMEOUT,
)
from pushbridge.exceptions import PushConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(env_key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise PushConfigError(f"{env_key} must be a number, got {value!r}") from exc


def _env_optional_float(env_key: str, value: str) -> float | None:
    if value.strip().lower() in {"", "none", "off"}:
        return None
    return _env_float(env_key, value)


@dataclasses.dataclass(frozen=True)
class BackoffPolicy:
    """Automatic retry schedule after transient failures.

    Parameters
    ----------
    initial : float
        Delay in seconds before the first automatic retry.
    multiplier : float
        Growth factor applied per consecutive attempt.
    maximum : float
        Upper bound on any single delay, jitter included.
    jitter : float
        Relative jitter (``0.1`` means ±10%).
    max_attempts : int or None
        Consecutive automatic retries allowed before giving up and
        waiting for the host to call ``retry()``. ``None`` never gives up.
    """

    initial: float = 1.0
    multiplier: float = 2.0
    maximum: float = 300.0
    jitter: float = 0.1
    max_attempts: int | None = 8

    def __post_init__(self) -> None:
        if self.initial < 0 or self.maximum < 0:
            raise PushConfigError("backoff delays must be non-negative")
        if self.multiplier < 1:
            raise PushConfigError("backoff multiplier must be >= 1")
        if not 0 <= self.jitter <= 1:
            raise PushConfigError("backoff jitter must be between 0 and 1")
        if self.max_attempts is not None and self.max_attempts < 0:
            raise PushConfigError("backoff max_attempts must be >= 0 or None")


@dataclasses.dataclass(frozen=True)
class BridgeConfig:
    """Bridge configuration.

    Parameters
    ----------
    exchange_url : str
        Messaging backend endpoint that turns a device credential into a
        delivery token. Only required by the HTTP exchanger.
    api_key : str or None
        Backend API key, sent in ``api_key_header``.
    api_key_header : str
        Header carrying the API key.
    app_id : str
        Application identifier registered with the messaging backend.
    platform : str
        Credential flavour sent to the backend (``"apns"``, ``"fcm"``...).
    sandbox : bool
        Whether the credential belongs to a development environment.
    exchange_delay : float
        Seconds between accepting a credential and starting its exchange.
    token_timeout : float
        Seconds to wait for an exchange result before failing with
        ``exchange_timeout``.
    credential_timeout : float or None
        Seconds to wait for the platform credential before failing with
        ``credential_timeout``. ``None`` waits indefinitely.
    http_timeout : float
        Total timeout of a single exchange HTTP request.
    backoff : BackoffPolicy
        Automatic retry schedule.
    """

    exchange_url: str = ""
    api_key: str | None = None
    api_key_header: str = DEFAULT_API_KEY_HEADER
    app_id: str = ""
    platform: str = DEFAULT_PLATFORM
    sandbox: bool = False
    exchange_delay: float = DEFAULT_EXCHANGE_DELAY
    token_timeout: float = DEFAULT_TOKEN_TIMEOUT
    credential_timeout: float | None = DEFAULT_CREDENTIAL_TIMEOUT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    backoff: BackoffPolicy = dataclasses.field(default_factory=BackoffPolicy)

    def __post_init__(self) -> None:
        if self.exchange_delay < 0:
            raise PushConfigError("exchange_delay must be non-negative")
        if self.token_timeout <= 0:
            raise PushConfigError("token_timeout must be positive")
        if self.credential_timeout is not None and self.credential_timeout <= 0:
            raise PushConfigError("credential_timeout must be positive or None")
        if self.http_timeout <= 0:
            raise PushConfigError("http_timeout must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> BridgeConfig:
        """Create configuration from environment variables.

        Reads ``PUSHBRIDGE_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        BridgeConfig
            Populated configuration.
        """
        env = os.environ

        backoff_kwargs: dict[str, Any] = {}
        _ENV_BACKOFF_MAP = {
            "PUSHBRIDGE_BACKOFF_INITIAL": "initial",
            "PUSHBRIDGE_BACKOFF_MULTIPLIER": "multiplier",
            "PUSHBRIDGE_BACKOFF_MAXIMUM": "maximum",
            "PUSHBRIDGE_BACKOFF_JITTER": "jitter",
        }
        for env_key, field_name in _ENV_BACKOFF_MAP.items():
            val = env.get(env_key)
            if val is not None:
                backoff_kwargs[field_name] = _env_float(env_key, val)

        attempts_env = env.get("PUSHBRIDGE_BACKOFF_MAX_ATTEMPTS")
        if attempts_env is not None:
            if attempts_env.strip().lower() in {"", "none", "unlimited"}:
                backoff_kwargs["max_attempts"] = None
            else:
                try:
                    backoff_kwargs["max_attempts"] = int(attempts_env)
                except ValueError as exc:
                    raise PushConfigError(
                        f"PUSHBRIDGE_BACKOFF_MAX_ATTEMPTS must be an integer, got {attempts_env!r}"
                    ) from exc

        # Allow overriding backoff fields via a nested dict
        backoff_overrides = overrides.pop("backoff", None)
        if isinstance(backoff_overrides, dict):
            backoff_kwargs.update(backoff_overrides)
        elif isinstance(backoff_overrides, BackoffPolicy):
            backoff_kwargs = dataclasses.asdict(backoff_overrides)

        backoff = BackoffPolicy(**backoff_kwargs) if backoff_kwargs else BackoffPolicy()

        _ENV_CONFIG_MAP = {
            "PUSHBRIDGE_EXCHANGE_URL": "exchange_url",
            "PUSHBRIDGE_API_KEY": "api_key",
            "PUSHBRIDGE_API_KEY_HEADER": "api_key_header",
            "PUSHBRIDGE_APP_ID": "app_id",
            "PUSHBRIDGE_PLATFORM": "platform",
        }
        config_kwargs: dict[str, Any] = {"backoff": backoff}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        if "sandbox" not in overrides:
            config_kwargs["sandbox"] = _env_bool(env.get("PUSHBRIDGE_SANDBOX"), False)

        _ENV_FLOAT_MAP = {
            "PUSHBRIDGE_EXCHANGE_DELAY": "exchange_delay",
            "PUSHBRIDGE_TOKEN_TIMEOUT": "token_timeout",
            "PUSHBRIDGE_HTTP_TIMEOUT": "http_timeout",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_float(env_key, val)

        # credential_timeout may be disabled, handle separately
        credential_timeout_env = env.get("PUSHBRIDGE_CREDENTIAL_TIMEOUT")
        if credential_timeout_env is not None and "credential_timeout" not in overrides:
            config_kwargs["credential_timeout"] = _env_optional_float(
                "PUSHBRIDGE_CREDENTIAL_TIMEOUT",
                credential_timeout_env,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
