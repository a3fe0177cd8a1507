"""HTTP transport for the messaging backend."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pushbridge._constants import USER_AGENT
from pushbridge._redact import redact_for_log
from pushbridge.config import BridgeConfig
from pushbridge.exceptions import PushTimeoutError, PushTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the exchanger.

    Having a protocol here makes it easy to pass test doubles/mocks while
    keeping the production implementation (`ExchangeTransport`) concrete.
    """

    async def post_json(self, url: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        ...


class ExchangeTransport:
    """JSON-over-HTTPS transport with API key and per-request timeout."""

    def __init__(
        self,
        config: BridgeConfig,
        http_session: aiohttp.ClientSession,
    ) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.http_timeout)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        if self._config.api_key:
            headers[self._config.api_key_header] = self._config.api_key
        return headers

    async def post_json(self, url: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """POST ``payload`` as JSON and return the decoded JSON object.

        Raises
        ------
        PushTimeoutError
            The backend did not answer within ``http_timeout``.
        PushTransportError
            Network failure, non-200 status or a body that is not a JSON object.
        """
        body = json.dumps(dict(payload), separators=(",", ":"))

        _logger.debug("POST %s payload=%s", url, redact_for_log(payload))

        try:
            async with self._http.post(url, data=body, headers=self._headers(), timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise PushTransportError(
                        f"HTTP {resp.status} from {url}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=url,
                    )
        except PushTransportError:
            raise
        except asyncio.TimeoutError as exc:
            raise PushTimeoutError(
                f"Request to {url} timed out after {self._config.http_timeout}s",
                endpoint=url,
            ) from exc
        except aiohttp.ClientError as exc:
            raise PushTransportError(
                f"Request to {url} failed: {exc}",
                endpoint=url,
            ) from exc

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PushTransportError(
                f"Invalid JSON from {url}: {text[:200]}",
                endpoint=url,
            ) from exc

        if not isinstance(result, dict):
            raise PushTransportError(
                f"Response from {url} is not a JSON object",
                endpoint=url,
            )

        _logger.debug("Response from %s: %s", url, redact_for_log(result))
        return result
