"""Credential-for-token exchange payloads."""

from __future__ import annotations

from typing import Any

from pydantic import model_validator

from pushbridge.models._base import PushBaseModel


class ExchangeRequest(PushBaseModel):
    """Body POSTed to the exchange endpoint."""

    credential: str
    platform: str
    app_id: str = ""
    sandbox: bool = False

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ExchangeResponse(PushBaseModel):
    """Exchange endpoint reply.

    Backends answer either ``{"token": "..."}`` or an error, given as a
    plain string or as ``{"code": ..., "message": ...}``.
    """

    token: str | None = None
    error: str | None = None
    error_code: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_error(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        error = values.get("error")
        if not isinstance(error, dict):
            return values
        flattened = dict(values)
        code = error.get("code") or error.get("status")
        flattened["error"] = str(error.get("message") or code or "unknown error")
        if code is not None and "errorCode" not in values:
            flattened["errorCode"] = str(code)
        return flattened

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.token and self.token.strip())
