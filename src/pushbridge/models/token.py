"""Delivery token model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pushbridge._hashing import fingerprint
from pushbridge.models._base import utcnow


class DeliveryToken(BaseModel):
    """Backend-issued token that addresses this device for push messages.

    Parameters
    ----------
    value : str
        The opaque token string.
    epoch : int
        Credential epoch the token was issued under.
    issued_at : datetime
        When the coordinator accepted the token.
    """

    model_config = ConfigDict(frozen=True)

    value: str = Field(..., repr=False)
    epoch: int = Field(..., ge=1)
    issued_at: datetime = Field(default_factory=utcnow)

    @field_validator("value")
    @classmethod
    def _normalize_value(cls, value: str) -> str:
        token = value.strip()
        if not token:
            raise ValueError("token must be non-empty")
        return token

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.value)
