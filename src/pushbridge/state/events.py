"""Driving events for the token lifecycle.

Every collaborator callback and host hook is converted into one of these
events. Only the transition function interprets them.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from pushbridge.models._base import utcnow
from pushbridge.models.credential import DeviceCredential
from pushbridge.state.lifecycle import FailureReason


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Start(_Event):
    """Host finished launching."""


class CredentialIssued(_Event):
    credential: DeviceCredential


class CredentialFailed(_Event):
    reason: FailureReason = FailureReason.CREDENTIAL_DENIED
    detail: str = ""


class TokenIssued(_Event):
    epoch: int = Field(..., description="Epoch the exchange was requested under")
    value: str = Field(..., repr=False)
    received_at: datetime = Field(default_factory=utcnow)


class TokenFailed(_Event):
    epoch: int
    reason: FailureReason = FailureReason.EXCHANGE_REJECTED
    detail: str = ""


class TokenRefreshed(_Event):
    """Backend rotated the token of the active credential on its own."""

    value: str = Field(..., repr=False)
    received_at: datetime = Field(default_factory=utcnow)


class TimerExpired(_Event):
    generation: int


class RetryRequested(_Event):
    """Host asked for recovery (e.g. connectivity restored)."""


class RetryDue(_Event):
    generation: int


LifecycleEvent = (
    Start
    | CredentialIssued
    | CredentialFailed
    | TokenIssued
    | TokenFailed
    | TokenRefreshed
    | TimerExpired
    | RetryRequested
    | RetryDue
)
