"""Lifecycle states and the coordinator snapshot."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from pushbridge.models.credential import DeviceCredential
from pushbridge.models.token import DeliveryToken


class LifecyclePhase(StrEnum):
    UNINITIALIZED = "uninitialized"
    AWAITING_CREDENTIAL = "awaiting_credential"
    AWAITING_TOKEN = "awaiting_token"
    READY = "ready"
    FAILED = "failed"


class FailureReason(StrEnum):
    CREDENTIAL_DENIED = "credential_denied"
    CREDENTIAL_TIMEOUT = "credential_timeout"
    EXCHANGE_REJECTED = "exchange_rejected"
    EXCHANGE_TIMEOUT = "exchange_timeout"
    EXCHANGE_UNAVAILABLE = "exchange_unavailable"


class _State(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Uninitialized(_State):
    phase: Literal[LifecyclePhase.UNINITIALIZED] = LifecyclePhase.UNINITIALIZED


class AwaitingCredential(_State):
    phase: Literal[LifecyclePhase.AWAITING_CREDENTIAL] = LifecyclePhase.AWAITING_CREDENTIAL


class AwaitingToken(_State):
    phase: Literal[LifecyclePhase.AWAITING_TOKEN] = LifecyclePhase.AWAITING_TOKEN
    credential: DeviceCredential
    epoch: int


class Ready(_State):
    phase: Literal[LifecyclePhase.READY] = LifecyclePhase.READY
    token: DeliveryToken


class Failed(_State):
    phase: Literal[LifecyclePhase.FAILED] = LifecyclePhase.FAILED
    reason: FailureReason
    detail: str = ""
    epoch: int = 0


LifecycleState = Annotated[
    Uninitialized | AwaitingCredential | AwaitingToken | Ready | Failed,
    Field(discriminator="phase"),
]


class LifecycleSnapshot(BaseModel):
    """Everything the coordinator knows, as one immutable value.

    ``epoch`` counts credential issuances and tags exchange requests.
    ``generation`` is bumped on every state change and tags timers.
    ``attempt`` counts consecutive automatic retries.
    ``published`` is the last token handed to subscribers; tokens are
    deduplicated on value and epoch together.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: LifecycleState = Field(default_factory=Uninitialized)
    epoch: int = 0
    generation: int = 0
    attempt: int = 0
    credential: DeviceCredential | None = None
    published: DeliveryToken | None = None

    @property
    def phase(self) -> LifecyclePhase:
        return self.state.phase

    @property
    def token(self) -> DeliveryToken | None:
        if isinstance(self.state, Ready):
            return self.state.token
        return None
