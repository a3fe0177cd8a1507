"""Device credential model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pushbridge._hashing import credential_hex, fingerprint
from pushbridge.models._base import utcnow


class DeviceCredential(BaseModel):
    """Opaque credential issued by the OS push registration.

    Parameters
    ----------
    data : bytes
        Raw credential bytes (e.g. the APNs device token).
    issued_at : datetime
        When the platform handed the credential over.
    """

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(..., repr=False)
    issued_at: datetime = Field(default_factory=utcnow)

    @field_validator("data")
    @classmethod
    def _non_empty(cls, value: bytes) -> bytes:
        if not value:
            raise ValueError("credential must be non-empty")
        return bytes(value)

    @property
    def hex(self) -> str:
        """Lowercase hex encoding understood by messaging backends."""
        return credential_hex(self.data)

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.data)
