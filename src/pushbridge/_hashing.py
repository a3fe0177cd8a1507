"""Hash helpers for logging opaque credentials and tokens."""

from __future__ import annotations

import hashlib

_FINGERPRINT_LENGTH = 12


def credential_hex(data: bytes) -> str:
    """Render a device credential as lowercase hex, two digits per byte.

    This is the textual form platform SDKs print and backends accept
    for APNs device tokens.
    """
    return data.hex()


def fingerprint(value: str | bytes) -> str:
    """Short, stable SHA-256 prefix safe to put in logs.

    Parameters
    ----------
    value : str or bytes
        Secret material (credential bytes or token string).

    Returns
    -------
    str
        First 12 lowercase hex characters of the digest.
    """
    raw = value.encode("utf-8") if isinstance(value, str) else value
    return hashlib.sha256(raw).hexdigest()[:_FINGERPRINT_LENGTH]
