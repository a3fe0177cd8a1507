"""Data models for credentials, tokens and backend payloads."""

from pushbridge.models._base import PushBaseModel
from pushbridge.models.credential import DeviceCredential
from pushbridge.models.exchange import ExchangeRequest, ExchangeResponse
from pushbridge.models.token import DeliveryToken

__all__ = [
    "DeliveryToken",
    "DeviceCredential",
    "ExchangeRequest",
    "ExchangeResponse",
    "PushBaseModel",
]
