"""pushbridge - push-notification token lifecycle bridge."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pushbridge")
except PackageNotFoundError:
    __version__ = "0+local"
from pushbridge.bridge import PushTokenBridge
from pushbridge.collaborators import (
    CredentialRegistrar,
    CredentialSink,
    ExchangeSink,
    TokenExchanger,
)
from pushbridge.config import BackoffPolicy, BridgeConfig
from pushbridge.coordinator import SubscriptionHandle, TokenLifecycleCoordinator
from pushbridge.exceptions import (
    PushApiError,
    PushBridgeError,
    PushConfigError,
    PushExchangeRejectedError,
    PushTimeoutError,
    PushTransportError,
)
from pushbridge.exchange import HttpTokenExchanger
from pushbridge.models import DeliveryToken, DeviceCredential
from pushbridge.scheduling import LoopScheduler, Scheduler, ThreadingScheduler
from pushbridge.state import (
    AwaitingCredential,
    AwaitingToken,
    Failed,
    FailureReason,
    LifecyclePhase,
    LifecycleSnapshot,
    LifecycleState,
    Ready,
    Uninitialized,
)

__all__ = [
    "__version__",
    "AwaitingCredential",
    "AwaitingToken",
    "BackoffPolicy",
    "BridgeConfig",
    "CredentialRegistrar",
    "CredentialSink",
    "DeliveryToken",
    "DeviceCredential",
    "ExchangeSink",
    "Failed",
    "FailureReason",
    "HttpTokenExchanger",
    "LifecyclePhase",
    "LifecycleSnapshot",
    "LifecycleState",
    "LoopScheduler",
    "PushApiError",
    "PushBridgeError",
    "PushConfigError",
    "PushExchangeRejectedError",
    "PushTimeoutError",
    "PushTokenBridge",
    "PushTransportError",
    "Ready",
    "Scheduler",
    "SubscriptionHandle",
    "ThreadingScheduler",
    "TokenExchanger",
    "TokenLifecycleCoordinator",
    "Uninitialized",
]
