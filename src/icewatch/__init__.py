"""icewatch - Async Python client for a black-ice sensor monitoring backend."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("icewatch")
except PackageNotFoundError:
    __version__ = "0+local"

from icewatch.client import IcewatchClient
from icewatch.config import HarnessTimings, IcewatchConfig, ReconnectPolicy
from icewatch.exceptions import (
    IcewatchBackendError,
    IcewatchConfigError,
    IcewatchError,
    IcewatchSubscriptionError,
    IcewatchTransportError,
)
from icewatch.feed import Binding, ChangeFeed, Subscription
from icewatch.harness import ValidationHarness
from icewatch.live import LiveView
from icewatch.models import (
    ChangeEvent,
    ChangeKind,
    CheckName,
    CheckResult,
    CheckStatus,
    Detection,
    DetectionDraft,
    DetectionStatus,
    Resource,
    Sensor,
    SensorDraft,
    SensorStatus,
    Severity,
    SuiteOutcome,
    SuiteReport,
)
from icewatch.state import DashboardStats, ViewCache, ViewSnapshot

__all__ = [
    "__version__",
    "Binding",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeKind",
    "CheckName",
    "CheckResult",
    "CheckStatus",
    "DashboardStats",
    "Detection",
    "DetectionDraft",
    "DetectionStatus",
    "HarnessTimings",
    "IcewatchBackendError",
    "IcewatchClient",
    "IcewatchConfig",
    "IcewatchConfigError",
    "IcewatchError",
    "IcewatchSubscriptionError",
    "IcewatchTransportError",
    "LiveView",
    "ReconnectPolicy",
    "Resource",
    "Sensor",
    "SensorDraft",
    "SensorStatus",
    "Severity",
    "Subscription",
    "SuiteOutcome",
    "SuiteReport",
    "ValidationHarness",
    "ViewCache",
    "ViewSnapshot",
]
