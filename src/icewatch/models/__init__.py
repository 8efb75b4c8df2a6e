"""Data models for backend records, change events and harness results."""

from icewatch.models._base import IcewatchModel, Timestamp, parse_timestamp
from icewatch.models.change import ChangeEvent, ChangeFilter, ChangeKind, Resource
from icewatch.models.detection import Detection, DetectionDraft, DetectionPatch, DetectionStatus, Severity
from icewatch.models.harness import CheckName, CheckResult, CheckStatus, SuiteOutcome, SuiteReport
from icewatch.models.sensor import Sensor, SensorDraft, SensorPatch, SensorStatus

__all__ = [
    "ChangeEvent",
    "ChangeFilter",
    "ChangeKind",
    "CheckName",
    "CheckResult",
    "CheckStatus",
    "Detection",
    "DetectionDraft",
    "DetectionPatch",
    "DetectionStatus",
    "IcewatchModel",
    "Resource",
    "Sensor",
    "SensorDraft",
    "SensorPatch",
    "SensorStatus",
    "Severity",
    "SuiteOutcome",
    "SuiteReport",
    "Timestamp",
    "parse_timestamp",
]
