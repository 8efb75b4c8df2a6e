"""Ice detection records (``ice_detections`` resource)."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from icewatch.models._base import IcewatchModel, Timestamp, coerce_float, coerce_text


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DetectionStatus(StrEnum):
    ACTIVE = "active"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class Detection(IcewatchModel):
    """A black-ice detection reported for a sensor location.

    ``sensor_id`` references :attr:`Sensor.sensor_id` but the reference is
    not enforced: synthetic harness detections use sensor ids that do not
    exist.
    """

    id: str
    sensor_id: str
    latitude: float
    longitude: float
    severity: Severity = Severity.LOW
    temperature: float | None = None
    humidity: float | None = None
    road_condition: str | None = None
    notes: str | None = None
    status: DetectionStatus = DetectionStatus.ACTIVE
    detected_at: Timestamp = None
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @field_validator("latitude", "longitude", "temperature", "humidity", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: Any) -> float | None:
        return coerce_float(value)

    @field_validator("road_condition", "notes", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return coerce_text(value)

    @property
    def is_active(self) -> bool:
        return self.status == DetectionStatus.ACTIVE


class DetectionDraft(BaseModel):
    """Write payload for creating a detection.

    Optional measurements left as ``None`` are omitted from the request so
    the backend applies its column defaults.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    sensor_id: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    severity: Severity = Severity.LOW
    temperature: float | None = None
    humidity: float | None = Field(default=None, ge=0.0, le=100.0)
    road_condition: str | None = None
    notes: str | None = None
    status: DetectionStatus = DetectionStatus.ACTIVE

    @field_validator("road_condition", "notes", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> str | None:
        return coerce_text(value)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DetectionPatch(BaseModel):
    """Partial detection update (status workflow and notes)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: DetectionStatus | None = None
    notes: str | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
