"""Sensor records (``sensors`` resource)."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from icewatch.models._base import IcewatchModel, Timestamp, coerce_float


class SensorStatus(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"


class Sensor(IcewatchModel):
    """A roadside sensor as stored by the backend.

    Parameters
    ----------
    id : str
        Backend record id (UUID).
    sensor_id : str
        Unique, human-assigned sensor identifier.
    name : str
        Display name.
    latitude, longitude : float
        Position in decimal degrees.
    status : SensorStatus
        Operational status.
    last_ping : datetime or None
        Last time the sensor reported in.
    created_at : datetime or None
        Row creation time.
    """

    id: str
    sensor_id: str
    name: str
    latitude: float
    longitude: float
    status: SensorStatus = SensorStatus.ONLINE
    last_ping: Timestamp = None
    created_at: Timestamp = None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_coordinates(cls, value: Any) -> float | None:
        return coerce_float(value)

    @property
    def is_online(self) -> bool:
        return self.status == SensorStatus.ONLINE


class SensorDraft(BaseModel):
    """Write payload for creating a sensor."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    sensor_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    status: SensorStatus = SensorStatus.ONLINE

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class SensorPatch(BaseModel):
    """Partial sensor update (status change or ping)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: SensorStatus | None = None
    last_ping: datetime | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
