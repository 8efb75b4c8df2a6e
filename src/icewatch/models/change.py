"""Change-feed events.

The realtime socket converts every ``postgres_changes`` frame into a
:class:`ChangeEvent`.  Only the feed client and the live view consume them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from icewatch.models._base import Timestamp
from icewatch.models.detection import Detection
from icewatch.models.sensor import Sensor


class Resource(StrEnum):
    """Backend resources (tables) the feed can watch."""

    SENSORS = "sensors"
    DETECTIONS = "ice_detections"


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


@dataclass(frozen=True)
class ChangeFilter:
    """A (resource, kind) pair a subscription listens for."""

    resource: Resource
    kind: ChangeKind

    def matches(self, event: ChangeEvent) -> bool:
        return event.resource == self.resource and event.kind == self.kind


class ChangeEvent(BaseModel):
    """A single insert/update notification delivered by the change feed."""

    model_config = ConfigDict(frozen=True)

    resource: Resource
    kind: ChangeKind
    record: dict[str, Any] = Field(default_factory=dict, description="Row after the change")
    old_record: dict[str, Any] = Field(default_factory=dict, description="Row before the change, when replicated")
    commit_timestamp: Timestamp = None
    received_at: float = Field(
        default_factory=time.monotonic,
        description="Local monotonic time (seconds) at which the event was decoded.",
    )

    @property
    def record_id(self) -> str | None:
        value = self.record.get("id")
        return str(value) if value is not None else None

    def detection(self) -> Detection:
        """Parse the record as a :class:`Detection`.

        Raises ``pydantic.ValidationError`` for malformed rows and
        ``ValueError`` when the event is not about detections.
        """
        if self.resource != Resource.DETECTIONS:
            raise ValueError(f"event for {self.resource} is not a detection")
        return Detection.model_validate(self.record)

    def sensor(self) -> Sensor:
        """Parse the record as a :class:`Sensor`."""
        if self.resource != Resource.SENSORS:
            raise ValueError(f"event for {self.resource} is not a sensor")
        return Sensor.model_validate(self.record)
