"""In-memory view cache of recent detections and all sensors.

This is the only component allowed to mutate the local replica.  It is
mutated from feed-delivery callbacks and read by rendering code, all on one
event loop, so it carries no lock.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from icewatch._constants import DEFAULT_DETECTION_LIMIT
from icewatch.models.detection import Detection
from icewatch.models.sensor import Sensor
from icewatch.state.policy import should_accept_update

_logger = logging.getLogger(__name__)

Record = Detection | Sensor


@dataclass(frozen=True)
class DashboardStats:
    """Headline numbers shown above the dashboard panels."""

    active_alerts: int
    online_sensors: int
    total_sensors: int
    total_detections: int
    average_temperature: float | None


@dataclass(frozen=True)
class ViewSnapshot:
    """Point-in-time copy of the cache.

    Detections are ordered newest arrival first; sensors keep the order in
    which they were first seen.  Both tuples hold frozen models, so the
    snapshot cannot be used to mutate the cache.
    """

    detections: tuple[Detection, ...]
    sensors: tuple[Sensor, ...]

    def active_detections(self) -> tuple[Detection, ...]:
        return tuple(d for d in self.detections if d.is_active)

    def stats(self) -> DashboardStats:
        temperatures = [d.temperature for d in self.detections if d.temperature is not None]
        average = sum(temperatures) / len(temperatures) if temperatures else None
        return DashboardStats(
            active_alerts=sum(1 for d in self.detections if d.is_active),
            online_sensors=sum(1 for s in self.sensors if s.is_online),
            total_sensors=len(self.sensors),
            total_detections=len(self.detections),
            average_temperature=average,
        )


class ViewCache:
    """Eventually-consistent replica of the ``sensors`` and ``ice_detections`` resources.

    Inserts are idempotent per record id; updates for unknown ids are dropped
    (no upsert).  Detections are kept in arrival order and never re-sorted by
    ``detected_at``; only the newest ``detection_limit`` are retained.
    """

    def __init__(
        self,
        *,
        detection_limit: int = DEFAULT_DETECTION_LIMIT,
        reject_stale: bool = False,
    ) -> None:
        if detection_limit <= 0:
            raise ValueError("detection_limit must be positive")
        self._detection_limit = detection_limit
        self._reject_stale = reject_stale
        self._detections: list[Detection] = []
        self._detection_ids: set[str] = set()
        self._sensors: dict[str, Sensor] = {}

    @property
    def detection_limit(self) -> int:
        return self._detection_limit

    def load(self, detections: Iterable[Detection], sensors: Iterable[Sensor]) -> None:
        """Replace the whole replica.

        *detections* are expected newest first, as returned by the initial
        load query; duplicates after the first occurrence are ignored.
        """
        self._detections = []
        self._detection_ids = set()
        for detection in detections:
            if detection.id in self._detection_ids:
                continue
            if len(self._detections) >= self._detection_limit:
                break
            self._detections.append(detection)
            self._detection_ids.add(detection.id)

        self._sensors = {}
        for sensor in sensors:
            self._sensors.setdefault(sensor.id, sensor)
        _logger.debug("Cache loaded detections=%d sensors=%d", len(self._detections), len(self._sensors))

    def apply_insert(self, record: Record) -> bool:
        """Add a newly created record.  Returns ``False`` if its id is already cached."""
        if isinstance(record, Detection):
            if record.id in self._detection_ids:
                _logger.debug("Duplicate detection insert ignored id=%s", record.id)
                return False
            self._detections.insert(0, record)
            self._detection_ids.add(record.id)
            while len(self._detections) > self._detection_limit:
                evicted = self._detections.pop()
                self._detection_ids.discard(evicted.id)
            return True

        if record.id in self._sensors:
            _logger.debug("Duplicate sensor insert ignored id=%s", record.id)
            return False
        self._sensors[record.id] = record
        return True

    def apply_update(self, record: Record) -> bool:
        """Replace the cached record with the same id.  Unknown ids are dropped."""
        if isinstance(record, Detection):
            if record.id not in self._detection_ids:
                return False
            for index, cached in enumerate(self._detections):
                if cached.id != record.id:
                    continue
                if not should_accept_update(cached=cached, incoming=record, reject_stale=self._reject_stale):
                    _logger.debug("Stale detection update rejected id=%s", record.id)
                    return False
                self._detections[index] = record
                return True
            return False

        cached_sensor = self._sensors.get(record.id)
        if cached_sensor is None:
            return False
        if not should_accept_update(cached=cached_sensor, incoming=record, reject_stale=self._reject_stale):
            _logger.debug("Stale sensor update rejected id=%s", record.id)
            return False
        self._sensors[record.id] = record
        return True

    def get_detection(self, record_id: str) -> Detection | None:
        for detection in self._detections:
            if detection.id == record_id:
                return detection
        return None

    def get_sensor(self, record_id: str) -> Sensor | None:
        return self._sensors.get(record_id)

    def snapshot(self) -> ViewSnapshot:
        return ViewSnapshot(detections=tuple(self._detections), sensors=tuple(self._sensors.values()))
