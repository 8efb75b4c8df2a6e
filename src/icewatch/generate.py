"""Synthetic detection data for demos, seeding and the validation harness."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Protocol

from icewatch._constants import HARNESS_LATITUDE, HARNESS_LONGITUDE
from icewatch.models.detection import Detection, DetectionDraft, DetectionStatus, Severity

_logger = logging.getLogger(__name__)

#: Radius (in degrees) of the square around a city centre used for random positions.
CITY_SPREAD = 0.05
MAX_BULK_COUNT = 50


@dataclass(frozen=True)
class City:
    latitude: float
    longitude: float
    label: str


CITIES: dict[str, City] = {
    "New York": City(40.7128, -74.0060, "New York, NY"),
    "Boston": City(42.3601, -71.0589, "Boston, MA"),
    "Chicago": City(41.8781, -87.6298, "Chicago, IL"),
    "Denver": City(39.7392, -104.9903, "Denver, CO"),
    "Seattle": City(47.6062, -122.3321, "Seattle, WA"),
    "Minneapolis": City(44.9778, -93.2650, "Minneapolis, MN"),
    "Detroit": City(42.3314, -83.0458, "Detroit, MI"),
    "Portland": City(45.5152, -122.6784, "Portland, OR"),
    "Buffalo": City(42.8864, -78.8784, "Buffalo, NY"),
    "Milwaukee": City(43.0389, -87.9065, "Milwaukee, WI"),
}


class DetectionWriter(Protocol):
    async def create_detection(self, draft: DetectionDraft) -> Detection: ...


def get_city(name: str) -> City:
    try:
        return CITIES[name]
    except KeyError:
        raise ValueError(f"unknown city {name!r}; choose one of {', '.join(CITIES)}") from None


def random_detection_in_city(city: str, *, rng: random.Random | None = None) -> DetectionDraft:
    """A plausible random detection near *city*'s centre."""
    rng = rng or random.Random()
    preset = get_city(city)
    return DetectionDraft(
        sensor_id=f"SENSOR-{rng.randrange(1000):03d}",
        latitude=round(preset.latitude + (rng.random() - 0.5) * CITY_SPREAD, 6),
        longitude=round(preset.longitude + (rng.random() - 0.5) * CITY_SPREAD, 6),
        severity=rng.choice(list(Severity)),
        temperature=round(rng.random() * 10 - 5, 2),
        humidity=round(rng.random() * 100, 2),
        road_condition="Icy patches detected",
        status=DetectionStatus.ACTIVE,
    )


def synthetic_detection(
    sensor_id: str,
    *,
    road_condition: str,
    severity: Severity = Severity.MEDIUM,
    temperature: float = -1.5,
    humidity: float = 85.0,
    jitter: float = 0.0,
    rng: random.Random | None = None,
) -> DetectionDraft:
    """A tagged detection written by the validation harness.

    *jitter* spreads the position up to that many degrees north/east of the
    harness reference point.
    """
    rng = rng or random.Random()
    return DetectionDraft(
        sensor_id=sensor_id,
        latitude=round(HARNESS_LATITUDE + rng.random() * jitter, 6),
        longitude=round(HARNESS_LONGITUDE + rng.random() * jitter, 6),
        severity=severity,
        temperature=temperature,
        humidity=humidity,
        road_condition=road_condition,
        status=DetectionStatus.ACTIVE,
    )


async def generate_bulk_detections(
    writer: DetectionWriter,
    city: str,
    count: int,
    *,
    interval: float = 0.1,
    rng: random.Random | None = None,
) -> list[Detection]:
    """Write *count* random detections near *city*, one at a time.

    Stops at the first failed write and propagates its error; detections
    written before it stay in the backend.
    """
    if not 1 <= count <= MAX_BULK_COUNT:
        raise ValueError(f"count must be between 1 and {MAX_BULK_COUNT}, got {count}")
    get_city(city)
    rng = rng or random.Random()

    created: list[Detection] = []
    for index in range(count):
        created.append(await writer.create_detection(random_detection_in_city(city, rng=rng)))
        if index < count - 1 and interval > 0:
            await asyncio.sleep(interval)
    _logger.info("Generated %d detections in %s", len(created), CITIES[city].label)
    return created
