from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from icewatch.client import IcewatchClient
from icewatch.config import IcewatchConfig
from icewatch.exceptions import IcewatchError
from icewatch.models.detection import DetectionDraft, DetectionStatus
from icewatch.models.sensor import SensorDraft, SensorStatus

if TYPE_CHECKING:
    from conftest import FakeBackend


def _draft(sensor_id: str) -> DetectionDraft:
    return DetectionDraft(sensor_id=sensor_id, latitude=47.6, longitude=-122.3)


@pytest.mark.asyncio
async def test_list_detections_newest_first_with_limit(client: IcewatchClient, backend: FakeBackend) -> None:
    stamps = ["2026-01-15T06:00:00+00:00", "2026-01-15T08:00:00+00:00", "2026-01-15T07:00:00+00:00"]
    for index, stamp in enumerate(stamps):
        await backend.insert("ice_detections", {**_draft(f"S-{index}").to_row(), "detected_at": stamp})

    detections = await client.list_detections(limit=2)

    assert [d.sensor_id for d in detections] == ["S-1", "S-2"]


@pytest.mark.asyncio
async def test_list_detections_by_status(client: IcewatchClient) -> None:
    first = await client.create_detection(_draft("S-1"))
    await client.create_detection(_draft("S-2"))
    await client.update_detection(first.id, status=DetectionStatus.RESOLVED)

    resolved = await client.list_detections(status=DetectionStatus.RESOLVED)

    assert [d.id for d in resolved] == [first.id]


@pytest.mark.asyncio
async def test_sensor_lifecycle(client: IcewatchClient) -> None:
    sensor = await client.create_sensor(
        SensorDraft(sensor_id="SEA-2", name="Aurora Bridge", latitude=47.64, longitude=-122.34)
    )
    await client.create_sensor(SensorDraft(sensor_id="SEA-1", name="I-5 Ship Canal", latitude=47.65, longitude=-122.32))

    assert [s.sensor_id for s in await client.list_sensors()] == ["SEA-1", "SEA-2"]

    offline = await client.update_sensor(sensor.id, status=SensorStatus.OFFLINE)
    assert offline is not None and offline.status == SensorStatus.OFFLINE

    pinged = await client.ping_sensor(sensor.id)
    assert pinged is not None
    assert pinged.status == SensorStatus.ONLINE
    assert pinged.last_ping is not None

    await client.delete_sensor(sensor.id)
    assert [s.sensor_id for s in await client.list_sensors()] == ["SEA-1"]


@pytest.mark.asyncio
async def test_update_unknown_record_returns_none(client: IcewatchClient) -> None:
    assert await client.update_detection("missing", notes="n/a") is None


@pytest.mark.asyncio
async def test_empty_patch_is_rejected(client: IcewatchClient) -> None:
    with pytest.raises(ValueError):
        await client.update_detection("any")
    with pytest.raises(ValueError):
        await client.update_sensor("any")


@pytest.mark.asyncio
async def test_clear_removes_everything(client: IcewatchClient) -> None:
    await client.create_detection(_draft("S-1"))
    await client.create_sensor(SensorDraft(sensor_id="SEA-1", name="x", latitude=0, longitude=0))

    await client.clear_detections()
    await client.clear_sensors()

    assert await client.list_detections() == []
    assert await client.list_sensors() == []


def test_uninitialised_client_raises(config: IcewatchConfig) -> None:
    client = IcewatchClient(config)
    with pytest.raises(IcewatchError, match="not initialized"):
        _ = client.feed


@pytest.mark.asyncio
async def test_context_manager_owns_http_session(config: IcewatchConfig) -> None:
    async with IcewatchClient(config) as client:
        feed = client.feed
        assert feed is not None
        session = client._http_session  # type: ignore[attr-defined]
        assert session is not None and not session.closed

    assert session.closed
