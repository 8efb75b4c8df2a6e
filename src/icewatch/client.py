"""High-level async client for the black-ice monitoring backend."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiohttp

from icewatch._realtime import WebsocketChannelOpener
from icewatch._transport import RecordStore, RestTransport, eq
from icewatch.config import HarnessTimings, IcewatchConfig, ReconnectPolicy
from icewatch.exceptions import IcewatchError
from icewatch.feed import ChangeFeed
from icewatch.harness import ValidationHarness
from icewatch.live import LiveView
from icewatch.models.change import ChangeEvent, Resource
from icewatch.models.detection import Detection, DetectionDraft, DetectionPatch, DetectionStatus
from icewatch.models.harness import CheckResult
from icewatch.models.sensor import Sensor, SensorDraft, SensorPatch, SensorStatus
from icewatch.state.cache import ViewCache

_logger = logging.getLogger(__name__)


class IcewatchClient:
    """Async client for sensors, detections and their change feed.

    Usage::

        async with IcewatchClient(IcewatchConfig.from_env()) as client:
            sensors = await client.list_sensors()
            report = await client.harness().run_all()

    The client is an explicit dependency: pass it (or its :attr:`feed`) to
    :class:`LiveView` and :class:`ValidationHarness` rather than sharing a
    module-level instance.  *store* and *feed* may be injected for tests.
    """

    def __init__(
        self,
        config: IcewatchConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        store: RecordStore | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._store = store
        self._feed = feed
        self._owns_transport = store is None or feed is None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> IcewatchClient:
        if self._owns_transport:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            if self._store is None:
                self._store = RestTransport(self._config, self._http_session)
            if self._feed is None:
                self._feed = ChangeFeed(WebsocketChannelOpener(self._config, self._http_session))
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    @property
    def config(self) -> IcewatchConfig:
        return self._config

    @property
    def feed(self) -> ChangeFeed:
        if self._feed is None:
            raise IcewatchError("Client not initialized. Use 'async with IcewatchClient(...) as client:'")
        return self._feed

    def _require_store(self) -> RecordStore:
        if self._store is None:
            raise IcewatchError("Client not initialized. Use 'async with IcewatchClient(...) as client:'")
        return self._store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_detections(
        self,
        *,
        limit: int | None = None,
        status: DetectionStatus | None = None,
    ) -> list[Detection]:
        """Most recent detections, newest ``detected_at`` first."""
        filters = {"status": eq(status.value)} if status is not None else None
        rows = await self._require_store().select(
            Resource.DETECTIONS.value,
            filters=filters,
            order="detected_at.desc",
            limit=limit if limit is not None else self._config.detection_limit,
        )
        return [Detection.model_validate(row) for row in rows]

    async def list_sensors(self, *, order_by: str | None = "sensor_id") -> list[Sensor]:
        rows = await self._require_store().select(
            Resource.SENSORS.value,
            order=f"{order_by}.asc" if order_by else None,
        )
        return [Sensor.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_detection(self, draft: DetectionDraft) -> Detection:
        row = await self._require_store().insert(Resource.DETECTIONS.value, draft.to_row())
        detection = Detection.model_validate(row)
        _logger.debug("Created detection id=%s sensor_id=%s", detection.id, detection.sensor_id)
        return detection

    async def create_sensor(self, draft: SensorDraft) -> Sensor:
        row = await self._require_store().insert(Resource.SENSORS.value, draft.to_row())
        sensor = Sensor.model_validate(row)
        _logger.debug("Created sensor id=%s sensor_id=%s", sensor.id, sensor.sensor_id)
        return sensor

    async def update_detection(
        self,
        record_id: str,
        *,
        status: DetectionStatus | None = None,
        notes: str | None = None,
    ) -> Detection | None:
        """Patch a detection; returns ``None`` when no row has *record_id*."""
        patch = DetectionPatch(status=status, notes=notes).to_row()
        if not patch:
            raise ValueError("update_detection requires status or notes")
        row = await self._require_store().update(Resource.DETECTIONS.value, record_id, patch)
        return Detection.model_validate(row) if row is not None else None

    async def update_sensor(
        self,
        record_id: str,
        *,
        status: SensorStatus | None = None,
        last_ping: datetime | None = None,
    ) -> Sensor | None:
        """Patch a sensor; returns ``None`` when no row has *record_id*."""
        patch = SensorPatch(status=status, last_ping=last_ping).to_row()
        if not patch:
            raise ValueError("update_sensor requires status or last_ping")
        row = await self._require_store().update(Resource.SENSORS.value, record_id, patch)
        return Sensor.model_validate(row) if row is not None else None

    async def ping_sensor(self, record_id: str) -> Sensor | None:
        """Record a ping now and mark the sensor online."""
        return await self.update_sensor(record_id, status=SensorStatus.ONLINE, last_ping=datetime.now(UTC))

    async def delete_detection(self, record_id: str) -> None:
        await self._require_store().delete(Resource.DETECTIONS.value, record_id)

    async def delete_sensor(self, record_id: str) -> None:
        await self._require_store().delete(Resource.SENSORS.value, record_id)

    async def clear_detections(self) -> None:
        """Delete every detection.  Live views must :meth:`~LiveView.reload` afterwards."""
        await self._require_store().delete_all(Resource.DETECTIONS.value)
        _logger.info("Cleared all detections")

    async def clear_sensors(self) -> None:
        """Delete every sensor.  Live views must :meth:`~LiveView.reload` afterwards."""
        await self._require_store().delete_all(Resource.SENSORS.value)
        _logger.info("Cleared all sensors")

    # ------------------------------------------------------------------
    # Composition helpers
    # ------------------------------------------------------------------

    def live_view(
        self,
        *,
        cache: ViewCache | None = None,
        reconnect: ReconnectPolicy | None = None,
        on_change: Callable[[ChangeEvent], None] | None = None,
    ) -> LiveView:
        return LiveView(
            self,
            self.feed,
            cache=cache or ViewCache(detection_limit=self._config.detection_limit),
            reconnect=reconnect,
            on_change=on_change,
        )

    def harness(
        self,
        *,
        timings: HarnessTimings | None = None,
        on_update: Callable[[CheckResult], None] | None = None,
        on_progress: Callable[[int], None] | None = None,
    ) -> ValidationHarness:
        return ValidationHarness(self, self.feed, timings=timings, on_update=on_update, on_progress=on_progress)
