from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import pytest

from icewatch.client import IcewatchClient
from icewatch.config import HarnessTimings, IcewatchConfig
from icewatch.feed import ChangeFeed
from icewatch.models.change import ChangeEvent, ChangeFilter, ChangeKind, Resource

_DEFAULTS: dict[str, dict[str, Any]] = {
    Resource.DETECTIONS.value: {
        "severity": "low",
        "status": "active",
        "temperature": None,
        "humidity": None,
        "road_condition": None,
        "notes": None,
    },
    Resource.SENSORS.value: {"status": "online", "last_ping": None},
}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class FakeChannel:
    def __init__(
        self,
        backend: FakeBackend,
        topic: str,
        filters: Sequence[ChangeFilter],
        on_event: Callable[[ChangeEvent], None],
        on_close: Callable[[str], None],
    ) -> None:
        self.backend = backend
        self.topic = topic
        self.filters = tuple(filters)
        self.on_event = on_event
        self.on_close = on_close
        self.closed = False

    def wants(self, event: ChangeEvent) -> bool:
        return any(f.matches(event) for f in self.filters)

    def deliver(self, event: ChangeEvent) -> None:
        if not self.closed:
            self.on_event(event)

    def drop(self, reason: str = "socket closed") -> None:
        """Simulate the backend closing the connection."""
        self._detach()
        self.on_close(reason)

    def _detach(self) -> None:
        self.closed = True
        if self in self.backend.channels:
            self.backend.channels.remove(self)

    async def close(self) -> None:
        self._detach()


class FakeBackend:
    """In-memory record store and change-feed opener.

    ``latency`` delays every delivery; ``drop`` suppresses deliveries whose
    record it returns ``True`` for.
    """

    def __init__(
        self,
        *,
        latency: float = 0.0,
        drop: Callable[[dict[str, Any]], bool] | None = None,
    ) -> None:
        self.latency = latency
        self.drop = drop
        self.tables: dict[str, list[dict[str, Any]]] = {r.value: [] for r in Resource}
        self.channels: list[FakeChannel] = []
        self.opened: list[FakeChannel] = []
        self.join_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.deliver_during_join: list[ChangeEvent] = []

    # -- ChannelOpener -------------------------------------------------

    async def __call__(
        self,
        topic: str,
        filters: Sequence[ChangeFilter],
        on_event: Callable[[ChangeEvent], None],
        on_close: Callable[[str], None],
    ) -> FakeChannel:
        if self.join_error is not None:
            raise self.join_error
        channel = FakeChannel(self, topic, filters, on_event, on_close)
        self.channels.append(channel)
        self.opened.append(channel)
        for event in self.deliver_during_join:
            on_event(event)
        return channel

    def publish(self, resource: Resource, kind: ChangeKind, record: Mapping[str, Any]) -> None:
        event = ChangeEvent(resource=resource, kind=kind, record=dict(record))
        if self.drop is not None and self.drop(event.record):
            return
        loop = asyncio.get_running_loop()
        for channel in list(self.channels):
            if not channel.wants(event):
                continue
            if self.latency > 0:
                loop.call_later(self.latency, channel.deliver, event)
            else:
                loop.call_soon(channel.deliver, event)

    # -- RecordStore ---------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = [dict(row) for row in self.tables[table]]
        for column, expr in (filters or {}).items():
            op, _, value = expr.partition(".")
            assert op == "eq"
            rows = [row for row in rows if str(row.get(column)) == value]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda row: row.get(column) or "", reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        if self.insert_error is not None:
            raise self.insert_error
        now = _now_iso()
        stored: dict[str, Any] = {"id": str(uuid.uuid4()), "created_at": now, **_DEFAULTS[table], **row}
        if table == Resource.DETECTIONS.value:
            stored.setdefault("detected_at", now)
            stored["updated_at"] = now
        self.tables[table].append(stored)
        self.publish(Resource(table), ChangeKind.INSERT, stored)
        return dict(stored)

    async def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> dict[str, Any] | None:
        for row in self.tables[table]:
            if row["id"] != record_id:
                continue
            row.update(patch)
            if table == Resource.DETECTIONS.value:
                row["updated_at"] = _now_iso()
            self.publish(Resource(table), ChangeKind.UPDATE, row)
            return dict(row)
        return None

    async def delete(self, table: str, record_id: str) -> None:
        self.tables[table] = [row for row in self.tables[table] if row["id"] != record_id]

    async def delete_all(self, table: str) -> None:
        self.tables[table] = []


@pytest.fixture
def config() -> IcewatchConfig:
    return IcewatchConfig(url="https://example.supabase.co", api_key="anon-key")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def feed(backend: FakeBackend) -> ChangeFeed:
    return ChangeFeed(backend)


@pytest.fixture
def client(config: IcewatchConfig, backend: FakeBackend, feed: ChangeFeed) -> IcewatchClient:
    return IcewatchClient(config, store=backend, feed=feed)


@pytest.fixture
def fast_timings() -> HarnessTimings:
    return HarnessTimings(
        response_limit=0.2,
        response_timeout=1.0,
        alert_count=10,
        alert_interval=0.0,
        alert_grace=0.3,
        interruption=0.01,
        after_wait=0.3,
        inter_check_delay=0.0,
    )
