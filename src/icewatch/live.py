"""Live view: keeps a :class:`ViewCache` in sync with the change feed.

Owns:
- the initial load and full reloads of the replica
- translating feed events into cache inserts/updates
- resubscribing with exponential backoff after a drop, followed by a
  reload to fill whatever was missed while disconnected
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Protocol

from pydantic import ValidationError

from icewatch.config import ReconnectPolicy
from icewatch.exceptions import IcewatchError
from icewatch.feed import Binding, ChangeFeed, Subscription
from icewatch.models.change import ChangeEvent, ChangeKind, Resource
from icewatch.models.detection import Detection
from icewatch.models.sensor import Sensor
from icewatch.state.cache import ViewCache, ViewSnapshot

_logger = logging.getLogger(__name__)


class RecordReader(Protocol):
    async def list_detections(self, *, limit: int | None = None) -> list[Detection]: ...

    async def list_sensors(self) -> list[Sensor]: ...


class LiveView:
    """Cached, live-updating view of sensors and recent detections.

    Usage::

        async with LiveView(client, client.feed) as view:
            stats = view.snapshot().stats()
    """

    def __init__(
        self,
        records: RecordReader,
        feed: ChangeFeed,
        *,
        cache: ViewCache | None = None,
        reconnect: ReconnectPolicy | None = None,
        on_change: Callable[[ChangeEvent], None] | None = None,
        channel_name: str = "dashboard-updates",
    ) -> None:
        self._records = records
        self._feed = feed
        self._cache = cache or ViewCache()
        self._reconnect = reconnect or ReconnectPolicy()
        self._on_change = on_change
        self._channel_name = channel_name
        self._subscription: Subscription | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._reconnects = 0
        # One buffer per in-flight reload.
        self._reload_buffers: list[list[tuple[ChangeKind, Detection | Sensor]]] = []

    @property
    def cache(self) -> ViewCache:
        return self._cache

    @property
    def is_live(self) -> bool:
        return self._subscription is not None and self._subscription.is_active

    @property
    def reconnects(self) -> int:
        """Number of successful resubscriptions since :meth:`start`."""
        return self._reconnects

    def snapshot(self) -> ViewSnapshot:
        return self._cache.snapshot()

    async def start(self) -> None:
        """Subscribe, then load the initial snapshot.

        Subscribing first means nothing committed after the load query can be
        missed. Events delivered while the load is in flight are re-applied on
        top of it, so the load never wipes a change the feed already reported.
        """
        if self._supervisor is not None:
            raise IcewatchError("live view already started")
        self._subscription = await self._subscribe()
        try:
            await self.reload()
        except BaseException:
            await self._subscription.unsubscribe()
            self._subscription = None
            raise
        self._supervisor = asyncio.create_task(self._supervise(), name="icewatch-live-supervisor")

    async def stop(self) -> None:
        """Stop reconnecting and release the subscription.

        Re-raises an unexpected error that ended the reconnect supervisor.
        """
        supervisor = self._supervisor
        self._supervisor = None
        try:
            if supervisor is not None:
                supervisor.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await supervisor
        finally:
            subscription = self._subscription
            self._subscription = None
            if subscription is not None:
                await subscription.unsubscribe()

    async def reload(self) -> ViewSnapshot:
        """Re-read both resources from the backend and replace the cache.

        Required after bulk clears, which the feed does not report.  Changes
        delivered by the feed while the queries run are re-applied after the
        replace.
        """
        buffer: list[tuple[ChangeKind, Detection | Sensor]] = []
        self._reload_buffers.append(buffer)
        try:
            detections = await self._records.list_detections(limit=self._cache.detection_limit)
            sensors = await self._records.list_sensors()
        finally:
            self._reload_buffers.remove(buffer)
        self._cache.load(detections, sensors)
        for kind, record in buffer:
            self._apply(kind, record)
        if buffer:
            _logger.debug("Replayed %d change(s) received during reload", len(buffer))
        return self._cache.snapshot()

    async def __aenter__(self) -> LiveView:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def _subscribe(self) -> Subscription:
        bindings = [
            Binding(Resource.DETECTIONS, ChangeKind.INSERT, self._handle_event),
            Binding(Resource.DETECTIONS, ChangeKind.UPDATE, self._handle_event),
            Binding(Resource.SENSORS, ChangeKind.INSERT, self._handle_event),
            Binding(Resource.SENSORS, ChangeKind.UPDATE, self._handle_event),
        ]
        return await self._feed.subscribe_many(bindings, name=self._channel_name)

    def _handle_event(self, event: ChangeEvent) -> None:
        try:
            record: Detection | Sensor = event.detection() if event.resource == Resource.DETECTIONS else event.sensor()
        except ValidationError:
            _logger.warning(
                "Dropping malformed %s %s event id=%s",
                event.resource,
                event.kind,
                event.record_id,
                exc_info=True,
            )
            return

        for buffer in self._reload_buffers:
            buffer.append((event.kind, record))
        if self._apply(event.kind, record) and self._on_change is not None:
            self._on_change(event)

    def _apply(self, kind: ChangeKind, record: Detection | Sensor) -> bool:
        if kind == ChangeKind.INSERT:
            return self._cache.apply_insert(record)
        return self._cache.apply_update(record)

    async def _supervise(self) -> None:
        while True:
            subscription = self._subscription
            if subscription is None:
                return
            reason = await subscription.wait_dropped()
            _logger.warning("Live subscription lost (%s); reconnecting", reason)
            self._subscription = await self._resubscribe()
            if self._subscription is None:
                return

    async def _resubscribe(self) -> Subscription | None:
        attempt = 0
        while self._reconnect.max_attempts is None or attempt < self._reconnect.max_attempts:
            delay = self._reconnect.delay_for(attempt)
            _logger.debug("Reconnect attempt %d in %.1fs", attempt + 1, delay)
            await asyncio.sleep(delay)
            attempt += 1
            subscription: Subscription | None = None
            try:
                subscription = await self._subscribe()
                await self.reload()
            except (IcewatchError, ValidationError) as exc:
                _logger.warning("Reconnect attempt %d failed: %s", attempt, exc)
                if subscription is not None:
                    await subscription.unsubscribe()
                continue
            except BaseException:
                if subscription is not None:
                    await subscription.unsubscribe()
                raise
            self._reconnects += 1
            _logger.info("Live subscription restored after %d attempt(s)", attempt)
            return subscription
        _logger.error("Giving up on live subscription after %d attempts", attempt)
        return None
