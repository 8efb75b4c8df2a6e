"""Change-feed client.

Owns:
- opening one realtime connection per subscription topic
- routing decoded events to the callbacks registered for them
- gating delivery so nothing is dispatched after ``unsubscribe()`` returns
- surfacing connection drops (no automatic retry at this layer)
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass

from icewatch._realtime import ChannelConnection, ChannelOpener
from icewatch.exceptions import IcewatchError
from icewatch.models.change import ChangeEvent, ChangeFilter, ChangeKind, Resource

_logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]
DropCallback = Callable[["Subscription", str], None]


@dataclass(frozen=True)
class Binding:
    """A callback registered for one (resource, kind) pair."""

    resource: Resource
    kind: ChangeKind
    callback: ChangeCallback

    @property
    def filter(self) -> ChangeFilter:
        return ChangeFilter(resource=self.resource, kind=self.kind)


class Subscription:
    """A live change-feed subscription.

    Created by :meth:`ChangeFeed.subscribe`.  Use as an async context
    manager (or call :meth:`unsubscribe`) to release the connection.
    """

    def __init__(
        self,
        *,
        topic: str,
        bindings: Sequence[Binding],
        on_drop: DropCallback | None = None,
    ) -> None:
        self._topic = topic
        self._bindings = tuple(bindings)
        self._on_drop = on_drop
        self._connection: ChannelConnection | None = None
        self._active = False
        self._drop_reason: str | None = None
        self._dropped = asyncio.Event()
        self._delivered = 0

    def __repr__(self) -> str:
        return f"Subscription(topic={self._topic!r}, active={self._active}, delivered={self._delivered})"

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def bindings(self) -> tuple[Binding, ...]:
        return self._bindings

    @property
    def is_active(self) -> bool:
        """Whether events are still being delivered."""
        return self._active

    @property
    def delivered(self) -> int:
        """Number of events dispatched to at least one callback."""
        return self._delivered

    @property
    def drop_reason(self) -> str | None:
        """Why the connection ended, if it dropped (``None`` otherwise)."""
        return self._drop_reason

    async def wait_dropped(self) -> str:
        """Block until the connection drops; returns the drop reason."""
        await self._dropped.wait()
        return self._drop_reason or ""

    def _arm(self) -> None:
        # Events can arrive between the join acknowledgement and _attach.
        self._active = True

    def _attach(self, connection: ChannelConnection) -> None:
        self._connection = connection

    def _dispatch(self, event: ChangeEvent) -> None:
        if not self._active:
            return
        matched = False
        for binding in self._bindings:
            if binding.resource != event.resource or binding.kind != event.kind:
                continue
            matched = True
            try:
                binding.callback(event)
            except Exception:
                _logger.warning(
                    "Change callback failed topic=%s resource=%s kind=%s",
                    self._topic,
                    event.resource,
                    event.kind,
                    exc_info=True,
                )
            # A callback may have unsubscribed synchronously.
            if not self._active:
                break
        if matched:
            self._delivered += 1

    def _handle_close(self, reason: str) -> None:
        if not self._active:
            return
        self._active = False
        self._connection = None
        self._drop_reason = reason
        self._dropped.set()
        _logger.info("Subscription %s dropped: %s", self._topic, reason)
        if self._on_drop is not None:
            try:
                self._on_drop(self, reason)
            except Exception:
                _logger.warning("Drop callback failed topic=%s", self._topic, exc_info=True)

    async def unsubscribe(self) -> None:
        """Tear down the connection.  Idempotent.

        No callback is invoked once this coroutine has started; events still
        in flight on the socket are discarded.
        """
        self._active = False
        connection = self._connection
        self._connection = None
        if connection is None:
            return
        _logger.debug("Unsubscribing topic=%s", self._topic)
        await connection.close()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.unsubscribe()


class ChangeFeed:
    """Subscribe to insert/update notifications for backend resources.

    Usage::

        feed = ChangeFeed(opener)
        async with feed.listen(Resource.DETECTIONS, ChangeKind.INSERT, on_insert):
            ...
    """

    def __init__(self, opener: ChannelOpener) -> None:
        self._opener = opener
        self._counter = itertools.count(1)

    def _topic(self, name: str | None) -> str:
        return f"realtime:{name or 'icewatch'}-{next(self._counter)}"

    async def subscribe(
        self,
        resource: Resource,
        kind: ChangeKind,
        callback: ChangeCallback,
        *,
        name: str | None = None,
        on_drop: DropCallback | None = None,
    ) -> Subscription:
        """Register *callback* for *kind* changes of *resource*.

        Returns once the backend acknowledged the subscription.

        Raises
        ------
        IcewatchSubscriptionError
            If the connection cannot be established or the join is rejected.
        """
        return await self.subscribe_many([Binding(resource, kind, callback)], name=name, on_drop=on_drop)

    async def subscribe_many(
        self,
        bindings: Sequence[Binding],
        *,
        name: str | None = None,
        on_drop: DropCallback | None = None,
    ) -> Subscription:
        """Register several bindings sharing one connection."""
        if not bindings:
            raise IcewatchError("subscribe_many requires at least one binding")
        subscription = Subscription(topic=self._topic(name), bindings=bindings, on_drop=on_drop)
        filters = list(dict.fromkeys(binding.filter for binding in bindings))
        subscription._arm()  # noqa: SLF001
        try:
            connection = await self._opener(
                subscription.topic,
                filters,
                subscription._dispatch,  # noqa: SLF001
                subscription._handle_close,  # noqa: SLF001
            )
        except BaseException:
            subscription._active = False  # noqa: SLF001
            raise
        if not subscription.is_active:
            # Dropped while the join was being acknowledged.
            await connection.close()
            return subscription
        subscription._attach(connection)  # noqa: SLF001
        _logger.debug("Subscribed topic=%s filters=%s", subscription.topic, filters)
        return subscription

    @contextlib.asynccontextmanager
    async def listen(
        self,
        resource: Resource,
        kind: ChangeKind,
        callback: ChangeCallback,
        *,
        name: str | None = None,
        on_drop: DropCallback | None = None,
    ) -> AsyncIterator[Subscription]:
        """Scoped subscription, released on every exit path."""
        subscription = await self.subscribe(resource, kind, callback, name=name, on_drop=on_drop)
        try:
            yield subscription
        finally:
            await subscription.unsubscribe()
