"""Internal realtime socket: Phoenix frame codec and channel runtime."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from icewatch._constants import (
    PHX_CLOSE,
    PHX_ERROR,
    PHX_HEARTBEAT,
    PHX_JOIN,
    PHX_LEAVE,
    PHX_REPLY,
    PHX_TOPIC,
    POSTGRES_CHANGES,
    REALTIME_PATH,
    REALTIME_VSN,
)
from icewatch._redact import redact_for_log, redact_url
from icewatch.config import IcewatchConfig
from icewatch.exceptions import IcewatchSubscriptionError
from icewatch.models.change import ChangeEvent, ChangeFilter, ChangeKind, Resource

EventHandler = Callable[[ChangeEvent], None]
CloseHandler = Callable[[str], None]


@dataclass(frozen=True)
class PhoenixFrame:
    """A decoded Phoenix v1 JSON frame."""

    topic: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    ref: str | None = None
    join_ref: str | None = None


def encode_frame(frame: PhoenixFrame) -> str:
    message: dict[str, Any] = {
        "topic": frame.topic,
        "event": frame.event,
        "payload": frame.payload,
        "ref": frame.ref,
    }
    if frame.join_ref is not None:
        message["join_ref"] = frame.join_ref
    return json.dumps(message, separators=(",", ":"))


def decode_frame(text: str) -> PhoenixFrame:
    """Parse a text frame.  Raises ``ValueError`` for malformed input."""
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("realtime frame is not a JSON object")
    topic = parsed.get("topic")
    event = parsed.get("event")
    if not isinstance(topic, str) or not isinstance(event, str):
        raise ValueError("realtime frame missing topic/event")
    payload = parsed.get("payload")
    ref = parsed.get("ref")
    join_ref = parsed.get("join_ref")
    return PhoenixFrame(
        topic=topic,
        event=event,
        payload=payload if isinstance(payload, dict) else {},
        ref=str(ref) if ref is not None else None,
        join_ref=str(join_ref) if join_ref is not None else None,
    )


def build_join_payload(filters: Sequence[ChangeFilter], *, schema: str, access_token: str) -> dict[str, Any]:
    """Join payload requesting ``postgres_changes`` for each filter."""
    return {
        "config": {
            "broadcast": {"ack": False, "self": False},
            "presence": {"key": ""},
            "postgres_changes": [
                {"event": f.kind.value, "schema": schema, "table": f.resource.value} for f in filters
            ],
        },
        "access_token": access_token,
    }


def decode_change(frame: PhoenixFrame) -> ChangeEvent | None:
    """Convert a ``postgres_changes`` frame into a :class:`ChangeEvent`.

    Returns ``None`` for frames about other tables or change types.
    """
    if frame.event != POSTGRES_CHANGES:
        return None
    data = frame.payload.get("data")
    if not isinstance(data, dict):
        return None
    try:
        resource = Resource(str(data.get("table") or ""))
        kind = ChangeKind(str(data.get("type") or data.get("eventType") or "").upper())
    except ValueError:
        return None
    record = data.get("record")
    old_record = data.get("old_record")
    return ChangeEvent(
        resource=resource,
        kind=kind,
        record=record if isinstance(record, dict) else {},
        old_record=old_record if isinstance(old_record, dict) else {},
        commit_timestamp=data.get("commit_timestamp"),
    )


def socket_url(config: IcewatchConfig) -> str:
    base = config.url
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return f"{base}{REALTIME_PATH}?apikey={config.api_key}&vsn={REALTIME_VSN}"


class ChannelConnection(Protocol):
    async def close(self) -> None: ...


class ChannelOpener(Protocol):
    """Opens one realtime connection for one subscription topic.

    The returned connection delivers decoded events to *on_event* in
    arrival order and calls *on_close* once with a reason when the
    connection ends for any cause other than :meth:`ChannelConnection.close`.
    """

    async def __call__(
        self,
        topic: str,
        filters: Sequence[ChangeFilter],
        on_event: EventHandler,
        on_close: CloseHandler,
    ) -> ChannelConnection: ...


class RealtimeChannel:
    """One websocket carrying one joined channel."""

    def __init__(
        self,
        *,
        http_session: aiohttp.ClientSession,
        config: IcewatchConfig,
        topic: str,
        filters: Sequence[ChangeFilter],
        on_event: EventHandler,
        on_close: CloseHandler,
        logger: logging.Logger | None = None,
    ) -> None:
        self._http = http_session
        self._config = config
        self._topic = topic
        self._filters = tuple(filters)
        self._on_event = on_event
        self._on_close = on_close
        self._logger = logger or logging.getLogger(__name__)
        self._refs = itertools.count(1)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._heartbeat: asyncio.Task[None] | None = None
        self._join_ref: str | None = None
        self._join_reply: asyncio.Future[dict[str, Any]] | None = None
        self._pending_heartbeat: str | None = None
        self._joined = False
        self._closing = False

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed and not self._closing

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def _send(self, frame: PhoenixFrame) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise ConnectionResetError("realtime socket is closed")
        self._logger.debug(
            "Realtime send topic=%s event=%s payload=%s",
            frame.topic,
            frame.event,
            redact_for_log(frame.payload),
        )
        await ws.send_str(encode_frame(frame))

    async def open(self) -> None:
        """Connect, join the channel and wait for the join acknowledgement."""
        url = socket_url(self._config)
        self._logger.debug("Realtime connect url=%s topic=%s", redact_url(url), self._topic)
        try:
            self._ws = await self._http.ws_connect(url, autoping=True)
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise IcewatchSubscriptionError(f"Realtime connect failed: {exc}", topic=self._topic) from exc

        loop = asyncio.get_running_loop()
        self._join_ref = self._next_ref()
        self._join_reply = loop.create_future()
        self._reader = asyncio.create_task(self._read_loop(), name=f"icewatch-realtime-{self._topic}")

        try:
            await self._send(
                PhoenixFrame(
                    topic=self._topic,
                    event=PHX_JOIN,
                    payload=build_join_payload(
                        self._filters,
                        schema=self._config.schema,
                        access_token=self._config.api_key,
                    ),
                    ref=self._join_ref,
                    join_ref=self._join_ref,
                )
            )
            reply = await asyncio.wait_for(asyncio.shield(self._join_reply), self._config.join_timeout)
        except TimeoutError as exc:
            await self._teardown()
            raise IcewatchSubscriptionError(
                f"Join of {self._topic} not acknowledged within {self._config.join_timeout}s",
                topic=self._topic,
            ) from exc
        except (ConnectionError, aiohttp.ClientError) as exc:
            await self._teardown()
            raise IcewatchSubscriptionError(f"Join of {self._topic} failed: {exc}", topic=self._topic) from exc
        except (IcewatchSubscriptionError, asyncio.CancelledError):
            await self._teardown()
            raise

        if reply.get("status") != "ok":
            await self._teardown()
            raise IcewatchSubscriptionError(
                f"Join of {self._topic} rejected: {reply.get('response')}",
                topic=self._topic,
            )

        if self._closing:
            # Dropped right after the acknowledgement; on_close has already run.
            return
        self._logger.debug("Realtime joined topic=%s", self._topic)
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name=f"icewatch-heartbeat-{self._topic}")

    async def close(self) -> None:
        """Leave the channel and close the socket.  No ``on_close`` callback."""
        if self._closing:
            return
        self._closing = True
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await self._send(PhoenixFrame(topic=self._topic, event=PHX_LEAVE, ref=self._next_ref()))
            except (ConnectionError, aiohttp.ClientError):
                self._logger.debug("Realtime leave failed topic=%s", self._topic, exc_info=True)
        await self._teardown()

    async def _teardown(self) -> None:
        self._closing = True
        join_reply = self._join_reply
        if join_reply is not None:
            if not join_reply.done():
                join_reply.cancel()
            elif not join_reply.cancelled():
                # Nobody awaits the reply past this point.
                join_reply.exception()
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()
        reader = self._reader
        self._reader = None
        if reader is not None and reader is not asyncio.current_task():
            await asyncio.gather(reader, return_exceptions=True)
        self._logger.debug("Realtime socket closed topic=%s", self._topic)

    async def _heartbeat_loop(self) -> None:
        interval = self._config.realtime_heartbeat
        while True:
            await asyncio.sleep(interval)
            if self._pending_heartbeat is not None:
                self._logger.warning("Realtime heartbeat timeout topic=%s", self._topic)
                if self._ws is not None:
                    await self._ws.close()
                return
            ref = self._next_ref()
            self._pending_heartbeat = ref
            try:
                await self._send(PhoenixFrame(topic=PHX_TOPIC, event=PHX_HEARTBEAT, ref=ref))
            except (ConnectionError, aiohttp.ClientError):
                self._logger.debug("Realtime heartbeat send failed topic=%s", self._topic, exc_info=True)
                if self._ws is not None:
                    await self._ws.close()
                return

    async def _read_loop(self) -> None:
        ws = self._ws
        assert ws is not None  # noqa: S101
        reason = "socket closed"
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    stop = self._handle_text(msg.data)
                    if stop is not None:
                        reason = stop
                        break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"socket error: {ws.exception()}"
                    break
        finally:
            join_reply = self._join_reply
            if join_reply is not None and not join_reply.done():
                join_reply.set_exception(
                    IcewatchSubscriptionError(f"Realtime {reason} before join acknowledged", topic=self._topic)
                )
            if not self._closing and self._joined:
                self._closing = True
                if self._heartbeat is not None:
                    self._heartbeat.cancel()
                if not ws.closed:
                    await ws.close()
                self._logger.debug("Realtime connection dropped topic=%s reason=%s", self._topic, reason)
                self._on_close(reason)

    def _handle_text(self, text: str) -> str | None:
        """Process one frame; returns a drop reason when the channel ended."""
        try:
            frame = decode_frame(text)
        except ValueError:
            self._logger.debug("Realtime frame parse failure", exc_info=True)
            return None

        if frame.event == PHX_REPLY:
            if frame.topic == PHX_TOPIC and frame.ref == self._pending_heartbeat:
                self._pending_heartbeat = None
                return None
            join_reply = self._join_reply
            if frame.ref == self._join_ref and join_reply is not None and not join_reply.done():
                self._joined = frame.payload.get("status") == "ok"
                join_reply.set_result(frame.payload)
            return None

        if frame.topic != self._topic:
            return None

        if frame.event in (PHX_ERROR, PHX_CLOSE):
            return f"channel {frame.event}"

        event = decode_change(frame)
        if event is None:
            return None
        self._logger.debug(
            "Realtime change topic=%s resource=%s kind=%s id=%s",
            self._topic,
            event.resource,
            event.kind,
            event.record_id,
        )
        self._on_event(event)
        return None


class WebsocketChannelOpener:
    """Production :class:`ChannelOpener` backed by aiohttp websockets."""

    def __init__(
        self,
        config: IcewatchConfig,
        http_session: aiohttp.ClientSession,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._http = http_session
        self._logger = logger or logging.getLogger(__name__)

    async def __call__(
        self,
        topic: str,
        filters: Sequence[ChangeFilter],
        on_event: EventHandler,
        on_close: CloseHandler,
    ) -> RealtimeChannel:
        channel = RealtimeChannel(
            http_session=self._http,
            config=self._config,
            topic=topic,
            filters=filters,
            on_event=on_event,
            on_close=on_close,
            logger=self._logger,
        )
        await channel.open()
        return channel
