"""Phoenix v1 JSON protocol client for the Supabase Realtime service.

One :class:`RealtimeSocket` multiplexes every :class:`PhoenixChannel` over a
single websocket. The socket connects lazily on the first subscribe, keeps the
connection alive with heartbeats on the ``phoenix`` topic and routes replies to
the request that is waiting for them by ``ref``.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import ssl
from collections import defaultdict
from collections.abc import Mapping
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from rtprobe.domain.transport import (
    BroadcastHandler,
    ChangeHandler,
    ChangeNotification,
    StatusCallback,
    SubscribeStatus,
)
from rtprobe.infrastructure.errors import TransportError, error_message
from rtprobe.infrastructure.logging import BoundLogger, get_logger, log_event
from rtprobe.integrations.supabase.models import (
    EVENT_BROADCAST,
    EVENT_CLOSE,
    EVENT_ERROR,
    EVENT_HEARTBEAT,
    EVENT_JOIN,
    EVENT_LEAVE,
    EVENT_POSTGRES_CHANGES,
    EVENT_REPLY,
    EVENT_SYSTEM,
    PHOENIX_TOPIC,
    BroadcastConfig,
    JoinConfig,
    JoinPayload,
    PhoenixMessage,
    PostgresChangeData,
    PostgresChangesFilter,
)

PROTOCOL_VERSION = "1.0.0"
REALTIME_PATH = "/realtime/v1/websocket"
TOPIC_PREFIX = "realtime:"
HEARTBEAT_INTERVAL = 25.0
DEFAULT_OPEN_TIMEOUT = 10.0
DEFAULT_JOIN_TIMEOUT = 10.0
DEFAULT_PUSH_TIMEOUT = 10.0

SEND_OK = "ok"
SEND_TIMED_OUT = "timed out"
SEND_ERROR = "error"

Connector = Callable[..., Any]


def build_endpoint(url: str, api_key: str) -> str:
    """Return the realtime websocket endpoint for a project URL."""

    base = url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    query = urlencode({"apikey": api_key, "vsn": PROTOCOL_VERSION})
    return f"{base}{REALTIME_PATH}?{query}"


class RealtimeSocket:
    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        ssl_context: Optional[ssl.SSLContext] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
        connector: Optional[Connector] = None,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        self.endpoint = build_endpoint(url, api_key)
        self._ssl_context = ssl_context
        self._heartbeat_interval = heartbeat_interval
        self._open_timeout = open_timeout
        self._connector = connector or websockets.connect
        self._logger = logger or get_logger("rtprobe.supabase.realtime")
        self._ws: Any = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._heartbeat: Optional[asyncio.Task[None]] = None
        self._connect_lock = asyncio.Lock()
        self._refs = itertools.count(1)
        self._pending: dict[str, asyncio.Future[PhoenixMessage]] = {}
        self._channels: dict[str, "PhoenixChannel"] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def channels(self) -> tuple["PhoenixChannel", ...]:
        return tuple(self._channels.values())

    def make_ref(self) -> str:
        return str(next(self._refs))

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            kwargs: dict[str, Any] = {"open_timeout": self._open_timeout, "ping_interval": None}
            if self._ssl_context is not None and self.endpoint.startswith("wss://"):
                kwargs["ssl"] = self._ssl_context
            self._ws = await self._connector(self.endpoint, **kwargs)
            self._reader = asyncio.create_task(self._read_loop(self._ws))
            self._heartbeat = asyncio.create_task(self._heartbeat_loop())
            log_event(self._logger, "realtime.connected", level=logging.DEBUG)

    async def close(self) -> None:
        # Detach before the first await so a concurrent connect opens a fresh socket.
        tasks = [task for task in (self._heartbeat, self._reader) if task is not None]
        self._heartbeat = self._reader = None
        ws, self._ws = self._ws, None
        self._fail_pending("realtime socket closed")
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if ws is not None:
            await ws.close()
            log_event(self._logger, "realtime.disconnected", level=logging.DEBUG)

    async def push(self, message: PhoenixMessage) -> None:
        if self._ws is None:
            raise TransportError("realtime socket is not connected")
        try:
            await self._ws.send(message.model_dump_json())
        except ConnectionClosed as exc:
            raise TransportError(f"realtime socket closed: {exc}") from exc

    async def request(self, message: PhoenixMessage, *, timeout: float) -> PhoenixMessage:
        """Push ``message`` and wait for the ``phx_reply`` carrying its ref."""

        if message.ref is None:
            raise ValueError("request messages need a ref")
        future: asyncio.Future[PhoenixMessage] = asyncio.get_running_loop().create_future()
        self._pending[message.ref] = future
        try:
            await self.push(message)
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._pending.pop(message.ref, None)

    def attach(self, channel: "PhoenixChannel") -> None:
        self._channels[channel.topic] = channel

    def detach(self, channel: "PhoenixChannel") -> None:
        if self._channels.get(channel.topic) is channel:
            del self._channels[channel.topic]

    async def _read_loop(self, ws: Any) -> None:
        reason = "connection closed"
        try:
            async for raw in ws:
                try:
                    message = PhoenixMessage.model_validate_json(raw)
                except ValidationError:
                    log_event(self._logger, "realtime.frame_invalid", level=logging.DEBUG)
                    continue
                self._dispatch(message)
        except ConnectionClosed as exc:
            reason = f"connection closed: {exc}"
        except Exception as exc:
            reason = f"connection failed: {error_message(exc)}"
            log_event(
                self._logger,
                "realtime.reader_failed",
                level=logging.ERROR,
                error=error_message(exc),
            )
        self._handle_disconnect(ws, reason)

    def _dispatch(self, message: PhoenixMessage) -> None:
        if message.event == EVENT_REPLY and message.ref is not None:
            future = self._pending.get(message.ref)
            if future is not None:
                if not future.done():
                    future.set_result(message)
                return
        channel = self._channels.get(message.topic)
        if channel is not None:
            channel.handle_message(message)

    def _handle_disconnect(self, ws: Any, reason: str) -> None:
        if self._ws is not ws:
            return
        self._ws = None
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        log_event(self._logger, "realtime.connection_lost", level=logging.WARNING, reason=reason)
        self._fail_pending(reason)
        for channel in list(self._channels.values()):
            channel.handle_socket_closed(reason)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError(reason))
        self._pending.clear()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            heartbeat = PhoenixMessage(
                topic=PHOENIX_TOPIC, event=EVENT_HEARTBEAT, ref=self.make_ref()
            )
            try:
                await self.push(heartbeat)
            except TransportError:
                return


class PhoenixChannel:
    """A realtime channel bound to one topic of a :class:`RealtimeSocket`."""

    def __init__(
        self,
        socket: RealtimeSocket,
        name: str,
        *,
        broadcast_self: bool = False,
        broadcast_ack: bool = False,
        access_token: Optional[str] = None,
        join_timeout: float = DEFAULT_JOIN_TIMEOUT,
        push_timeout: float = DEFAULT_PUSH_TIMEOUT,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        self.name = name
        self.topic = name if name.startswith(TOPIC_PREFIX) else f"{TOPIC_PREFIX}{name}"
        self.broadcast_self = broadcast_self
        self.broadcast_ack = broadcast_ack
        self.joined = False
        self._socket = socket
        self._access_token = access_token
        self._join_timeout = join_timeout
        self._push_timeout = push_timeout
        self._logger = (logger or get_logger("rtprobe.supabase.realtime")).bind(topic=self.topic)
        self._broadcast_handlers: dict[str, list[BroadcastHandler]] = defaultdict(list)
        self._change_bindings: list[tuple[PostgresChangesFilter, ChangeHandler]] = []
        self._callback: Optional[StatusCallback] = None
        self._join_ref: Optional[str] = None
        self._join_task: Optional[asyncio.Task[None]] = None

    def on_broadcast(self, event: str, handler: BroadcastHandler) -> "PhoenixChannel":
        self._broadcast_handlers[event].append(handler)
        return self

    def on_postgres_changes(
        self,
        event: str,
        *,
        schema: str,
        table: str,
        handler: ChangeHandler,
    ) -> "PhoenixChannel":
        binding = PostgresChangesFilter(event=event, schema_=schema, table=table)
        self._change_bindings.append((binding, handler))
        return self

    def join_payload(self) -> JoinPayload:
        return JoinPayload(
            config=JoinConfig(
                broadcast=BroadcastConfig(self_=self.broadcast_self, ack=self.broadcast_ack),
                postgres_changes=[binding for binding, _ in self._change_bindings],
            ),
            access_token=self._access_token,
        )

    async def subscribe(self, callback: Optional[StatusCallback] = None) -> None:
        """Start joining in the background; the outcome goes to ``callback``."""

        if self._join_task is not None:
            raise TransportError(f"channel {self.name} was already subscribed")
        self._callback = callback
        self._join_task = asyncio.create_task(self._join())

    async def _join(self) -> None:
        try:
            await self._socket.connect()
        except Exception as exc:
            self._notify(
                SubscribeStatus.CHANNEL_ERROR,
                TransportError(f"realtime connect failed: {error_message(exc)}"),
            )
            return

        self._socket.attach(self)
        ref = self._socket.make_ref()
        self._join_ref = ref
        message = PhoenixMessage(
            topic=self.topic,
            event=EVENT_JOIN,
            payload=self.join_payload().to_wire(),
            ref=ref,
            join_ref=ref,
        )
        try:
            reply = await self._socket.request(message, timeout=self._join_timeout)
        except asyncio.TimeoutError:
            self._notify(SubscribeStatus.TIMED_OUT, None)
            return
        except TransportError as exc:
            self._notify(SubscribeStatus.CHANNEL_ERROR, exc)
            return

        if reply.reply_status == "ok":
            self.joined = True
            self._notify(SubscribeStatus.SUBSCRIBED, None)
        else:
            reason = reply.reply_response.get("reason") or "join rejected"
            self._notify(SubscribeStatus.CHANNEL_ERROR, TransportError(str(reason)))

    def _notify(self, status: SubscribeStatus, error: Optional[BaseException]) -> None:
        log_event(
            self._logger,
            "realtime.channel_status",
            level=logging.DEBUG,
            status=status.value,
            error=error_message(error) if error is not None else None,
        )
        if self._callback is not None:
            self._callback(status, error)

    async def send_broadcast(
        self, event: str, payload: Mapping[str, Any], *, ack: bool = True
    ) -> str:
        if not self.joined:
            return SEND_ERROR
        message = PhoenixMessage(
            topic=self.topic,
            event=EVENT_BROADCAST,
            payload={"type": EVENT_BROADCAST, "event": event, "payload": dict(payload)},
            ref=self._socket.make_ref(),
            join_ref=self._join_ref,
        )
        try:
            if ack and self.broadcast_ack:
                reply = await self._socket.request(message, timeout=self._push_timeout)
                return SEND_OK if reply.reply_status == "ok" else SEND_ERROR
            await self._socket.push(message)
        except asyncio.TimeoutError:
            return SEND_TIMED_OUT
        except TransportError:
            return SEND_ERROR
        return SEND_OK

    async def leave(self) -> None:
        if self._join_task is not None and not self._join_task.done():
            self._join_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._join_task
        if self.joined and self._socket.connected:
            with contextlib.suppress(TransportError):
                await self._socket.push(
                    PhoenixMessage(
                        topic=self.topic,
                        event=EVENT_LEAVE,
                        ref=self._socket.make_ref(),
                        join_ref=self._join_ref,
                    )
                )
        self.joined = False
        self._socket.detach(self)

    def handle_message(self, message: PhoenixMessage) -> None:
        if message.event == EVENT_BROADCAST:
            self._dispatch_broadcast(message.payload)
        elif message.event == EVENT_POSTGRES_CHANGES:
            self._dispatch_change(message.payload)
        elif message.event == EVENT_CLOSE:
            self.joined = False
            self._notify(SubscribeStatus.CLOSED, None)
        elif message.event == EVENT_ERROR:
            self.joined = False
            self._notify(SubscribeStatus.CHANNEL_ERROR, TransportError("channel error"))
        elif message.event == EVENT_SYSTEM and message.payload.get("status") == "error":
            reason = message.payload.get("message") or "system error"
            self._notify(SubscribeStatus.CHANNEL_ERROR, TransportError(str(reason)))

    def handle_socket_closed(self, reason: str) -> None:
        was_joined, self.joined = self.joined, False
        if was_joined:
            self._notify(SubscribeStatus.CLOSED, TransportError(reason))

    def _dispatch_broadcast(self, payload: Mapping[str, Any]) -> None:
        event = payload.get("event")
        body = payload.get("payload")
        if not isinstance(event, str) or not isinstance(body, Mapping):
            return
        for handler in [*self._broadcast_handlers.get(event, ()), *self._broadcast_handlers.get("*", ())]:
            self._invoke(handler, body)

    def _dispatch_change(self, payload: Mapping[str, Any]) -> None:
        try:
            data = PostgresChangeData.model_validate(payload.get("data") or {})
        except ValidationError:
            log_event(self._logger, "realtime.change_invalid", level=logging.DEBUG)
            return
        notification = ChangeNotification(
            event_type=data.type,
            schema=data.schema_,
            table=data.table,
            record=data.record,
            commit_timestamp=data.commit_timestamp,
        )
        for binding, handler in self._change_bindings:
            if binding.event not in ("*", data.type):
                continue
            if binding.schema_ != data.schema_ or binding.table != data.table:
                continue
            self._invoke(handler, notification)

    def _invoke(self, handler: Callable[[Any], None], argument: Any) -> None:
        try:
            handler(argument)
        except Exception:
            self._logger.exception("Realtime handler raised")


__all__ = [
    "RealtimeSocket",
    "PhoenixChannel",
    "build_endpoint",
    "SEND_OK",
    "SEND_TIMED_OUT",
    "SEND_ERROR",
    "HEARTBEAT_INTERVAL",
]
