"""
Stream multiplexer: many subscriptions over a few combined-stream sockets.

All bookkeeping (subscriptions, connection assignment, pending control
requests, last delivered update ids) is owned by a single task that drains a
command queue. Public calls and connection callbacks only enqueue commands,
so no lock is needed and frames are routed in the order each connection
received them.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from helpers.unified_logger import get_stream_logger
from networking.exceptions import ProtocolError, StreamDisconnectError, ValidationError

from .backoff import ReconnectBackoff
from .connection import Connector, StreamConnection
from .events import EventChannel, GapDetected, StreamEvent
from .protocol import (
    AckFrame,
    DataFrame,
    ErrorFrame,
    SUBSCRIBE,
    UNSUBSCRIBE,
    chunked,
    classify_frame,
    control_message,
    update_range,
)

DEFAULT_MAX_STREAMS_PER_CONNECTION = 1024


@dataclass
class Subscription:
    stream: str
    slot: "_ConnectionSlot"
    channels: List[EventChannel] = field(default_factory=list)
    last_update_id: Optional[int] = None
    delivered: int = 0
    gaps: int = 0

    def close(self, error: Optional[BaseException] = None) -> None:
        for channel in self.channels:
            channel.close(error)
        self.channels.clear()


@dataclass
class _ConnectionSlot:
    connection: StreamConnection
    streams: Set[str] = field(default_factory=set)


@dataclass
class _Command:
    kind: str
    stream: Optional[str] = None
    connection: Optional[StreamConnection] = None
    payload: Any = None
    future: Optional[asyncio.Future] = None


class StreamMultiplexer:
    """
    Route combined-stream frames to per-subscription channels.

    Args:
        url: Combined stream endpoint (``wss://host/stream``)
        max_streams_per_connection: Streams assigned to one socket before opening another
        connector: Websocket opener handed to each ``StreamConnection``
        backoff_factory: Builds the reconnect policy for each new connection
        heartbeat_interval: Ping cadence for each connection
        heartbeat_timeout: Pong deadline for each connection
        logger: Optional logger
    """

    def __init__(
        self,
        url: str,
        *,
        max_streams_per_connection: int = DEFAULT_MAX_STREAMS_PER_CONNECTION,
        connector: Optional[Connector] = None,
        backoff_factory: Optional[Callable[[], ReconnectBackoff]] = None,
        heartbeat_interval: float = 20.0,
        heartbeat_timeout: float = 10.0,
        logger=None,
    ) -> None:
        if max_streams_per_connection < 1:
            raise ValueError("max_streams_per_connection must be >= 1")
        self.url = url
        self.max_streams_per_connection = max_streams_per_connection
        self._connector = connector
        self._backoff_factory = backoff_factory or ReconnectBackoff
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self.logger = logger or get_stream_logger("multiplexer")

        self._commands: asyncio.Queue = asyncio.Queue()
        self._owner: Optional[asyncio.Task] = None
        self._closed = False

        # Owner-task state
        self._subscriptions: Dict[str, Subscription] = {}
        self._slots: Dict[int, _ConnectionSlot] = {}
        self._requests: Dict[int, Tuple[str, List[str], int]] = {}
        self._request_ids = itertools.count(1)
        self._connection_names = itertools.count(1)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connection_count(self) -> int:
        return len(self._slots)

    @property
    def pending_requests(self) -> int:
        """Control requests sent but not yet acknowledged."""
        return len(self._requests)

    def active_subscriptions(self) -> List[str]:
        return sorted(self._subscriptions)

    def last_update_id(self, stream: str) -> Optional[int]:
        subscription = self._subscriptions.get(stream)
        return subscription.last_update_id if subscription else None

    async def start(self) -> None:
        if self._closed:
            raise StreamDisconnectError("multiplexer is closed")
        if self._owner is None:
            self._owner = asyncio.create_task(self._run(), name="stream-multiplexer")

    async def subscribe(self, stream: str) -> EventChannel:
        """Subscribe to ``stream`` and return a channel of its events."""
        if not stream:
            raise ValueError("stream name is required")
        return await self._request(_Command("subscribe", stream=stream))

    async def unsubscribe(self, stream: str) -> bool:
        """Drop ``stream`` and close its channels. Returns False if it was not subscribed."""
        if self._closed:
            return False
        return await self._request(_Command("unsubscribe", stream=stream))

    async def close(self) -> None:
        """Shut down every connection and close every channel. Idempotent."""
        if self._closed:
            return
        self._closed = True
        owner, self._owner = self._owner, None
        if owner is not None:
            owner.cancel()
            try:
                await owner
            except asyncio.CancelledError:
                pass
        self._fail_pending_commands()

        for slot in list(self._slots.values()):
            await slot.connection.shutdown()
        self._slots.clear()
        for subscription in self._subscriptions.values():
            subscription.close()
        self._subscriptions.clear()
        self._requests.clear()
        self.logger.info("Stream multiplexer closed")

    async def __aenter__(self) -> "StreamMultiplexer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------

    async def _request(self, command: _Command) -> Any:
        await self.start()
        command.future = asyncio.get_running_loop().create_future()
        self._commands.put_nowait(command)
        return await command.future

    def _fail_pending_commands(self) -> None:
        while True:
            try:
                command = self._commands.get_nowait()
            except asyncio.QueueEmpty:
                break
            if command.future is not None and not command.future.done():
                command.future.set_exception(StreamDisconnectError("multiplexer is closed"))

    async def _on_message(self, connection: StreamConnection, payload: Any) -> None:
        self._commands.put_nowait(_Command("frame", connection=connection, payload=payload))

    async def _on_opened(self, connection: StreamConnection) -> None:
        self._commands.put_nowait(_Command("opened", connection=connection))

    async def _on_fatal(self, connection: StreamConnection, error: StreamDisconnectError) -> None:
        self._commands.put_nowait(_Command("fatal", connection=connection, payload=error))

    async def _run(self) -> None:
        handlers = {
            "subscribe": self._handle_subscribe,
            "unsubscribe": self._handle_unsubscribe,
            "frame": self._handle_frame,
            "opened": self._handle_opened,
            "fatal": self._handle_fatal,
        }
        while True:
            command = await self._commands.get()
            try:
                result = await handlers[command.kind](command)
            except asyncio.CancelledError:
                if command.future is not None and not command.future.done():
                    command.future.set_exception(StreamDisconnectError("multiplexer is closed"))
                raise
            except Exception as exc:
                if command.future is not None and not command.future.done():
                    command.future.set_exception(exc)
                else:
                    self.logger.exception(f"Error handling {command.kind} command: {exc}")
                continue
            if command.future is not None and not command.future.done():
                command.future.set_result(result)

    # ------------------------------------------------------------------
    # Owner-task handlers
    # ------------------------------------------------------------------

    async def _handle_subscribe(self, command: _Command) -> EventChannel:
        stream = command.stream
        channel = EventChannel(stream)

        existing = self._subscriptions.get(stream)
        if existing is not None:
            existing.channels.append(channel)
            self.logger.debug(f"Added consumer to {stream} ({len(existing.channels)} total)")
            return channel

        slot = await self._slot_with_capacity()
        subscription = Subscription(stream=stream, slot=slot, channels=[channel])
        self._subscriptions[stream] = subscription
        slot.streams.add(stream)
        await self._send_control(slot, SUBSCRIBE, [stream])
        self.logger.info(f"Subscribed {stream} on {slot.connection.name}")
        return channel

    async def _handle_unsubscribe(self, command: _Command) -> bool:
        subscription = self._subscriptions.pop(command.stream, None)
        if subscription is None:
            return False
        subscription.close()
        slot = subscription.slot
        slot.streams.discard(command.stream)
        if not slot.streams:
            self._slots.pop(slot.connection.id, None)
            self._forget_requests(slot.connection.id)
            await slot.connection.shutdown()
        else:
            await self._send_control(slot, UNSUBSCRIBE, [command.stream])
        self.logger.info(f"Unsubscribed {command.stream}")
        return True

    async def _handle_opened(self, command: _Command) -> None:
        # Acks for requests sent on the previous socket will never arrive
        self._forget_requests(command.connection.id)
        slot = self._slots.get(command.connection.id)
        if slot is None or not slot.streams:
            return
        streams = sorted(slot.streams)
        await self._send_control(slot, SUBSCRIBE, streams)
        self.logger.info(f"Resubscribed {len(streams)} stream(s) on {slot.connection.name}")

    async def _handle_fatal(self, command: _Command) -> None:
        slot = self._slots.pop(command.connection.id, None)
        self._forget_requests(command.connection.id)
        if slot is None:
            return
        error = command.payload
        for stream in sorted(slot.streams):
            subscription = self._subscriptions.pop(stream, None)
            if subscription is not None:
                subscription.close(error)
        self.logger.error(f"{slot.connection.name} gave up; closed {len(slot.streams)} subscription(s)")
        slot.streams.clear()
        await slot.connection.shutdown()

    async def _handle_frame(self, command: _Command) -> None:
        try:
            frame = classify_frame(command.payload)
        except ProtocolError as exc:
            self.logger.warning(f"Dropped frame from {command.connection.name}: {exc}")
            return

        if isinstance(frame, DataFrame):
            self._route(command.connection, frame)
        elif isinstance(frame, AckFrame):
            request = self._requests.pop(frame.request_id, None)
            if request is not None:
                self.logger.debug(f"{request[0]} #{frame.request_id} acknowledged ({len(request[1])} streams)")
        elif isinstance(frame, ErrorFrame):
            self._handle_error_frame(frame)

    def _handle_error_frame(self, frame: ErrorFrame) -> None:
        request = self._requests.pop(frame.request_id, None) if frame.request_id is not None else None
        self.logger.error(f"Stream request #{frame.request_id} rejected: [{frame.code}] {frame.message}")
        if request is None:
            return
        method, streams, _ = request
        if method != SUBSCRIBE:
            return
        error = ValidationError(f"subscription rejected: {frame.message}", code=frame.code)
        for stream in streams:
            subscription = self._subscriptions.pop(stream, None)
            if subscription is None:
                continue
            subscription.slot.streams.discard(stream)
            subscription.close(error)

    def _route(self, connection: StreamConnection, frame: DataFrame) -> None:
        subscription = self._subscriptions.get(frame.stream)
        if subscription is None or subscription.slot.connection is not connection:
            self.logger.debug(f"No subscriber for {frame.stream}; dropped")
            return

        first_id = last_id = None
        update = update_range(frame.stream, frame.data)
        if update is not None:
            first_id, last_id = update
            previous = subscription.last_update_id
            if previous is not None:
                if last_id <= previous:
                    self.logger.debug(f"{frame.stream}: duplicate update {last_id} <= {previous}")
                    return
                if first_id > previous + 1:
                    gap = GapDetected(stream=frame.stream, last_known_id=previous, next_id=first_id)
                    subscription.gaps += 1
                    self.logger.warning(f"{frame.stream}: gap of {gap.missing} update(s) after {previous}")
                    self._publish(subscription, gap)
            subscription.last_update_id = last_id

        event = StreamEvent(
            stream=frame.stream,
            data=frame.data,
            update_id=last_id,
            first_update_id=first_id,
        )
        subscription.delivered += 1
        self._publish(subscription, event)

    @staticmethod
    def _publish(subscription: Subscription, item) -> None:
        for channel in subscription.channels:
            channel.publish(item)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def _slot_with_capacity(self) -> _ConnectionSlot:
        for slot in self._slots.values():
            if len(slot.streams) < self.max_streams_per_connection:
                return slot

        connection = StreamConnection(
            self.url,
            on_message=self._on_message,
            on_opened=self._on_opened,
            on_fatal=self._on_fatal,
            connector=self._connector,
            backoff=self._backoff_factory(),
            heartbeat_interval=self._heartbeat_interval,
            heartbeat_timeout=self._heartbeat_timeout,
            name=f"stream-{next(self._connection_names)}",
        )
        slot = _ConnectionSlot(connection=connection)
        self._slots[connection.id] = slot
        await connection.start()
        self.logger.info(f"Opened {connection.name} ({len(self._slots)} connection(s))")
        return slot

    def _forget_requests(self, connection_id: int) -> None:
        stale = [rid for rid, (_, _, owner) in self._requests.items() if owner == connection_id]
        for request_id in stale:
            del self._requests[request_id]

    async def _send_control(self, slot: _ConnectionSlot, method: str, streams: List[str]) -> None:
        # Disconnected slots are resubscribed in full once they reopen
        if not slot.connection.is_connected:
            return
        for batch in chunked(streams):
            request_id = next(self._request_ids)
            self._requests[request_id] = (method, batch, slot.connection.id)
            await slot.connection.send(control_message(method, batch, request_id))


__all__ = ["DEFAULT_MAX_STREAMS_PER_CONNECTION", "StreamMultiplexer", "Subscription"]
