"""
One persistent websocket connection with heartbeat and automatic reconnect.

Lifecycle is an explicit state machine driven by discrete events::

    DISCONNECTED --CONNECT--> CONNECTING --OPENED--> CONNECTED
    CONNECTING --CONNECT_FAILED--> DISCONNECTED
    CONNECTED --SOCKET_CLOSED | HEARTBEAT_TIMEOUT--> DISCONNECTED
    any --SHUTDOWN--> CLOSING (terminal)

``ConnectionStateMachine`` holds only the transition rules and can be
exercised with synthetic events. ``StreamConnection`` owns the socket task
that feeds it: it connects, flushes queued outbound messages, notifies its
owner, reads frames in order, pings on a fixed cadence and reconnects with
backoff after every drop until it is shut down or runs out of attempts.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import json
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from helpers.unified_logger import get_stream_logger
from networking.exceptions import ProtocolError, StreamDisconnectError

from .backoff import ReconnectBackoff
from .protocol import decode_frame


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class ConnectionEvent(str, Enum):
    CONNECT = "connect"
    OPENED = "opened"
    CONNECT_FAILED = "connect_failed"
    SOCKET_CLOSED = "socket_closed"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"
    SHUTDOWN = "shutdown"


class InvalidTransitionError(Exception):
    """An event arrived that the current state does not accept."""


TransitionCallback = Callable[[ConnectionState, ConnectionState, ConnectionEvent], None]


class ConnectionStateMachine:
    """Transition table for a stream connection."""

    TRANSITIONS: Dict[tuple, ConnectionState] = {
        (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
        (ConnectionState.CONNECTING, ConnectionEvent.OPENED): ConnectionState.CONNECTED,
        (ConnectionState.CONNECTING, ConnectionEvent.CONNECT_FAILED): ConnectionState.DISCONNECTED,
        (ConnectionState.CONNECTED, ConnectionEvent.SOCKET_CLOSED): ConnectionState.DISCONNECTED,
        (ConnectionState.CONNECTED, ConnectionEvent.HEARTBEAT_TIMEOUT): ConnectionState.DISCONNECTED,
    }

    def __init__(self, on_transition: Optional[TransitionCallback] = None) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.last_event: Optional[ConnectionEvent] = None
        self._on_transition = on_transition

    @property
    def should_reconnect(self) -> bool:
        return self.state is ConnectionState.DISCONNECTED

    def handle(self, event: ConnectionEvent) -> ConnectionState:
        if event is ConnectionEvent.SHUTDOWN:
            target = ConnectionState.CLOSING
        else:
            target = self.TRANSITIONS.get((self.state, event))
            if target is None:
                raise InvalidTransitionError(f"{event.value} not allowed in state {self.state.value}")

        previous = self.state
        self.state = target
        self.last_event = event
        if self._on_transition and previous is not target:
            self._on_transition(previous, target, event)
        return target


Connector = Callable[[str], Awaitable[Any]]
MessageCallback = Callable[["StreamConnection", Any], Any]
ConnectionCallback = Callable[["StreamConnection"], Any]
FatalCallback = Callable[["StreamConnection", StreamDisconnectError], Any]


async def default_connector(url: str):
    """Open a websocket; heartbeats are handled by ``StreamConnection`` itself."""
    return await websockets.connect(url, ping_interval=None, open_timeout=10, max_size=2 ** 22)


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class StreamConnection:
    """
    A self-healing websocket connection.

    Args:
        url: Websocket endpoint
        on_message: Called (and awaited, if async) with every decoded frame, in receive order
        on_opened: Called after each transition into CONNECTED
        on_fatal: Called once if reconnect attempts are exhausted
        connector: Coroutine opening the socket (injectable for tests)
        backoff: Reconnect policy
        heartbeat_interval: Seconds between pings (<= 0 disables)
        heartbeat_timeout: Seconds to wait for the pong before declaring the socket dead
        logger: Optional logger
        name: Label used in logs
    """

    _ids = itertools.count(1)

    def __init__(
        self,
        url: str,
        *,
        on_message: MessageCallback,
        on_opened: Optional[ConnectionCallback] = None,
        on_fatal: Optional[FatalCallback] = None,
        connector: Optional[Connector] = None,
        backoff: Optional[ReconnectBackoff] = None,
        heartbeat_interval: float = 20.0,
        heartbeat_timeout: float = 10.0,
        logger=None,
        name: Optional[str] = None,
    ) -> None:
        self.url = url
        self.id = next(self._ids)
        self.name = name or f"conn-{self.id}"
        self._on_message = on_message
        self._on_opened = on_opened
        self._on_fatal = on_fatal
        self._connector = connector or default_connector
        self._backoff = backoff or ReconnectBackoff()
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self.logger = logger or get_stream_logger("connection", conn=self.name)

        self._machine = ConnectionStateMachine(on_transition=self._log_transition)
        self._ws: Any = None
        self._pending: Deque[Dict[str, Any]] = deque()
        self._task: Optional[asyncio.Task] = None
        self._connected_event = asyncio.Event()
        self.connect_count = 0
        self.last_message_at: Optional[float] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._machine.state

    @property
    def is_connected(self) -> bool:
        return self._machine.state is ConnectionState.CONNECTED and self._ws is not None

    @property
    def pending_messages(self) -> int:
        return len(self._pending)

    def _log_transition(self, previous: ConnectionState, current: ConnectionState, event: ConnectionEvent) -> None:
        self.logger.debug(f"[{self.name}] {previous.value} -> {current.value} ({event.value})")

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected_event.wait(), timeout)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"stream-{self.name}")

    async def send(self, message: Dict[str, Any]) -> bool:
        """
        Send a control message, or queue it until the next CONNECTED.

        Returns:
            True if written to the socket now, False if queued or dropped
        """
        if self.state is ConnectionState.CLOSING:
            return False
        if not self.is_connected:
            self._pending.append(message)
            return False
        try:
            await self._ws.send(json.dumps(message))
            return True
        except (ConnectionClosed, OSError) as exc:
            # The read loop notices the drop; the owner resubscribes on reconnect.
            self.logger.warning(f"[{self.name}] send failed: {exc}")
            return False

    async def shutdown(self) -> None:
        """Close for good. Idempotent."""
        if self.state is not ConnectionState.CLOSING:
            self._machine.handle(ConnectionEvent.SHUTDOWN)
        self._pending.clear()
        await self._close_socket()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.logger.info(f"[{self.name}] shut down")

    # ------------------------------------------------------------------
    # Socket task
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while self.state is not ConnectionState.CLOSING:
            self._machine.handle(ConnectionEvent.CONNECT)
            try:
                ws = await self._connector(self.url)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self.state is ConnectionState.CLOSING:
                    break
                self.logger.warning(f"[{self.name}] connect to {self.url} failed: {exc}")
                self._machine.handle(ConnectionEvent.CONNECT_FAILED)
            else:
                if self.state is ConnectionState.CLOSING:
                    await self._close_quietly(ws)
                    break
                await self._serve(ws)

            if self.state is ConnectionState.CLOSING:
                break
            if self._backoff.exhausted:
                await self._give_up()
                return
            delay = self._backoff.next_delay()
            self.logger.warning(
                f"[{self.name}] reconnecting in {delay:.2f}s (attempt {self._backoff.attempts})"
            )
            await asyncio.sleep(delay)

    async def _serve(self, ws: Any) -> None:
        self._ws = ws
        self._machine.handle(ConnectionEvent.OPENED)
        self._backoff.connected()
        self.connect_count += 1
        self._connected_event.set()
        self.logger.info(f"[{self.name}] connected to {self.url} (#{self.connect_count})")

        event = ConnectionEvent.SOCKET_CLOSED
        tasks = []
        try:
            await self._flush_pending()
            if self._on_opened is not None:
                try:
                    await _maybe_await(self._on_opened(self))
                except Exception as exc:
                    self.logger.error(f"[{self.name}] on_opened callback failed: {exc}")

            reader = asyncio.create_task(self._read_loop(ws))
            tasks.append(reader)
            heartbeat = None
            if self._heartbeat_interval and self._heartbeat_interval > 0:
                heartbeat = asyncio.create_task(self._heartbeat_loop(ws))
                tasks.append(heartbeat)

            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if heartbeat is not None and heartbeat in done and not heartbeat.cancelled() and heartbeat.result():
                event = ConnectionEvent.HEARTBEAT_TIMEOUT
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            for task in tasks:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as exc:
                    self.logger.error(f"[{self.name}] background task failed: {exc}")
            self._connected_event.clear()
            self._backoff.disconnected()
            await self._close_socket()
            if self.state is ConnectionState.CONNECTED:
                self._machine.handle(event)
                self.logger.warning(f"[{self.name}] disconnected ({event.value})")

    async def _flush_pending(self) -> None:
        while self._pending and self.is_connected:
            message = self._pending.popleft()
            if not await self.send(message):
                break

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self.last_message_at = time.monotonic()
                try:
                    payload = decode_frame(raw)
                except ProtocolError as exc:
                    self.logger.warning(f"[{self.name}] dropped frame: {exc}")
                    continue
                try:
                    await _maybe_await(self._on_message(self, payload))
                except Exception as exc:
                    self.logger.error(f"[{self.name}] message handler failed: {exc}")
        except ConnectionClosed as exc:
            self.logger.info(f"[{self.name}] socket closed: {exc}")
        except OSError as exc:
            self.logger.warning(f"[{self.name}] socket error: {exc}")

    async def _heartbeat_loop(self, ws: Any) -> bool:
        """Ping periodically. Returns True on a missed pong, False if the socket closed."""
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                pong_waiter = await ws.ping()
                await asyncio.wait_for(pong_waiter, self._heartbeat_timeout)
            except asyncio.TimeoutError:
                self.logger.warning(f"[{self.name}] no pong within {self._heartbeat_timeout:.1f}s")
                return True
            except (ConnectionClosed, OSError):
                return False

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_quietly(ws)

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except (ConnectionClosed, OSError, RuntimeError) as exc:
            self.logger.debug(f"[{self.name}] error while closing socket: {exc}")

    async def _give_up(self) -> None:
        error = StreamDisconnectError(
            f"{self.name}: reconnect attempts exhausted after {self._backoff.attempts} tries"
        )
        self.logger.error(str(error))
        if self._on_fatal is not None:
            try:
                await _maybe_await(self._on_fatal(self, error))
            except Exception as exc:
                self.logger.error(f"[{self.name}] on_fatal callback failed: {exc}")


__all__ = [
    "ConnectionEvent",
    "ConnectionState",
    "ConnectionStateMachine",
    "InvalidTransitionError",
    "StreamConnection",
    "default_connector",
]
