"""Stream connection lifecycle tests using scripted sockets."""

import asyncio

import pytest

from conftest import FakeConnector, wait_until
from networking.exceptions import StreamDisconnectError
from streaming.backoff import ReconnectBackoff
from streaming.connection import (
    ConnectionEvent,
    ConnectionState,
    ConnectionStateMachine,
    InvalidTransitionError,
    StreamConnection,
)


def instant_backoff(max_attempts=None):
    return ReconnectBackoff(initial_delay=0, max_delay=0, jitter=0, max_attempts=max_attempts)


# ============================================================================
# State machine
# ============================================================================

def test_state_machine_happy_path_and_reconnect():
    transitions = []
    machine = ConnectionStateMachine(on_transition=lambda old, new, event: transitions.append((old, new)))

    machine.handle(ConnectionEvent.CONNECT)
    machine.handle(ConnectionEvent.OPENED)
    assert machine.state is ConnectionState.CONNECTED

    machine.handle(ConnectionEvent.HEARTBEAT_TIMEOUT)
    assert machine.state is ConnectionState.DISCONNECTED
    assert machine.should_reconnect

    machine.handle(ConnectionEvent.CONNECT)
    machine.handle(ConnectionEvent.CONNECT_FAILED)
    assert machine.state is ConnectionState.DISCONNECTED

    assert transitions[:3] == [
        (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
        (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
        (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
    ]


@pytest.mark.parametrize(
    "state_events,event",
    [
        ([], ConnectionEvent.OPENED),
        ([], ConnectionEvent.SOCKET_CLOSED),
        ([ConnectionEvent.CONNECT], ConnectionEvent.CONNECT),
        ([ConnectionEvent.CONNECT, ConnectionEvent.OPENED], ConnectionEvent.CONNECT),
    ],
)
def test_state_machine_rejects_illegal_transitions(state_events, event):
    machine = ConnectionStateMachine()
    for prior in state_events:
        machine.handle(prior)
    with pytest.raises(InvalidTransitionError):
        machine.handle(event)


def test_closing_is_terminal():
    machine = ConnectionStateMachine()
    machine.handle(ConnectionEvent.CONNECT)
    machine.handle(ConnectionEvent.SHUTDOWN)
    assert machine.state is ConnectionState.CLOSING
    assert not machine.should_reconnect

    machine.handle(ConnectionEvent.SHUTDOWN)
    assert machine.state is ConnectionState.CLOSING
    with pytest.raises(InvalidTransitionError):
        machine.handle(ConnectionEvent.CONNECT)


# ============================================================================
# Socket loop
# ============================================================================

@pytest.mark.asyncio
async def test_frames_delivered_in_order_and_pending_sends_flushed():
    connector = FakeConnector()
    received = []
    opened = []

    connection = StreamConnection(
        "wss://stream.test/stream",
        on_message=lambda conn, payload: received.append(payload),
        on_opened=lambda conn: opened.append(conn.connect_count),
        connector=connector,
        backoff=instant_backoff(),
        heartbeat_interval=0,
    )
    await connection.send({"method": "SUBSCRIBE", "params": ["a@trade"], "id": 1})
    assert connection.pending_messages == 1

    await connection.start()
    await connection.wait_connected(timeout=1)
    ws = connector.sockets[0]
    await wait_until(lambda: opened == [1])
    assert ws.sent == [{"method": "SUBSCRIBE", "params": ["a@trade"], "id": 1}]

    for i in range(5):
        ws.feed({"n": i})
    ws.feed("not json")
    ws.feed({"n": 5})
    await wait_until(lambda: len(received) == 6)
    assert [item["n"] for item in received] == [0, 1, 2, 3, 4, 5]

    await connection.shutdown()
    assert connection.state is ConnectionState.CLOSING
    assert ws.closed


@pytest.mark.asyncio
async def test_reconnects_after_socket_drop():
    connector = FakeConnector()
    opened = []
    connection = StreamConnection(
        "wss://stream.test/stream",
        on_message=lambda conn, payload: None,
        on_opened=lambda conn: opened.append(conn.connect_count),
        connector=connector,
        backoff=instant_backoff(),
        heartbeat_interval=0,
    )
    await connection.start()
    await wait_until(lambda: opened == [1])

    connector.sockets[0].drop()
    await wait_until(lambda: opened == [1, 2])
    assert len(connector.sockets) == 2
    assert connection.is_connected

    await connection.shutdown()


@pytest.mark.asyncio
async def test_connect_failures_back_off_then_succeed():
    connector = FakeConnector(failures=2)
    connection = StreamConnection(
        "wss://stream.test/stream",
        on_message=lambda conn, payload: None,
        connector=connector,
        backoff=instant_backoff(),
        heartbeat_interval=0,
    )
    await connection.start()
    await connection.wait_connected(timeout=1)
    assert connector.attempts == 3

    await connection.shutdown()


@pytest.mark.asyncio
async def test_missing_pong_triggers_reconnect():
    connector = FakeConnector()
    opened = []
    connection = StreamConnection(
        "wss://stream.test/stream",
        on_message=lambda conn, payload: None,
        on_opened=lambda conn: opened.append(conn.connect_count),
        connector=connector,
        backoff=instant_backoff(),
        heartbeat_interval=0.01,
        heartbeat_timeout=0.01,
    )
    await connection.start()
    await wait_until(lambda: opened == [1])

    connector.sockets[0].pong = False
    await wait_until(lambda: len(opened) == 2)
    assert connector.sockets[0].closed

    await connection.shutdown()


@pytest.mark.asyncio
async def test_exhausted_reconnects_report_fatal_error():
    connector = FakeConnector(fail_forever=True)
    fatal = []
    connection = StreamConnection(
        "wss://stream.test/stream",
        on_message=lambda conn, payload: None,
        on_fatal=lambda conn, error: fatal.append(error),
        connector=connector,
        backoff=instant_backoff(max_attempts=2),
        heartbeat_interval=0,
    )
    await connection.start()
    await wait_until(lambda: fatal)

    assert isinstance(fatal[0], StreamDisconnectError)
    assert connector.attempts == 3
    assert connection.state is ConnectionState.DISCONNECTED

    await connection.shutdown()


@pytest.mark.asyncio
async def test_shutdown_stops_reconnecting():
    connector = FakeConnector()
    connection = StreamConnection(
        "wss://stream.test/stream",
        on_message=lambda conn, payload: None,
        connector=connector,
        backoff=instant_backoff(),
        heartbeat_interval=0,
    )
    await connection.start()
    await connection.wait_connected(timeout=1)
    await connection.shutdown()
    await asyncio.sleep(0.02)

    assert len(connector.sockets) == 1
    assert not await connection.send({"method": "SUBSCRIBE", "params": [], "id": 9})
    await connection.shutdown()
