"""
Websocket streaming: self-healing connections and a subscription multiplexer.
"""

from .backoff import ReconnectBackoff
from .connection import (
    ConnectionEvent,
    ConnectionState,
    ConnectionStateMachine,
    InvalidTransitionError,
    StreamConnection,
)
from .events import ChannelClosed, EventChannel, GapDetected, StreamEvent
from .multiplexer import StreamMultiplexer

__all__ = [
    "ChannelClosed",
    "ConnectionEvent",
    "ConnectionState",
    "ConnectionStateMachine",
    "EventChannel",
    "GapDetected",
    "InvalidTransitionError",
    "ReconnectBackoff",
    "StreamConnection",
    "StreamEvent",
    "StreamMultiplexer",
]
