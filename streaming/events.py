"""
Consumer-facing stream primitives.

A subscriber receives an ``EventChannel``: an async iterator yielding
``StreamEvent`` items in the order the connection received them, with an
occasional ``GapDetected`` marker when update ids show that messages were
missed (typically across a reconnect).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union


@dataclass(frozen=True)
class StreamEvent:
    """
    One decoded stream message.

    Attributes:
        stream: Subscription identifier (e.g. ``btcusdt@depth``)
        data: Decoded payload
        update_id: Last exchange update id carried by the message, if any
        first_update_id: First update id (depth diffs cover a range), if any
        received_at: Local receive time (epoch seconds)
    """

    stream: str
    data: Any
    update_id: Optional[int] = None
    first_update_id: Optional[int] = None
    received_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class GapDetected:
    """
    Update ids jumped past ``last_known_id + 1``.

    The consumer should resynchronise (e.g. with a REST depth snapshot).
    """

    stream: str
    last_known_id: int
    next_id: int

    @property
    def missing(self) -> int:
        return self.next_id - self.last_known_id - 1


ChannelItem = Union[StreamEvent, GapDetected]


class ChannelClosed(Exception):
    """Raised by ``EventChannel.get`` once the channel is closed and drained."""


_CLOSED = object()


class EventChannel:
    """Unbounded FIFO of stream items for one consumer."""

    def __init__(self, stream: str) -> None:
        self.stream = stream
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def qsize(self) -> int:
        return self._queue.qsize() - (1 if self._closed else 0)

    def publish(self, item: ChannelItem) -> bool:
        """Enqueue ``item``; returns False if the channel is already closed."""
        if self._closed:
            return False
        self._queue.put_nowait(item)
        return True

    def close(self, error: Optional[BaseException] = None) -> None:
        """Stop the channel. Items already queued are still delivered first."""
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> ChannelItem:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other reader
            self._queue.put_nowait(_CLOSED)
            if self._error is not None:
                raise self._error
            raise ChannelClosed(self.stream)
        return item

    def drain(self) -> List[ChannelItem]:
        """Return everything queued right now without waiting."""
        items: List[ChannelItem] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            items.append(item)
        return items

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> ChannelItem:
        try:
            return await self.get()
        except ChannelClosed:
            raise StopAsyncIteration

    def __repr__(self) -> str:
        return f"EventChannel(stream={self.stream!r}, queued={self.qsize()}, closed={self._closed})"


__all__ = ["ChannelClosed", "ChannelItem", "EventChannel", "GapDetected", "StreamEvent"]
