"""
Exchange clock used for request timestamps.

Signed requests are rejected when their timestamp falls outside the
exchange's ``recvWindow``. The clock keeps an offset between local time and
the exchange's reported server time, refreshed on demand (e.g. after a
``-1021`` timestamp error).
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Optional


class ServerClock:
    """Millisecond clock corrected by the last measured server offset."""

    def __init__(self, time_fn: Callable[[], float] = time.time) -> None:
        self._time_fn = time_fn
        self._offset_ms = 0
        self._synced_at: Optional[float] = None

    @property
    def offset_ms(self) -> int:
        return self._offset_ms

    @property
    def synced(self) -> bool:
        return self._synced_at is not None

    def local_ms(self) -> int:
        return int(self._time_fn() * 1000)

    def now_ms(self) -> int:
        return self.local_ms() + self._offset_ms

    def apply_server_time(self, server_ms: int, sent_ms: int, received_ms: int) -> int:
        """
        Update the offset from one server time sample.

        The server timestamp is compared against the midpoint of the local
        send/receive times to cancel out symmetric network latency.
        """
        midpoint = (sent_ms + received_ms) // 2
        self._offset_ms = int(server_ms) - midpoint
        self._synced_at = self._time_fn()
        return self._offset_ms

    async def sync(self, fetch_server_ms: Callable[[], Awaitable[int]]) -> int:
        """Measure the offset using ``fetch_server_ms`` (an unsigned server-time call)."""
        sent = self.local_ms()
        server_ms = await fetch_server_ms()
        received = self.local_ms()
        return self.apply_server_time(server_ms, sent, received)


__all__ = ["ServerClock"]
