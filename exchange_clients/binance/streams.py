"""
Market stream names and subscription helpers.
"""

from __future__ import annotations

from typing import Optional

from streaming.events import EventChannel
from streaming.multiplexer import StreamMultiplexer

KLINE_INTERVALS = {
    "1s", "1m", "3m", "5m", "15m", "30m",
    "1h", "2h", "4h", "6h", "8h", "12h",
    "1d", "3d", "1w", "1M",
}


def trade(symbol: str) -> str:
    return f"{symbol.lower()}@trade"


def agg_trade(symbol: str) -> str:
    return f"{symbol.lower()}@aggTrade"


def depth(symbol: str, speed_ms: Optional[int] = None) -> str:
    """Diff depth stream; ``speed_ms`` may be 100 or 1000 (exchange default)."""
    name = f"{symbol.lower()}@depth"
    if speed_ms is None:
        return name
    if speed_ms not in (100, 1000):
        raise ValueError(f"unsupported depth update speed: {speed_ms}")
    return f"{name}@{speed_ms}ms"


def book_ticker(symbol: str) -> str:
    return f"{symbol.lower()}@bookTicker"


def kline(symbol: str, interval: str) -> str:
    if interval not in KLINE_INTERVALS:
        raise ValueError(f"unsupported kline interval: {interval}")
    return f"{symbol.lower()}@kline_{interval}"


class BinanceStreams:
    """Thin facade over the multiplexer for market streams."""

    def __init__(self, multiplexer: StreamMultiplexer):
        self._multiplexer = multiplexer

    async def subscribe(self, stream: str) -> EventChannel:
        return await self._multiplexer.subscribe(stream)

    async def unsubscribe(self, stream: str) -> bool:
        return await self._multiplexer.unsubscribe(stream)

    async def trades(self, symbol: str) -> EventChannel:
        return await self.subscribe(trade(symbol))

    async def agg_trades(self, symbol: str) -> EventChannel:
        return await self.subscribe(agg_trade(symbol))

    async def depth(self, symbol: str, speed_ms: Optional[int] = None) -> EventChannel:
        return await self.subscribe(depth(symbol, speed_ms))

    async def book_ticker(self, symbol: str) -> EventChannel:
        return await self.subscribe(book_ticker(symbol))

    async def klines(self, symbol: str, interval: str) -> EventChannel:
        return await self.subscribe(kline(symbol, interval))

    def active_subscriptions(self):
        return self._multiplexer.active_subscriptions()
