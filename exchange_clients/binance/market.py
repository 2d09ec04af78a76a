"""
Public market data over REST.
"""

from __future__ import annotations

from typing import List

from helpers.unified_logger import get_client_logger
from networking.exceptions import ProtocolError
from networking.rest import RestTransport

from . import endpoints
from .models import DepthSnapshot, Trade


class BinanceMarketData:
    """Unsigned market endpoints: connectivity, server time, depth and trades."""

    def __init__(self, transport: RestTransport, logger=None):
        self._transport = transport
        self.logger = logger or get_client_logger("market")

    async def ping(self) -> bool:
        result = await self._transport.execute(endpoints.PING.descriptor())
        result.unwrap()
        return True

    async def server_time(self) -> int:
        data = (await self._transport.execute(endpoints.SERVER_TIME.descriptor())).data
        try:
            return int(data["serverTime"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(f"unexpected server time payload: {data!r}") from exc

    async def depth_snapshot(self, symbol: str, limit: int = 100) -> DepthSnapshot:
        """
        Order book snapshot, used to rebuild local state after a ``GapDetected``.

        Args:
            symbol: Trading pair, e.g. ``BTCUSDT``
            limit: Levels per side (weight grows with the limit)
        """
        symbol = symbol.upper()
        descriptor = endpoints.DEPTH.descriptor(
            {"symbol": symbol, "limit": limit},
            weight=endpoints.depth_weight(limit),
        )
        data = (await self._transport.execute(descriptor)).data
        try:
            snapshot = DepthSnapshot.from_dict(symbol, data)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(f"unexpected depth payload for {symbol}") from exc
        self.logger.debug(f"Depth snapshot {symbol} lastUpdateId={snapshot.last_update_id}")
        return snapshot

    async def recent_trades(self, symbol: str, limit: int = 500) -> List[Trade]:
        data = (await self._transport.execute(
            endpoints.RECENT_TRADES.descriptor({"symbol": symbol.upper(), "limit": limit})
        )).data
        if not isinstance(data, list):
            raise ProtocolError(f"{endpoints.RECENT_TRADES.path}: expected a list")
        return [Trade.from_dict(item) for item in data]
