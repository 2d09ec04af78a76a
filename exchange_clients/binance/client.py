"""
Binance spot client.

Wires the request-integrity layer (signer, server clock, rate limiter, REST
transport) and the stream multiplexer together from ``ClientSettings`` and
exposes them through per-concern managers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import aiohttp

from client_config.settings import ClientSettings
from helpers.unified_logger import get_logger
from networking.clock import ServerClock
from networking.exceptions import ExchangeError
from networking.rate_limiter import RateLimiter
from networking.rest import RestTransport
from networking.signing import RequestSigner
from streaming.connection import Connector
from streaming.events import EventChannel
from streaming.multiplexer import StreamMultiplexer

from .account import BinanceAccountManager
from .market import BinanceMarketData
from .models import (
    AccountInformation,
    Balance,
    Order,
    OrderCanceled,
    OrderCancellation,
    OrderRequest,
    Transaction,
)
from .streams import BinanceStreams
from .userstream import UserDataStream


class BinanceClient:
    """
    Binance spot client.

    Args:
        settings: Connector settings (read from the environment if omitted)
        session: Externally owned aiohttp session for REST calls
        connector: Websocket opener for stream connections (tests inject fakes)

    Usage::

        async with BinanceClient() as client:
            balance = await client.get_balance("BTC")
            trades = await client.streams.trades("BTCUSDT")
            async for event in trades:
                ...
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        connector: Optional[Connector] = None,
    ):
        self.settings = settings or ClientSettings()
        self.logger = get_logger("client", "binance", log_level=self.settings.log_level)

        self.signer: Optional[RequestSigner] = None
        if self.settings.has_credentials:
            self.signer = RequestSigner(self.settings.credentials())
        else:
            self.logger.info("No API credentials configured; only public endpoints are available")

        self.clock = ServerClock()
        self.rate_limiter = RateLimiter(self.settings.rate_limits.to_limits())
        self.transport = RestTransport(
            self.settings.rest_url,
            signer=self.signer,
            rate_limiter=self.rate_limiter,
            clock=self.clock,
            retry_policy=self.settings.retry.to_policy(),
            recv_window=self.settings.recv_window,
            timeout=self.settings.timeout,
            rate_limit_max_wait=self.settings.rate_limits.max_wait,
            default_cooldown=self.settings.rate_limits.default_cooldown,
            session=session,
        )

        stream_settings = self.settings.streams
        self.multiplexer = StreamMultiplexer(
            self.settings.stream_url,
            max_streams_per_connection=stream_settings.max_streams_per_connection,
            connector=connector,
            backoff_factory=stream_settings.backoff_factory(),
            heartbeat_interval=stream_settings.heartbeat_interval,
            heartbeat_timeout=stream_settings.heartbeat_timeout,
        )

        self.account = BinanceAccountManager(self.transport)
        self.market = BinanceMarketData(self.transport)
        self.streams = BinanceStreams(self.multiplexer)
        self.user_stream = UserDataStream(
            self.transport,
            self.multiplexer,
            keepalive_interval=stream_settings.listen_key_keepalive,
        )

    async def connect(self) -> None:
        """Synchronise the server clock ahead of the first signed call."""
        if self.signer is None:
            return
        try:
            await self.transport.sync_time()
        except ExchangeError as exc:
            # Signed calls still work with a zero offset on a well-synced host
            self.logger.warning(f"Initial clock sync failed: {exc}")

    async def disconnect(self) -> None:
        await self.user_stream.stop()
        await self.multiplexer.close()
        await self.transport.close()
        self.logger.info("Binance client disconnected")

    async def __aenter__(self) -> "BinanceClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def rate_limit_snapshot(self) -> Dict[str, Any]:
        return self.rate_limiter.snapshot()

    # ------------------------------------------------------------------
    # Shortcuts
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        return await self.market.ping()

    async def get_account(self) -> AccountInformation:
        return await self.account.get_account()

    async def get_balance(self, asset: str) -> Balance:
        return await self.account.get_balance(asset)

    async def get_open_orders(self, symbol: str) -> List[Order]:
        return await self.account.get_open_orders(symbol)

    async def place_order(self, order: OrderRequest) -> Transaction:
        return await self.account.place_order(order)

    async def cancel_order(self, cancellation: OrderCancellation) -> OrderCanceled:
        return await self.account.cancel_order(cancellation)

    async def subscribe(self, stream: str) -> EventChannel:
        return await self.streams.subscribe(stream)

    async def unsubscribe(self, stream: str) -> bool:
        return await self.streams.unsubscribe(stream)
