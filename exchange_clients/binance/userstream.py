"""
User data stream: listen key lifecycle and subscription.

A listen key expires 60 minutes after its last keepalive. ``UserDataStream``
opens one, subscribes it through the multiplexer like any market stream, and
runs a background task that renews it every ``keepalive_interval`` seconds.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from helpers.unified_logger import get_stream_logger
from networking.exceptions import ExchangeError, ProtocolError
from networking.rest import RestTransport
from streaming.events import EventChannel
from streaming.multiplexer import StreamMultiplexer

from . import endpoints

DEFAULT_KEEPALIVE_INTERVAL = 30 * 60


class UserDataStream:
    """Listen key management plus the event channel of the account stream."""

    def __init__(
        self,
        transport: RestTransport,
        multiplexer: StreamMultiplexer,
        *,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        logger=None,
    ):
        self._transport = transport
        self._multiplexer = multiplexer
        self.keepalive_interval = keepalive_interval
        self.logger = logger or get_stream_logger("userstream")
        self.listen_key: Optional[str] = None
        self._keepalive_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Listen key REST calls
    # ------------------------------------------------------------------

    async def start_listen_key(self) -> str:
        data = (await self._transport.execute(endpoints.USER_STREAM_START.descriptor())).data
        listen_key = data.get("listenKey") if isinstance(data, dict) else None
        if not listen_key:
            raise ProtocolError("Listen key not found in response")
        return listen_key

    async def keepalive_listen_key(self, listen_key: str) -> None:
        result = await self._transport.execute(
            endpoints.USER_STREAM_KEEPALIVE.descriptor({"listenKey": listen_key})
        )
        result.unwrap()

    async def close_listen_key(self, listen_key: str) -> None:
        result = await self._transport.execute(
            endpoints.USER_STREAM_CLOSE.descriptor({"listenKey": listen_key})
        )
        result.unwrap()

    # ------------------------------------------------------------------
    # Stream lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._keepalive_task is not None and not self._keepalive_task.done()

    async def start(self) -> EventChannel:
        """Obtain a listen key, subscribe to it and start the keepalive loop."""
        if self.listen_key is None:
            self.listen_key = await self.start_listen_key()
            self.logger.info("User data stream listen key obtained")
        channel = await self._multiplexer.subscribe(self.listen_key)
        if not self.running:
            self._keepalive_task = asyncio.create_task(self._keepalive_loop(), name="listen-key-keepalive")
        return channel

    async def stop(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        listen_key, self.listen_key = self.listen_key, None
        if listen_key is None:
            return
        await self._multiplexer.unsubscribe(listen_key)
        try:
            await self.close_listen_key(listen_key)
        except ExchangeError as exc:
            self.logger.warning(f"Failed to close listen key: {exc}")
        self.logger.info("User data stream stopped")

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            if self.listen_key is None:
                return
            try:
                await self.keepalive_listen_key(self.listen_key)
                self.logger.debug("Listen key keepalive successful")
            except ExchangeError as exc:
                self.logger.error(f"Error keeping alive listen key: {exc}")
