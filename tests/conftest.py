"""Pytest configuration and shared fakes for connector tests."""

import asyncio
import json
import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep test runs from writing log files
os.environ.setdefault("CONNECTOR_LOG_TO_FILE", "0")

pytest_plugins = ["pytest_asyncio"]


# ============================================================================
# REST fakes
# ============================================================================


class FakeResponse:
    def __init__(self, status=200, body="", headers=None):
        self.status = status
        self._body = body if isinstance(body, str) else json.dumps(body)
        self.headers = headers or {}

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Stand-in for ``aiohttp.ClientSession``.

    ``responses`` is consumed in order; an item may be a ``FakeResponse`` or an
    exception instance to raise from ``request``.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []
        self.closed = False

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, headers=None):
        self.requests.append({"method": method, "url": str(url), "headers": dict(headers or {})})
        if not self.responses:
            raise AssertionError(f"unexpected request {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


# ============================================================================
# Websocket fakes
# ============================================================================


_CLOSE = object()


class FakeWebSocket:
    """Scriptable websocket: tests push frames in and read control messages out."""

    def __init__(self, url):
        self.url = url
        self.sent = []
        self.closed = False
        self.pong = True
        self._incoming = asyncio.Queue()

    def feed(self, payload):
        self._incoming.put_nowait(payload if isinstance(payload, str) else json.dumps(payload))

    def drop(self):
        self._incoming.put_nowait(_CLOSE)

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def ping(self):
        waiter = asyncio.get_running_loop().create_future()
        if self.pong:
            waiter.set_result(None)
        return waiter

    async def close(self):
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item

    def subscribed_streams(self):
        streams = []
        for message in self.sent:
            if message.get("method") == "SUBSCRIBE":
                streams.extend(message["params"])
        return streams


class FakeConnector:
    """Callable connector that records every socket it opens."""

    def __init__(self, failures=0, fail_forever=False):
        self.sockets = []
        self.attempts = 0
        self._failures = failures
        self._fail_forever = fail_forever

    async def __call__(self, url):
        self.attempts += 1
        if self._fail_forever or self.attempts <= self._failures:
            raise OSError("connection refused")
        ws = FakeWebSocket(url)
        self.sockets.append(ws)
        return ws


async def wait_until(predicate, timeout=2.0, interval=0.005):
    """Poll ``predicate`` until it is truthy or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
