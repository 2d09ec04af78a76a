"""
REST transport.

Sends ``RequestDescriptor``s to the exchange:

1. rate-limiter admission (may wait, or reject locally)
2. for signed calls, a fresh timestamp from the server clock and an HMAC signature
3. the HTTP round trip over a shared aiohttp session
4. reconciliation of the limiter with exchange-reported usage headers
5. classification of error bodies into typed errors

Retries are driven by tenacity and only ever follow the classified error's
``retryable`` flag. Every attempt is signed anew, so a retry never reuses a
timestamp. ``execute`` converts failures into a ``RestResult`` instead of
raising; cancellation of the awaiting task is propagated untouched.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from yarl import URL

from helpers.unified_logger import get_transport_logger

from .classifier import classify_error
from .clock import ServerClock
from .exceptions import (
    AuthError,
    ExchangeError,
    ProtocolError,
    RateLimitError,
    RetriesExhaustedError,
    TimestampError,
    TransientNetworkError,
)
from .models import Bucket, HTTPMethod, RequestDescriptor, RestResponse, RestResult
from .rate_limiter import RateLimiter
from .signing import RequestSigner, canonical_query

# Response headers carrying the exchange's view of consumed limits
USAGE_HEADERS: Dict[str, str] = {
    "x-mbx-used-weight-1m": Bucket.REQUESTS,
    "x-mbx-order-count-10s": Bucket.ORDERS,
}

SERVER_TIME_PATH = "/api/v3/time"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter."""

    max_attempts: int = 4
    initial_backoff: float = 0.5
    max_backoff: float = 8.0
    jitter: float = 0.5


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ExchangeError) and exc.retryable


class RestTransport:
    """
    Rate-limited, signing, retrying HTTP transport.

    Args:
        base_url: REST base URL (e.g. ``https://api.binance.com``)
        signer: Signing provider; required for signed or keyed descriptors
        rate_limiter: Shared limiter (a default Binance-limits instance if omitted)
        clock: Server clock used for timestamps
        retry_policy: Backoff/attempt bounds
        recv_window: Accepted timestamp skew in milliseconds
        timeout: Total per-request timeout in seconds
        rate_limit_max_wait: Longest local throttle wait before rejecting
        default_cooldown: Cooldown applied on 429 without Retry-After
        session: Externally owned aiohttp-compatible session (not closed here)
        logger: Optional logger
    """

    def __init__(
        self,
        base_url: str,
        *,
        signer: Optional[RequestSigner] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Optional[ServerClock] = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        recv_window: int = 5000,
        timeout: float = 10.0,
        rate_limit_max_wait: float = 30.0,
        default_cooldown: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
        logger=None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._signer = signer
        self._limiter = rate_limiter or RateLimiter()
        self._clock = clock or ServerClock()
        self._policy = retry_policy
        self._recv_window = recv_window
        self._timeout = timeout
        self._max_wait = rate_limit_max_wait
        self._default_cooldown = default_cooldown
        self._session = session
        self._owns_session = session is None
        self._resync_pending = False
        self._backoff = wait_exponential(
            multiplier=retry_policy.initial_backoff,
            max=retry_policy.max_backoff,
        ) + wait_random(0, retry_policy.jitter)
        self.logger = logger or get_transport_logger("rest")

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def clock(self) -> ServerClock:
        return self._clock

    async def __aenter__(self) -> "RestTransport":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self):
        if self._session is None or getattr(self._session, "closed", False):
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"Accept": "application/json", "User-Agent": "exchange-connector/1.0"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            self.logger.debug("REST session closed")
        self._session = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, descriptor: RequestDescriptor) -> RestResult:
        """Send ``descriptor`` with retries; failures come back as ``RestResult.fail``."""
        try:
            response = await self._execute_with_retry(descriptor)
        except ExchangeError as exc:
            self.logger.warning(
                f"{descriptor.method.value} {descriptor.path} failed: {type(exc).__name__}: {exc}"
            )
            return RestResult.fail(exc)
        return RestResult.ok(response)

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> RestResult:
        return await self.execute(RequestDescriptor.build(HTTPMethod.GET, path, params, **kwargs))

    async def post(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> RestResult:
        return await self.execute(RequestDescriptor.build(HTTPMethod.POST, path, params, **kwargs))

    async def put(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> RestResult:
        return await self.execute(RequestDescriptor.build(HTTPMethod.PUT, path, params, **kwargs))

    async def delete(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> RestResult:
        return await self.execute(RequestDescriptor.build(HTTPMethod.DELETE, path, params, **kwargs))

    async def sync_time(self) -> int:
        """Measure the local/server clock offset via the server-time endpoint."""

        async def fetch_server_ms() -> int:
            response = await self._attempt(RequestDescriptor.build(HTTPMethod.GET, SERVER_TIME_PATH))
            try:
                return int(response.data["serverTime"])
            except (KeyError, TypeError, ValueError) as exc:
                raise ProtocolError(f"unexpected server time payload: {response.data!r}") from exc

        offset = await self._clock.sync(fetch_server_ms)
        self._resync_pending = False
        self.logger.info(f"Server clock offset {offset}ms")
        return offset

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    def _wait(self, retry_state: RetryCallState) -> float:
        delay = self._backoff(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError) and exc.retry_after:
            delay = max(delay, exc.retry_after)
        return delay

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self.logger.warning(
            f"Attempt {retry_state.attempt_number}/{self._policy.max_attempts} failed "
            f"({type(exc).__name__}: {exc}); retrying in {delay:.2f}s"
        )

    async def _execute_with_retry(self, descriptor: RequestDescriptor) -> RestResponse:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._before_sleep,
            reraise=True,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    response = await self._attempt(descriptor)
                    response.attempts = attempts
        except ExchangeError as exc:
            if exc.retryable and attempts >= self._policy.max_attempts:
                raise RetriesExhaustedError(exc, attempts) from exc
            raise
        return response

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def _build_url(self, descriptor: RequestDescriptor) -> tuple[URL, Dict[str, str]]:
        headers: Dict[str, str] = {}
        if descriptor.signed:
            if self._signer is None:
                raise AuthError(f"{descriptor.path} requires credentials")
            signed = self._signer.sign_request(descriptor, self._clock.now_ms(), self._recv_window)
            query = signed.query
            headers.update(self._signer.api_key_header())
        else:
            query = canonical_query(descriptor.params)
            if descriptor.keyed:
                if self._signer is None:
                    raise AuthError(f"{descriptor.path} requires an API key")
                headers.update(self._signer.api_key_header())

        raw = f"{self.base_url}{descriptor.path}"
        if query:
            raw = f"{raw}?{query}"
        return URL(raw, encoded=True), headers

    async def _attempt(self, descriptor: RequestDescriptor) -> RestResponse:
        if descriptor.signed and self._resync_pending:
            try:
                await self.sync_time()
            except ExchangeError as exc:
                self.logger.warning(f"Clock resync failed: {exc}")

        await self._limiter.acquire(descriptor.bucket, descriptor.weight, self._max_wait)
        session = await self._ensure_session()
        # Sign after admission with no await before dispatch so throttle waits never age the timestamp
        url, headers = self._build_url(descriptor)

        self.logger.debug(f"{descriptor.method.value} {descriptor.path} weight={descriptor.weight}")
        try:
            async with session.request(descriptor.method.value, url, headers=headers) as response:
                status = response.status
                try:
                    body = await response.text()
                except UnicodeDecodeError as exc:
                    raise ProtocolError(f"undecodable response body from {descriptor.path}: {exc}") from exc
                response_headers = {str(k): str(v) for k, v in response.headers.items()}
        except asyncio.TimeoutError as exc:
            raise TransientNetworkError(f"timeout calling {descriptor.path}") from exc
        except aiohttp.ClientError as exc:
            raise TransientNetworkError(f"network error calling {descriptor.path}: {exc}") from exc

        used = self._reconcile_usage(response_headers)

        if status >= 400:
            error = classify_error(status, body, response_headers)
            if isinstance(error, RateLimitError):
                cooldown = error.retry_after or self._default_cooldown
                error.retry_after = cooldown
                self._limiter.penalize(descriptor.bucket, cooldown)
            elif isinstance(error, TimestampError):
                self._resync_pending = True
            raise error

        return RestResponse(status=status, data=self._decode(body), headers=response_headers, used_weight=used)

    def _reconcile_usage(self, headers: Mapping[str, str]) -> Dict[str, int]:
        used: Dict[str, int] = {}
        for key, value in headers.items():
            bucket = USAGE_HEADERS.get(key.lower())
            if bucket is None:
                continue
            try:
                used[bucket] = int(value)
            except ValueError:
                continue
            self._limiter.reconcile(bucket, used[bucket])
        return used

    @staticmethod
    def _decode(body: str) -> Any:
        if not body:
            return None
        try:
            return json.loads(body)
        except ValueError as exc:
            raise ProtocolError(f"invalid JSON response: {body[:100]}") from exc


__all__ = ["RestTransport", "RetryPolicy", "USAGE_HEADERS", "SERVER_TIME_PATH"]
