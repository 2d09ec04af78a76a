"""
Sliding-window rate limiter for REST calls.

Each bucket (``requests``, ``orders``, ...) has a capacity and a rolling
window. Every admitted call records ``(timestamp, weight)``; expired entries
are evicted on the next check. Checking headroom and recording the new
consumption happen under one lock with no suspension point in between, so
concurrent callers can never jointly overshoot a bucket.

The local budget is a courtesy throttle. When the exchange itself signals
throttling (HTTP 429/418) the bucket is treated as full until the cooldown
elapses, and exchange-reported usage headers override local estimates.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, Iterable, Optional, Tuple

from helpers.unified_logger import get_transport_logger

from .exceptions import RateLimitError
from .models import Bucket


@dataclass(frozen=True, slots=True)
class BucketLimit:
    """Capacity of one bucket over a rolling window (seconds)."""

    name: str
    capacity: int
    window: float

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError(f"bucket '{self.name}' capacity must be positive")
        if self.window <= 0:
            raise ValueError(f"bucket '{self.name}' window must be positive")


# Binance spot published limits
DEFAULT_LIMITS: Tuple[BucketLimit, ...] = (
    BucketLimit(Bucket.REQUESTS, 6000, 60.0),
    BucketLimit(Bucket.ORDERS, 100, 10.0),
    BucketLimit(Bucket.RAW_REQUESTS, 61000, 300.0),
)


class AdmissionStatus(str, Enum):
    ALLOWED = "allowed"
    MUST_WAIT = "must_wait"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    status: AdmissionStatus
    wait: float = 0.0
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.status is AdmissionStatus.ALLOWED

    @classmethod
    def allow(cls) -> "AdmissionDecision":
        return cls(AdmissionStatus.ALLOWED)

    @classmethod
    def must_wait(cls, wait: float, reason: str) -> "AdmissionDecision":
        return cls(AdmissionStatus.MUST_WAIT, wait=max(wait, 0.0), reason=reason)

    @classmethod
    def reject(cls, reason: str) -> "AdmissionDecision":
        return cls(AdmissionStatus.REJECTED, reason=reason)


class RateBudget:
    """Consumption history for one bucket. Not thread-safe on its own."""

    def __init__(self, limit: BucketLimit) -> None:
        self.limit = limit
        self._entries: Deque[Tuple[float, int]] = deque()
        self._used = 0
        self.blocked_until = 0.0

    def evict(self, now: float) -> None:
        cutoff = now - self.limit.window
        while self._entries and self._entries[0][0] <= cutoff:
            _, weight = self._entries.popleft()
            self._used -= weight

    def used(self, now: float) -> int:
        self.evict(now)
        return self._used

    def record(self, now: float, weight: int) -> None:
        self._entries.append((now, weight))
        self._used += weight

    def wait_for(self, now: float, weight: int) -> float:
        """Seconds until ``weight`` more fits, assuming no further consumption."""
        excess = self._used + weight - self.limit.capacity
        if excess <= 0:
            return 0.0
        freed = 0
        for stamp, entry_weight in self._entries:
            freed += entry_weight
            if freed >= excess:
                return stamp + self.limit.window - now
        return self.limit.window

    def reconcile(self, now: float, reported: int) -> None:
        """Make the recorded total match the exchange-reported usage."""
        self.evict(now)
        if reported > self._used:
            self.record(now, reported - self._used)
            return
        surplus = self._used - reported
        while surplus > 0 and self._entries:
            stamp, weight = self._entries.popleft()
            if weight > surplus:
                self._entries.appendleft((stamp, weight - surplus))
                self._used -= surplus
                break
            self._used -= weight
            surplus -= weight


class RateLimiter:
    """
    Admission control across named buckets.

    Args:
        limits: Bucket definitions (defaults to Binance spot published limits)
        clock: Monotonic time source in seconds (injectable for tests)
        logger: Optional logger
    """

    def __init__(
        self,
        limits: Iterable[BucketLimit] = DEFAULT_LIMITS,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger=None,
    ) -> None:
        self._clock = clock
        self._budgets: Dict[str, RateBudget] = {limit.name: RateBudget(limit) for limit in limits}
        self._lock = threading.Lock()
        self.logger = logger or get_transport_logger("rate_limiter")

    @property
    def buckets(self) -> Tuple[str, ...]:
        return tuple(self._budgets)

    def admit(self, bucket: str, weight: int) -> AdmissionDecision:
        """
        Check headroom and, if there is enough, record the consumption.

        Returns:
            ALLOWED (recorded), MUST_WAIT with the delay after which a retry
            can succeed, or REJECTED when the request can never fit.
        """
        budget = self._budgets.get(bucket)
        if budget is None:
            return AdmissionDecision.reject(f"unknown rate-limit bucket '{bucket}'")
        if weight < 0:
            return AdmissionDecision.reject(f"negative weight {weight}")
        if weight > budget.limit.capacity:
            return AdmissionDecision.reject(
                f"weight {weight} exceeds '{bucket}' capacity {budget.limit.capacity}"
            )

        with self._lock:
            now = self._clock()
            if now < budget.blocked_until:
                return AdmissionDecision.must_wait(budget.blocked_until - now, f"'{bucket}' cooling down")

            budget.evict(now)
            wait = budget.wait_for(now, weight)
            if wait > 0:
                return AdmissionDecision.must_wait(wait, f"'{bucket}' window full")

            budget.record(now, weight)
            return AdmissionDecision.allow()

    async def acquire(self, bucket: str, weight: int, max_wait: Optional[float] = None) -> None:
        """
        Wait until ``weight`` is admitted on ``bucket``.

        Raises:
            RateLimitError: (local, not retried) if the request is rejected or
                the required wait exceeds ``max_wait``.
        """
        waited = 0.0
        while True:
            decision = self.admit(bucket, weight)
            if decision.allowed:
                return
            if decision.status is AdmissionStatus.REJECTED:
                raise RateLimitError(decision.reason or "rejected", local=True)
            if max_wait is not None and waited + decision.wait > max_wait:
                raise RateLimitError(
                    f"{decision.reason}: need {decision.wait:.2f}s, limit {max_wait:.2f}s",
                    retry_after=decision.wait,
                    local=True,
                )
            self.logger.debug(f"Throttling {bucket} weight={weight} for {decision.wait:.3f}s ({decision.reason})")
            await asyncio.sleep(decision.wait)
            waited += decision.wait

    def penalize(self, bucket: str, cooldown: float) -> None:
        """Treat ``bucket`` as exhausted for ``cooldown`` seconds (exchange throttling)."""
        budget = self._budgets.get(bucket)
        if budget is None:
            return
        with self._lock:
            budget.blocked_until = max(budget.blocked_until, self._clock() + cooldown)
        self.logger.warning(f"Exchange throttled bucket '{bucket}', cooling down for {cooldown:.1f}s")

    def reconcile(self, bucket: str, used_weight: int) -> None:
        """Replace the local estimate for ``bucket`` with the exchange-reported usage."""
        budget = self._budgets.get(bucket)
        if budget is None:
            return
        with self._lock:
            budget.reconcile(self._clock(), used_weight)

    def used(self, bucket: str) -> int:
        budget = self._budgets[bucket]
        with self._lock:
            return budget.used(self._clock())

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Per-bucket usage for diagnostics."""
        with self._lock:
            now = self._clock()
            return {
                name: {
                    "used": budget.used(now),
                    "capacity": budget.limit.capacity,
                    "window": budget.limit.window,
                    "cooldown": max(budget.blocked_until - now, 0.0),
                }
                for name, budget in self._budgets.items()
            }


__all__ = [
    "AdmissionDecision",
    "AdmissionStatus",
    "BucketLimit",
    "DEFAULT_LIMITS",
    "RateBudget",
    "RateLimiter",
]
