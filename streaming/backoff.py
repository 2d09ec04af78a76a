"""Reconnect backoff policy for stream connections."""

from __future__ import annotations

import random
import time
from typing import Callable, Optional

_MAX_EXPONENT = 64


class ReconnectBackoff:
    """
    Exponential reconnect delay capped at ``max_delay``.

    The attempt counter resets once a connection has stayed up for
    ``reset_after`` seconds: a flapping link keeps backing off, a link that
    drops after a long session starts again from ``initial_delay``.
    ``max_attempts`` (``None`` = unlimited) bounds consecutive failures.
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter: float = 0.1,
        reset_after: float = 60.0,
        max_attempts: Optional[int] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if initial_delay < 0 or max_delay < initial_delay:
            raise ValueError("require 0 <= initial_delay <= max_delay")
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self.reset_after = reset_after
        self.max_attempts = max_attempts
        self._clock = clock
        self._rng = rng
        self._attempts = 0
        self._connected_at: Optional[float] = None

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def exhausted(self) -> bool:
        return self.max_attempts is not None and self._attempts >= self.max_attempts

    def reset(self) -> None:
        self._attempts = 0

    def connected(self) -> None:
        """Mark the start of a successful connection period."""
        self._connected_at = self._clock()

    def disconnected(self) -> None:
        """Close the connection period; a long enough one resets the counter."""
        if self._connected_at is not None and self._clock() - self._connected_at >= self.reset_after:
            self.reset()
        self._connected_at = None

    def next_delay(self) -> float:
        """Delay before the next attempt; advances the attempt counter."""
        # Delay is already capped long before this; a bounded exponent keeps pow finite
        exponent = min(self._attempts, _MAX_EXPONENT)
        base = min(self.initial_delay * (self.multiplier ** exponent), self.max_delay)
        self._attempts += 1
        if self.jitter:
            base += base * self.jitter * self._rng()
        return min(base, self.max_delay)


__all__ = ["ReconnectBackoff"]
