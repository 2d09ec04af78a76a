"""Error taxonomy for REST and streaming failures.

Every failure that crosses the transport boundary is one of the classes
below. Retry decisions read ``retryable``; nothing downstream inspects the
exchange's wire format.
"""

from __future__ import annotations

from typing import Optional


class ExchangeError(Exception):
    """Base class for every connector error."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        status: Optional[int] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        if retryable is not None:
            self.retryable = retryable

    def __str__(self) -> str:
        parts = [self.message]
        if self.code is not None:
            parts.append(f"code={self.code}")
        if self.status is not None:
            parts.append(f"http={self.status}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.code}, status={self.status})"


class MissingCredentialsError(ExchangeError):
    """Raised when credentials are missing or still placeholders."""


class AuthError(ExchangeError):
    """Bad, expired or unauthorised credentials. Fatal."""


class ValidationError(ExchangeError):
    """Malformed request parameters or a request the exchange refused. Fatal."""


class RateLimitError(ExchangeError):
    """Local or remote throttling.

    ``retry_after`` is the delay (seconds) the exchange asked for, when known.
    Local rejections and IP bans are not retried.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        local: bool = False,
        banned: bool = False,
        **kwargs,
    ) -> None:
        if local or banned:
            kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.local = local
        self.banned = banned


class TransientNetworkError(ExchangeError):
    """Timeout, reset, DNS failure or a stale request timestamp."""

    retryable = True


class TimestampError(TransientNetworkError):
    """The exchange rejected the request timestamp (outside recvWindow)."""


class ExchangeServerError(ExchangeError):
    """5xx-equivalent failure on the exchange side."""

    retryable = True


class ProtocolError(ExchangeError):
    """Unparseable response body or stream frame."""


class RetriesExhaustedError(ExchangeError):
    """A retryable failure persisted past the configured attempt budget."""

    def __init__(self, last_error: ExchangeError, attempts: int) -> None:
        super().__init__(
            f"gave up after {attempts} attempts: {last_error}",
            code=last_error.code,
            status=last_error.status,
            retryable=False,
        )
        self.last_error = last_error
        self.attempts = attempts


class StreamDisconnectError(ExchangeError):
    """A stream connection could not be re-established within its attempt ceiling."""


__all__ = [
    "ExchangeError",
    "MissingCredentialsError",
    "AuthError",
    "ValidationError",
    "RateLimitError",
    "TransientNetworkError",
    "TimestampError",
    "ExchangeServerError",
    "ProtocolError",
    "RetriesExhaustedError",
    "StreamDisconnectError",
]
