"""
Map exchange error responses onto the connector's error taxonomy.

Binance answers failures with ``{"code": <negative int>, "msg": "..."}``.
The code is more precise than the HTTP status (a 400 can be a bad
parameter or a stale timestamp), so it wins whenever it is present.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Tuple

from .exceptions import (
    AuthError,
    ExchangeError,
    ExchangeServerError,
    ProtocolError,
    RateLimitError,
    TimestampError,
    TransientNetworkError,
    ValidationError,
)

AUTH_CODES = frozenset({-1002, -1022, -2014, -2015})
RATE_LIMIT_CODES = frozenset({-1003, -1015})
TIMESTAMP_CODES = frozenset({-1021})
TRANSIENT_CODES = frozenset({-1001, -1007})
SERVER_CODES = frozenset({-1000, -1006, -1008})
# -2010 new order rejected, -2011 cancel rejected, -2013 no such order
REJECTION_CODES = frozenset({-2010, -2011, -2013})


def parse_error_body(body: str) -> Tuple[Optional[int], str]:
    """Extract ``(code, msg)`` from an error body; ``(None, body)`` if it is not JSON."""
    if not body:
        return None, ""
    try:
        payload = json.loads(body)
    except ValueError:
        return None, body[:200]
    if not isinstance(payload, dict):
        return None, body[:200]

    code = payload.get("code")
    try:
        code = int(code) if code is not None else None
    except (TypeError, ValueError):
        code = None
    return code, str(payload.get("msg", ""))


def retry_after_seconds(headers: Optional[Mapping[str, Any]]) -> Optional[float]:
    """Read ``Retry-After`` (seconds) case-insensitively."""
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return float(value)
            except (TypeError, ValueError):
                return None
    return None


def classify_error(
    status: int,
    body: str,
    headers: Optional[Mapping[str, Any]] = None,
) -> ExchangeError:
    """
    Build a typed error from an HTTP error response.

    Args:
        status: HTTP status code (>= 400)
        body: Raw response text
        headers: Response headers (used for Retry-After)

    Returns:
        The ExchangeError subclass matching the failure
    """
    code, msg = parse_error_body(body)
    message = msg or f"HTTP {status}"
    kwargs = {"code": code, "status": status}

    if status == 418:
        return RateLimitError(
            f"IP banned: {message}", retry_after=retry_after_seconds(headers), banned=True, **kwargs
        )
    if status == 429 or code in RATE_LIMIT_CODES:
        return RateLimitError(message, retry_after=retry_after_seconds(headers), **kwargs)

    if code is not None:
        if code in AUTH_CODES:
            return AuthError(message, **kwargs)
        if code in TIMESTAMP_CODES:
            return TimestampError(message, **kwargs)
        if code in TRANSIENT_CODES:
            return TransientNetworkError(message, **kwargs)
        if code in SERVER_CODES:
            return ExchangeServerError(message, **kwargs)
        if code in REJECTION_CODES or -1199 <= code <= -1100:
            return ValidationError(message, **kwargs)

    if status in (401, 403):
        return AuthError(message, **kwargs)
    if status >= 500:
        return ExchangeServerError(message, **kwargs)
    if status >= 400 and code is None and not body.lstrip().startswith(("{", "[")) and body:
        return ProtocolError(f"unexpected error body: {message}", **kwargs)
    return ValidationError(message, **kwargs)


__all__ = ["classify_error", "parse_error_body", "retry_after_seconds"]
