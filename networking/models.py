from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import ExchangeError


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class Bucket:
    """Rate-limit bucket names understood by the default limiter configuration."""

    REQUESTS = "requests"
    ORDERS = "orders"
    RAW_REQUESTS = "raw_requests"


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """
    Everything the transport needs to send one REST call.

    Attributes:
        method: HTTP method.
        path: Endpoint path relative to the base URL (e.g. ``/api/v3/order``).
        params: Query/body parameters in caller order. ``None`` values are dropped.
        signed: Whether the call needs a timestamp + HMAC signature.
        keyed: Whether the API key header is sent on an unsigned call
            (user data stream endpoints).
        weight: Declared rate-limit weight.
        bucket: Rate-limit bucket the weight is charged against.
    """

    method: HTTPMethod
    path: str
    params: Tuple[Tuple[str, Any], ...] = ()
    signed: bool = False
    weight: int = 1
    bucket: str = Bucket.REQUESTS
    keyed: bool = False

    @classmethod
    def build(
        cls,
        method: HTTPMethod,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        signed: bool = False,
        weight: int = 1,
        bucket: str = Bucket.REQUESTS,
        keyed: bool = False,
    ) -> "RequestDescriptor":
        items = tuple((key, value) for key, value in (params or {}).items() if value is not None)
        return cls(
            method=HTTPMethod(method),
            path=path,
            params=items,
            signed=signed,
            weight=weight,
            bucket=bucket,
            keyed=keyed,
        )

    def param_dict(self) -> Dict[str, Any]:
        return dict(self.params)


@dataclass(frozen=True, slots=True)
class SignedRequest:
    """A descriptor bound to one timestamp and its signature. Never reused across retries."""

    descriptor: RequestDescriptor
    timestamp: int
    recv_window: int
    signature: str
    query: str


@dataclass(slots=True)
class RestResponse:
    """Decoded successful response."""

    status: int
    data: Any
    headers: Dict[str, str] = field(default_factory=dict)
    used_weight: Dict[str, int] = field(default_factory=dict)
    attempts: int = 1


@dataclass(slots=True)
class RestResult:
    """Outcome of ``RestTransport.execute``: either a response or a typed error."""

    success: bool
    response: Optional[RestResponse] = None
    error: Optional[ExchangeError] = None

    @classmethod
    def ok(cls, response: RestResponse) -> "RestResult":
        return cls(success=True, response=response)

    @classmethod
    def fail(cls, error: ExchangeError) -> "RestResult":
        return cls(success=False, error=error)

    def unwrap(self) -> RestResponse:
        """Return the response or raise the captured error."""
        if self.success and self.response is not None:
            return self.response
        assert self.error is not None
        raise self.error

    @property
    def data(self) -> Any:
        return self.unwrap().data


__all__ = [
    "HTTPMethod",
    "Bucket",
    "RequestDescriptor",
    "SignedRequest",
    "RestResponse",
    "RestResult",
]
