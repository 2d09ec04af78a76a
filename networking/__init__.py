"""
Request-integrity layer for the exchange REST API.

This package owns everything between a typed request description and a
decoded response: credentials and HMAC signing, server clock offset,
sliding-window rate limiting, the retrying HTTP transport and the error
taxonomy its callers branch on.
"""

from .classifier import classify_error
from .clock import ServerClock
from .exceptions import (
    AuthError,
    ExchangeError,
    ExchangeServerError,
    MissingCredentialsError,
    ProtocolError,
    RateLimitError,
    RetriesExhaustedError,
    StreamDisconnectError,
    TimestampError,
    TransientNetworkError,
    ValidationError,
)
from .models import Bucket, HTTPMethod, RequestDescriptor, RestResponse, RestResult, SignedRequest
from .rate_limiter import AdmissionDecision, AdmissionStatus, BucketLimit, DEFAULT_LIMITS, RateLimiter
from .rest import RestTransport, RetryPolicy
from .signing import Credentials, RequestSigner

__all__ = [
    "AdmissionDecision",
    "AdmissionStatus",
    "AuthError",
    "Bucket",
    "BucketLimit",
    "Credentials",
    "DEFAULT_LIMITS",
    "ExchangeError",
    "ExchangeServerError",
    "HTTPMethod",
    "MissingCredentialsError",
    "ProtocolError",
    "RateLimitError",
    "RateLimiter",
    "RequestDescriptor",
    "RequestSigner",
    "RestResponse",
    "RestResult",
    "RestTransport",
    "RetriesExhaustedError",
    "RetryPolicy",
    "ServerClock",
    "SignedRequest",
    "StreamDisconnectError",
    "TimestampError",
    "TransientNetworkError",
    "ValidationError",
    "classify_error",
]
