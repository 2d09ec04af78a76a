import json

import pytest

from networking.classifier import classify_error, parse_error_body, retry_after_seconds
from networking.exceptions import (
    AuthError,
    ExchangeServerError,
    ProtocolError,
    RateLimitError,
    TimestampError,
    TransientNetworkError,
    ValidationError,
)


def body(code, msg="error"):
    return json.dumps({"code": code, "msg": msg})


@pytest.mark.parametrize(
    "status,payload,expected,retryable",
    [
        (400, body(-1102, "Mandatory parameter 'quantity' was not sent"), ValidationError, False),
        (400, body(-1013, "Filter failure: LOT_SIZE"), ValidationError, False),
        (400, body(-2010, "Account has insufficient balance"), ValidationError, False),
        (400, body(-2013, "Order does not exist."), ValidationError, False),
        (401, body(-2015, "Invalid API-key, IP, or permissions"), AuthError, False),
        (400, body(-1022, "Signature for this request is not valid."), AuthError, False),
        (400, body(-1021, "Timestamp outside of recvWindow"), TimestampError, True),
        (504, body(-1007, "Timeout waiting for response"), TransientNetworkError, True),
        (500, body(-1000, "Unknown error"), ExchangeServerError, True),
        (503, "", ExchangeServerError, True),
        (403, "", AuthError, False),
        (429, body(-1003, "Too many requests"), RateLimitError, True),
        (400, body(-1015, "Too many new orders"), RateLimitError, True),
        (418, body(-1003, "Way too many requests; IP banned"), RateLimitError, False),
        (404, "<html>Not Found</html>", ProtocolError, False),
    ],
)
def test_classify_error(status, payload, expected, retryable):
    error = classify_error(status, payload, {})
    assert type(error) is expected
    assert error.retryable is retryable
    assert error.status == status


def test_timestamp_error_is_transient():
    error = classify_error(400, body(-1021), {})
    assert isinstance(error, TransientNetworkError)
    assert error.code == -1021


def test_rate_limit_error_carries_retry_after():
    error = classify_error(429, body(-1003), {"Retry-After": "12"})
    assert error.retry_after == 12.0
    assert error.banned is False

    banned = classify_error(418, body(-1003), {"retry-after": "120"})
    assert banned.banned is True
    assert banned.retry_after == 120.0


def test_parse_error_body():
    assert parse_error_body(body(-1100, "Illegal characters")) == (-1100, "Illegal characters")
    assert parse_error_body("") == (None, "")
    assert parse_error_body("oops") == (None, "oops")
    assert parse_error_body("[1, 2]") == (None, "[1, 2]")


def test_retry_after_seconds():
    assert retry_after_seconds({"RETRY-AFTER": "3"}) == 3.0
    assert retry_after_seconds({"Retry-After": "soon"}) is None
    assert retry_after_seconds(None) is None
