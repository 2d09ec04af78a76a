import hashlib
import hmac
from decimal import Decimal

import pytest

from exchange_clients.binance.models import OrderSide
from networking.exceptions import MissingCredentialsError
from networking.models import HTTPMethod, RequestDescriptor
from networking.signing import (
    API_KEY_HEADER,
    Credentials,
    RequestSigner,
    canonical_query,
    format_param_value,
)

API_KEY = "vmPUZE6mv9SD5VNHk4HlWFsOr6aKE2zvsw0MuIgwCIPy6utIco14y7Ju91duEh8A"
API_SECRET = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"
TIMESTAMP = 1499827319559


@pytest.fixture
def signer():
    return RequestSigner(Credentials.from_strings(API_KEY, API_SECRET))


def order_descriptor(**overrides):
    params = {
        "symbol": "LTCBTC",
        "side": "BUY",
        "type": "LIMIT",
        "timeInForce": "GTC",
        "quantity": 1,
        "price": Decimal("0.1"),
    }
    params.update(overrides)
    return RequestDescriptor.build(HTTPMethod.POST, "/api/v3/order", params, signed=True)


def test_signature_matches_hmac_of_sorted_query(signer):
    expected_query = (
        "price=0.1&quantity=1&recvWindow=5000&side=BUY&symbol=LTCBTC"
        "&timeInForce=GTC&timestamp=1499827319559&type=LIMIT"
    )
    expected = hmac.new(API_SECRET.encode(), expected_query.encode(), hashlib.sha256).hexdigest()

    signed = signer.sign_request(order_descriptor(), TIMESTAMP, 5000)

    assert signed.signature == expected
    assert signed.query == f"{expected_query}&signature={expected}"
    assert signer.sign(order_descriptor(), TIMESTAMP, 5000) == expected


def test_signing_is_deterministic_and_order_independent(signer):
    a = RequestDescriptor.build(HTTPMethod.GET, "/api/v3/allOrders", {"symbol": "BTCUSDT", "limit": 5}, signed=True)
    b = RequestDescriptor.build(HTTPMethod.GET, "/api/v3/allOrders", {"limit": 5, "symbol": "BTCUSDT"}, signed=True)

    assert signer.sign(a, TIMESTAMP, 5000) == signer.sign(a, TIMESTAMP, 5000)
    assert signer.sign(a, TIMESTAMP, 5000) == signer.sign(b, TIMESTAMP, 5000)


@pytest.mark.parametrize(
    "change",
    [
        {"quantity": 2},
        {"price": Decimal("0.11")},
        {"side": "SELL"},
        {"newClientOrderId": "abc"},
    ],
)
def test_any_parameter_change_changes_signature(signer, change):
    base = signer.sign(order_descriptor(), TIMESTAMP, 5000)
    assert signer.sign(order_descriptor(**change), TIMESTAMP, 5000) != base


def test_timestamp_and_recv_window_are_signed(signer):
    base = signer.sign(order_descriptor(), TIMESTAMP, 5000)
    assert signer.sign(order_descriptor(), TIMESTAMP + 1, 5000) != base
    assert signer.sign(order_descriptor(), TIMESTAMP, 6000) != base


def test_none_values_are_dropped(signer):
    with_none = order_descriptor(stopPrice=None)
    assert "stopPrice" not in dict(with_none.params)
    assert signer.sign(with_none, TIMESTAMP, 5000) == signer.sign(order_descriptor(), TIMESTAMP, 5000)


def test_format_param_value():
    assert format_param_value(True) == "true"
    assert format_param_value(False) == "false"
    assert format_param_value(OrderSide.BUY) == "BUY"
    assert format_param_value(Decimal("0.00000100")) == "0.000001"
    assert format_param_value(1e-7) == "0.0000001"
    assert format_param_value(["BTCUSDT", "ETHUSDT"]) == '["BTCUSDT","ETHUSDT"]'


def test_canonical_query_url_encodes_values():
    assert canonical_query([("b", "x y"), ("a", "1/2")]) == "a=1%2F2&b=x+y"


def test_secret_is_never_exposed(signer):
    credentials = Credentials.from_strings(API_KEY, API_SECRET)
    assert API_SECRET not in repr(credentials)
    assert API_SECRET not in repr(signer)
    assert API_KEY not in repr(signer)
    assert signer.api_key_header() == {API_KEY_HEADER: API_KEY}


@pytest.mark.parametrize("key,secret", [("", API_SECRET), (API_KEY, ""), ("your_api_key_here", API_SECRET)])
def test_placeholder_credentials_are_rejected(key, secret):
    with pytest.raises(MissingCredentialsError):
        Credentials.from_strings(key, secret)


def test_credentials_from_env(monkeypatch):
    monkeypatch.setenv("BINANCE_API_KEY", API_KEY)
    monkeypatch.setenv("BINANCE_API_SECRET", API_SECRET)
    credentials = Credentials.from_env()
    assert credentials.api_key == API_KEY
    assert credentials.api_secret == API_SECRET.encode()

    monkeypatch.delenv("BINANCE_API_SECRET")
    with pytest.raises(MissingCredentialsError):
        Credentials.from_env()
