"""Binance client managers against scripted REST and websocket fakes."""

import json
from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

import pytest
import pytest_asyncio

from client_config.settings import ClientSettings
from conftest import FakeConnector, FakeResponse, FakeSession, wait_until
from exchange_clients.binance import streams as stream_names
from exchange_clients.binance.client import BinanceClient
from exchange_clients.binance.models import (
    OrderCancellation,
    OrderRequest,
    OrderSide,
    OrderType,
    OrdersQuery,
    OrderStatusRequest,
    TimeInForce,
)
from exchange_clients.binance.userstream import UserDataStream
from networking.exceptions import AuthError, ProtocolError, ValidationError
from networking.models import Bucket
from networking.signing import API_KEY_HEADER

API_KEY = "test-api-key-0123456789"
API_SECRET = "test-api-secret-0123456789"


def make_settings(**overrides):
    values = dict(
        api_key=API_KEY,
        api_secret=API_SECRET,
        rest_url="https://api.test",
        stream_url="wss://stream.test/stream",
        retry={"max_attempts": 1, "initial_backoff": 0, "max_backoff": 0, "jitter": 0},
        streams={
            "reconnect_initial_delay": 0,
            "reconnect_max_delay": 0,
            "heartbeat_interval": 0,
        },
    )
    values.update(overrides)
    return ClientSettings(**values)


def path_of(request):
    return urlsplit(request["url"]).path


def params_of(request):
    return dict(parse_qsl(urlsplit(request["url"]).query))


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest_asyncio.fixture
async def client(session, connector):
    client = BinanceClient(make_settings(), session=session, connector=connector)
    yield client
    await client.disconnect()


# ============================================================================
# Orders
# ============================================================================

@pytest.mark.asyncio
async def test_iceberg_order_without_gtc_is_rejected_locally(client, session):
    order = OrderRequest(
        symbol="BTCUSDT",
        side=OrderSide.BUY,
        order_type=OrderType.LIMIT,
        time_in_force=TimeInForce.IOC,
        quantity="1",
        price="30000",
        iceberg_qty="0.1",
    )

    with pytest.raises(ValidationError, match="GTC"):
        await client.place_order(order)
    assert session.requests == []


@pytest.mark.asyncio
async def test_place_order_sends_signed_params(client, session):
    session.queue(FakeResponse(200, {
        "symbol": "BTCUSDT",
        "orderId": 28,
        "clientOrderId": "6gCrw2kRUAF9CvJDGP16IP",
        "transactTime": 1507725176595,
        "price": "30000.10000000",
        "origQty": "0.50000000",
        "executedQty": "0.50000000",
        "status": "FILLED",
        "type": "LIMIT",
        "side": "BUY",
        "fills": [{"price": "30000.1", "qty": "0.5", "commission": "0.0005", "commissionAsset": "BTC"}],
    }))
    order = OrderRequest(
        symbol="BTCUSDT",
        side=OrderSide.BUY,
        order_type=OrderType.LIMIT,
        time_in_force=TimeInForce.GTC,
        quantity=Decimal("0.5"),
        price=Decimal("30000.1"),
    )

    transaction = await client.place_order(order)

    request = session.requests[0]
    params = params_of(request)
    assert request["method"] == "POST"
    assert path_of(request) == "/api/v3/order"
    assert params["side"] == "BUY"
    assert params["type"] == "LIMIT"
    assert params["timeInForce"] == "GTC"
    assert params["quantity"] == "0.5"
    assert params["price"] == "30000.1"
    assert "icebergQty" not in params and "stopPrice" not in params
    assert "signature" in params and "timestamp" in params
    assert request["headers"][API_KEY_HEADER] == API_KEY
    assert client.rate_limiter.used(Bucket.ORDERS) == 1

    assert transaction.order_id == 28
    assert transaction.status == "FILLED"
    assert transaction.fills[0].commission == Decimal("0.0005")


@pytest.mark.asyncio
async def test_cancel_order_uses_delete(client, session):
    session.queue(FakeResponse(200, {
        "symbol": "LTCBTC",
        "orderId": 4,
        "origClientOrderId": "myOrder1",
        "clientOrderId": "cancelMyOrder1",
        "status": "CANCELED",
    }))

    canceled = await client.cancel_order(OrderCancellation(symbol="LTCBTC", order_id=4))

    assert session.requests[0]["method"] == "DELETE"
    assert params_of(session.requests[0])["orderId"] == "4"
    assert canceled.status == "CANCELED"
    assert canceled.orig_client_order_id == "myOrder1"


@pytest.mark.asyncio
async def test_all_orders_query_and_list_shape(client, session):
    session.queue(
        FakeResponse(200, [{"symbol": "BTCUSDT", "orderId": 1, "price": "1", "origQty": "2", "status": "NEW"}]),
        FakeResponse(200, {"unexpected": "object"}),
    )

    orders = await client.account.get_all_orders(OrdersQuery(symbol="BTCUSDT", limit=10))
    assert [o.order_id for o in orders] == [1]
    assert orders[0].orig_qty == Decimal("2")
    assert params_of(session.requests[0])["limit"] == "10"
    assert "startTime" not in params_of(session.requests[0])

    with pytest.raises(ProtocolError):
        await client.get_open_orders("BTCUSDT")


@pytest.mark.asyncio
async def test_remaining_account_operations_hit_their_endpoints(client, session):
    session.queue(
        FakeResponse(200, [{"id": 1, "orderId": 2, "price": "3", "qty": "4", "commission": "0.1",
                            "commissionAsset": "BNB", "time": 5, "isBuyer": True, "isMaker": False}]),
        FakeResponse(200, {"email": "label_virtual@test.com"}),
        FakeResponse(200, []),
        FakeResponse(200, [{"symbol": "BTCUSDT", "orderId": 9, "status": "CANCELED"}]),
        FakeResponse(200, {"symbol": "BTCUSDT", "orderId": 9, "status": "NEW"}),
        FakeResponse(200, {}),
        FakeResponse(200, {}),
        FakeResponse(200, {}),
    )
    order = OrderRequest(symbol="BTCUSDT", side=OrderSide.SELL, order_type=OrderType.MARKET, quantity=1)

    trades = await client.account.trade_history("BTCUSDT")
    sub_account = await client.account.create_sub_account("label")
    open_orders = await client.account.get_all_open_orders()
    canceled = await client.account.cancel_all_open_orders("BTCUSDT")
    status = await client.account.order_status(OrderStatusRequest(symbol="BTCUSDT", order_id=9))
    assert await client.account.test_order_status(OrderStatusRequest(symbol="BTCUSDT", order_id=9)) == {}
    assert await client.account.place_test_order(order) == {}
    assert await client.account.test_cancel_order(OrderCancellation(symbol="BTCUSDT", order_id=9)) == {}

    assert trades[0].is_buyer and trades[0].commission == Decimal("0.1")
    assert sub_account.email == "label_virtual@test.com"
    assert open_orders == []
    assert canceled[0].status == "CANCELED"
    assert status.status == "NEW"
    assert [(r["method"], path_of(r)) for r in session.requests] == [
        ("GET", "/api/v3/myTrades"),
        ("POST", "/sapi/v1/sub-account/virtualSubAccount"),
        ("GET", "/api/v3/openOrders"),
        ("DELETE", "/api/v3/openOrders"),
        ("GET", "/api/v3/order"),
        ("GET", "/api/v3/order/test"),
        ("POST", "/api/v3/order/test"),
        ("DELETE", "/api/v3/order/test"),
    ]
    assert params_of(session.requests[1])["subAccountString"] == "label"
    assert all("signature" in params_of(r) for r in session.requests)


@pytest.mark.asyncio
async def test_recent_trades(client, session):
    session.queue(FakeResponse(200, [
        {"id": 28457, "price": "4.00000100", "qty": "12.00000000", "quoteQty": "48.000012",
         "time": 1499865549590, "isBuyerMaker": True, "isBestMatch": True},
    ]))

    trades = await client.market.recent_trades("bnbbtc", limit=1)

    assert trades[0].id == 28457
    assert trades[0].quote_qty == Decimal("48.000012")
    assert params_of(session.requests[0]) == {"symbol": "BNBBTC", "limit": "1"}


# ============================================================================
# Account
# ============================================================================

ACCOUNT_PAYLOAD = {
    "makerCommission": 15,
    "takerCommission": 15,
    "canTrade": True,
    "canWithdraw": True,
    "canDeposit": True,
    "accountType": "SPOT",
    "updateTime": 123456789,
    "balances": [
        {"asset": "BTC", "free": "4723846.89208129", "locked": "0.00000000"},
        {"asset": "LTC", "free": "4763368.68006011", "locked": "1.5"},
    ],
}


@pytest.mark.asyncio
async def test_get_balance(client, session):
    session.queue(FakeResponse(200, ACCOUNT_PAYLOAD))

    balance = await client.get_balance("LTC")

    assert balance.free == Decimal("4763368.68006011")
    assert balance.total == Decimal("4763370.18006011")
    assert path_of(session.requests[0]) == "/api/v3/account"
    assert client.rate_limiter.used(Bucket.REQUESTS) == 20
    assert client.rate_limit_snapshot()[Bucket.REQUESTS]["capacity"] == 6000


@pytest.mark.asyncio
async def test_get_balance_for_unknown_asset(client, session):
    session.queue(FakeResponse(200, ACCOUNT_PAYLOAD))

    with pytest.raises(ValidationError, match="Asset not found: DOGE"):
        await client.get_balance("DOGE")


@pytest.mark.asyncio
async def test_signed_calls_need_credentials(session, connector):
    client = BinanceClient(make_settings(api_key=None, api_secret=None), session=session, connector=connector)
    try:
        assert client.signer is None
        with pytest.raises(AuthError):
            await client.get_account()
        assert session.requests == []
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_connect_syncs_clock_and_disconnect_keeps_external_session(session, connector):
    session.queue(FakeResponse(200, {"serverTime": 1_700_000_000_000}))

    async with BinanceClient(make_settings(), session=session, connector=connector) as client:
        assert client.clock.synced
        assert path_of(session.requests[0]) == "/api/v3/time"

    assert session.closed is False
    assert client.multiplexer.closed


# ============================================================================
# Market data
# ============================================================================

@pytest.mark.asyncio
async def test_depth_snapshot_parses_levels_and_charges_weight(client, session):
    session.queue(FakeResponse(200, {
        "lastUpdateId": 1027024,
        "bids": [["4.00000000", "431.00000000"]],
        "asks": [["4.00000200", "12.00000000"], ["4.00000300", "1.0"]],
    }))

    snapshot = await client.market.depth_snapshot("btcusdt", limit=500)

    assert snapshot.symbol == "BTCUSDT"
    assert snapshot.last_update_id == 1027024
    assert snapshot.bids == [(Decimal("4.00000000"), Decimal("431.00000000"))]
    assert len(snapshot.asks) == 2
    assert params_of(session.requests[0]) == {"symbol": "BTCUSDT", "limit": "500"}
    assert API_KEY_HEADER not in session.requests[0]["headers"]
    assert client.rate_limiter.used(Bucket.REQUESTS) == 25


@pytest.mark.asyncio
async def test_depth_snapshot_rejects_malformed_payload(client, session):
    session.queue(FakeResponse(200, {"bids": []}))

    with pytest.raises(ProtocolError):
        await client.market.depth_snapshot("BTCUSDT")


@pytest.mark.asyncio
async def test_ping_and_server_time(client, session):
    session.queue(FakeResponse(200, {}), FakeResponse(200, {"serverTime": 42}))

    assert await client.ping() is True
    assert await client.market.server_time() == 42


# ============================================================================
# Streams
# ============================================================================

def test_stream_names():
    assert stream_names.trade("BTCUSDT") == "btcusdt@trade"
    assert stream_names.agg_trade("BNBBTC") == "bnbbtc@aggTrade"
    assert stream_names.depth("BTCUSDT") == "btcusdt@depth"
    assert stream_names.depth("BTCUSDT", 100) == "btcusdt@depth@100ms"
    assert stream_names.book_ticker("ETHUSDT") == "ethusdt@bookTicker"
    assert stream_names.kline("ETHBTC", "1M") == "ethbtc@kline_1M"

    with pytest.raises(ValueError):
        stream_names.depth("BTCUSDT", 250)
    with pytest.raises(ValueError):
        stream_names.kline("ETHBTC", "2m")


@pytest.mark.asyncio
async def test_market_stream_subscription(client, connector):
    channel = await client.streams.trades("BTCUSDT")
    await wait_until(lambda: connector.sockets and connector.sockets[0].subscribed_streams())
    ws = connector.sockets[0]
    assert ws.url == "wss://stream.test/stream"
    assert ws.subscribed_streams() == ["btcusdt@trade"]

    ws.feed({"stream": "btcusdt@trade", "data": {"e": "trade", "t": 12345, "p": "0.001"}})
    event = await channel.get()
    assert event.update_id == 12345
    assert client.streams.active_subscriptions() == ["btcusdt@trade"]

    assert await client.unsubscribe("btcusdt@trade") is True


@pytest.mark.asyncio
async def test_user_stream_lifecycle(client, session, connector):
    session.queue(FakeResponse(200, {"listenKey": "pqia91ma19a5s61cv6a81va65sdf19v8a65a1a5s61cv6a81va65sdf19v8a65a1"}))
    listen_key = "pqia91ma19a5s61cv6a81va65sdf19v8a65a1a5s61cv6a81va65sdf19v8a65a1"

    channel = await client.user_stream.start()
    assert client.user_stream.running
    start_request = session.requests[0]
    assert start_request["method"] == "POST"
    assert path_of(start_request) == "/api/v3/userDataStream"
    assert start_request["headers"][API_KEY_HEADER] == API_KEY
    assert "signature" not in start_request["url"]

    await wait_until(lambda: connector.sockets and connector.sockets[0].subscribed_streams())
    assert connector.sockets[0].subscribed_streams() == [listen_key]

    connector.sockets[0].feed({"stream": listen_key, "data": {"e": "outboundAccountPosition", "E": 1}})
    event = await channel.get()
    assert event.data["e"] == "outboundAccountPosition"

    session.queue(FakeResponse(200, {}))
    await client.user_stream.stop()

    close_request = session.requests[-1]
    assert close_request["method"] == "DELETE"
    assert params_of(close_request) == {"listenKey": listen_key}
    assert not client.user_stream.running
    assert channel.closed


@pytest.mark.asyncio
async def test_user_stream_without_listen_key_in_response(client, session):
    session.queue(FakeResponse(200, {}))

    with pytest.raises(ProtocolError):
        await client.user_stream.start()


@pytest.mark.asyncio
async def test_keepalive_survives_errors(client, session):
    session.queue(
        FakeResponse(200, {"listenKey": "abc"}),
        FakeResponse(400, json.dumps({"code": -1125, "msg": "This listenKey does not exist."})),
        *[FakeResponse(200, {}) for _ in range(200)],
    )
    user_stream = UserDataStream(client.transport, client.multiplexer, keepalive_interval=0.01)

    await user_stream.start()
    await wait_until(lambda: sum(1 for r in session.requests if r["method"] == "PUT") >= 2)
    assert user_stream.running

    await user_stream.stop()
    assert session.requests[-1]["method"] == "DELETE"
    keepalives = [r for r in session.requests if r["method"] == "PUT"]
    assert all(params_of(r) == {"listenKey": "abc"} for r in keepalives)
