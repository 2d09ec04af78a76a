"""
Request and response types for the Binance spot account and market endpoints.

Request dataclasses render themselves as exchange parameters (camelCase keys,
``None`` left for the descriptor to drop). Response dataclasses are built from
decoded JSON with ``from_dict`` and carry prices and quantities as ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from networking.exceptions import ValidationError

Number = Union[Decimal, float, int, str]


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    LIMIT = "LIMIT"
    MARKET = "MARKET"
    STOP_LOSS = "STOP_LOSS"
    STOP_LOSS_LIMIT = "STOP_LOSS_LIMIT"
    TAKE_PROFIT = "TAKE_PROFIT"
    TAKE_PROFIT_LIMIT = "TAKE_PROFIT_LIMIT"
    LIMIT_MAKER = "LIMIT_MAKER"


class TimeInForce(str, Enum):
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


class OrderResponseType(str, Enum):
    ACK = "ACK"
    RESULT = "RESULT"
    FULL = "FULL"


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------


@dataclass
class OrderRequest:
    """A new order. ``validate`` runs before anything is sent."""

    symbol: str
    side: OrderSide
    order_type: OrderType
    time_in_force: Optional[TimeInForce] = None
    quantity: Optional[Number] = None
    quote_order_qty: Optional[Number] = None
    price: Optional[Number] = None
    new_client_order_id: Optional[str] = None
    stop_price: Optional[Number] = None
    iceberg_qty: Optional[Number] = None
    new_order_resp_type: Optional[OrderResponseType] = None

    def validate(self) -> None:
        if not self.symbol:
            raise ValidationError("Order symbol is required")
        if self.iceberg_qty is not None and self.time_in_force is not TimeInForce.GTC:
            raise ValidationError("Time in force has to be GTC for iceberg orders")

    def to_params(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "type": self.order_type,
            "timeInForce": self.time_in_force,
            "quantity": self.quantity,
            "quoteOrderQty": self.quote_order_qty,
            "price": self.price,
            "newClientOrderId": self.new_client_order_id,
            "stopPrice": self.stop_price,
            "icebergQty": self.iceberg_qty,
            "newOrderRespType": self.new_order_resp_type,
        }


@dataclass
class OrderCancellation:
    symbol: str
    order_id: Optional[int] = None
    orig_client_order_id: Optional[str] = None
    new_client_order_id: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "orderId": self.order_id,
            "origClientOrderId": self.orig_client_order_id,
            "newClientOrderId": self.new_client_order_id,
        }


@dataclass
class OrderStatusRequest:
    symbol: str
    order_id: Optional[int] = None
    orig_client_order_id: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "orderId": self.order_id,
            "origClientOrderId": self.orig_client_order_id,
        }


@dataclass
class OrdersQuery:
    """Filter for ``allOrders``; ``start_time``/``end_time`` are epoch milliseconds."""

    symbol: str
    order_id: Optional[int] = None
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    limit: Optional[int] = None

    def to_params(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "orderId": self.order_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "limit": self.limit,
        }


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------


@dataclass
class Balance:
    asset: str
    free: Decimal
    locked: Decimal

    @property
    def total(self) -> Decimal:
        return self.free + self.locked

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Balance":
        return cls(
            asset=str(data.get("asset", "")),
            free=to_decimal(data.get("free"), Decimal("0")),
            locked=to_decimal(data.get("locked"), Decimal("0")),
        )


@dataclass
class AccountInformation:
    maker_commission: Decimal
    taker_commission: Decimal
    can_trade: bool
    can_withdraw: bool
    can_deposit: bool
    account_type: Optional[str] = None
    update_time: Optional[int] = None
    balances: List[Balance] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountInformation":
        return cls(
            maker_commission=to_decimal(data.get("makerCommission"), Decimal("0")),
            taker_commission=to_decimal(data.get("takerCommission"), Decimal("0")),
            can_trade=bool(data.get("canTrade", False)),
            can_withdraw=bool(data.get("canWithdraw", False)),
            can_deposit=bool(data.get("canDeposit", False)),
            account_type=data.get("accountType"),
            update_time=data.get("updateTime"),
            balances=[Balance.from_dict(item) for item in data.get("balances", [])],
        )

    def balance(self, asset: str) -> Optional[Balance]:
        for balance in self.balances:
            if balance.asset == asset:
                return balance
        return None


@dataclass
class Order:
    symbol: str
    order_id: int
    client_order_id: str
    price: Decimal
    orig_qty: Decimal
    executed_qty: Decimal
    status: str
    time_in_force: Optional[str]
    order_type: str
    side: str
    stop_price: Optional[Decimal] = None
    iceberg_qty: Optional[Decimal] = None
    time: Optional[int] = None
    update_time: Optional[int] = None
    is_working: Optional[bool] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        return cls(
            symbol=str(data.get("symbol", "")),
            order_id=int(data.get("orderId", 0)),
            client_order_id=str(data.get("clientOrderId", "")),
            price=to_decimal(data.get("price"), Decimal("0")),
            orig_qty=to_decimal(data.get("origQty"), Decimal("0")),
            executed_qty=to_decimal(data.get("executedQty"), Decimal("0")),
            status=str(data.get("status", "")),
            time_in_force=data.get("timeInForce"),
            order_type=str(data.get("type", "")),
            side=str(data.get("side", "")),
            stop_price=to_decimal(data.get("stopPrice")),
            iceberg_qty=to_decimal(data.get("icebergQty")),
            time=data.get("time"),
            update_time=data.get("updateTime"),
            is_working=data.get("isWorking"),
            raw=dict(data),
        )


@dataclass
class Fill:
    price: Decimal
    qty: Decimal
    commission: Decimal
    commission_asset: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fill":
        return cls(
            price=to_decimal(data.get("price"), Decimal("0")),
            qty=to_decimal(data.get("qty"), Decimal("0")),
            commission=to_decimal(data.get("commission"), Decimal("0")),
            commission_asset=str(data.get("commissionAsset", "")),
        )


@dataclass
class Transaction:
    """Response to a new order (shape depends on ``newOrderRespType``)."""

    symbol: str
    order_id: int
    client_order_id: str
    transact_time: Optional[int] = None
    price: Optional[Decimal] = None
    orig_qty: Optional[Decimal] = None
    executed_qty: Optional[Decimal] = None
    status: Optional[str] = None
    order_type: Optional[str] = None
    side: Optional[str] = None
    fills: List[Fill] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        return cls(
            symbol=str(data.get("symbol", "")),
            order_id=int(data.get("orderId", 0)),
            client_order_id=str(data.get("clientOrderId", "")),
            transact_time=data.get("transactTime"),
            price=to_decimal(data.get("price")),
            orig_qty=to_decimal(data.get("origQty")),
            executed_qty=to_decimal(data.get("executedQty")),
            status=data.get("status"),
            order_type=data.get("type"),
            side=data.get("side"),
            fills=[Fill.from_dict(item) for item in data.get("fills", [])],
        )


@dataclass
class OrderCanceled:
    symbol: str
    order_id: Optional[int]
    orig_client_order_id: Optional[str]
    client_order_id: Optional[str]
    status: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderCanceled":
        return cls(
            symbol=str(data.get("symbol", "")),
            order_id=data.get("orderId"),
            orig_client_order_id=data.get("origClientOrderId"),
            client_order_id=data.get("clientOrderId"),
            status=data.get("status"),
        )


@dataclass
class TradeHistory:
    id: int
    order_id: int
    price: Decimal
    qty: Decimal
    commission: Decimal
    commission_asset: str
    time: int
    is_buyer: bool
    is_maker: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeHistory":
        return cls(
            id=int(data.get("id", 0)),
            order_id=int(data.get("orderId", 0)),
            price=to_decimal(data.get("price"), Decimal("0")),
            qty=to_decimal(data.get("qty"), Decimal("0")),
            commission=to_decimal(data.get("commission"), Decimal("0")),
            commission_asset=str(data.get("commissionAsset", "")),
            time=int(data.get("time", 0)),
            is_buyer=bool(data.get("isBuyer", False)),
            is_maker=bool(data.get("isMaker", False)),
        )


@dataclass
class SubAccountCreation:
    email: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubAccountCreation":
        return cls(email=str(data.get("email", "")))


@dataclass
class DepthSnapshot:
    """REST order book snapshot used to resynchronise a depth stream."""

    symbol: str
    last_update_id: int
    bids: List[Tuple[Decimal, Decimal]]
    asks: List[Tuple[Decimal, Decimal]]

    @classmethod
    def from_dict(cls, symbol: str, data: Dict[str, Any]) -> "DepthSnapshot":
        def levels(rows) -> List[Tuple[Decimal, Decimal]]:
            return [(Decimal(str(price)), Decimal(str(qty))) for price, qty, *_ in rows]

        return cls(
            symbol=symbol,
            last_update_id=int(data["lastUpdateId"]),
            bids=levels(data.get("bids", [])),
            asks=levels(data.get("asks", [])),
        )


@dataclass
class Trade:
    id: int
    price: Decimal
    qty: Decimal
    quote_qty: Decimal
    time: int
    is_buyer_maker: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        return cls(
            id=int(data.get("id", 0)),
            price=to_decimal(data.get("price"), Decimal("0")),
            qty=to_decimal(data.get("qty"), Decimal("0")),
            quote_qty=to_decimal(data.get("quoteQty"), Decimal("0")),
            time=int(data.get("time", 0)),
            is_buyer_maker=bool(data.get("isBuyerMaker", False)),
        )
