"""
Binance spot exchange client.
"""

from .account import BinanceAccountManager
from .client import BinanceClient
from .market import BinanceMarketData
from .models import (
    AccountInformation,
    Balance,
    DepthSnapshot,
    Order,
    OrderCanceled,
    OrderCancellation,
    OrderRequest,
    OrderResponseType,
    OrderSide,
    OrdersQuery,
    OrderStatusRequest,
    OrderType,
    SubAccountCreation,
    TimeInForce,
    Trade,
    TradeHistory,
    Transaction,
)
from .streams import BinanceStreams
from .userstream import UserDataStream

__all__ = [
    "AccountInformation",
    "Balance",
    "BinanceAccountManager",
    "BinanceClient",
    "BinanceMarketData",
    "BinanceStreams",
    "DepthSnapshot",
    "Order",
    "OrderCanceled",
    "OrderCancellation",
    "OrderRequest",
    "OrderResponseType",
    "OrderSide",
    "OrdersQuery",
    "OrderStatusRequest",
    "OrderType",
    "SubAccountCreation",
    "TimeInForce",
    "Trade",
    "TradeHistory",
    "Transaction",
    "UserDataStream",
]
