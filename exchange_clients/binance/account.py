"""
Account manager for Binance spot.

Signed account and order endpoints. Every call goes through the shared
``RestTransport``; failures surface as the typed errors of
``networking.exceptions``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from helpers.unified_logger import get_client_logger
from networking.exceptions import ProtocolError, ValidationError
from networking.rest import RestTransport

from . import endpoints
from .endpoints import Endpoint
from .models import (
    AccountInformation,
    Balance,
    Order,
    OrderCanceled,
    OrderCancellation,
    OrderRequest,
    OrdersQuery,
    OrderStatusRequest,
    SubAccountCreation,
    TradeHistory,
    Transaction,
)


class BinanceAccountManager:
    """
    Account manager for Binance.

    Handles:
    - Account information and balances
    - Open / historical order queries
    - Order placement, cancellation and their sandboxed ``/test`` variants
    - Trade history and virtual sub-account creation
    """

    def __init__(self, transport: RestTransport, logger=None):
        self._transport = transport
        self.logger = logger or get_client_logger("account")

    async def _call(self, endpoint: Endpoint, params: Optional[Dict[str, Any]] = None) -> Any:
        result = await self._transport.execute(endpoint.descriptor(params))
        return result.unwrap().data

    @staticmethod
    def _expect_list(data: Any, path: str) -> List[Dict[str, Any]]:
        if not isinstance(data, list):
            raise ProtocolError(f"{path}: expected a list, got {type(data).__name__}")
        return data

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def get_account(self) -> AccountInformation:
        data = await self._call(endpoints.ACCOUNT)
        return AccountInformation.from_dict(data)

    async def get_balance(self, asset: str) -> Balance:
        """
        Balance of a single asset.

        Raises:
            ValidationError: If the account holds no entry for ``asset``
        """
        account = await self.get_account()
        balance = account.balance(asset)
        if balance is None:
            raise ValidationError(f"Asset not found: {asset}")
        return balance

    async def trade_history(self, symbol: str) -> List[TradeHistory]:
        data = await self._call(endpoints.MY_TRADES, {"symbol": symbol})
        return [TradeHistory.from_dict(item) for item in self._expect_list(data, endpoints.MY_TRADES.path)]

    async def create_sub_account(self, label: str) -> SubAccountCreation:
        data = await self._call(endpoints.VIRTUAL_SUB_ACCOUNT, {"subAccountString": label})
        self.logger.info(f"Created virtual sub-account for label {label!r}")
        return SubAccountCreation.from_dict(data)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def get_open_orders(self, symbol: str) -> List[Order]:
        data = await self._call(endpoints.OPEN_ORDERS, {"symbol": symbol})
        return [Order.from_dict(item) for item in self._expect_list(data, endpoints.OPEN_ORDERS.path)]

    async def get_all_open_orders(self) -> List[Order]:
        data = await self._call(endpoints.ALL_OPEN_ORDERS)
        return [Order.from_dict(item) for item in self._expect_list(data, endpoints.ALL_OPEN_ORDERS.path)]

    async def get_all_orders(self, query: OrdersQuery) -> List[Order]:
        data = await self._call(endpoints.ALL_ORDERS, query.to_params())
        return [Order.from_dict(item) for item in self._expect_list(data, endpoints.ALL_ORDERS.path)]

    async def cancel_all_open_orders(self, symbol: str) -> List[Order]:
        data = await self._call(endpoints.CANCEL_OPEN_ORDERS, {"symbol": symbol})
        orders = [Order.from_dict(item) for item in self._expect_list(data, endpoints.CANCEL_OPEN_ORDERS.path)]
        self.logger.info(f"Canceled {len(orders)} open order(s) on {symbol}")
        return orders

    async def order_status(self, request: OrderStatusRequest) -> Order:
        data = await self._call(endpoints.ORDER_STATUS, request.to_params())
        return Order.from_dict(data)

    async def test_order_status(self, request: OrderStatusRequest) -> Dict[str, Any]:
        return await self._call(endpoints.ORDER_STATUS_TEST, request.to_params()) or {}

    async def place_order(self, order: OrderRequest) -> Transaction:
        """
        Validate and submit an order.

        Raises:
            ValidationError: Local validation failed; nothing was sent
        """
        order.validate()
        data = await self._call(endpoints.NEW_ORDER, order.to_params())
        transaction = Transaction.from_dict(data)
        self.logger.info(
            f"Placed {order.side.value} {order.order_type.value} {order.symbol} "
            f"-> order {transaction.order_id} ({transaction.status})"
        )
        return transaction

    async def place_test_order(self, order: OrderRequest) -> Dict[str, Any]:
        order.validate()
        return await self._call(endpoints.NEW_ORDER_TEST, order.to_params()) or {}

    async def cancel_order(self, cancellation: OrderCancellation) -> OrderCanceled:
        data = await self._call(endpoints.CANCEL_ORDER, cancellation.to_params())
        canceled = OrderCanceled.from_dict(data)
        self.logger.info(f"Canceled order {canceled.order_id} on {canceled.symbol}")
        return canceled

    async def test_cancel_order(self, cancellation: OrderCancellation) -> Dict[str, Any]:
        return await self._call(endpoints.CANCEL_ORDER_TEST, cancellation.to_params()) or {}
