"""
Binance spot REST endpoints with their declared rate-limit cost.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from networking.models import Bucket, HTTPMethod, RequestDescriptor


@dataclass(frozen=True)
class Endpoint:
    method: HTTPMethod
    path: str
    weight: int = 1
    bucket: str = Bucket.REQUESTS
    signed: bool = True
    keyed: bool = False

    def descriptor(self, params: Optional[Mapping[str, Any]] = None, *, weight: Optional[int] = None) -> RequestDescriptor:
        return RequestDescriptor.build(
            self.method,
            self.path,
            params,
            signed=self.signed,
            weight=self.weight if weight is None else weight,
            bucket=self.bucket,
            keyed=self.keyed,
        )


# Public market data
PING = Endpoint(HTTPMethod.GET, "/api/v3/ping", weight=1, signed=False)
SERVER_TIME = Endpoint(HTTPMethod.GET, "/api/v3/time", weight=1, signed=False)
DEPTH = Endpoint(HTTPMethod.GET, "/api/v3/depth", weight=5, signed=False)
RECENT_TRADES = Endpoint(HTTPMethod.GET, "/api/v3/trades", weight=25, signed=False)

# Account / orders
ACCOUNT = Endpoint(HTTPMethod.GET, "/api/v3/account", weight=20)
OPEN_ORDERS = Endpoint(HTTPMethod.GET, "/api/v3/openOrders", weight=6)
ALL_OPEN_ORDERS = Endpoint(HTTPMethod.GET, "/api/v3/openOrders", weight=80)
CANCEL_OPEN_ORDERS = Endpoint(HTTPMethod.DELETE, "/api/v3/openOrders", weight=1)
ALL_ORDERS = Endpoint(HTTPMethod.GET, "/api/v3/allOrders", weight=20)
ORDER_STATUS = Endpoint(HTTPMethod.GET, "/api/v3/order", weight=4)
ORDER_STATUS_TEST = Endpoint(HTTPMethod.GET, "/api/v3/order/test", weight=1)
NEW_ORDER = Endpoint(HTTPMethod.POST, "/api/v3/order", weight=1, bucket=Bucket.ORDERS)
NEW_ORDER_TEST = Endpoint(HTTPMethod.POST, "/api/v3/order/test", weight=1)
CANCEL_ORDER = Endpoint(HTTPMethod.DELETE, "/api/v3/order", weight=1)
CANCEL_ORDER_TEST = Endpoint(HTTPMethod.DELETE, "/api/v3/order/test", weight=1)
MY_TRADES = Endpoint(HTTPMethod.GET, "/api/v3/myTrades", weight=20)
VIRTUAL_SUB_ACCOUNT = Endpoint(HTTPMethod.POST, "/sapi/v1/sub-account/virtualSubAccount", weight=1)

# User data stream (API key only, no signature)
USER_STREAM_START = Endpoint(HTTPMethod.POST, "/api/v3/userDataStream", weight=2, signed=False, keyed=True)
USER_STREAM_KEEPALIVE = Endpoint(HTTPMethod.PUT, "/api/v3/userDataStream", weight=2, signed=False, keyed=True)
USER_STREAM_CLOSE = Endpoint(HTTPMethod.DELETE, "/api/v3/userDataStream", weight=2, signed=False, keyed=True)


def depth_weight(limit: int) -> int:
    """Request weight of ``/api/v3/depth`` for a given ``limit``."""
    if limit <= 100:
        return 5
    if limit <= 500:
        return 25
    if limit <= 1000:
        return 50
    return 250
