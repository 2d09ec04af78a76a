"""
Exchange Clients Library

Exchange-specific facades built on the shared ``networking`` (signed,
rate-limited REST) and ``streaming`` (resilient websocket subscriptions)
layers.

Modules:
    - binance: Binance spot account, market data and stream client
"""

from .binance import BinanceClient

__all__ = ["BinanceClient"]
