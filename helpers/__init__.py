"""
Helper modules for the exchange connector.
"""

from .unified_logger import (
    UnifiedLogger,
    get_client_logger,
    get_core_logger,
    get_logger,
    get_stream_logger,
    get_transport_logger,
)

__all__ = [
    'UnifiedLogger',
    'get_logger',
    'get_transport_logger',
    'get_stream_logger',
    'get_client_logger',
    'get_core_logger',
]
