"""Transport layer for relay client connections.

Provides abstraction over transport types for client communication.
"""

from relay.transport.base import Transport, TransportConnection
from relay.transport.websocket_transport import (
    WebSocketConnection,
    WebSocketTransport,
)

__all__ = [
    "Transport",
    "TransportConnection",
    "WebSocketConnection",
    "WebSocketTransport",
]
