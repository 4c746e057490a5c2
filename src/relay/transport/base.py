"""Base transport abstraction for client connections.

Defines the interface a transport implementation must provide so the
connection gateway can stay independent of transport specifics.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from relay.transport.websocket_protocol import ServerMessage


class TransportConnection(ABC):
    """Base class for transport-specific connections.

    Each transport provides a concrete connection type that moves protocol
    frames while conforming to this interface.
    """

    @abstractmethod
    async def send_message(self, message: ServerMessage) -> None:
        """Send one server message to the client.

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        pass

    @abstractmethod
    async def receive_text(self) -> AsyncIterator[str]:
        """Receive raw text frames from the client.

        Iteration ends when the client disconnects.

        Yields:
            str: One text frame

        Raises:
            ConnectionError: If the connection breaks abnormally
        """
        # Using yield to make this an async generator
        if False:
            yield ""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection, ignoring errors from an already-dead peer."""
        pass

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique connection identifier for logging and tracking."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is still active."""
        pass


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a transport server and hands out a
    TransportConnection for every client that attaches.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails (for network transports)
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport server and close all connections."""
        pass

    @abstractmethod
    async def accept_connection(self) -> TransportConnection:
        """Wait for the next client connection.

        Raises:
            RuntimeError: If the transport is not running
        """
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        pass
