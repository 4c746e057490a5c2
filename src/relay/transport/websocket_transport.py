"""WebSocket transport implementation.

Provides WebSocket-based client connections for the relay. Each accepted
socket becomes a WebSocketConnection queued for the server loop to hand to
the connection gateway.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.protocol import State

from relay.transport.base import Transport, TransportConnection
from relay.transport.websocket_protocol import ServerMessage

logger = logging.getLogger(__name__)

# Close code for "try again later" (RFC 6455 registry)
CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketConnection(TransportConnection):
    """WebSocket-based transport connection.

    Moves JSON text frames; parsing and validation happen in the gateway.
    """

    def __init__(self, websocket: ServerConnection, connection_id: str) -> None:
        """Initialize WebSocket connection.

        Args:
            websocket: WebSocket connection
            connection_id: Unique connection identifier
        """
        self._websocket = websocket
        self._connection_id = connection_id
        self._connected = True

        logger.info(
            "WebSocket connection initialized",
            extra={"connection_id": connection_id, "remote": websocket.remote_address},
        )

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def is_connected(self) -> bool:
        return self._connected and self._websocket.state == State.OPEN

    async def send_message(self, message: ServerMessage) -> None:
        """Send one server message as a JSON text frame.

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        if not self.is_connected:
            raise ConnectionError("WebSocket connection is closed")

        try:
            await self._websocket.send(message.to_json())
        except websockets.exceptions.ConnectionClosed as e:
            self._connected = False
            raise ConnectionError(f"WebSocket connection closed: {e}") from e

    async def receive_text(self) -> AsyncIterator[str]:
        """Receive text frames until the client disconnects.

        Binary frames are skipped.

        Raises:
            ConnectionError: If the connection breaks abnormally
        """
        try:
            async for raw_message in self._websocket:
                if not isinstance(raw_message, str):
                    logger.warning(
                        "Received non-text WebSocket message, skipping",
                        extra={"connection_id": self._connection_id},
                    )
                    continue
                yield raw_message

        except websockets.exceptions.ConnectionClosed:
            logger.info(
                "WebSocket connection closed by client",
                extra={"connection_id": self._connection_id},
            )
        except Exception as e:
            logger.error(
                "Error in receive_text",
                extra={"connection_id": self._connection_id, "error": str(e)},
            )
            raise ConnectionError(f"WebSocket receive error: {e}") from e
        finally:
            self._connected = False

    async def close(self) -> None:
        """Close the WebSocket if it is still open."""
        self._connected = False
        if self._websocket.state in (State.CLOSING, State.CLOSED):
            return

        logger.info("Closing WebSocket connection", extra={"connection_id": self._connection_id})
        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during connection close",
                extra={"connection_id": self._connection_id, "error": str(e)},
            )


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Manages the WebSocket server lifecycle and creates WebSocketConnection
    instances for incoming clients, refusing clients beyond max_connections.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        max_connections: int = 100,
        max_message_bytes: int = 2**20,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            host: Bind host address
            port: Bind port (0 picks an ephemeral port)
            max_connections: Maximum concurrent connections
            max_message_bytes: Maximum inbound frame size
        """
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_message_bytes = max_message_bytes
        self._server: Server | None = None
        self._running = False
        self._active_connections = 0
        self._connection_queue: asyncio.Queue[WebSocketConnection] = asyncio.Queue()

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "max_connections": max_connections},
        )

    @property
    def transport_type(self) -> str:
        return "websocket"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_connections(self) -> int:
        return self._active_connections

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when configured with port 0)."""
        if self._server is None:
            return self._port
        for sock in self._server.sockets:
            port: int = sock.getsockname()[1]
            return port
        return self._port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If already running or the server fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info(
            "Starting WebSocket server", extra={"host": self._host, "port": self._port}
        )

        try:
            self._server = await serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_bytes,
            )
            self._running = True

            logger.info(
                "WebSocket server started",
                extra={"host": self._host, "port": self.bound_port},
            )

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the WebSocket server, closing every open connection."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")

        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def accept_connection(self) -> TransportConnection:
        """Wait for the next client connection.

        Raises:
            RuntimeError: If the transport is not running
        """
        if not self._running:
            raise RuntimeError("WebSocket transport is not running")

        return await self._connection_queue.get()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle incoming WebSocket connection.

        The connection stays open for as long as this coroutine runs.

        Args:
            websocket: WebSocket connection
        """
        if self._active_connections >= self._max_connections:
            logger.warning(
                "Connection limit reached, refusing client",
                extra={"remote": websocket.remote_address, "limit": self._max_connections},
            )
            await websocket.close(CLOSE_TRY_AGAIN_LATER, "server full")
            return

        connection_id = f"ws-{uuid.uuid4().hex[:12]}"
        self._active_connections += 1

        logger.info(
            "New WebSocket connection",
            extra={"connection_id": connection_id, "remote": websocket.remote_address},
        )

        connection = WebSocketConnection(websocket, connection_id)
        await self._connection_queue.put(connection)

        try:
            await websocket.wait_closed()
        finally:
            self._active_connections -= 1
            logger.info("WebSocket connection closed", extra={"connection_id": connection_id})
