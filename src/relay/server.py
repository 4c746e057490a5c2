"""Relay server with WebSocket transport and HTTP API.

Main server implementation that:
1. Wires the session store, membership manager, message relay and gateway
2. Starts the WebSocket transport participants connect through
3. Serves the session directory, token, health and metrics over HTTP
4. Accepts connections and runs one gateway task per connection
"""

import argparse
import asyncio
import logging
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite
from dotenv import load_dotenv

from relay.config import RelayConfig
from relay.connection import ConnectionRegistry
from relay.directory import setup_directory_routes
from relay.gateway import ConnectionGateway
from relay.health import setup_health_routes
from relay.membership import MembershipManager
from relay.message_relay import MessageRelay
from relay.store import SessionStore
from relay.token import EphemeralTokenIssuer, setup_token_routes
from relay.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


class RelayServer:
    """Owns every relay component and their lifecycles.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(self, config: RelayConfig) -> None:
        """Initialize relay server.

        Args:
            config: Server configuration
        """
        self.config = config

        self.store = SessionStore()
        self.connections = ConnectionRegistry(config.websocket.outbound_queue_size)
        self.membership = MembershipManager(self.store, self.connections, config.limits)
        self.relay = MessageRelay(self.store, self.membership, self.connections, config.limits)
        self.gateway = ConnectionGateway(self.connections, self.membership, self.relay)
        self.token_issuer = EphemeralTokenIssuer(config.token)

        ws_config = config.websocket
        self.transport = WebSocketTransport(
            host=ws_config.host,
            port=ws_config.port,
            max_connections=ws_config.max_connections,
            max_message_bytes=ws_config.max_message_bytes,
        )

        self._runner: AppRunner | None = None
        self._accept_task: asyncio.Task[None] | None = None
        self._connection_tasks: set[asyncio.Task[None]] = set()

    def create_http_app(self) -> Application:
        """Build the HTTP application with every route installed."""
        app = Application()
        setup_directory_routes(app, self.store)
        setup_token_routes(app, self.token_issuer)
        setup_health_routes(app, self.store, self.connections, self.transport)
        return app

    @property
    def ws_port(self) -> int:
        return self.transport.bound_port

    @property
    def http_port(self) -> int | None:
        """Bound HTTP port, or None when the HTTP API is not running."""
        if self._runner is None or not self._runner.addresses:
            return None
        port: int = self._runner.addresses[0][1]
        return port

    async def start(self) -> None:
        """Start the transport, the HTTP API and the accept loop.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        await self.transport.start()
        logger.info("WebSocket transport started", extra={"port": self.ws_port})

        if self.config.http.enabled:
            self._runner = AppRunner(self.create_http_app())
            await self._runner.setup()
            site = TCPSite(self._runner, self.config.http.host, self.config.http.port)
            await site.start()
            logger.info("HTTP API started", extra={"port": self.http_port})

        self._accept_task = asyncio.create_task(self._accept_loop())
        logger.info("Relay server ready")

    async def _accept_loop(self) -> None:
        while True:
            transport_connection = await self.transport.accept_connection()
            logger.info(
                "New WebSocket connection accepted",
                extra={"connection_id": transport_connection.connection_id},
            )
            task = asyncio.create_task(self.gateway.handle_connection(transport_connection))
            self._connection_tasks.add(task)
            task.add_done_callback(self._connection_tasks.discard)

    async def stop(self) -> None:
        """Stop accepting, close every connection and release resources."""
        logger.info("Shutting down relay server")

        if self._accept_task is not None:
            self._accept_task.cancel()
            await asyncio.gather(self._accept_task, return_exceptions=True)
            self._accept_task = None

        # Closing the transport ends every reader, which lets handlers finish
        await self.transport.stop()
        logger.info("WebSocket transport stopped")

        if self._connection_tasks:
            logger.info(
                "Waiting for connections to close",
                extra={"count": len(self._connection_tasks)},
            )
            _, pending = await asyncio.wait(
                set(self._connection_tasks),
                timeout=self.config.graceful_shutdown_timeout_s,
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP API stopped")

        await self.token_issuer.close()
        logger.info("Relay server stopped")


async def start_server(config_path: Path | None = None) -> None:
    """Run the relay server until cancelled.

    Args:
        config_path: Path to YAML config file (defaults used if missing)
    """
    config = RelayConfig.from_yaml_with_defaults(config_path)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    server = RelayServer(config)
    await server.start()

    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    finally:
        await server.stop()


def main() -> None:
    """Entry point for the relay server."""
    parser = argparse.ArgumentParser(description="Voice session relay server")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent.parent.parent / "configs" / "relay.yaml",
        help="Path to relay config YAML file",
    )
    args = parser.parse_args()

    # Load environment variables (OPENAI_API_KEY, PORT, ...) from .env
    load_dotenv()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Relay server interrupted")


if __name__ == "__main__":
    main()
