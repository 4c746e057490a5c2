"""Connection gateway.

Binds each transport connection to relay-side state and runs its three
loops:

- reader: transport frames → parsed client messages or parse errors → inbound queue
- dispatcher: inbound queue → membership manager / message relay
- writer: outbound queue → transport

Events from one connection are dispatched strictly one at a time. Errors are
reported to the originating connection only and never end the connection.
"""

import asyncio
import logging

from relay.connection import Connection, ConnectionRegistry, ConnectionState
from relay.errors import InvalidInput, RelayError
from relay.membership import MembershipManager
from relay.message_relay import MessageRelay
from relay.metrics import get_metrics_collector
from relay.transport.base import TransportConnection
from relay.transport.websocket_protocol import (
    ClientMessage,
    ConnectedMessage,
    ErrorMessage,
    JoinSessionMessage,
    LeaveSessionMessage,
    SendMessageMessage,
    parse_client_message,
)

logger = logging.getLogger(__name__)


class ConnectionGateway:
    """Routes protocol events between connections and the relay core."""

    def __init__(
        self,
        connections: ConnectionRegistry,
        membership: MembershipManager,
        relay: MessageRelay,
    ) -> None:
        self.connections = connections
        self.membership = membership
        self.relay = relay
        self._metrics = get_metrics_collector()

    def attach(self, connection_id: str) -> Connection:
        """Register a new connection in the ATTACHED state."""
        connection = self.connections.register(connection_id)
        connection.deliver(ConnectedMessage(connection_id=connection_id))
        logger.info("Connection attached", extra={"connection_id": connection_id})
        return connection

    async def dispatch(self, connection: Connection, message: ClientMessage) -> None:
        """Handle one inbound client message.

        Relay errors are reported to this connection as an ``error`` event;
        unexpected exceptions are logged and reported as INTERNAL_ERROR.
        """
        if not connection.is_open:
            return

        try:
            if isinstance(message, JoinSessionMessage):
                await self.membership.join(
                    connection.connection_id, message.session_id, message.display_name
                )
                connection.transition_state(ConnectionState.JOINED)

            elif isinstance(message, SendMessageMessage):
                binding = self.membership.binding_for(connection.connection_id)
                if (
                    binding is not None
                    and message.session_id is not None
                    and message.session_id != binding.session_id
                ):
                    raise InvalidInput(
                        f"sessionId {message.session_id!r} does not match joined session"
                    )
                await self.relay.send(connection.connection_id, message.body, message.ai_response)

            elif isinstance(message, LeaveSessionMessage):
                await self.membership.leave(connection.connection_id)
                if connection.state == ConnectionState.JOINED:
                    connection.transition_state(ConnectionState.ATTACHED)

        except RelayError as e:
            self.reject(connection, e)
        except Exception as e:
            logger.exception(
                "Unexpected error handling client message",
                extra={"connection_id": connection.connection_id, "type": message.type},
            )
            connection.deliver(ErrorMessage(message=f"Internal error: {e}"))

    def reject(self, connection: Connection, error: RelayError) -> None:
        """Report a rejected event to its sender only."""
        self._metrics.record_rejected_event()
        logger.info(
            "Client event rejected",
            extra={
                "connection_id": connection.connection_id,
                "code": error.code,
                "error": str(error),
            },
        )
        connection.deliver(ErrorMessage(message=str(error), code=error.code))

    async def disconnect(self, connection: Connection) -> None:
        """Tear down a connection: leave its session and mark it CLOSED.

        Idempotent.
        """
        if not connection.is_open:
            return

        await self.membership.leave(connection.connection_id)
        connection.transition_state(ConnectionState.CLOSED)
        self.connections.unregister(connection.connection_id)
        logger.info("Connection closed", extra={"connection_id": connection.connection_id})

    async def run_dispatch_loop(self, connection: Connection) -> None:
        """Consume the inbound queue until the disconnect sentinel arrives.

        Frames the reader could not parse arrive as errors and are rejected
        in turn, so replies follow the order the frames were received in.
        """
        while True:
            item = await connection.inbound.get()
            if item is None:
                break
            if isinstance(item, RelayError):
                self.reject(connection, item)
                continue
            await self.dispatch(connection, item)

    async def _reader_loop(self, connection: Connection, transport: TransportConnection) -> None:
        try:
            async for raw in transport.receive_text():
                try:
                    message = parse_client_message(raw)
                except InvalidInput as e:
                    await connection.inbound.put(e)
                    continue
                await connection.inbound.put(message)
        except ConnectionError as e:
            logger.info(
                "Transport receive ended with error",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
        finally:
            connection.inbound.put_nowait(None)

    async def _writer_loop(self, connection: Connection, transport: TransportConnection) -> None:
        while True:
            message = await connection.outbound.get()
            try:
                await transport.send_message(message)
            except ConnectionError:
                logger.debug(
                    "Transport gone, stopping writer",
                    extra={"connection_id": connection.connection_id},
                )
                return

    async def handle_connection(self, transport: TransportConnection) -> None:
        """Serve one transport connection from attach to close.

        Args:
            transport: Accepted transport connection
        """
        connection = self.attach(transport.connection_id)
        reader = asyncio.create_task(self._reader_loop(connection, transport))
        writer = asyncio.create_task(self._writer_loop(connection, transport))

        try:
            await self.run_dispatch_loop(connection)
        except asyncio.CancelledError:
            logger.info(
                "Connection handler cancelled",
                extra={"connection_id": connection.connection_id},
            )
            raise
        finally:
            await self.disconnect(connection)

            for task in (reader, writer):
                if not task.done():
                    task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)

            await transport.close()
