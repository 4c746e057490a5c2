"""Per-connection state and outbound fan-out.

A ``Connection`` is the relay-side half of one transport attachment. It owns
two channels: an inbound queue of parsed client messages and rejected
frames (terminated by a ``None`` disconnect sentinel) consumed by the gateway's dispatch loop, and a
bounded outbound queue drained onto the transport by a writer task.

``ConnectionRegistry`` maps connection ids to connections and implements the
``Broadcaster`` protocol used by the membership manager and message relay.
Delivery only enqueues, so it never awaits transport I/O.
"""

import asyncio
import logging
from collections.abc import Iterable
from enum import Enum
from typing import Protocol

from relay.errors import RelayError
from relay.metrics import get_metrics_collector
from relay.transport.websocket_protocol import ClientMessage, ServerMessage

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state machine states.

    State Transitions:
    - ATTACHED → JOINED (on successful join)
    - JOINED → JOINED (on re-join; old session is left first)
    - JOINED → ATTACHED (on explicit leave)
    - ATTACHED/JOINED → CLOSED (on disconnect)

    States:
    - ATTACHED: Transport open, no session bound
    - JOINED: Bound to exactly one session
    - CLOSED: Terminal, transport gone
    """

    ATTACHED = "attached"
    JOINED = "joined"
    CLOSED = "closed"


# Valid state transitions
VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.ATTACHED: {ConnectionState.JOINED, ConnectionState.CLOSED},
    ConnectionState.JOINED: {
        ConnectionState.JOINED,
        ConnectionState.ATTACHED,
        ConnectionState.CLOSED,
    },
    ConnectionState.CLOSED: set(),  # Terminal state
}


class Broadcaster(Protocol):
    """Best-effort delivery of server messages to connections."""

    def send_to(self, connection_id: str, message: ServerMessage) -> bool: ...

    def broadcast(self, connection_ids: Iterable[str], message: ServerMessage) -> int: ...


class Connection:
    """Relay-side state for one transport connection."""

    def __init__(self, connection_id: str, outbound_queue_size: int = 256) -> None:
        """Initialize connection.

        Args:
            connection_id: Transport-assigned identifier
            outbound_queue_size: Maximum undelivered outbound messages
        """
        self.connection_id = connection_id
        self.state = ConnectionState.ATTACHED
        self.inbound: asyncio.Queue[ClientMessage | RelayError | None] = asyncio.Queue()
        self.outbound: asyncio.Queue[ServerMessage] = asyncio.Queue(maxsize=outbound_queue_size)

    @property
    def is_open(self) -> bool:
        return self.state != ConnectionState.CLOSED

    def deliver(self, message: ServerMessage) -> bool:
        """Enqueue a message for the writer task.

        Returns:
            False if the connection is closed or its outbound queue is full
        """
        if not self.is_open:
            return False

        try:
            self.outbound.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Outbound queue full, dropping message",
                extra={"connection_id": self.connection_id, "type": message.type},
            )
            return False
        return True

    def transition_state(self, new_state: ConnectionState) -> None:
        """Transition connection to a new state with validation.

        Args:
            new_state: Target state

        Raises:
            ValueError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Invalid state transition: {self.state.value} → {new_state.value}")

        old_state = self.state
        self.state = new_state

        if old_state != new_state:
            logger.info(
                "Connection state transition",
                extra={
                    "connection_id": self.connection_id,
                    "from_state": old_state.value,
                    "to_state": new_state.value,
                },
            )


class ConnectionRegistry:
    """Live connections keyed by id; the relay's delivery surface."""

    def __init__(self, outbound_queue_size: int = 256) -> None:
        self._outbound_queue_size = outbound_queue_size
        self._connections: dict[str, Connection] = {}
        self._metrics = get_metrics_collector()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def register(self, connection_id: str) -> Connection:
        """Create and track a connection.

        Raises:
            ValueError: If the id is already registered
        """
        if connection_id in self._connections:
            raise ValueError(f"Connection {connection_id} already registered")

        connection = Connection(connection_id, self._outbound_queue_size)
        self._connections[connection_id] = connection
        self._metrics.record_connection_open()
        return connection

    def unregister(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            self._metrics.record_connection_close()

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def send_to(self, connection_id: str, message: ServerMessage) -> bool:
        """Deliver to one connection, swallowing failures."""
        connection = self._connections.get(connection_id)
        if connection is not None and connection.deliver(message):
            return True

        logger.debug(
            "Delivery skipped",
            extra={"connection_id": connection_id, "type": message.type},
        )
        self._metrics.record_delivery_failure()
        return False

    def broadcast(self, connection_ids: Iterable[str], message: ServerMessage) -> int:
        """Deliver to each connection; one failure never stops the rest.

        Returns:
            Number of connections the message was enqueued for
        """
        delivered = 0
        for connection_id in list(connection_ids):
            if self.send_to(connection_id, message):
                delivered += 1
        self._metrics.record_fanout(delivered)
        return delivered
