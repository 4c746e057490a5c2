"""Unit tests for connection state and the connection registry."""

import pytest

from relay.connection import Connection, ConnectionRegistry, ConnectionState
from relay.metrics import get_metrics_collector
from relay.transport.websocket_protocol import ConnectedMessage, ErrorMessage
from tests.helpers.relay_test_utils import drain


class TestConnectionState:
    """Test the connection state machine."""

    def test_initial_state(self) -> None:
        """Test connections start ATTACHED and open."""
        connection = Connection("c1")

        assert connection.state == ConnectionState.ATTACHED
        assert connection.is_open

    def test_join_leave_cycle(self) -> None:
        """Test ATTACHED → JOINED → JOINED → ATTACHED."""
        connection = Connection("c1")

        connection.transition_state(ConnectionState.JOINED)
        connection.transition_state(ConnectionState.JOINED)
        connection.transition_state(ConnectionState.ATTACHED)

        assert connection.state == ConnectionState.ATTACHED

    def test_closed_is_terminal(self) -> None:
        """Test no transition leaves CLOSED."""
        connection = Connection("c1")
        connection.transition_state(ConnectionState.CLOSED)

        assert not connection.is_open
        for target in ConnectionState:
            with pytest.raises(ValueError, match="Invalid state transition"):
                connection.transition_state(target)

    def test_attached_cannot_reattach(self) -> None:
        """Test ATTACHED → ATTACHED is rejected."""
        connection = Connection("c1")

        with pytest.raises(ValueError):
            connection.transition_state(ConnectionState.ATTACHED)


class TestDelivery:
    """Test enqueueing onto a connection's outbound channel."""

    def test_deliver_enqueues(self) -> None:
        """Test delivered messages wait in FIFO order."""
        connection = Connection("c1")
        first = ConnectedMessage(connection_id="c1")
        second = ErrorMessage(message="oops")

        assert connection.deliver(first)
        assert connection.deliver(second)
        assert drain(connection) == [first, second]

    def test_deliver_to_closed_connection(self) -> None:
        """Test delivery to a closed connection fails quietly."""
        connection = Connection("c1")
        connection.transition_state(ConnectionState.CLOSED)

        assert connection.deliver(ErrorMessage(message="late")) is False
        assert drain(connection) == []

    def test_deliver_drops_when_full(self) -> None:
        """Test a stalled reader drops messages instead of blocking."""
        connection = Connection("c1", outbound_queue_size=2)

        results = [connection.deliver(ErrorMessage(message=str(i))) for i in range(3)]

        assert results == [True, True, False]
        assert [m.message for m in drain(connection)] == ["0", "1"]  # type: ignore[union-attr]


class TestConnectionRegistry:
    """Test registration and best-effort fan-out."""

    def test_register_and_unregister(self) -> None:
        """Test connections are tracked and counted."""
        registry = ConnectionRegistry()

        connection = registry.register("c1")

        assert "c1" in registry
        assert registry.get("c1") is connection
        assert len(registry) == 1
        assert get_metrics_collector().get_summary()["connections_active"] == 1

        registry.unregister("c1")
        registry.unregister("c1")

        assert "c1" not in registry
        assert get_metrics_collector().get_summary()["connections_active"] == 0

    def test_register_duplicate_id(self) -> None:
        """Test connection ids are unique."""
        registry = ConnectionRegistry()
        registry.register("c1")

        with pytest.raises(ValueError, match="already registered"):
            registry.register("c1")

    def test_send_to_unknown_connection(self) -> None:
        """Test delivery to an unknown id is a counted failure."""
        registry = ConnectionRegistry()

        assert registry.send_to("ghost", ErrorMessage(message="x")) is False
        assert get_metrics_collector().get_summary()["delivery_failures"] == 1

    def test_broadcast_skips_failures(self) -> None:
        """Test one failing recipient does not stop the others."""
        registry = ConnectionRegistry(outbound_queue_size=1)
        a = registry.register("a")
        b = registry.register("b")
        c = registry.register("c")
        b.deliver(ErrorMessage(message="filler"))

        delivered = registry.broadcast(["a", "b", "ghost", "c"], ErrorMessage(message="hi"))

        assert delivered == 2
        assert len(drain(a)) == 1
        assert len(drain(c)) == 1
        assert get_metrics_collector().get_summary()["delivery_failures"] == 2
