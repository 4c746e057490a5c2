"""Shared fakes and helpers for relay tests."""

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable

from relay.connection import Connection
from relay.transport.base import TransportConnection
from relay.transport.websocket_protocol import ServerMessage


class RecordingBroadcaster:
    """Broadcaster that records deliveries instead of enqueueing them."""

    def __init__(self, failing: Iterable[str] = ()) -> None:
        self.failing = set(failing)
        self.deliveries: list[tuple[str, ServerMessage]] = []

    def send_to(self, connection_id: str, message: ServerMessage) -> bool:
        if connection_id in self.failing:
            return False
        self.deliveries.append((connection_id, message))
        return True

    def broadcast(self, connection_ids: Iterable[str], message: ServerMessage) -> int:
        return sum(self.send_to(cid, message) for cid in list(connection_ids))

    def received_by(self, connection_id: str) -> list[ServerMessage]:
        return [m for cid, m in self.deliveries if cid == connection_id]

    def of_type(self, connection_id: str, message_type: str) -> list[ServerMessage]:
        return [m for m in self.received_by(connection_id) if m.type == message_type]

    def clear(self) -> None:
        self.deliveries.clear()


class FakeTransportConnection(TransportConnection):
    """In-memory transport connection driven by the test."""

    def __init__(self, connection_id: str = "fake-001") -> None:
        self._connection_id = connection_id
        self._frames: asyncio.Queue[str | None] = asyncio.Queue()
        self._connected = True
        self.sent: list[ServerMessage] = []
        self.closed = False

    def push(self, frame: str) -> None:
        """Queue a raw frame as if the client had sent it."""
        self._frames.put_nowait(frame)

    def hang_up(self) -> None:
        """Simulate the client disconnecting."""
        self._frames.put_nowait(None)

    async def send_message(self, message: ServerMessage) -> None:
        if not self._connected:
            raise ConnectionError("Not connected")
        self.sent.append(message)

    async def receive_text(self) -> AsyncIterator[str]:
        while True:
            frame = await self._frames.get()
            if frame is None:
                self._connected = False
                return
            yield frame

    async def close(self) -> None:
        self._connected = False
        self.closed = True

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def is_connected(self) -> bool:
        return self._connected

    def sent_of_type(self, message_type: str) -> list[ServerMessage]:
        return [m for m in self.sent if m.type == message_type]


def drain(connection: Connection) -> list[ServerMessage]:
    """Pop everything currently queued on a connection's outbound channel."""
    messages: list[ServerMessage] = []
    while not connection.outbound.empty():
        messages.append(connection.outbound.get_nowait())
    return messages


async def wait_until(predicate: Callable[[], bool], timeout_s: float = 2.0) -> None:
    """Poll until predicate() is true.

    Raises:
        TimeoutError: If the predicate stays false for timeout_s
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise TimeoutError("Condition not met in time")
        await asyncio.sleep(0.01)
