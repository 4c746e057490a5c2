"""Unit tests for the WebSocket transport.

Runs the transport on an ephemeral loopback port and talks to it with the
websockets client.
"""

import asyncio
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
import websockets
from websockets.asyncio.client import connect

from relay.transport.websocket_protocol import ConnectedMessage
from relay.transport.websocket_transport import WebSocketTransport


@pytest_asyncio.fixture
async def transport() -> AsyncIterator[WebSocketTransport]:
    ws = WebSocketTransport(host="127.0.0.1", port=0, max_connections=2)
    await ws.start()
    yield ws
    await ws.stop()


def _url(transport: WebSocketTransport) -> str:
    return f"ws://127.0.0.1:{transport.bound_port}"


@pytest.mark.asyncio
async def test_start_and_stop() -> None:
    """Test lifecycle flags."""
    ws = WebSocketTransport(host="127.0.0.1", port=0)
    assert not ws.is_running
    assert ws.transport_type == "websocket"

    await ws.start()
    assert ws.is_running
    assert ws.bound_port != 0

    await ws.stop()
    assert not ws.is_running


@pytest.mark.asyncio
async def test_start_twice_fails(transport: WebSocketTransport) -> None:
    """Test a running transport cannot be started again."""
    with pytest.raises(RuntimeError, match="already running"):
        await transport.start()


@pytest.mark.asyncio
async def test_accept_requires_running() -> None:
    """Test accept_connection on a stopped transport."""
    ws = WebSocketTransport(host="127.0.0.1", port=0)

    with pytest.raises(RuntimeError, match="not running"):
        await ws.accept_connection()


@pytest.mark.asyncio
async def test_text_frames_round_trip(transport: WebSocketTransport) -> None:
    """Test frames flow both ways over an accepted connection."""
    async with connect(_url(transport)) as client:
        server_side = await asyncio.wait_for(transport.accept_connection(), timeout=2.0)
        assert server_side.connection_id.startswith("ws-")
        assert server_side.is_connected

        await server_side.send_message(ConnectedMessage(connection_id=server_side.connection_id))
        greeting = await asyncio.wait_for(client.recv(), timeout=2.0)
        assert server_side.connection_id in greeting

        await client.send(b"\x00binary is skipped")
        await client.send('{"type": "leave_session"}')
        frames = server_side.receive_text()
        assert await asyncio.wait_for(anext(frames), timeout=2.0) == '{"type": "leave_session"}'

        await client.close()
        remaining = [frame async for frame in frames]
        assert remaining == []

    assert not server_side.is_connected
    with pytest.raises(ConnectionError):
        await server_side.send_message(ConnectedMessage(connection_id="x"))


@pytest.mark.asyncio
async def test_connection_limit(transport: WebSocketTransport) -> None:
    """Test clients beyond max_connections are closed with 1013."""
    async with connect(_url(transport)), connect(_url(transport)):
        await asyncio.wait_for(transport.accept_connection(), timeout=2.0)
        await asyncio.wait_for(transport.accept_connection(), timeout=2.0)
        assert transport.active_connections == 2

        async with connect(_url(transport)) as third:
            with pytest.raises(websockets.exceptions.ConnectionClosed):
                await asyncio.wait_for(third.recv(), timeout=2.0)
            assert third.close_code == 1013


@pytest.mark.asyncio
async def test_server_side_close(transport: WebSocketTransport) -> None:
    """Test closing from the server ends the client's stream."""
    async with connect(_url(transport)) as client:
        server_side = await asyncio.wait_for(transport.accept_connection(), timeout=2.0)

        await server_side.close()
        await server_side.close()

        with pytest.raises(websockets.exceptions.ConnectionClosed):
            await asyncio.wait_for(client.recv(), timeout=2.0)
        assert not server_side.is_connected
