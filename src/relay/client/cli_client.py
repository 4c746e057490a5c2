"""WebSocket CLI client for the relay.

Provides a command-line interface for listing sessions, joining one under a
display name, sending chat lines and watching everything the session says.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

import aiohttp
import websockets
from websockets.asyncio.client import ClientConnection

from relay.errors import InvalidInput
from relay.models import Message
from relay.transport.websocket_protocol import (
    ConnectedMessage,
    ErrorMessage,
    JoinSessionMessage,
    LeaveSessionMessage,
    NewMessageMessage,
    SendMessageMessage,
    SessionHistoryMessage,
    UserJoinedMessage,
    UserLeftMessage,
    parse_server_message,
)

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /join <session>  - Switch to another session
  /leave           - Leave the current session
  /quit            - Exit client
  /help            - Show this help
"""


async def fetch_sessions(http_url: str) -> list[dict[str, Any]]:
    """Fetch the session directory.

    Args:
        http_url: Base URL of the relay HTTP API (e.g., http://localhost:3000)

    Returns:
        List of {"id", "userCount"} entries
    """
    async with aiohttp.ClientSession() as session:
        async with session.get(f"{http_url.rstrip('/')}/api/sessions") as response:
            response.raise_for_status()
            data: list[dict[str, Any]] = await response.json()
            return data


def format_message(message: Message) -> str:
    """Render one log entry as a single line."""
    if message.body is not None:
        return f"[{message.author}] {message.body}"
    if isinstance(message.ai_response, str):
        return f"[assistant] {message.ai_response}"
    return f"[assistant] {json.dumps(message.ai_response)}"


class CLIClient:
    """WebSocket CLI client for relay sessions."""

    def __init__(
        self,
        server_url: str,
        session_id: str,
        username: str,
        verbose: bool = False,
    ) -> None:
        """Initialize CLI client.

        Args:
            server_url: WebSocket server URL (e.g., ws://localhost:8080)
            session_id: Session to join on connect
            username: Display name
            verbose: Enable verbose logging
        """
        self.server_url = server_url
        self.session_id: str | None = session_id
        self.username = username
        self.verbose = verbose
        self.connection_id: str | None = None
        self.members: list[str] = []
        self.running = True

    async def join(self, websocket: ClientConnection, session_id: str) -> None:
        message = JoinSessionMessage(session_id=session_id, display_name=self.username)
        await websocket.send(message.to_json())
        self.session_id = session_id
        logger.debug(f"Joining session {session_id}")

    async def leave(self, websocket: ClientConnection) -> None:
        await websocket.send(LeaveSessionMessage().to_json())
        self.session_id = None
        self.members = []

    async def send_chat(self, websocket: ClientConnection, text: str) -> None:
        message = SendMessageMessage(session_id=self.session_id, body=text)
        await websocket.send(message.to_json())
        logger.debug(f"Sent: {text}")

    def handle_message(self, message_data: str) -> str | None:
        """Handle one server frame.

        Args:
            message_data: Raw JSON message from server

        Returns:
            Text to print, or None if nothing should be shown
        """
        try:
            message = parse_server_message(message_data)
        except InvalidInput as e:
            logger.warning(f"Unreadable server message: {e}")
            return None

        if isinstance(message, ConnectedMessage):
            self.connection_id = message.connection_id
            return None

        if isinstance(message, UserJoinedMessage):
            self.members = message.members
            return f"* {message.display_name} joined ({', '.join(message.members)})"

        if isinstance(message, UserLeftMessage):
            self.members = message.members
            return f"* {message.display_name} left ({', '.join(message.members)})"

        if isinstance(message, SessionHistoryMessage):
            if not message.messages:
                return f"* {self.session_id}: no messages yet"
            return "\n".join(format_message(m) for m in message.messages)

        if isinstance(message, NewMessageMessage):
            return format_message(message.to_message())

        if isinstance(message, ErrorMessage):
            logger.error(f"Server error [{message.code}]: {message.message}")
            return f"! {message.message}"

        return None

    async def receive_messages(self, websocket: ClientConnection) -> None:
        try:
            async for raw in websocket:
                text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                output = self.handle_message(text)
                if output:
                    print(output)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed by server")
        finally:
            self.running = False

    async def handle_input(self, websocket: ClientConnection, text: str) -> None:
        """Act on one line of user input."""
        text = text.strip()
        if not text:
            return

        if not text.startswith("/"):
            await self.send_chat(websocket, text)
            return

        command, _, argument = text[1:].partition(" ")
        command = command.lower()

        if command == "quit":
            self.running = False
        elif command == "help":
            print(HELP_TEXT)
        elif command == "leave":
            await self.leave(websocket)
        elif command == "join" and argument.strip():
            await self.join(websocket, argument.strip())
        else:
            print(f"Unknown command: {text}")
            print("Type /help for available commands")

    async def input_loop(self, websocket: ClientConnection) -> None:
        print(HELP_TEXT)
        loop = asyncio.get_running_loop()

        while self.running:
            try:
                text = await loop.run_in_executor(None, input, "")
            except EOFError:
                self.running = False
                break
            await self.handle_input(websocket, text)

        await websocket.close()

    async def run(self) -> None:
        """Connect, join and run input and receive loops until exit."""
        async with websockets.connect(self.server_url) as websocket:
            logger.info(f"Connected to {self.server_url}")

            def signal_handler() -> None:
                self.running = False

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, signal_handler)

            try:
                if self.session_id:
                    await self.join(websocket, self.session_id)
                await asyncio.gather(
                    self.input_loop(websocket),
                    self.receive_messages(websocket),
                )
            finally:
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.remove_signal_handler(sig)


def main() -> None:
    """Main entry point for CLI client."""
    parser = argparse.ArgumentParser(description="CLI client for shared voice/chat sessions")
    parser.add_argument(
        "--host",
        type=str,
        default="ws://localhost:8080",
        help="WebSocket server URL (default: ws://localhost:8080)",
    )
    parser.add_argument(
        "--http",
        type=str,
        default="http://localhost:3000",
        help="HTTP API base URL (default: http://localhost:3000)",
    )
    parser.add_argument("--list", action="store_true", help="List sessions and exit")
    parser.add_argument("--session", type=str, help="Session to join")
    parser.add_argument("--username", type=str, help="Display name")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        if args.list:
            sessions = asyncio.run(fetch_sessions(args.http))
            if not sessions:
                print("No active sessions")
            for entry in sessions:
                print(f"{entry['id']}\t{entry['userCount']} users")
            return

        if not args.session or not args.username:
            parser.error("--session and --username are required to join")

        client = CLIClient(args.host, args.session, args.username, verbose=args.verbose)
        asyncio.run(client.run())
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)
    except (OSError, aiohttp.ClientError) as e:
        logger.error(f"Client error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
