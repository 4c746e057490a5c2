"""Unit tests for WebSocket protocol messages.

Tests wire field names, client frame parsing and rejection of malformed
frames.
"""

import json

import pytest

from relay.errors import InvalidInput
from relay.models import MembershipChange, MembershipEvent, Message
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
    membership_message,
    parse_client_message,
    parse_server_message,
)


class TestClientMessages:
    """Test decoding of client → server frames."""

    def test_parse_join_session(self) -> None:
        """Test join frames use the browser client's field names."""
        message = parse_client_message(
            '{"type": "join_session", "sessionId": "lab", "username": "alice"}'
        )

        assert isinstance(message, JoinSessionMessage)
        assert message.session_id == "lab"
        assert message.display_name == "alice"

    def test_parse_send_message(self) -> None:
        """Test a chat frame with the optional session id."""
        message = parse_client_message(
            '{"type": "send_message", "sessionId": "lab", "message": "hi"}'
        )

        assert isinstance(message, SendMessageMessage)
        assert message.session_id == "lab"
        assert message.body == "hi"
        assert message.ai_response is None

    def test_parse_send_ai_response(self) -> None:
        """Test AI response content passes through untouched."""
        content = [{"type": "audio", "transcript": "hello"}]
        message = parse_client_message(
            json.dumps({"type": "send_message", "aiResponse": content})
        )

        assert isinstance(message, SendMessageMessage)
        assert message.body is None
        assert message.ai_response == content

    def test_parse_leave_session(self) -> None:
        """Test the leave frame carries no payload."""
        assert isinstance(parse_client_message('{"type": "leave_session"}'), LeaveSessionMessage)

    def test_parse_bytes(self) -> None:
        """Test UTF-8 encoded frames are accepted."""
        message = parse_client_message(b'{"type": "leave_session"}')

        assert isinstance(message, LeaveSessionMessage)

    @pytest.mark.parametrize(
        ("raw", "reason"),
        [
            ("not json", "Invalid JSON"),
            ("[1, 2]", "JSON object"),
            ('{"sessionId": "lab"}', "Unknown message type"),
            ('{"type": "connected", "connectionId": "x"}', "Unknown message type"),
            ('{"type": "join_session", "username": "alice"}', "Invalid join_session"),
            ('{"type": "join_session", "sessionId": 5, "username": "a"}', "Invalid join_session"),
        ],
    )
    def test_parse_rejects_malformed(self, raw: str, reason: str) -> None:
        """Test malformed frames raise InvalidInput."""
        with pytest.raises(InvalidInput, match=reason):
            parse_client_message(raw)


class TestServerMessages:
    """Test encoding of server → client frames."""

    def test_connected_json(self) -> None:
        """Test the attach greeting."""
        data = json.loads(ConnectedMessage(connection_id="ws-1").to_json())

        assert data == {"type": "connected", "connectionId": "ws-1"}

    def test_user_joined_json(self) -> None:
        """Test roster events list the members under 'users'."""
        data = json.loads(UserJoinedMessage(display_name="bob", members=["alice", "bob"]).to_json())

        assert data == {"type": "user_joined", "username": "bob", "users": ["alice", "bob"]}

    def test_new_message_is_flat(self) -> None:
        """Test message fields sit next to the type discriminator."""
        message = Message(id=5, author="alice", body="hi", timestamp="2025-01-01T00:00:00+00:00")

        data = json.loads(NewMessageMessage.from_message(message).to_json())

        assert data == {
            "type": "new_message",
            "id": 5,
            "username": "alice",
            "message": "hi",
            "aiResponse": None,
            "timestamp": "2025-01-01T00:00:00+00:00",
        }

    def test_session_history_json(self) -> None:
        """Test history frames carry messages with wire names."""
        message = Message(id=1, ai_response={"text": "ok"}, timestamp="2025-01-01T00:00:00+00:00")

        data = json.loads(SessionHistoryMessage(messages=[message]).to_json())

        assert data["type"] == "session_history"
        assert data["messages"][0]["aiResponse"] == {"text": "ok"}
        assert data["messages"][0]["username"] is None

    def test_error_default_code(self) -> None:
        """Test errors default to INTERNAL_ERROR."""
        assert ErrorMessage(message="boom").code == "INTERNAL_ERROR"

    def test_parse_server_message(self) -> None:
        """Test clients can decode what the server sends."""
        message = Message(id=9, author="bob", body="yo", timestamp="2025-01-01T00:00:00+00:00")
        raw = NewMessageMessage.from_message(message).to_json()

        decoded = parse_server_message(raw)

        assert isinstance(decoded, NewMessageMessage)
        assert decoded.to_message() == message

    def test_membership_message(self) -> None:
        """Test membership events map onto joined/left frames."""
        joined = MembershipEvent("lab", MembershipChange.JOINED, "bob", ("alice", "bob"))
        left = MembershipEvent("lab", MembershipChange.LEFT, "bob", ("alice",))

        assert isinstance(membership_message(joined), UserJoinedMessage)
        left_message = membership_message(left)
        assert isinstance(left_message, UserLeftMessage)
        assert left_message.members == ["alice"]
