"""WebSocket message protocol definitions.

Defines Pydantic models for WebSocket message serialization/deserialization.
Messages are JSON-encoded text frames with a ``type`` discriminator. Field
aliases match the names the browser client already speaks (``sessionId``,
``username``, ``users``, ``aiResponse``).
"""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay.errors import InvalidInput
from relay.models import MembershipChange, MembershipEvent, Message


class ProtocolModel(BaseModel):
    """Base model accepting both field names and wire aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        """Serialize with wire aliases."""
        return self.model_dump_json(by_alias=True)


class JoinSessionMessage(ProtocolModel):
    """Client → Server: join (or create) a named session."""

    type: Literal["join_session"] = "join_session"
    session_id: str = Field(..., alias="sessionId", description="Session to join")
    display_name: str = Field(..., alias="username", description="Participant display name")


class SendMessageMessage(ProtocolModel):
    """Client → Server: chat line or AI response for the bound session."""

    type: Literal["send_message"] = "send_message"
    session_id: str | None = Field(
        default=None, alias="sessionId", description="Must match the bound session if given"
    )
    body: str | None = Field(default=None, alias="message", description="Human message text")
    ai_response: Any = Field(
        default=None, alias="aiResponse", description="Structured AI response content"
    )


class LeaveSessionMessage(ProtocolModel):
    """Client → Server: leave the bound session but keep the connection."""

    type: Literal["leave_session"] = "leave_session"


class ConnectedMessage(ProtocolModel):
    """Server → Client: connection attached.

    Sent once when the transport accepts the connection.
    """

    type: Literal["connected"] = "connected"
    connection_id: str = Field(..., alias="connectionId", description="Connection identifier")


class UserJoinedMessage(ProtocolModel):
    """Server → Client: a participant joined; carries the full roster."""

    type: Literal["user_joined"] = "user_joined"
    display_name: str = Field(..., alias="username")
    members: list[str] = Field(default_factory=list, alias="users")


class UserLeftMessage(ProtocolModel):
    """Server → Client: a participant left; carries the remaining roster."""

    type: Literal["user_left"] = "user_left"
    display_name: str = Field(..., alias="username")
    members: list[str] = Field(default_factory=list, alias="users")


class SessionHistoryMessage(ProtocolModel):
    """Server → Client: full session log, sent to a joiner only."""

    type: Literal["session_history"] = "session_history"
    messages: list[Message] = Field(default_factory=list)


class NewMessageMessage(Message):
    """Server → Client: one appended log entry.

    Flattens the message fields next to the ``type`` discriminator.
    """

    type: Literal["new_message"] = "new_message"

    @classmethod
    def from_message(cls, message: Message) -> "NewMessageMessage":
        return cls.model_validate(message.model_dump())

    def to_message(self) -> Message:
        return Message.model_validate(self.model_dump(exclude={"type"}))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ErrorMessage(ProtocolModel):
    """Server → Client: error notification.

    Sent only to the connection whose request failed.
    """

    type: Literal["error"] = "error"
    message: str = Field(..., description="Error description")
    code: str = Field(default="INTERNAL_ERROR", description="Error code")


# Union type for all server → client messages
ServerMessage = (
    ConnectedMessage
    | UserJoinedMessage
    | UserLeftMessage
    | SessionHistoryMessage
    | NewMessageMessage
    | ErrorMessage
)

# Union type for all client → server messages
ClientMessage = JoinSessionMessage | SendMessageMessage | LeaveSessionMessage

CLIENT_MESSAGE_TYPES: dict[str, type[ClientMessage]] = {
    "join_session": JoinSessionMessage,
    "send_message": SendMessageMessage,
    "leave_session": LeaveSessionMessage,
}

SERVER_MESSAGE_TYPES: dict[str, type[ServerMessage]] = {
    "connected": ConnectedMessage,
    "user_joined": UserJoinedMessage,
    "user_left": UserLeftMessage,
    "session_history": SessionHistoryMessage,
    "new_message": NewMessageMessage,
    "error": ErrorMessage,
}


def membership_message(event: MembershipEvent) -> UserJoinedMessage | UserLeftMessage:
    """Build the wire message announcing a membership change."""
    if event.change is MembershipChange.JOINED:
        return UserJoinedMessage(display_name=event.display_name, members=list(event.members))
    return UserLeftMessage(display_name=event.display_name, members=list(event.members))


def _decode(raw: str | bytes, registry: dict[str, Any]) -> Any:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidInput(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise InvalidInput("Message must be a JSON object")

    message_type = data.get("type")
    model = registry.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        raise InvalidInput(f"Unknown message type: {message_type!r}")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidInput(f"Invalid {message_type} message: {e.errors()[0]['msg']}") from e


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Decode one client frame.

    Raises:
        InvalidInput: If the frame is not JSON, has an unknown type, or fails
            validation
    """
    return _decode(raw, CLIENT_MESSAGE_TYPES)


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """Decode one server frame (used by clients).

    Raises:
        InvalidInput: If the frame cannot be decoded
    """
    return _decode(raw, SERVER_MESSAGE_TYPES)
