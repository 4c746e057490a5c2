"""Ordered fan-out of chat messages and AI responses.

The session lock is the serialization point: messages are built, appended
and broadcast inside it, so every member sees a session's messages in log
order and ids within a log only increase.
"""

import logging
from typing import Any

from relay.config import SessionLimitsConfig
from relay.connection import Broadcaster
from relay.errors import InvalidInput, NotJoined
from relay.membership import MembershipManager
from relay.metrics import get_metrics_collector
from relay.models import Message, MessageIdGenerator, utc_timestamp
from relay.store import SessionStore
from relay.transport.websocket_protocol import NewMessageMessage

logger = logging.getLogger(__name__)


class MessageRelay:
    """Appends messages to session logs and broadcasts them."""

    def __init__(
        self,
        store: SessionStore,
        membership: MembershipManager,
        broadcaster: Broadcaster,
        limits: SessionLimitsConfig | None = None,
        id_generator: MessageIdGenerator | None = None,
    ) -> None:
        self._store = store
        self._membership = membership
        self._broadcaster = broadcaster
        self._limits = limits or SessionLimitsConfig()
        self._ids = id_generator or MessageIdGenerator()
        self._metrics = get_metrics_collector()

    async def send(
        self, connection_id: str, body: str | None, ai_response: Any = None
    ) -> Message:
        """Relay a message to every member of the sender's session.

        A whitespace-only body counts as no body. Entries without a body are
        AI responses and carry no author.

        Args:
            connection_id: Sending connection
            body: Human message text
            ai_response: Structured AI response content

        Returns:
            The appended message

        Raises:
            NotJoined: If the connection is not bound to a session
            InvalidInput: If the message is empty or too long
            UnknownSession: If the session was torn down concurrently
        """
        binding = self._membership.binding_for(connection_id)
        if binding is None:
            raise NotJoined(connection_id)

        if body is not None and not body.strip():
            body = None
        if body is None and ai_response is None:
            raise InvalidInput("Message must have a body or an AI response")
        if body is not None and len(body) > self._limits.max_message_length:
            raise InvalidInput(f"message exceeds {self._limits.max_message_length} characters")

        session_id = binding.session_id
        async with self._store.lock(session_id):
            message = Message(
                id=self._ids.next_id(),
                author=binding.display_name if body is not None else None,
                body=body,
                ai_response=ai_response,
                timestamp=utc_timestamp(),
            )
            self._store.append_message(session_id, message)

            session = self._store.get_session(session_id)
            recipients = list(session.members.keys()) if session else []
            delivered = self._broadcaster.broadcast(
                recipients, NewMessageMessage.from_message(message)
            )

        self._metrics.record_message(ai_response=body is None)
        logger.debug(
            "Message relayed",
            extra={
                "connection_id": connection_id,
                "session_id": session_id,
                "message_id": message.id,
                "recipients": len(recipients),
                "delivered": delivered,
            },
        )
        return message
