"""Session membership lifecycle.

Handles join and leave for connections: mutates the session store, records
which session each connection is bound to, and announces roster changes to
the affected session. Every mutation and its announcement happen inside the
session's lock, so members observe membership events in the order they were
applied.
"""

import logging
import time
from dataclasses import dataclass

from relay.config import SessionLimitsConfig
from relay.connection import Broadcaster
from relay.errors import InvalidInput
from relay.metrics import get_metrics_collector
from relay.models import MembershipChange, MembershipEvent
from relay.store import SessionStore
from relay.transport.websocket_protocol import SessionHistoryMessage, membership_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Binding:
    """The session a connection is joined to, and under which name."""

    session_id: str
    display_name: str


def _require_text(value: str, field: str, max_length: int) -> None:
    if not value or not value.strip():
        raise InvalidInput(f"{field} must not be empty")
    if len(value) > max_length:
        raise InvalidInput(f"{field} exceeds {max_length} characters")


class MembershipManager:
    """Join/leave lifecycle for connections.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        store: SessionStore,
        broadcaster: Broadcaster,
        limits: SessionLimitsConfig | None = None,
    ) -> None:
        """Initialize membership manager.

        Args:
            store: Session store shared with the message relay
            broadcaster: Delivery surface for roster and history messages
            limits: Input limits (defaults if None)
        """
        self._store = store
        self._broadcaster = broadcaster
        self._limits = limits or SessionLimitsConfig()
        self._bindings: dict[str, Binding] = {}
        self._metrics = get_metrics_collector()

    def binding_for(self, connection_id: str) -> Binding | None:
        """Current binding of a connection, or None if not joined."""
        return self._bindings.get(connection_id)

    async def join(
        self, connection_id: str, session_id: str, display_name: str
    ) -> MembershipEvent:
        """Join a connection to a session, creating the session if new.

        A connection already bound to a different session leaves it first.
        Re-joining the same session renames the member in place. Inside the
        session lock the full roster goes to every member (joiner included),
        then the session log goes to the joiner only.

        Args:
            connection_id: Joining connection
            session_id: Case-sensitive session identifier
            display_name: Name shown to other members

        Returns:
            Membership event carrying the post-join roster

        Raises:
            InvalidInput: If session_id or display_name is empty or too long
        """
        _require_text(session_id, "sessionId", self._limits.max_session_id_length)
        _require_text(display_name, "username", self._limits.max_display_name_length)

        current = self._bindings.get(connection_id)
        if current is not None and current.session_id != session_id:
            logger.info(
                "Connection switching sessions",
                extra={
                    "connection_id": connection_id,
                    "from_session": current.session_id,
                    "to_session": session_id,
                },
            )
            await self.leave(connection_id)

        async with self._store.lock(session_id):
            session_created = session_id not in self._store
            session = self._store.create_or_get_session(session_id)
            session.add_member(connection_id, display_name)
            self._bindings[connection_id] = Binding(session_id, display_name)

            event = MembershipEvent(
                session_id=session_id,
                change=MembershipChange.JOINED,
                display_name=display_name,
                members=tuple(session.member_names),
            )
            self._broadcaster.broadcast(session.members.keys(), membership_message(event))
            self._broadcaster.send_to(
                connection_id, SessionHistoryMessage(messages=session.history())
            )

        self._metrics.record_join(session_created)
        logger.info(
            "Connection joined session",
            extra={
                "connection_id": connection_id,
                "session_id": session_id,
                "display_name": display_name,
                "member_count": len(event.members),
                "session_created": session_created,
            },
        )
        return event

    async def leave(self, connection_id: str) -> MembershipEvent | None:
        """Remove a connection from its session.

        Safe to call for unbound connections and safe to call twice. Only
        touches in-memory state, so it completes even when the transport is
        already gone. A session whose last member leaves is removed in the
        same critical section.

        Returns:
            Membership event for the remaining members, or None if the
            connection was unbound, the session was already gone, or the
            session became empty and was removed
        """
        binding = self._bindings.get(connection_id)
        if binding is None:
            return None

        session_id = binding.session_id
        async with self._store.lock(session_id):
            # Unbind under the lock: a leave cancelled while waiting keeps the binding
            current = self._bindings.get(connection_id)
            if current is None or current.session_id != session_id:
                return None
            del self._bindings[connection_id]

            session = self._store.get_session(session_id)
            display_name = session.remove_member(connection_id) if session else None
            if session is None or display_name is None:
                logger.debug(
                    "Leave for vanished session ignored",
                    extra={"connection_id": connection_id, "session_id": session_id},
                )
                return None

            if session.is_empty:
                self._store.remove_session(session_id)
                self._metrics.record_leave(
                    reclaimed_lifetime_s=time.monotonic() - session.created_ts
                )
                logger.info(
                    "Last member left, session reclaimed",
                    extra={"connection_id": connection_id, "session_id": session_id},
                )
                return None

            event = MembershipEvent(
                session_id=session_id,
                change=MembershipChange.LEFT,
                display_name=display_name,
                members=tuple(session.member_names),
            )
            self._broadcaster.broadcast(session.members.keys(), membership_message(event))

        self._metrics.record_leave()
        logger.info(
            "Connection left session",
            extra={
                "connection_id": connection_id,
                "session_id": session_id,
                "member_count": len(event.members),
            },
        )
        return event
