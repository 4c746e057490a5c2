"""In-memory session store.

Holds every live session and the arena of per-session locks that callers
use to serialize join/leave/send for one session. Sessions in different
locks never share mutable state, so unrelated sessions proceed
independently.

Thread-safety: NOT thread-safe. All access must happen on one event loop.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from relay.errors import UnknownSession
from relay.models import Message, Session, SessionSummary

logger = logging.getLogger(__name__)


class _LockEntry:
    """Lock plus the number of tasks holding or waiting on it."""

    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.refs = 0


class SessionStore:
    """Mapping from session id to session state.

    Invariant: a session is present iff it has at least one member. The only
    exception is the window between ``create_or_get_session`` and the first
    ``Session.add_member``, which callers perform inside the session lock
    without awaiting in between.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        """Serialize work on one session.

        Lock entries are reference counted and dropped once no task holds or
        waits on them, so the arena does not grow with dead sessions.

        Args:
            session_id: Session to lock
        """
        entry = self._locks.get(session_id)
        if entry is None:
            entry = _LockEntry()
            self._locks[session_id] = entry
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                del self._locks[session_id]

    def create_or_get_session(self, session_id: str) -> Session:
        """Return the session, creating an empty one if absent."""
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id)
            self._sessions[session_id] = session
            logger.info("Session created", extra={"session_id": session_id})
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remove_session(self, session_id: str) -> bool:
        """Delete a session once its membership is empty.

        No-op if the session is unknown or still has members.

        Returns:
            True if the session was removed
        """
        session = self._sessions.get(session_id)
        if session is None or not session.is_empty:
            return False

        del self._sessions[session_id]
        logger.info(
            "Session removed",
            extra={"session_id": session_id, "message_count": len(session.messages)},
        )
        return True

    def list_sessions(self) -> list[SessionSummary]:
        """Point-in-time snapshot of occupied sessions."""
        return [
            SessionSummary(session_id=session.session_id, member_count=session.member_count)
            for session in self._sessions.values()
            if not session.is_empty
        ]

    def append_message(self, session_id: str, message: Message) -> None:
        """Append a message to a session's log.

        Raises:
            UnknownSession: If the session was already torn down
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        session.messages.append(message)

    @property
    def lock_count(self) -> int:
        """Number of live lock entries (held or awaited)."""
        return len(self._locks)
