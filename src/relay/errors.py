"""Relay error taxonomy.

Every error here is scoped to a single connection: it is reported back to
the connection that caused it as an ``error`` event and never broadcast.
"""


class RelayError(Exception):
    """Base class for errors signalled to the originating connection."""

    code = "INTERNAL_ERROR"


class InvalidInput(RelayError):
    """Rejected payload (empty session id/display name, empty message, bad frame)."""

    code = "INVALID_INPUT"


class NotJoined(RelayError):
    """Connection tried to send before joining a session."""

    code = "NOT_JOINED"

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection {connection_id} has not joined a session")
        self.connection_id = connection_id


class UnknownSession(RelayError):
    """Session was torn down before the operation reached it."""

    code = "UNKNOWN_SESSION"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id!r} does not exist")
        self.session_id = session_id
