"""Session, message and membership data model.

Sessions and membership events are plain dataclasses held in memory.
Messages are immutable Pydantic models because they are stored in the
session log and sent over the wire unchanged.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Message(BaseModel):
    """One immutable entry in a session's log.

    Either a human chat line (``author`` and ``body`` set) or an AI response
    (``author`` is None and ``ai_response`` carries the structured content).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int = Field(..., description="Monotonically increasing message id")
    author: str | None = Field(
        default=None, alias="username", description="Display name, None for AI responses"
    )
    body: str | None = Field(default=None, alias="message", description="Human message text")
    ai_response: Any = Field(
        default=None, alias="aiResponse", description="Structured AI response content"
    )
    timestamp: str = Field(..., description="ISO-8601 UTC timestamp")

    @model_validator(mode="after")
    def _require_content(self) -> "Message":
        if self.body is None and self.ai_response is None:
            raise ValueError("Message needs a body or an AI response")
        return self


class MessageIdGenerator:
    """Millisecond clock based ids, bumped to stay strictly increasing."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0

    def next_id(self) -> int:
        candidate = int(self._clock() * 1000)
        self._last = max(candidate, self._last + 1)
        return self._last


def utc_timestamp() -> str:
    """Current time as an ISO-8601 string in UTC."""
    return datetime.now(UTC).isoformat()


@dataclass
class Session:
    """A named chat room: membership plus an append-only message log.

    ``members`` maps connection id to display name. Dict insertion order is
    the roster order; overwriting an existing connection keeps its slot.
    """

    session_id: str
    members: dict[str, str] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)
    created_ts: float = field(default_factory=time.monotonic)

    @property
    def member_names(self) -> list[str]:
        return list(self.members.values())

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def is_empty(self) -> bool:
        return not self.members

    def add_member(self, connection_id: str, display_name: str) -> bool:
        """Insert or rename a member.

        Returns:
            True if the connection was not a member before
        """
        is_new = connection_id not in self.members
        self.members[connection_id] = display_name
        return is_new

    def remove_member(self, connection_id: str) -> str | None:
        """Remove a member, returning its display name (None if absent)."""
        return self.members.pop(connection_id, None)

    def history(self) -> list[Message]:
        """Snapshot of the log in append order."""
        return list(self.messages)


class MembershipChange(Enum):
    """Kind of membership change announced to a session."""

    JOINED = "joined"
    LEFT = "left"


@dataclass(frozen=True)
class MembershipEvent:
    """Derived roster notification, never stored."""

    session_id: str
    change: MembershipChange
    display_name: str
    members: tuple[str, ...]


@dataclass(frozen=True)
class SessionSummary:
    """Directory entry: session id and current occupancy."""

    session_id: str
    member_count: int
