"""Unit tests for the in-memory session store.

Tests session creation/removal, directory snapshots, log appends and the
per-session lock arena.
"""

import asyncio

import pytest

from relay.errors import UnknownSession
from relay.models import Message
from relay.store import SessionStore


def _message(message_id: int = 1, body: str = "hi") -> Message:
    return Message(id=message_id, author="alice", body=body, timestamp="2025-01-01T00:00:00+00:00")


def test_create_or_get_session_is_idempotent(store: SessionStore) -> None:
    """Test the same session object is returned on repeat calls."""
    first = store.create_or_get_session("lab")
    second = store.create_or_get_session("lab")

    assert first is second
    assert first.members == {}
    assert first.messages == []
    assert len(store) == 1


def test_session_ids_are_case_sensitive(store: SessionStore) -> None:
    """Test 'Lab' and 'lab' are distinct sessions."""
    store.create_or_get_session("lab")
    store.create_or_get_session("Lab")

    assert len(store) == 2


def test_remove_session_keeps_occupied_session(store: SessionStore) -> None:
    """Test removal is refused while the session has members."""
    session = store.create_or_get_session("lab")
    session.add_member("c1", "alice")

    assert store.remove_session("lab") is False
    assert "lab" in store


def test_remove_session_deletes_empty_session(store: SessionStore) -> None:
    """Test an empty session is removed."""
    session = store.create_or_get_session("lab")
    session.add_member("c1", "alice")
    session.remove_member("c1")

    assert store.remove_session("lab") is True
    assert "lab" not in store
    assert store.get_session("lab") is None


def test_remove_unknown_session_is_noop(store: SessionStore) -> None:
    """Test removing a missing session does nothing."""
    assert store.remove_session("nope") is False


def test_list_sessions_reports_occupancy(store: SessionStore) -> None:
    """Test the directory snapshot lists occupied sessions only."""
    store.create_or_get_session("empty")
    lab = store.create_or_get_session("lab")
    lab.add_member("c1", "alice")
    lab.add_member("c2", "bob")

    summaries = store.list_sessions()

    assert [(s.session_id, s.member_count) for s in summaries] == [("lab", 2)]


def test_append_message(store: SessionStore) -> None:
    """Test messages are appended in order."""
    store.create_or_get_session("lab").add_member("c1", "alice")

    store.append_message("lab", _message(1, "one"))
    store.append_message("lab", _message(2, "two"))

    session = store.get_session("lab")
    assert session is not None
    assert [m.body for m in session.messages] == ["one", "two"]


def test_append_message_unknown_session(store: SessionStore) -> None:
    """Test appending to a torn-down session raises UnknownSession."""
    with pytest.raises(UnknownSession) as exc_info:
        store.append_message("gone", _message())

    assert exc_info.value.session_id == "gone"
    assert exc_info.value.code == "UNKNOWN_SESSION"


@pytest.mark.asyncio
async def test_lock_serializes_same_session(store: SessionStore) -> None:
    """Test a second holder waits until the first releases."""
    order: list[str] = []
    release = asyncio.Event()
    first_entered = asyncio.Event()

    async def first() -> None:
        async with store.lock("lab"):
            order.append("first-enter")
            first_entered.set()
            await release.wait()
            order.append("first-exit")

    async def second() -> None:
        await first_entered.wait()
        async with store.lock("lab"):
            order.append("second-enter")

    tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
    await first_entered.wait()
    await asyncio.sleep(0.01)
    assert order == ["first-enter"]

    release.set()
    await asyncio.gather(*tasks)

    assert order == ["first-enter", "first-exit", "second-enter"]


@pytest.mark.asyncio
async def test_lock_does_not_block_other_sessions(store: SessionStore) -> None:
    """Test holding one session's lock leaves other sessions free."""
    async with store.lock("s1"):
        await asyncio.wait_for(_enter_and_exit(store, "s2"), timeout=1.0)


async def _enter_and_exit(store: SessionStore, session_id: str) -> None:
    async with store.lock(session_id):
        pass


@pytest.mark.asyncio
async def test_lock_arena_releases_entries(store: SessionStore) -> None:
    """Test lock entries are dropped once nobody holds them."""
    async with store.lock("lab"):
        assert store.lock_count == 1

    assert store.lock_count == 0


@pytest.mark.asyncio
async def test_lock_entry_released_after_exception(store: SessionStore) -> None:
    """Test an exception inside the critical section still releases the lock."""
    with pytest.raises(RuntimeError):
        async with store.lock("lab"):
            raise RuntimeError("boom")

    assert store.lock_count == 0
    await asyncio.wait_for(_enter_and_exit(store, "lab"), timeout=1.0)
