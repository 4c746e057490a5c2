"""Shared fixtures for relay tests."""

from collections.abc import Iterator

import pytest

from relay.config import SessionLimitsConfig
from relay.membership import MembershipManager
from relay.message_relay import MessageRelay
from relay.metrics import reset_metrics_collector
from relay.store import SessionStore
from tests.helpers.relay_test_utils import RecordingBroadcaster


@pytest.fixture(autouse=True)
def fresh_metrics() -> Iterator[None]:
    """Give every test its own metrics collector."""
    reset_metrics_collector()
    yield
    reset_metrics_collector()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def membership(store: SessionStore, broadcaster: RecordingBroadcaster) -> MembershipManager:
    return MembershipManager(store, broadcaster, SessionLimitsConfig())


@pytest.fixture
def relay(
    store: SessionStore, membership: MembershipManager, broadcaster: RecordingBroadcaster
) -> MessageRelay:
    return MessageRelay(store, membership, broadcaster)
