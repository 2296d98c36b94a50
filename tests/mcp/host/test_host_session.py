"""Tests for host session bookkeeping."""

import pytest

from mcpilot.mcp.host import HostSession, HostSessionStore


class Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(clock):
    return HostSessionStore(idle_ttl=60, clock=clock)


class TestHostSession:
    """Tests for HostSession."""

    def test_client_label(self):
        assert HostSession().client_label == "unknown"
        assert HostSession(client_name="cli").client_label == "cli"
        assert HostSession(client_name="cli", client_version="1.2").client_label == "cli/1.2"

    def test_last_seen_starts_at_creation(self):
        session = HostSession(created_at=42.0)
        assert session.last_seen_at == 42.0


class TestHostSessionStore:
    """Tests for HostSessionStore."""

    def test_create_and_get(self, store):
        session = store.create()

        assert store.get(session.session_id) is session
        assert store.get(None) is None
        assert store.get("missing") is None
        assert len(store) == 1

    def test_get_or_create_adopts_client_id(self, store):
        first = store.get_or_create("client-chosen")
        second = store.get_or_create("client-chosen")

        assert first is second
        assert first.session_id == "client-chosen"
        assert len(store) == 1

    def test_idle_sessions_expire(self, store, clock):
        session = store.create()

        clock.now += 59
        assert store.get(session.session_id) is session

        clock.now += 1
        assert store.get(session.session_id) is None
        assert len(store) == 0

    def test_use_keeps_session_alive(self, store, clock):
        active = store.get_or_create("active")
        idle = store.create()

        for _ in range(3):
            clock.now += 45
            store.get_or_create("active")

        assert store.all() == [active]
        assert store.get(idle.session_id) is None

    def test_sweep_runs_on_create(self, store, clock):
        for _ in range(10):
            store.create()
        clock.now += 61

        fresh = store.create()

        assert store.all() == [fresh]

    def test_remove_and_clear(self, store):
        session = store.create()
        store.create()

        assert store.remove(session.session_id) is session
        assert store.remove(session.session_id) is None
        assert store.remove(None) is None
        assert len(store) == 1

        store.clear()
        assert len(store) == 0
