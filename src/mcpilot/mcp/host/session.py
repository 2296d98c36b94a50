"""Per-client session state of the inbound host."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

SESSION_IDLE_TTL = 30 * 60


@dataclass
class HostSession:
    """
    One external client connection.

    ``initialized`` only becomes True after the client sends
    ``notifications/initialized``.
    """

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.time)
    protocol_version: str | None = None
    client_name: str | None = None
    client_version: str | None = None
    initialized: bool = False
    last_seen_at: float = 0.0

    def __post_init__(self):
        if not self.last_seen_at:
            self.last_seen_at = self.created_at

    @property
    def client_label(self) -> str:
        if not self.client_name:
            return "unknown"
        if self.client_version:
            return f"{self.client_name}/{self.client_version}"
        return self.client_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "createdAt": int(self.created_at * 1000),
            "protocolVersion": self.protocol_version,
            "clientName": self.client_name,
            "clientVersion": self.client_version,
            "initialized": self.initialized,
        }


class HostSessionStore:
    """
    Thread-safe map of live sessions keyed by ``Mcp-Session-Id``.

    Sessions idle for longer than ``idle_ttl`` seconds are dropped lazily,
    on the next access to the store.

    Args:
        idle_ttl: Seconds a session may go unused.
        clock: Returns the current time in seconds.
    """

    def __init__(self, idle_ttl: float = SESSION_IDLE_TTL, clock: Callable[[], float] = time.time) -> None:
        self.idle_ttl = idle_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, HostSession] = {}

    def create(self) -> HostSession:
        with self._lock:
            now = self._sweep()
            session = HostSession(created_at=now)
            self._sessions[session.session_id] = session
        return session

    def get_or_create(self, session_id: str) -> HostSession:
        """Return the session for a client-supplied id, creating it on first use."""
        with self._lock:
            now = self._sweep()
            session = self._sessions.get(session_id)
            if session is None:
                session = HostSession(session_id=session_id, created_at=now)
                self._sessions[session_id] = session
            session.last_seen_at = now
            return session

    def get(self, session_id: str | None) -> HostSession | None:
        if not session_id:
            return None
        with self._lock:
            self._sweep()
            return self._sessions.get(session_id)

    def remove(self, session_id: str | None) -> HostSession | None:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def all(self) -> list[HostSession]:
        with self._lock:
            self._sweep()
            return sorted(self._sessions.values(), key=lambda s: s.created_at)

    def __len__(self) -> int:
        with self._lock:
            self._sweep()
            return len(self._sessions)

    def _sweep(self) -> float:
        # Caller holds the lock
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.last_seen_at >= self.idle_ttl]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug(f"Expired {len(expired)} idle MCP host sessions")
        return now
