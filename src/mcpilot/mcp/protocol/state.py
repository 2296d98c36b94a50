"""Lifecycle state machine for an outbound MCP connection."""

import logging
from enum import Enum, auto
from typing import Callable

logger = logging.getLogger(__name__)


class ProtocolState(Enum):
    """
    Client connection states.

        DISCONNECTED -> CONNECTING -> INITIALIZING -> DISCOVERING -> READY -> CLOSED

    Any non-terminal state may fall back to DISCONNECTED when the
    transport fails or the handshake is exhausted.
    """

    DISCONNECTED = auto()
    CONNECTING = auto()
    INITIALIZING = auto()
    DISCOVERING = auto()
    READY = auto()
    CLOSED = auto()

    def __str__(self) -> str:
        return self.name


class InvalidStateTransition(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: ProtocolState, to_state: ProtocolState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition: {from_state.name} -> {to_state.name}"
        )


StateTransitionCallback = Callable[[ProtocolState, ProtocolState], None]


class ProtocolStateMachine:
    """Enforces valid client state transitions and notifies listeners."""

    VALID_TRANSITIONS: dict[ProtocolState, tuple[ProtocolState, ...]] = {
        ProtocolState.DISCONNECTED: (ProtocolState.CONNECTING, ProtocolState.CLOSED),
        ProtocolState.CONNECTING: (
            ProtocolState.INITIALIZING,
            ProtocolState.DISCONNECTED,
            ProtocolState.CLOSED,
        ),
        ProtocolState.INITIALIZING: (
            ProtocolState.DISCOVERING,
            ProtocolState.DISCONNECTED,
            ProtocolState.CLOSED,
        ),
        ProtocolState.DISCOVERING: (
            ProtocolState.READY,
            ProtocolState.DISCONNECTED,
            ProtocolState.CLOSED,
        ),
        ProtocolState.READY: (ProtocolState.DISCONNECTED, ProtocolState.CLOSED),
        ProtocolState.CLOSED: (),
    }

    def __init__(self, initial_state: ProtocolState = ProtocolState.DISCONNECTED):
        self._state = initial_state
        self._listeners: list[StateTransitionCallback] = []

    @property
    def state(self) -> ProtocolState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """True once the transport is up and until the client closes."""
        return self._state in (
            ProtocolState.INITIALIZING,
            ProtocolState.DISCOVERING,
            ProtocolState.READY,
        )

    @property
    def is_ready(self) -> bool:
        return self._state == ProtocolState.READY

    def can_transition_to(self, new_state: ProtocolState) -> bool:
        return new_state in self.VALID_TRANSITIONS.get(self._state, ())

    def transition(self, new_state: ProtocolState) -> None:
        """
        Move to a new state.

        Args:
            new_state: The target state.

        Raises:
            InvalidStateTransition: If the transition is not allowed.
        """
        if not self.can_transition_to(new_state):
            raise InvalidStateTransition(self._state, new_state)
        self._set(new_state)

    def force_state(self, new_state: ProtocolState) -> None:
        """Set the state without validation, for error recovery only."""
        self._set(new_state)

    def on_transition(self, callback: StateTransitionCallback) -> None:
        self._listeners.append(callback)

    def _set(self, new_state: ProtocolState) -> None:
        old_state = self._state
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.warning(f"State listener failed on {old_state} -> {new_state}: {e}")

    def __repr__(self) -> str:
        return f"ProtocolStateMachine(state={self._state!r})"
