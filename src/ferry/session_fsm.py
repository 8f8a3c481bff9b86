"""
Ferry - Session State Machine.

Created by orpheus497

A small finite state machine for the lifecycle of one direct session.
Enforces valid transitions, keeps a short history, and fires callbacks
when the session opens, closes, or fails.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle states of a session."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class SessionEvent(Enum):
    """Events that move a session between states."""

    CHANNEL_OPENED = "channel_opened"
    CONNECT_FAILED = "connect_failed"
    CLOSE_REQUESTED = "close_requested"
    PEER_CLOSED = "peer_closed"
    ERROR_OCCURRED = "error_occurred"


@dataclass
class StateTransition:
    """Represents a state transition."""

    from_state: SessionState
    event: SessionEvent
    to_state: SessionState
    timestamp: float = field(default_factory=time.time)


class SessionStateMachine:
    """
    Finite state machine for a session.

    CLOSED and ERRORED are terminal: once a session ends it is never
    reopened, a new session is established instead.
    """

    TRANSITIONS: Dict[SessionState, Dict[SessionEvent, SessionState]] = {
        SessionState.CONNECTING: {
            SessionEvent.CHANNEL_OPENED: SessionState.OPEN,
            SessionEvent.CONNECT_FAILED: SessionState.ERRORED,
            SessionEvent.ERROR_OCCURRED: SessionState.ERRORED,
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSED,
        },
        SessionState.OPEN: {
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSED,
            SessionEvent.PEER_CLOSED: SessionState.CLOSED,
            SessionEvent.ERROR_OCCURRED: SessionState.ERRORED,
        },
        SessionState.CLOSED: {},
        SessionState.ERRORED: {},
    }

    def __init__(self, initial_state: SessionState = SessionState.CONNECTING):
        self.current_state = initial_state
        self.previous_state: Optional[SessionState] = None
        self.state_entry_time = time.time()
        self.error_message: Optional[str] = None
        self.transition_history: List[StateTransition] = []
        self.max_history = 20

        # Callbacks
        self.on_open: Optional[Callable[[], None]] = None
        self.on_closed: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None

    def transition(self, event: SessionEvent, error_msg: Optional[str] = None) -> bool:
        """
        Attempt state transition based on event.

        Args:
            event: Event triggering transition
            error_msg: Error description for failure events

        Returns:
            True if transition happened, False if it is not valid from here
        """
        if not self.is_valid_transition(self.current_state, event):
            logger.debug(f"Ignored event {event.name} in state {self.current_state.name}")
            return False

        new_state = self.TRANSITIONS[self.current_state][event]

        if new_state == SessionState.ERRORED:
            self.error_message = error_msg or "Unknown error"

        old_state = self.current_state
        self.previous_state = old_state
        self.current_state = new_state
        self.state_entry_time = time.time()

        self.transition_history.append(StateTransition(old_state, event, new_state))
        if len(self.transition_history) > self.max_history:
            self.transition_history = self.transition_history[-self.max_history :]

        logger.debug(f"Session state: {old_state.name} -> {new_state.name} (event: {event.name})")

        if new_state == SessionState.OPEN:
            self._fire(self.on_open)
        elif new_state == SessionState.CLOSED:
            self._fire(self.on_closed)
        elif new_state == SessionState.ERRORED:
            self._fire(self.on_error, self.error_message)

        return True

    @staticmethod
    def _fire(callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Session state callback error: {e}")

    def is_valid_transition(self, from_state: SessionState, event: SessionEvent) -> bool:
        """Check if a transition is valid."""
        return event in self.TRANSITIONS.get(from_state, {})

    def get_state(self) -> SessionState:
        """Get current state."""
        return self.current_state

    def get_time_in_state(self) -> float:
        """Get time spent in current state (seconds)."""
        return time.time() - self.state_entry_time

    def is_open(self) -> bool:
        return self.current_state == SessionState.OPEN

    def is_finished(self) -> bool:
        """True once the session is closed or errored."""
        return self.current_state in (SessionState.CLOSED, SessionState.ERRORED)

    def __repr__(self) -> str:
        return (
            f"SessionStateMachine(state={self.current_state.name}, "
            f"time_in_state={self.get_time_in_state():.1f}s)"
        )
