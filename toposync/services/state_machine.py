"""State machine for editing sessions.

Centralizes which session activities may follow one another so the session
never compiles while writing or saves while switching modes.
"""

from typing import Optional

from toposync.state import SessionState


class InvalidTransitionError(RuntimeError):
    """A session tried to move between incompatible states."""

    def __init__(self, current: SessionState, target: SessionState):
        super().__init__(f"Invalid session transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


class SessionStateMachine:
    """Centralized state transition logic for editing sessions.

    Session lifecycle:
        idle -> compiling -> idle (load, refresh)
        idle -> writing -> idle (save)
        idle -> switching_mode -> idle (edit/view switch)
    """

    VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
        SessionState.IDLE: {SessionState.COMPILING, SessionState.WRITING, SessionState.SWITCHING_MODE},
        SessionState.COMPILING: {SessionState.IDLE},
        SessionState.WRITING: {SessionState.IDLE},
        SessionState.SWITCHING_MODE: {SessionState.IDLE},
    }

    # States in which incoming refresh requests are queued instead of run
    BUSY_STATES: set[SessionState] = {
        SessionState.COMPILING,
        SessionState.WRITING,
        SessionState.SWITCHING_MODE,
    }

    @classmethod
    def can_transition(cls, current: SessionState, target: SessionState) -> bool:
        """Check if a state transition is valid."""
        return target in cls.VALID_TRANSITIONS.get(current, set())

    @classmethod
    def transition(cls, current: SessionState, target: SessionState) -> SessionState:
        """Validate and return the target state.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if not cls.can_transition(current, target):
            raise InvalidTransitionError(current, target)
        return target

    @classmethod
    def is_busy(cls, state: SessionState) -> bool:
        return state in cls.BUSY_STATES

    @classmethod
    def accepts_updates(cls, state: SessionState) -> bool:
        """Mode switches defer every update until they finish."""
        return state != SessionState.SWITCHING_MODE

    @classmethod
    def next_after(cls, pending_refresh: bool) -> Optional[SessionState]:
        """State to enter once the session is idle again.

        Returns COMPILING when a coalesced refresh is waiting, else None.
        """
        return SessionState.COMPILING if pending_refresh else None
