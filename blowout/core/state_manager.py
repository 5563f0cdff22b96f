import enum
from typing import Dict, FrozenSet, Optional

from blowout.audio.errors import InvalidTransition


class SessionState(enum.Enum):
    IDLE = "idle"
    AWAITING_PERMISSION = "awaiting_permission"
    CALIBRATING = "calibrating"
    DETECTING = "detecting"
    FIRED = "fired"
    UNAVAILABLE = "unavailable"


_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.AWAITING_PERMISSION, SessionState.FIRED}),
    SessionState.AWAITING_PERMISSION: frozenset({SessionState.CALIBRATING, SessionState.UNAVAILABLE, SessionState.FIRED}),
    SessionState.CALIBRATING: frozenset({SessionState.DETECTING, SessionState.UNAVAILABLE, SessionState.FIRED}),
    SessionState.DETECTING: frozenset({SessionState.FIRED, SessionState.UNAVAILABLE}),
    SessionState.UNAVAILABLE: frozenset({SessionState.FIRED}),
    SessionState.FIRED: frozenset(),
}

TERMINAL_STATES = frozenset({SessionState.FIRED, SessionState.UNAVAILABLE})


class OneShotLatch:
    """The single "already fired" flag shared by automatic and manual triggers."""

    def __init__(self):
        self.fired_by: Optional[str] = None

    @property
    def fired(self) -> bool:
        return self.fired_by is not None

    def fire(self, by: str) -> bool:
        """Take the latch. True only for the first caller."""
        if self.fired_by is not None:
            return False
        self.fired_by = by
        return True


class StateManager:
    """Owns the session state and rejects transitions the session never makes."""

    def __init__(self):
        self.state = SessionState.IDLE
        self.latch = OneShotLatch()

    def transition(self, target: SessionState) -> SessionState:
        previous = self.state
        if target not in _TRANSITIONS[previous]:
            raise InvalidTransition(f"{previous.value} -> {target.value}")
        self.state = target
        return previous

    def can_transition(self, target: SessionState) -> bool:
        return target in _TRANSITIONS[self.state]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
