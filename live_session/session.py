"""
Session lifecycle record.

A Session exists from an explicit start until teardown completes. States:

    Idle -> Acquiring -> Connecting -> Open -> Closing -> Idle

Errored is reachable from Acquiring, Connecting and Open and always goes through
Closing back to Idle. Closing can also be entered directly from Acquiring or
Connecting when a stop arrives before the session is open.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .models import GeoCoordinates


class SessionState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    ERRORED = "errored"


ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.ACQUIRING}),
    SessionState.ACQUIRING: frozenset({SessionState.CONNECTING, SessionState.ERRORED, SessionState.CLOSING}),
    SessionState.CONNECTING: frozenset({SessionState.OPEN, SessionState.ERRORED, SessionState.CLOSING}),
    SessionState.OPEN: frozenset({SessionState.CLOSING, SessionState.ERRORED}),
    SessionState.ERRORED: frozenset({SessionState.CLOSING}),
    SessionState.CLOSING: frozenset({SessionState.IDLE}),
}


class InvalidTransition(ValueError):
    pass


@dataclass
class Session:
    """The single live conversation instance."""

    session_id: str
    state: SessionState = SessionState.IDLE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    coordinates: Optional[GeoCoordinates] = None

    ended_at: Optional[datetime] = None
    end_reason: Optional[str] = None
    fault_category: Optional[str] = None

    def __post_init__(self):
        if not self.session_id:
            raise ValueError("session_id is required")

    @classmethod
    def create(cls) -> "Session":
        """New session with an opaque id."""
        return cls(session_id=f"sess_{uuid.uuid4().hex[:12]}")

    def can_transition_to(self, new_state: SessionState) -> bool:
        return new_state in ALLOWED_TRANSITIONS[self.state]

    def transition_to(self, new_state: SessionState) -> SessionState:
        """
        Move to `new_state`. Returns the previous state.

        Raises InvalidTransition for moves the lifecycle does not allow.
        """
        if not self.can_transition_to(new_state):
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        old_state = self.state
        self.state = new_state
        return old_state

    def end(self, reason: str) -> None:
        """Record the end of the session once teardown has finished."""
        self.transition_to(SessionState.IDLE)
        self.ended_at = datetime.now(timezone.utc)
        self.end_reason = reason

    def is_active(self) -> bool:
        return self.state not in (SessionState.IDLE, SessionState.CLOSING)
