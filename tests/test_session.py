"""
Session lifecycle tests.
Tests session creation, state transitions, and the return to Idle.
"""
import pytest

from live_session.session import ALLOWED_TRANSITIONS, InvalidTransition, Session, SessionState


class TestSession:
    """Test Session class."""

    def test_create_session(self):
        """A new session starts Idle with an opaque id."""
        session = Session.create()

        assert session.session_id.startswith("sess_")
        assert len(session.session_id) == len("sess_") + 12
        assert session.state == SessionState.IDLE
        assert session.coordinates is None
        assert not session.is_active()

    def test_ids_are_unique(self):
        assert Session.create().session_id != Session.create().session_id

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError, match="session_id"):
            Session(session_id="")

    def test_happy_path_transitions(self):
        """Idle -> Acquiring -> Connecting -> Open -> Closing -> Idle."""
        session = Session.create()

        assert session.transition_to(SessionState.ACQUIRING) == SessionState.IDLE
        assert session.transition_to(SessionState.CONNECTING) == SessionState.ACQUIRING
        assert session.transition_to(SessionState.OPEN) == SessionState.CONNECTING
        assert session.is_active()
        assert session.transition_to(SessionState.CLOSING) == SessionState.OPEN
        assert not session.is_active()

        session.end(reason="user_stop")

        assert session.state == SessionState.IDLE
        assert session.end_reason == "user_stop"
        assert session.ended_at is not None

    @pytest.mark.parametrize("state", [SessionState.ACQUIRING, SessionState.CONNECTING, SessionState.OPEN])
    def test_errored_reachable_from_live_states(self, state):
        assert SessionState.ERRORED in ALLOWED_TRANSITIONS[state]

    def test_errored_goes_through_closing(self):
        session = Session(session_id="sess_err", state=SessionState.OPEN)
        session.transition_to(SessionState.ERRORED)

        with pytest.raises(InvalidTransition):
            session.transition_to(SessionState.IDLE)

        session.transition_to(SessionState.CLOSING)
        session.end(reason="transport.closed")
        assert session.state == SessionState.IDLE

    def test_stop_while_connecting(self):
        session = Session(session_id="sess_c", state=SessionState.CONNECTING)
        session.transition_to(SessionState.CLOSING)
        assert session.state == SessionState.CLOSING

    def test_invalid_transition_keeps_state(self):
        session = Session.create()

        with pytest.raises(InvalidTransition, match="idle -> open"):
            session.transition_to(SessionState.OPEN)

        assert session.state == SessionState.IDLE

    def test_end_requires_closing(self):
        session = Session(session_id="sess_o", state=SessionState.OPEN)
        with pytest.raises(InvalidTransition):
            session.end(reason="too_early")
        assert session.ended_at is None
