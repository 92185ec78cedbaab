"""
Structured session events and the in-memory event store.
"""
import json
from datetime import datetime, timedelta, timezone
from io import StringIO

import pytest

from observability.event_store import EventStore, event_store
from observability.events import DEFAULT_PII, Component, EventEmitter, Severity


@pytest.fixture(autouse=True)
def cleanup():
    yield
    event_store.clear()


class TestEventFormat:
    """Envelope shape of emitted events."""

    def test_required_fields(self):
        stream = StringIO()
        emitter = EventEmitter(Component.SESSION_CONTROLLER, stream=stream)
        emitter.emit("session.state_changed", session_id="sess_1", from_state="idle", to_state="acquiring")

        event = json.loads(stream.getvalue().strip())

        for key in ("ts", "session_id", "component", "event_type", "severity", "correlation_id", "pii"):
            assert key in event
        assert event["component"] == "session_controller"
        assert event["event_type"] == "session.state_changed"
        assert event["severity"] == "info"
        assert event["from_state"] == "idle"
        assert event["to_state"] == "acquiring"

    def test_timestamp_is_iso8601(self):
        stream = StringIO()
        EventEmitter(Component.PLAYBACK, stream=stream).emit("playback.interrupted", session_id="sess_1")

        event = json.loads(stream.getvalue().strip())
        datetime.fromisoformat(event["ts"].replace("Z", "+00:00"))

    def test_correlation_id_defaults_to_session_id(self):
        stream = StringIO()
        event = EventEmitter(Component.TOOL_DISPATCHER, stream=stream).emit("tool.started", session_id="sess_9")
        assert event["correlation_id"] == "sess_9"

    def test_explicit_correlation_id_and_severity(self):
        stream = StringIO()
        event = EventEmitter(Component.TOOL_DISPATCHER, stream=stream).emit(
            "tool.completed",
            session_id="sess_9",
            severity=Severity.WARN,
            correlation_id="call-1",
        )
        assert event["correlation_id"] == "call-1"
        assert event["severity"] == "warn"

    def test_default_pii(self):
        stream = StringIO()
        event = EventEmitter(Component.TRANSCRIPTION, stream=stream).emit("turn.completed", session_id="s")
        assert event["pii"] == DEFAULT_PII

    def test_writes_to_stdout_by_default(self, capsys):
        EventEmitter(Component.CONTROL_PLANE).emit("control.command_received", session_id="s", command="session.start")
        out = capsys.readouterr().out
        assert "control.command_received" in out
        assert "session.start" in out

    def test_one_line_per_event(self):
        stream = StringIO()
        emitter = EventEmitter(Component.PLAYBACK, stream=stream)
        emitter.emit("playback.interrupted", session_id="s", stopped=1)
        emitter.emit("playback.interrupted", session_id="s", stopped=2)

        lines = stream.getvalue().strip().split("\n")
        assert [json.loads(line)["stopped"] for line in lines] == [1, 2]


class TestEventStore:
    def test_emitted_events_are_stored(self):
        EventEmitter(Component.PLAYBACK, stream=StringIO()).emit("playback.interrupted", session_id="sess_a", stopped=3)

        events = event_store.query(session_id="sess_a")
        assert len(events) == 1
        assert events[0]["event_type"] == "playback.interrupted"
        assert events[0]["stopped"] == 3

    def test_filters(self):
        store = EventStore()
        store.store({"session_id": "a", "component": "playback", "event_type": "playback.interrupted"})
        store.store({"session_id": "a", "component": "tool_dispatcher", "event_type": "tool.started"})
        store.store({"session_id": "b", "component": "tool_dispatcher", "event_type": "tool.started"})

        assert len(store.query(session_id="a")) == 2
        assert len(store.query(event_type="tool.started")) == 2
        assert len(store.query(component="playback")) == 1
        assert len(store.query(session_id="a", event_type="tool.started")) == 1
        assert len(store.query(limit=1)) == 1

    def test_time_window(self):
        store = EventStore()
        now = datetime.now(timezone.utc)
        store.store({"ts": (now - timedelta(minutes=10)).isoformat(), "session_id": "a", "event_type": "old"})
        store.store({"ts": now.isoformat(), "session_id": "a", "event_type": "new"})

        events = store.query(since=now - timedelta(minutes=1))
        assert [e["event_type"] for e in events] == ["new"]

        events = store.query(until=now - timedelta(minutes=1))
        assert [e["event_type"] for e in events] == ["old"]

    def test_bounded_fifo(self):
        store = EventStore(max_events=3)
        for i in range(5):
            store.store({"session_id": "a", "event_type": f"e{i}"})

        assert [e["event_type"] for e in store.query()] == ["e2", "e3", "e4"]
        assert store.get_stats()["total_events"] == 3
        assert store.get_stats()["max_events"] == 3

    def test_clear(self):
        store = EventStore()
        store.store({"session_id": "a", "event_type": "x"})
        store.clear()
        assert store.query() == []
        assert store.get_stats()["oldest_event_ts"] is None
