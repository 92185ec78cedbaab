"""
Observer interface for session notifications.

The controller owns its subscriber list; nothing is broadcast globally.
Subclass SessionObserver and override the hooks you need.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from observability.events import Component, EventEmitter, Severity

from .models import ConversationEntry, Side, ToolInvocation, ToolResult
from .session import SessionState


class SessionObserver:
    """No-op base. Hooks run on the event loop and must not block."""

    def on_state_changed(self, session_id: str, old_state: SessionState, new_state: SessionState) -> None:
        pass

    def on_session_started(self, session_id: str) -> None:
        pass

    def on_status(self, session_id: Optional[str], status: str) -> None:
        pass

    def on_conversation_entry(self, session_id: str, entry: ConversationEntry) -> None:
        pass

    def on_live_transcript(self, session_id: str, text: str) -> None:
        pass

    def on_tool_activity(self, session_id: str, indicator: str, active: bool) -> None:
        pass

    def on_tool_started(self, session_id: str, invocation: ToolInvocation) -> None:
        pass

    def on_tool_completed(self, session_id: str, invocation: ToolInvocation, result: ToolResult) -> None:
        pass

    def on_playback_interrupted(self, session_id: str, stopped: int) -> None:
        pass

    def on_route_requested(self, session_id: str, destination: str) -> None:
        pass

    def on_fault(self, session_id: str, category: str, user_message: str) -> None:
        pass


class EventLogObserver(SessionObserver):
    """Turns session notifications into structured observability events."""

    def __init__(self, stream=None):
        self.controller_events = EventEmitter(Component.SESSION_CONTROLLER, stream=stream)
        self.tool_events = EventEmitter(Component.TOOL_DISPATCHER, stream=stream)
        self.playback_events = EventEmitter(Component.PLAYBACK, stream=stream)
        self.transcription_events = EventEmitter(Component.TRANSCRIPTION, stream=stream)

    def on_state_changed(self, session_id, old_state, new_state):
        self.controller_events.emit(
            "session.state_changed",
            session_id=session_id,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    def on_conversation_entry(self, session_id, entry):
        self.transcription_events.emit(
            "turn.completed",
            session_id=session_id,
            side=entry.side.value,
            text_length=len(entry.text),
            pii={"contains_pii": True, "fields": ["text"], "handling": "omitted"},
        )

    def on_tool_started(self, session_id, invocation):
        self.tool_events.emit(
            "tool.started",
            session_id=session_id,
            correlation_id=invocation.correlation_id,
            tool=invocation.name,
        )

    def on_tool_completed(self, session_id, invocation, result):
        self.tool_events.emit(
            "tool.completed",
            session_id=session_id,
            severity=Severity.WARN if result.is_error else Severity.INFO,
            correlation_id=invocation.correlation_id,
            tool=invocation.name,
            ok=not result.is_error,
            error=result.error,
        )

    def on_playback_interrupted(self, session_id, stopped):
        self.playback_events.emit("playback.interrupted", session_id=session_id, stopped=stopped)

    def on_route_requested(self, session_id, destination):
        self.transcription_events.emit(
            "route.requested",
            session_id=session_id,
            destination_length=len(destination),
            pii={"contains_pii": True, "fields": ["destination"], "handling": "omitted"},
        )

    def on_fault(self, session_id, category, user_message):
        self.controller_events.emit(
            "session.fault",
            session_id=session_id,
            severity=Severity.ERROR,
            category=category,
            status=user_message,
        )


class ConversationLog(SessionObserver):
    """
    Finalized entries plus the latest status of the current (or last) session.
    Reset when a new session starts; nothing is persisted.
    """

    def __init__(self):
        self.session_id: Optional[str] = None
        self.entries: List[ConversationEntry] = []
        self.status: str = ""
        self.live_transcript: str = ""
        self.indicators: Dict[str, bool] = {}
        self.last_fault: Optional[str] = None

    def on_session_started(self, session_id):
        self.session_id = session_id
        self.entries = []
        self.live_transcript = ""
        self.indicators = {}
        self.last_fault = None

    def on_status(self, session_id, status):
        self.status = status
        if status in ("Ready.", "Activating..."):
            self.live_transcript = ""

    def on_conversation_entry(self, session_id, entry):
        if session_id == self.session_id:
            self.entries.append(entry)

    def on_live_transcript(self, session_id, text):
        self.live_transcript = text

    def on_tool_activity(self, session_id, indicator, active):
        self.indicators[indicator] = active

    def on_fault(self, session_id, category, user_message):
        self.last_fault = user_message

    def visible_entries(self) -> List[ConversationEntry]:
        """Caller and assistant entries; system notices are hidden from the transcript view."""
        return [entry for entry in self.entries if entry.side is not Side.SYSTEM]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "entries": [entry.to_dict() for entry in self.entries],
        }
