"""
Structured JSON session events (shared).

Used by the live session engine and the control plane. Every event has the same
envelope so that a session can be reconstructed from stdout or from the event store.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import event_store


class Component(str, Enum):
    """Event sources."""

    SESSION_CONTROLLER = "session_controller"
    TOOL_DISPATCHER = "tool_dispatcher"
    PLAYBACK = "playback"
    TRANSCRIPTION = "transcription"
    CONTROL_PLANE = "control_plane"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


class EventEmitter:
    """Emits structured JSON events to stdout and the in-memory event store."""

    def __init__(self, component: Component, stream=None):
        self.component = component
        self._stream = stream

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event.

        Args:
            event_type: Stable dotted name, e.g. "tool.completed"
            session_id: Opaque session identifier
            severity: Event severity
            correlation_id: Tool call id, turn id or command id; defaults to session_id
            pii: PII metadata {contains_pii, fields, handling}
            **kwargs: Event payload
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        # Resolved per call so pytest's capsys sees the output.
        stream = self._stream or sys.stdout
        stream.write(json.dumps(event, ensure_ascii=False, default=str))
        stream.write("\n")
        stream.flush()

        event_store.store(event)
        return event
