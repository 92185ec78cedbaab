"""
Shared logging infrastructure for the live session engine.

Every package (live_session, control_plane, observability) logs through this module
so that log lines share one structured shape.

Features:
- JSON-formatted structured logs (one object per line)
- Component tagging and optional session_id correlation
- Keyword fields instead of pre-formatted strings
- PII-aware helpers for transcript content
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Severity(str, Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Component(str, Enum):
    """Engine components for log tagging."""
    SESSION_CONTROLLER = "session_controller"
    AUDIO_CAPTURE = "audio_capture"
    PLAYBACK = "playback"
    TRANSCRIPTION = "transcription"
    TOOL_DISPATCHER = "tool_dispatcher"
    TRANSPORT = "transport"
    RELAY = "relay"
    LOCATION = "location"
    CONTEXT = "context"
    CONTROL_PLANE = "control_plane"


# Attributes every LogRecord carries; anything else on the record is an extra field.
_RESERVED_RECORD_KEYS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "taskName", "exc_info", "exc_text", "stack_info",
    "component", "session_id", "message",
})


class JSONFormatter(logging.Formatter):
    """
    Render a LogRecord as a single JSON line.

    Shape:
    - timestamp (ISO8601, UTC)
    - severity
    - component
    - message
    - session_id (when the logger is bound to a session)
    - every extra keyword field
    - exception (when exc_info is set)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        if hasattr(record, "session_id"):
            log_data["session_id"] = record.session_id

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Thin wrapper around a stdlib logger that takes keyword fields.

    Usage:
        logger = StructuredLogger(Component.PLAYBACK, session_id="sess_123")
        logger.info("Segment scheduled", start_time=1.25, duration=0.4)
        logger.info_pii("Turn finalized", text="Go to the market")
    """

    def __init__(
        self,
        component: str | Component,
        session_id: Optional[str] = None,
        logger_name: Optional[str] = None
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.session_id = session_id
        self.logger = logging.getLogger(logger_name or f"live_session.{self.component}")

    def _log(
        self,
        level: int,
        message: str,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", False)
        stacklevel = kwargs.pop("stacklevel", 1)

        extra = {"component": self.component, **kwargs}
        if self.session_id:
            extra["session_id"] = self.session_id
        if pii:
            extra["pii"] = pii

        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            stack_info=stack_info,
            stacklevel=stacklevel,
            extra=extra,
        )

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log at ERROR level with the active exception attached."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **kwargs)

    def debug_pii(self, message: str, **pii_fields):
        """Log debug with transcript or location content kept under the `pii` field."""
        self._log(logging.DEBUG, message, pii=pii_fields)

    def info_pii(self, message: str, **pii_fields):
        """Log info with transcript or location content kept under the `pii` field."""
        self._log(logging.INFO, message, pii=pii_fields)

    def with_session(self, session_id: str) -> "StructuredLogger":
        """Return a logger for the same component bound to `session_id`."""
        return StructuredLogger(
            self.component,
            session_id=session_id,
            logger_name=self.logger.name,
        )


def setup_logging(level: str = "INFO", use_json: bool = True) -> None:
    """
    Configure the root logger. Call once at process startup.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (unknown values fall back to INFO)
        use_json: JSONFormatter when True, a plain single-line text format otherwise
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(levelname)s - %(component)s - %(message)s")
        )
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(
    component: str | Component,
    session_id: Optional[str] = None
) -> StructuredLogger:
    """
    Get a structured logger for a component.

    Example:
        logger = get_logger(Component.TOOL_DISPATCHER, session_id="sess_123")
        logger.info("Tool dispatched", tool="getInfrastructureTelemetry")
    """
    return StructuredLogger(component, session_id=session_id)
