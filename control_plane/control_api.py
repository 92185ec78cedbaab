"""
Control API for the live session.

This module exposes:
- Write API: start / stop the session (the explicit remote start surface)
- Read API: session status, finalized conversation, stored events, relay command log

Commands emit auditable events: control.command_received / control.command_applied.
The router works against whatever runtime configure() installed; until then every
route answers 503.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from live_session.observers import ConversationLog
from live_session.session import SessionState
from logging_setup import Component, get_logger
from observability.event_store import event_store
from observability.events import Component as ObsComponent, EventEmitter, Severity


router = APIRouter(prefix="/control", tags=["control"])
emitter = EventEmitter(ObsComponent.CONTROL_PLANE)
logger = get_logger(Component.CONTROL_PLANE)


@dataclass
class ControlRuntime:
    controller: Any
    conversation: ConversationLog
    relay: Any = None


_runtime: Optional[ControlRuntime] = None


def configure(controller, conversation: Optional[ConversationLog] = None, relay=None) -> ControlRuntime:
    """Install the controller the API drives. Subscribes a ConversationLog if none is given."""
    global _runtime
    if conversation is None:
        conversation = ConversationLog()
        controller.subscribe(conversation)
    _runtime = ControlRuntime(controller=controller, conversation=conversation, relay=relay)
    return _runtime


def reset() -> None:
    global _runtime
    _runtime = None


def get_runtime() -> ControlRuntime:
    if _runtime is None:
        raise HTTPException(status_code=503, detail="controller_not_configured")
    return _runtime


async def shutdown() -> None:
    """Stop any active session. Used on server shutdown."""
    if _runtime is not None:
        await _runtime.controller.stop()


def _new_correlation_id() -> str:
    return f"cmd_{int(time.time() * 1000)}"


class CommandResponse(BaseModel):
    status: str
    state: str
    session_id: Optional[str] = None
    message: Optional[str] = None


class SessionStatus(BaseModel):
    state: str
    session_id: Optional[str] = None
    status: str
    live_transcript: str = ""
    coordinates: Optional[Dict[str, float]] = None
    indicators: Dict[str, bool] = Field(default_factory=dict)
    last_fault: Optional[str] = None


class ConversationEntryModel(BaseModel):
    sender: str
    text: str
    timestamp: str
    metadata: Optional[Dict[str, Any]] = None


class ConversationResponse(BaseModel):
    session_id: Optional[str] = None
    entries: List[ConversationEntryModel]
    count: int


@router.post("/session/start", response_model=CommandResponse)
async def start_session() -> CommandResponse:
    """
    Start a session and wait until it is Open or has failed.

    A start while a session is active is ignored, as the controller ignores it.
    """
    runtime = get_runtime()
    controller = runtime.controller
    correlation_id = _new_correlation_id()

    emitter.emit(
        "control.command_received",
        session_id=controller.session_id or "none",
        correlation_id=correlation_id,
        command="session.start",
    )

    if controller.state != SessionState.IDLE:
        emitter.emit(
            "control.command_applied",
            session_id=controller.session_id or "none",
            correlation_id=correlation_id,
            command="session.start",
            result="ignored",
        )
        return CommandResponse(status="ignored", state=controller.state.value, session_id=controller.session_id)

    opened = await controller.start()
    session_id = controller.session_id or runtime.conversation.session_id

    if not opened:
        emitter.emit(
            "control.command_applied",
            session_id=session_id or "none",
            severity=Severity.ERROR,
            correlation_id=correlation_id,
            command="session.start",
            result="error",
        )
        return CommandResponse(
            status="failed",
            state=controller.state.value,
            session_id=session_id,
            message=runtime.conversation.last_fault,
        )

    emitter.emit(
        "control.command_applied",
        session_id=session_id,
        correlation_id=correlation_id,
        command="session.start",
        result="ok",
    )
    return CommandResponse(status="started", state=controller.state.value, session_id=session_id)


@router.post("/session/stop", response_model=CommandResponse)
async def stop_session() -> CommandResponse:
    runtime = get_runtime()
    controller = runtime.controller
    session_id = controller.session_id
    correlation_id = _new_correlation_id()

    emitter.emit(
        "control.command_received",
        session_id=session_id or "none",
        correlation_id=correlation_id,
        command="session.stop",
    )

    if session_id is None:
        emitter.emit(
            "control.command_applied",
            session_id="none",
            correlation_id=correlation_id,
            command="session.stop",
            result="ignored",
        )
        return CommandResponse(status="idle", state=controller.state.value)

    await controller.stop()

    emitter.emit(
        "control.command_applied",
        session_id=session_id,
        correlation_id=correlation_id,
        command="session.stop",
        result="ok",
    )
    return CommandResponse(status="stopped", state=controller.state.value, session_id=session_id)


@router.get("/session", response_model=SessionStatus)
async def get_session_status() -> SessionStatus:
    runtime = get_runtime()
    controller = runtime.controller
    session = controller.session
    coordinates = session.coordinates.as_dict() if session is not None and session.coordinates else None
    return SessionStatus(
        state=controller.state.value,
        session_id=controller.session_id,
        status=controller.status,
        live_transcript=runtime.conversation.live_transcript,
        coordinates=coordinates,
        indicators=runtime.conversation.indicators,
        last_fault=runtime.conversation.last_fault,
    )


@router.get("/session/conversation", response_model=ConversationResponse)
async def get_conversation(
    include_system: bool = Query(False, description="Include system notices"),
) -> ConversationResponse:
    """Finalized entries of the current session, or of the last one once it has ended."""
    conversation = get_runtime().conversation
    entries = conversation.entries if include_system else conversation.visible_entries()
    return ConversationResponse(
        session_id=conversation.session_id,
        entries=[ConversationEntryModel(**entry.to_dict()) for entry in entries],
        count=len(entries),
    )


@router.get("/session/events")
async def get_session_events(
    session_id: Optional[str] = Query(None, description="Defaults to the current or last session"),
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    runtime = get_runtime()
    session_id = session_id or runtime.controller.session_id or runtime.conversation.session_id
    if session_id is None:
        raise HTTPException(status_code=404, detail="No session")

    events = event_store.query(session_id=session_id, event_type=event_type, limit=limit)
    return {
        "session_id": session_id,
        "events": events,
        "count": len(events),
    }


@router.get("/logs")
async def get_command_logs() -> dict:
    """Persisted command log read back from the signal relay."""
    runtime = get_runtime()
    if runtime.relay is None:
        raise HTTPException(status_code=502, detail="logs_unavailable")

    logs = await runtime.relay.get_command_logs()
    if logs is None:
        logger.warning("Command log unavailable")
        raise HTTPException(status_code=502, detail="logs_unavailable")
    return {"logs": logs, "count": len(logs)}
