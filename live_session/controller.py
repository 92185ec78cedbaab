"""
SessionController: owns the single live session.

    Idle -> Acquiring -> Connecting -> Open -> Closing -> Idle
                 \\            \\          \\
                  +-> Errored -+----------+--> Closing -> Idle

start() is only honoured from Idle. stop(), a transport error and a remote close
all converge on one teardown task per session, so every resource is released
exactly once whichever trigger arrives first (or arrives concurrently).

Everything runs on one event loop. Inbound audio is scheduled only from
_on_message, which keeps the playback cursor single-writer.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from logging_setup import Component, get_logger

from .audio import decode_audio_segment
from .capture import AudioCaptureEncoder, CaptureSource
from .connection import ConnectionConfig, SessionCallbacks, SessionConnection
from .errors import AcquisitionError, DecodeError, FaultHandler
from .location import LocationProvider
from .models import ConversationEntry, ServerMessage, Side, ToolInvocation, ToolResult
from .observers import SessionObserver
from .playback import AudioOutput, PlaybackScheduler
from .session import Session, SessionState
from .tools import ToolContext, ToolDispatcher, ToolHandler
from .transcription import RouteIntentRule, TranscriptionAggregator


STATUS_IDLE = "Ready for your command."
STATUS_ACTIVATING = "Activating..."
STATUS_ONLINE = "Online"
STATUS_READY = "Ready."

ROUTE_NEEDS_GPS = "GPS signal needed for routing."
ROUTE_CALCULATING = "Calculating best route to {destination}..."
ROUTE_FAILED = "Connectivity lost."

TOOL_INDICATORS: Dict[str, str] = {
    "getInfrastructureTelemetry": "telemetry_sync",
    "sendGpioOrders": "telemetry_sync",
    "checkLocalTraffic": "map_consult",
}


class SessionController:
    def __init__(
        self,
        capture_source: CaptureSource,
        location_provider: LocationProvider,
        connection_factory: Callable[[str], SessionConnection],
        output_factory: Callable[[], AudioOutput],
        connection_config: ConnectionConfig,
        tool_handlers: Mapping[str, ToolHandler],
        context_service=None,
        gain: float = 1.0,
        route_rule: Optional[RouteIntentRule] = None,
        nudge_text: Optional[str] = None,
        nudge_on_open: bool = True,
        nudge_interval_seconds: float = 20.0,
        playback_sample_rate: int = 24000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.capture_source = capture_source
        self.location_provider = location_provider
        self.connection_factory = connection_factory
        self.output_factory = output_factory
        self.connection_config = connection_config
        self.tool_handlers = dict(tool_handlers)
        self.context_service = context_service
        self.gain = gain
        self.route_rule = route_rule
        self.nudge_text = nudge_text
        self.nudge_on_open = nudge_on_open
        self.nudge_interval_seconds = nudge_interval_seconds
        self.playback_sample_rate = playback_sample_rate
        self._sleep = sleep

        self.status = STATUS_IDLE
        self.last_session: Optional[Session] = None

        self._observers: List[SessionObserver] = []
        self._session: Optional[Session] = None
        self._capture: Optional[AudioCaptureEncoder] = None
        self._connection: Optional[SessionConnection] = None
        self._playback: Optional[PlaybackScheduler] = None
        self._transcripts: Optional[TranscriptionAggregator] = None
        self._dispatcher: Optional[ToolDispatcher] = None
        self._nudge_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._indicator_counts: Dict[str, int] = {}

        self.logger = get_logger(Component.SESSION_CONTROLLER)

    # -- public surface -------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session is not None else SessionState.IDLE

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id if self._session is not None else None

    @property
    def playback(self) -> Optional[PlaybackScheduler]:
        return self._playback

    @property
    def dispatcher(self) -> Optional[ToolDispatcher]:
        return self._dispatcher

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """Register an observer. Returns a function that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def start(self) -> bool:
        """
        Acquire capture and location, then connect.

        Returns True once the session is Open. Ignored (returns False) unless Idle.
        Acquisition and connection faults are reported to observers, end the
        session and return False; they do not raise.
        """
        if self._session is not None:
            self.logger.info("Start ignored; session already active", state=self.state.value)
            return False

        session = Session.create()
        self._session = session
        self._teardown_task = None
        self._indicator_counts = {}
        self.logger = get_logger(Component.SESSION_CONTROLLER, session_id=session.session_id)
        self._notify("on_session_started", session.session_id)
        self._transition(session, SessionState.ACQUIRING)
        self._set_status(STATUS_ACTIVATING)

        try:
            stream = await self.capture_source.acquire()
        except AcquisitionError as e:
            if self._is_current(session):
                await self._fault(session, FaultHandler.classify_acquisition_error(e), e)
            return False
        if not self._is_current(session):
            stream.close()
            return False
        self._capture = AudioCaptureEncoder(stream, gain=self.gain, session_id=session.session_id)

        try:
            coordinates = await self.location_provider.acquire_once()
            output = self.output_factory()
        except AcquisitionError as e:
            if self._is_current(session):
                await self._fault(session, FaultHandler.classify_acquisition_error(e), e)
            return False
        if not self._is_current(session):
            output.close()
            return False
        session.coordinates = coordinates

        self._playback = PlaybackScheduler(output, session_id=session.session_id)
        self._transcripts = TranscriptionAggregator(
            route_rule=self.route_rule,
            on_route_request=lambda destination: self._on_route_request(session, destination),
            session_id=session.session_id,
        )
        self._dispatcher = ToolDispatcher(
            self.tool_handlers,
            ToolContext(coordinates=coordinates, session_id=session.session_id),
            result_sink=lambda result: self._send_tool_result(session, result),
            on_started=lambda invocation: self._on_tool_started(session, invocation),
            on_finished=lambda invocation, result: self._on_tool_finished(session, invocation, result),
        )

        self._transition(session, SessionState.CONNECTING)
        connection = self.connection_factory(session.session_id)
        self._connection = connection
        callbacks = SessionCallbacks(
            on_open=lambda: self._on_open(session),
            on_message=lambda message: self._on_message(session, message),
            on_error=lambda error: self._on_transport_error(session, error),
            on_close=lambda: self._on_transport_close(session),
        )
        try:
            await connection.open(self.connection_config, callbacks)
        except Exception as e:
            if self._is_current(session) and self._teardown_task is None:
                await self._fault(session, FaultHandler.classify_transport_error(e), e)
            return False
        if self._teardown_task is not None:
            # faulted from on_open
            await self.wait_idle()
            return False

        return self._is_current(session) and session.state == SessionState.OPEN

    async def stop(self) -> None:
        """Tear down the active session. No-op when Idle; safe to call repeatedly."""
        session = self._session
        if session is None:
            return
        await asyncio.shield(self._begin_teardown(session, "stopped"))

    async def wait_idle(self) -> None:
        """Wait for a teardown already in progress."""
        task = self._teardown_task
        if task is not None:
            await asyncio.shield(task)

    # -- connection callbacks -------------------------------------------

    def _on_open(self, session: Session) -> None:
        if not self._is_current(session) or session.state != SessionState.CONNECTING:
            return
        try:
            self._capture.start(self._connection.send)
        except Exception as e:
            error = e if isinstance(e, AcquisitionError) else AcquisitionError("microphone", str(e))
            self._begin_fault(session, FaultHandler.classify_acquisition_error(error), error)
            return
        self._transition(session, SessionState.OPEN)
        self._set_status(STATUS_ONLINE)
        if self.nudge_text:
            self._nudge_task = asyncio.create_task(self._nudge_loop(session, self._connection), name="nudge")

    def _on_message(self, session: Session, message: ServerMessage) -> None:
        if not self._is_current(session) or session.state != SessionState.OPEN:
            return

        if message.tool_calls:
            self._dispatcher.dispatch(message.tool_calls)

        for fragment in message.fragments:
            self._transcripts.append_fragment(fragment.side, fragment.text)
            if fragment.side is Side.CALLER:
                self._notify("on_live_transcript", session.session_id, self._transcripts.current_text(Side.CALLER))

        if message.turn_complete:
            for entry in self._transcripts.complete_turn():
                self._add_entry(session, entry)
            self._notify("on_live_transcript", session.session_id, "")

        for audio in message.audio:
            try:
                segment = decode_audio_segment(audio, default_rate=self.playback_sample_rate)
            except DecodeError as e:
                self.logger.warning("Audio segment skipped", error=str(e), mime_type=audio.mime_type)
                continue
            self._playback.schedule(segment)

        if message.interrupted:
            stopped = self._playback.interrupt()
            self._notify("on_playback_interrupted", session.session_id, stopped)

    def _on_transport_error(self, session: Session, error: BaseException) -> None:
        if not self._is_current(session) or self._teardown_task is not None:
            return
        self._begin_fault(session, FaultHandler.classify_transport_error(error), error)

    def _on_transport_close(self, session: Session) -> None:
        if not self._is_current(session) or self._teardown_task is not None:
            return
        self._begin_fault(session, FaultHandler.classify_transport_error(None), None)

    # -- tools ------------------------------------------------------------

    def _send_tool_result(self, session: Session, result: ToolResult) -> None:
        connection = self._connection
        if not self._is_current(session) or connection is None or not connection.is_open:
            self.logger.info("Orphaned tool result discarded", tool=result.name, call_id=result.correlation_id)
            return
        connection.send_tool_result(result)

    def _on_tool_started(self, session: Session, invocation: ToolInvocation) -> None:
        self._notify("on_tool_started", session.session_id, invocation)
        indicator = TOOL_INDICATORS.get(invocation.name)
        if indicator is None:
            return
        count = self._indicator_counts.get(indicator, 0) + 1
        self._indicator_counts[indicator] = count
        if count == 1:
            self._notify("on_tool_activity", session.session_id, indicator, True)

    def _on_tool_finished(self, session: Session, invocation: ToolInvocation, result: ToolResult) -> None:
        self._notify("on_tool_completed", session.session_id, invocation, result)
        indicator = TOOL_INDICATORS.get(invocation.name)
        if indicator is None or not self._is_current(session):
            return
        count = max(0, self._indicator_counts.get(indicator, 0) - 1)
        self._indicator_counts[indicator] = count
        if count == 0:
            self._notify("on_tool_activity", session.session_id, indicator, False)

    # -- routing side effect --------------------------------------------

    def _on_route_request(self, session: Session, destination: str) -> None:
        self._notify("on_route_requested", session.session_id, destination)
        task = asyncio.create_task(self._route(session, destination), name="route")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _route(self, session: Session, destination: str) -> None:
        coordinates = session.coordinates
        if coordinates is None:
            self._add_entry(session, ConversationEntry(Side.SYSTEM, ROUTE_NEEDS_GPS))
            return
        self._add_entry(session, ConversationEntry(Side.SYSTEM, ROUTE_CALCULATING.format(destination=destination)))
        if self.context_service is None:
            self._add_entry(session, ConversationEntry(Side.SYSTEM, ROUTE_FAILED))
            return
        try:
            answer = await self.context_service.get_route(coordinates, destination)
        except Exception as e:
            self.logger.warning("Route lookup failed", error=str(e), error_type=type(e).__name__)
            self._add_entry(session, ConversationEntry(Side.SYSTEM, ROUTE_FAILED))
            return
        self._add_entry(session, ConversationEntry(Side.ASSISTANT, answer.text, metadata={"grounding": answer.grounding}))

    def _add_entry(self, session: Session, entry: ConversationEntry) -> None:
        if not self._is_current(session):
            return
        self._notify("on_conversation_entry", session.session_id, entry)

    # -- background nudge -------------------------------------------------

    async def _nudge_loop(self, session: Session, connection: SessionConnection) -> None:
        if self.nudge_on_open:
            connection.send(self.nudge_text)
            self.logger.debug("Nudge sent", periodic=False)
        if self.nudge_interval_seconds <= 0:
            return
        while True:
            await self._sleep(self.nudge_interval_seconds)
            if not self._is_current(session) or session.state != SessionState.OPEN:
                return
            connection.send(self.nudge_text)
            self.logger.debug("Nudge sent", periodic=True)

    # -- faults and teardown ------------------------------------------------

    async def _fault(self, session: Session, category: str, error: Optional[BaseException]) -> None:
        await asyncio.shield(self._begin_fault(session, category, error))

    def _begin_fault(self, session: Session, category: str, error: Optional[BaseException]) -> asyncio.Task:
        user_message = FaultHandler.get_user_message(category)
        session.fault_category = category
        if session.can_transition_to(SessionState.ERRORED):
            self._transition(session, SessionState.ERRORED)
        self.logger.error(
            "Session fault",
            category=category,
            detail=FaultHandler.redact(str(error)) if error is not None else None,
        )
        self._notify("on_fault", session.session_id, category, user_message)
        self._set_status(user_message)
        return self._begin_teardown(session, category)

    def _begin_teardown(self, session: Session, reason: str) -> asyncio.Task:
        if self._teardown_task is None:
            self._teardown_task = asyncio.create_task(self._teardown(session, reason), name="teardown")
        return self._teardown_task

    async def _teardown(self, session: Session, reason: str) -> None:
        self._transition(session, SessionState.CLOSING)
        self.logger.info("Tearing down session", reason=reason)

        nudge, self._nudge_task = self._nudge_task, None
        if nudge is not None and not nudge.done():
            nudge.cancel()
            await asyncio.gather(nudge, return_exceptions=True)

        capture, self._capture = self._capture, None
        if capture is not None:
            self._release("capture", capture.stop)

        dispatcher, self._dispatcher = self._dispatcher, None
        if dispatcher is not None:
            dispatcher.release()

        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception:
                self.logger.exception("Connection close failed")

        playback, self._playback = self._playback, None
        if playback is not None:
            self._release("playback", playback.close)

        transcripts, self._transcripts = self._transcripts, None
        if transcripts is not None:
            transcripts.reset()

        for indicator, count in self._indicator_counts.items():
            if count:
                self._notify("on_tool_activity", session.session_id, indicator, False)
        self._indicator_counts = {}

        old_state = session.state
        session.end(reason)
        self._notify("on_state_changed", session.session_id, old_state, session.state)
        self.last_session = session
        self._session = None
        self._notify("on_live_transcript", session.session_id, "")
        if session.fault_category is None:
            self._set_status(STATUS_READY)
        self.logger.info("Session ended", reason=reason)

    def _release(self, name: str, release: Callable[[], None]) -> None:
        try:
            release()
        except Exception:
            self.logger.exception("Resource release failed", resource=name)

    # -- helpers ----------------------------------------------------------

    def _is_current(self, session: Session) -> bool:
        return self._session is session

    def _transition(self, session: Session, new_state: SessionState) -> None:
        old_state = session.transition_to(new_state)
        self.logger.info("State changed", from_state=old_state.value, to_state=new_state.value)
        self._notify("on_state_changed", session.session_id, old_state, new_state)

    def _set_status(self, status: str) -> None:
        self.status = status
        self._notify("on_status", self.session_id, status)

    def _notify(self, hook: str, *args) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, hook)(*args)
            except Exception:
                self.logger.exception("Observer failed", observer=type(observer).__name__, hook=hook)
