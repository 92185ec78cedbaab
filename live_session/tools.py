"""
Tool call dispatch.

The remote service asks for named capabilities mid-conversation. Each recognized
ToolInvocation runs as its own asyncio task so that a slow relay or lookup never
holds up the others or the audio stream. Every recognized invocation produces
exactly one ToolResult through the result sink: a handler that raises produces
an error-valued result instead. Unknown names are skipped without a response.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Dict, Iterable, List, Mapping, Optional, Set

from logging_setup import Component, get_logger

from .errors import ToolHandlerError
from .models import GeoCoordinates, ToolInvocation, ToolResult


ResultSink = Callable[[ToolResult], None]
ToolHook = Callable[[ToolInvocation], None]
FinishedHook = Callable[[ToolInvocation, ToolResult], None]


@dataclass
class ToolContext:
    """Ambient, read-only context handed to every handler."""

    coordinates: Optional[GeoCoordinates] = None
    session_id: Optional[str] = None
    spawn: Optional[Callable[[Coroutine[Any, Any, Any]], asyncio.Task]] = field(default=None, repr=False)


ToolHandler = Callable[[Mapping[str, Any], ToolContext], Awaitable[Dict[str, Any]]]


class ToolDispatcher:
    def __init__(
        self,
        handlers: Mapping[str, ToolHandler],
        context: ToolContext,
        result_sink: ResultSink,
        on_started: Optional[ToolHook] = None,
        on_finished: Optional[FinishedHook] = None,
    ):
        self.handlers = dict(handlers)
        self.context = context
        self.context.spawn = self._spawn_background
        self._result_sink: Optional[ResultSink] = result_sink
        self.on_started = on_started
        self.on_finished = on_finished
        self._tasks: Set[asyncio.Task] = set()
        self._background: Set[asyncio.Task] = set()
        self.logger = get_logger(Component.TOOL_DISPATCHER, session_id=context.session_id)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def released(self) -> bool:
        return self._result_sink is None

    def dispatch(self, invocations: Iterable[ToolInvocation]) -> List[asyncio.Task]:
        """Start one task per recognized invocation. Returns the started tasks."""
        started = []
        for invocation in invocations:
            handler = self.handlers.get(invocation.name)
            if handler is None:
                self.logger.debug("Unknown tool ignored", tool=invocation.name, call_id=invocation.correlation_id)
                continue
            if self.released:
                self.logger.debug("Tool call after release ignored", tool=invocation.name)
                continue
            if self.on_started is not None:
                self.on_started(invocation)
            task = asyncio.create_task(self._run(handler, invocation), name=f"tool-{invocation.name}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(task)
        return started

    async def _run(self, handler: ToolHandler, invocation: ToolInvocation) -> ToolResult:
        self.logger.info("Tool dispatched", tool=invocation.name, call_id=invocation.correlation_id)
        try:
            payload = await handler(invocation.args, self.context)
            result = ToolResult(invocation.correlation_id, invocation.name, payload=payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(
                "Tool handler failed",
                tool=invocation.name,
                call_id=invocation.correlation_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = ToolResult(invocation.correlation_id, invocation.name, error=str(e) or type(e).__name__)

        if self.on_finished is not None:
            self.on_finished(invocation, result)

        sink = self._result_sink
        if sink is None:
            self.logger.info("Late tool result discarded", tool=invocation.name, call_id=invocation.correlation_id)
        else:
            sink(result)
        return result

    def _spawn_background(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def release(self) -> None:
        """
        Detach from the session. Tasks still running finish on their own; their
        results are discarded instead of sent.
        """
        if self._result_sink is None:
            return
        self._result_sink = None
        if self._tasks:
            self.logger.info("Dispatcher released with tools in flight", in_flight=len(self._tasks))


TOOL_DECLARATIONS: List[Dict[str, Any]] = [
    {
        "name": "getInfrastructureTelemetry",
        "description": "Reads the current infrastructure telemetry (columns B-H) from the control sheet.",
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": "sendGpioOrders",
        "description": "Switches the three traffic infrastructure signals. Each signal is 0 (off) or 1 (on).",
        "parameters": {
            "type": "object",
            "properties": {
                "sig1": {"type": "integer", "description": "Signal 1, 0 or 1"},
                "sig2": {"type": "integer", "description": "Signal 2, 0 or 1"},
                "sig3": {"type": "integer", "description": "Signal 3, 0 or 1"},
                "logicSummary": {"type": "string", "description": "One sentence explaining the decision"},
            },
            "required": ["sig1", "sig2", "sig3", "logicSummary"],
        },
    },
    {
        "name": "checkLocalTraffic",
        "description": "Checks live traffic around a place near the driver's current position.",
        "parameters": {
            "type": "object",
            "properties": {
                "location": {"type": "string", "description": "Street, area or landmark"},
            },
            "required": ["location"],
        },
    },
    {
        "name": "treatSpreadsheet",
        "description": "Updates 7 infrastructure columns (B-H).",
        "parameters": {
            "type": "object",
            "properties": {f"d{i}": {"type": "string", "description": f"Col {col}"} for i, col in enumerate("BCDEFGH", start=1)},
            "required": [f"d{i}" for i in range(1, 8)],
        },
    },
]


def _signal(args: Mapping[str, Any], key: str) -> int:
    value = args.get(key)
    if isinstance(value, str):
        value = value.strip()
    if value in (0, 1, "0", "1") and not isinstance(value, bool):
        return int(value)
    raise ToolHandlerError(f"{key} must be 0 or 1, got {value!r}")


def build_default_handlers(relay, context_service) -> Dict[str, ToolHandler]:
    """
    The capability table: getInfrastructureTelemetry, sendGpioOrders,
    checkLocalTraffic, treatSpreadsheet.
    """

    async def get_infrastructure_telemetry(args: Mapping[str, Any], ctx: ToolContext) -> Dict[str, Any]:
        return {"telemetry": await relay.fetch_telemetry()}

    async def send_gpio_orders(args: Mapping[str, Any], ctx: ToolContext) -> Dict[str, Any]:
        sig1, sig2, sig3 = _signal(args, "sig1"), _signal(args, "sig2"), _signal(args, "sig3")
        summary = str(args.get("logicSummary", ""))
        return {"result": await relay.actuate_signals(sig1, sig2, sig3, summary)}

    async def check_local_traffic(args: Mapping[str, Any], ctx: ToolContext) -> Dict[str, Any]:
        location = str(args.get("location", "")).strip()
        return {"trafficStatus": await context_service.get_traffic_status(location, ctx.coordinates)}

    async def treat_spreadsheet(args: Mapping[str, Any], ctx: ToolContext) -> Dict[str, Any]:
        fields = {f"d{i}": str(args.get(f"d{i}", "")) for i in range(1, 8)}
        if ctx.spawn is None:
            raise ToolHandlerError("no background runner for state log")
        ctx.spawn(relay.log_state(fields))
        return {"result": "logged"}

    return {
        "getInfrastructureTelemetry": get_infrastructure_telemetry,
        "sendGpioOrders": send_gpio_orders,
        "checkLocalTraffic": check_local_traffic,
        "treatSpreadsheet": treat_spreadsheet,
    }
