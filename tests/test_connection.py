"""
SessionConnection contract and LiveServerMessage parsing.
"""
import asyncio
from types import SimpleNamespace

import pytest

from live_session.connection import (
    ConnectionConfig,
    GeminiLiveConnection,
    SessionCallbacks,
    SessionConnection,
    parse_server_message,
)
from live_session.errors import TransportError
from live_session.models import ServerMessage, Side, ToolResult, TranscriptFragment


_CLOSE = object()


class FakeConnection(SessionConnection):
    """In-memory channel: `inbound` feeds the reader, `wire` records writes."""

    def __init__(self, connect_error=None, write_error=None):
        super().__init__(session_id="sess_conn")
        self.connect_error = connect_error
        self.write_error = write_error
        self.inbound = asyncio.Queue()
        self.wire = []
        self.disconnects = 0

    async def _connect(self, config):
        await asyncio.sleep(0)
        if self.connect_error is not None:
            raise self.connect_error

    async def _write(self, item):
        if self.write_error is not None:
            raise self.write_error
        self.wire.append(item)

    async def _messages(self):
        while True:
            item = await self.inbound.get()
            if item is _CLOSE:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def _disconnect(self):
        self.disconnects += 1


class Recorder:
    def __init__(self):
        self.opened = 0
        self.messages = []
        self.errors = []
        self.closes = 0

    def callbacks(self):
        return SessionCallbacks(
            on_open=self._on_open,
            on_message=self.messages.append,
            on_error=self.errors.append,
            on_close=self._on_close,
        )

    def _on_open(self):
        self.opened += 1

    def _on_close(self):
        self.closes += 1


CONFIG = ConnectionConfig(model="test-model", system_instruction="Be brief.")


async def settle(rounds=5):
    for _ in range(rounds):
        await asyncio.sleep(0)


async def open_fake(**kwargs):
    conn = FakeConnection(**kwargs)
    rec = Recorder()
    await conn.open(CONFIG, rec.callbacks())
    return conn, rec


class TestOpen:
    @pytest.mark.asyncio
    async def test_on_open_called_once(self):
        conn, rec = await open_fake()

        assert rec.opened == 1
        assert conn.is_open
        with pytest.raises(TransportError):
            await conn.open(CONFIG, rec.callbacks())
        assert rec.opened == 1
        await conn.close()

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self):
        conn = FakeConnection(connect_error=TransportError("handshake refused"))
        rec = Recorder()
        with pytest.raises(TransportError):
            await conn.open(CONFIG, rec.callbacks())
        assert rec.opened == 0

    @pytest.mark.asyncio
    async def test_close_during_handshake(self):
        conn = FakeConnection()
        rec = Recorder()
        opening = asyncio.create_task(conn.open(CONFIG, rec.callbacks()))
        await asyncio.sleep(0)
        await conn.close()

        with pytest.raises(TransportError, match="closed while opening"):
            await opening
        assert rec.opened == 0


class TestOutbound:
    @pytest.mark.asyncio
    async def test_wire_order_matches_call_order(self):
        conn, _ = await open_fake()
        result = ToolResult("call-1", "checkLocalTraffic", payload={"trafficStatus": "clear"})

        conn.send(b"\x00\x01")
        conn.send_tool_result(result)
        conn.send("nudge")
        conn.send(b"\x02\x03")
        await settle()

        assert conn.wire == [b"\x00\x01", result, "nudge", b"\x02\x03"]
        await conn.close()

    @pytest.mark.asyncio
    async def test_send_after_close_dropped(self):
        conn, _ = await open_fake()
        await conn.close()

        conn.send(b"\x00\x00")
        await settle()

        assert conn.wire == []

    @pytest.mark.asyncio
    async def test_write_failure_reports_error(self):
        conn, rec = await open_fake(write_error=ConnectionResetError("reset"))
        conn.send(b"\x00\x00")
        await settle()

        assert len(rec.errors) == 1
        assert isinstance(rec.errors[0], ConnectionResetError)
        await conn.close()


class TestInbound:
    @pytest.mark.asyncio
    async def test_messages_delivered_empty_skipped(self):
        conn, rec = await open_fake()
        msg = ServerMessage(fragments=[TranscriptFragment(Side.CALLER, "hello")])

        conn.inbound.put_nowait(ServerMessage())
        conn.inbound.put_nowait(msg)
        await settle()

        assert rec.messages == [msg]
        await conn.close()

    @pytest.mark.asyncio
    async def test_remote_close(self):
        conn, rec = await open_fake()
        conn.inbound.put_nowait(_CLOSE)
        await settle()

        assert rec.closes == 1
        assert rec.errors == []
        await conn.close()
        assert rec.closes == 1

    @pytest.mark.asyncio
    async def test_read_failure(self):
        conn, rec = await open_fake()
        conn.inbound.put_nowait(RuntimeError("1011 internal error"))
        await settle()

        assert [str(e) for e in rec.errors] == ["1011 internal error"]
        assert rec.closes == 0
        await conn.close()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        conn, rec = await open_fake()

        await asyncio.gather(conn.close(), conn.close())
        await conn.close()

        assert conn.disconnects == 1
        assert conn.closed
        assert not conn.is_open

    @pytest.mark.asyncio
    async def test_no_callbacks_after_close(self):
        conn, rec = await open_fake()
        await conn.close()

        conn.inbound.put_nowait(ServerMessage(turn_complete=True))
        conn.inbound.put_nowait(_CLOSE)
        await settle()

        assert rec.messages == []
        assert rec.closes == 0

    @pytest.mark.asyncio
    async def test_close_from_inside_a_callback(self):
        conn = FakeConnection()
        closers = []

        def on_message(message):
            closers.append(asyncio.create_task(conn.close()))

        callbacks = SessionCallbacks(
            on_open=lambda: None, on_message=on_message, on_error=lambda e: None, on_close=lambda: None
        )
        await conn.open(CONFIG, callbacks)
        conn.inbound.put_nowait(ServerMessage(interrupted=True))
        await settle()
        await asyncio.gather(*closers)

        assert conn.closed
        assert conn.disconnects == 1


class TestParseServerMessage:
    def test_tool_call(self):
        response = SimpleNamespace(
            tool_call=SimpleNamespace(
                function_calls=[SimpleNamespace(id="fc-1", name="checkLocalTraffic", args={"location": "Zamalek"})]
            ),
            server_content=None,
        )
        message = parse_server_message(response)

        assert len(message.tool_calls) == 1
        call = message.tool_calls[0]
        assert (call.correlation_id, call.name, dict(call.args)) == ("fc-1", "checkLocalTraffic", {"location": "Zamalek"})

    def test_server_content(self):
        audio_part = SimpleNamespace(inline_data=SimpleNamespace(data=b"\x00\x00", mime_type="audio/pcm;rate=24000"))
        text_part = SimpleNamespace(inline_data=None)
        response = SimpleNamespace(
            tool_call=None,
            server_content=SimpleNamespace(
                input_transcription=SimpleNamespace(text="where am"),
                output_transcription=SimpleNamespace(text="You are"),
                model_turn=SimpleNamespace(parts=[audio_part, text_part]),
                turn_complete=True,
                interrupted=False,
            ),
        )
        message = parse_server_message(response)

        assert message.fragments == [
            TranscriptFragment(Side.CALLER, "where am"),
            TranscriptFragment(Side.ASSISTANT, "You are"),
        ]
        assert [a.data for a in message.audio] == [b"\x00\x00"]
        assert message.turn_complete
        assert not message.interrupted

    def test_interrupted_only(self):
        response = SimpleNamespace(
            tool_call=None,
            server_content=SimpleNamespace(
                input_transcription=None,
                output_transcription=None,
                model_turn=None,
                turn_complete=None,
                interrupted=True,
            ),
        )
        message = parse_server_message(response)
        assert message.interrupted
        assert message.fragments == []
        assert not message.is_empty()

    def test_setup_complete_is_empty(self):
        assert parse_server_message(SimpleNamespace(setup_complete=object())).is_empty()


def test_live_config_carries_voice_and_tools():
    config = ConnectionConfig(
        model="m",
        system_instruction="Be brief.",
        voice_name="Puck",
        tools=[{"name": "getInfrastructureTelemetry", "parameters": {"type": "object", "properties": {}}}],
    )
    live = GeminiLiveConnection.build_live_config(config)

    assert live.speech_config.voice_config.prebuilt_voice_config.voice_name == "Puck"
    assert live.tools[0].function_declarations[0].name == "getInfrastructureTelemetry"
    assert live.input_audio_transcription is not None
