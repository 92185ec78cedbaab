"""
SessionConnection: the streaming channel to the remote conversational service.

Contract:
- open() establishes the channel and calls on_open exactly once.
- send() and send_tool_result() never wait for the wire. Items go onto one
  outbound queue drained by a single writer task, so wire order is the order of
  the calls whichever producer made them.
- Inbound messages are parsed into ServerMessage and handed to on_message.
- on_error reports a fatal fault, on_close a remote close. Neither fires after
  close() has been called. There is no reconnect.
- close() is idempotent and may be awaited from inside any callback.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

from google import genai
from google.genai import types

from logging_setup import Component, get_logger

from .errors import TransportError
from .models import InlineAudio, ServerMessage, Side, ToolInvocation, ToolResult, TranscriptFragment


Outbound = Union[bytes, str, ToolResult]


@dataclass
class SessionCallbacks:
    on_open: Callable[[], None]
    on_message: Callable[[ServerMessage], None]
    on_error: Callable[[BaseException], None]
    on_close: Callable[[], None]


@dataclass
class ConnectionConfig:
    model: str
    system_instruction: str
    voice_name: str = "Kore"
    tools: List[Dict[str, Any]] = field(default_factory=list)
    input_sample_rate: int = 16000


class SessionConnection(ABC):
    """Transport base: outbound writer queue, inbound reader, re-entrant close."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        self.callbacks: Optional[SessionCallbacks] = None
        self._outbound: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._reader: Optional[asyncio.Task] = None
        self._opened = False
        self._closed = False
        self._close_task: Optional[asyncio.Task] = None
        self.logger = get_logger(Component.TRANSPORT, session_id=session_id)

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def _connect(self, config: ConnectionConfig) -> None:
        """Establish the channel. Raises TransportError."""

    @abstractmethod
    async def _write(self, item: Outbound) -> None:
        ...

    @abstractmethod
    def _messages(self) -> AsyncIterator[ServerMessage]:
        """Inbound messages until the remote side closes."""

    @abstractmethod
    async def _disconnect(self) -> None:
        ...

    async def open(self, config: ConnectionConfig, callbacks: SessionCallbacks) -> "SessionConnection":
        if self._opened or self._closed:
            raise TransportError("connection can only be opened once")
        self.callbacks = callbacks
        await self._connect(config)
        if self._closed:
            # close() raced the handshake
            await self._disconnect()
            raise TransportError("connection closed while opening")
        self._opened = True
        self._writer = asyncio.create_task(self._write_loop(), name="connection-writer")
        self._reader = asyncio.create_task(self._read_loop(), name="connection-reader")
        self.logger.info("Connection open", model=config.model)
        callbacks.on_open()
        return self

    def send(self, item: Union[bytes, str]) -> None:
        """Queue an audio frame (bytes) or a text chunk (str)."""
        self._enqueue(item)

    def send_tool_result(self, result: ToolResult) -> None:
        self._enqueue(result)

    def _enqueue(self, item: Outbound) -> None:
        if self._closed:
            return
        self._outbound.put_nowait(item)

    async def _write_loop(self) -> None:
        try:
            while not self._closed:
                item = await self._outbound.get()
                await self._write(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(e)

    async def _read_loop(self) -> None:
        try:
            async for message in self._messages():
                if self._closed:
                    return
                if not message.is_empty():
                    self.callbacks.on_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(e)
            return
        if not self._closed:
            self.logger.info("Remote side closed the connection")
            self.callbacks.on_close()

    def _fail(self, error: BaseException) -> None:
        if self._closed:
            return
        self.logger.error("Transport fault", error=str(error), error_type=type(error).__name__)
        self.callbacks.on_error(error)

    async def close(self) -> None:
        """Stop both loops and disconnect. Every caller waits for the same close."""
        if self._close_task is None:
            self._closed = True
            self._close_task = asyncio.create_task(self._do_close(asyncio.current_task()))
        await asyncio.shield(self._close_task)

    async def _do_close(self, caller: Optional[asyncio.Task]) -> None:
        pending = []
        for task in (self._writer, self._reader):
            # A loop that called close() from a callback exits on its own.
            if task is None or task.done() or task is caller:
                continue
            task.cancel()
            pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._opened:
            await self._disconnect()
        self.logger.info("Connection closed", dropped=self._outbound.qsize())


def parse_server_message(response) -> ServerMessage:
    """Translate a LiveServerMessage into a ServerMessage."""
    message = ServerMessage()

    tool_call = getattr(response, "tool_call", None)
    if tool_call is not None:
        for fc in getattr(tool_call, "function_calls", None) or []:
            message.tool_calls.append(
                ToolInvocation(correlation_id=fc.id or "", name=fc.name or "", args=dict(fc.args or {}))
            )

    content = getattr(response, "server_content", None)
    if content is None:
        return message

    input_transcription = getattr(content, "input_transcription", None)
    if input_transcription is not None and input_transcription.text:
        message.fragments.append(TranscriptFragment(Side.CALLER, input_transcription.text))

    output_transcription = getattr(content, "output_transcription", None)
    if output_transcription is not None and output_transcription.text:
        message.fragments.append(TranscriptFragment(Side.ASSISTANT, output_transcription.text))

    model_turn = getattr(content, "model_turn", None)
    if model_turn is not None:
        for part in model_turn.parts or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                message.audio.append(InlineAudio(data=inline.data, mime_type=inline.mime_type or "audio/pcm;rate=24000"))

    message.turn_complete = bool(getattr(content, "turn_complete", False))
    message.interrupted = bool(getattr(content, "interrupted", False))
    return message


class GeminiLiveConnection(SessionConnection):
    """SessionConnection over the google-genai Live API."""

    def __init__(self, client: genai.Client, session_id: Optional[str] = None):
        super().__init__(session_id=session_id)
        self.client = client
        self.input_sample_rate = 16000
        self._context = None
        self._session = None

    @classmethod
    def from_api_key(cls, api_key: str, session_id: Optional[str] = None) -> "GeminiLiveConnection":
        return cls(genai.Client(api_key=api_key), session_id=session_id)

    @staticmethod
    def build_live_config(config: ConnectionConfig) -> types.LiveConnectConfig:
        tools = [{"function_declarations": config.tools}] if config.tools else None
        return types.LiveConnectConfig(
            response_modalities=["AUDIO"],
            system_instruction=types.Content(parts=[types.Part(text=config.system_instruction)]),
            input_audio_transcription=types.AudioTranscriptionConfig(),
            output_audio_transcription=types.AudioTranscriptionConfig(),
            tools=tools,
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=config.voice_name)
                )
            ),
        )

    async def _connect(self, config: ConnectionConfig) -> None:
        self.input_sample_rate = config.input_sample_rate
        try:
            self._context = self.client.aio.live.connect(model=config.model, config=self.build_live_config(config))
            self._session = await self._context.__aenter__()
        except Exception as e:
            self._context = None
            raise TransportError(str(e)) from e

    async def _write(self, item: Outbound) -> None:
        if isinstance(item, ToolResult):
            await self._session.send_tool_response(
                function_responses=[
                    types.FunctionResponse(id=item.correlation_id, name=item.name, response=item.response_body())
                ]
            )
        elif isinstance(item, str):
            await self._session.send_client_content(
                turns=types.Content(role="user", parts=[types.Part(text=item)]),
                turn_complete=True,
            )
        else:
            await self._session.send_realtime_input(
                audio=types.Blob(data=item, mime_type=f"audio/pcm;rate={self.input_sample_rate}")
            )

    async def _messages(self) -> AsyncIterator[ServerMessage]:
        # receive() ends after each turn; an empty pass means the socket is gone.
        while not self._closed:
            received = False
            async for response in self._session.receive():
                received = True
                yield parse_server_message(response)
            if not received:
                return

    async def _disconnect(self) -> None:
        context, self._context = self._context, None
        self._session = None
        if context is None:
            return
        try:
            await context.__aexit__(None, None, None)
        except Exception as e:
            self.logger.warning("Error while disconnecting", error=str(e), error_type=type(e).__name__)
