"""
Live bidirectional voice session engine.

Turns a continuous microphone stream into outbound PCM frames for a remote
conversational service, plays the service's streamed audio reply back gaplessly,
aggregates streamed transcripts per turn, and answers the service's tool calls
without interrupting the audio stream.

Components:
- AudioCaptureEncoder: microphone frames -> transport PCM, fire-and-forget
- PlaybackScheduler: back-to-back playback on an audio clock, barge-in flush
- TranscriptionAggregator: per-turn, per-side transcript buffers
- ToolDispatcher: concurrent, correlated tool call handling
- SessionConnection: streaming channel to the remote service
- SessionController: lifecycle state machine wiring everything together
"""

from .controller import SessionController
from .models import (
    AudioFrame,
    AudioSegment,
    ConversationEntry,
    GeoCoordinates,
    ServerMessage,
    Side,
    ToolInvocation,
    ToolResult,
)
from .session import SessionState

__all__ = [
    "AudioFrame",
    "AudioSegment",
    "ConversationEntry",
    "GeoCoordinates",
    "ServerMessage",
    "SessionController",
    "SessionState",
    "Side",
    "ToolInvocation",
    "ToolResult",
]
