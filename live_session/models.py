"""
Data model shared by the session components.

All records are plain dataclasses. Audio samples are numpy float32 arrays in [-1, 1].
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import numpy as np


class Side(str, Enum):
    """Who produced a piece of conversation text."""

    CALLER = "user"
    ASSISTANT = "ai"
    SYSTEM = "system"


@dataclass(frozen=True)
class GeoCoordinates:
    latitude: float
    longitude: float

    def as_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class AudioFrame:
    """
    One fixed-size capture block (mono float samples) plus the gain applied
    before transport encoding.
    """

    samples: np.ndarray
    sample_rate: int
    gain: float = 1.0

    def __post_init__(self) -> None:
        # Frames are immutable once produced.
        self.samples.setflags(write=False)

    @property
    def sample_count(self) -> int:
        return int(self.samples.shape[0])

    def encode(self) -> bytes:
        """Transport encoding: 16-bit signed little-endian PCM."""
        from .audio import encode_pcm16

        return encode_pcm16(self.samples, gain=self.gain)


@dataclass(frozen=True)
class AudioSegment:
    """
    Decoded reply audio: float32 samples shaped (frames, channels).
    """

    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Length in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count / float(self.sample_rate)


@dataclass(frozen=True)
class InlineAudio:
    """Undecoded audio payload as it arrived on the wire."""

    data: bytes | str
    mime_type: str = "audio/pcm;rate=24000"


@dataclass(frozen=True)
class ToolInvocation:
    correlation_id: str
    name: str
    args: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    """
    Answer to one ToolInvocation. Exactly one of `payload` / `error` is set.
    """

    correlation_id: str
    name: str
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def response_body(self) -> Dict[str, Any]:
        """The mapping sent back as the function response."""
        if self.error is not None:
            return {"error": self.error}
        return dict(self.payload or {})


@dataclass(frozen=True)
class TranscriptFragment:
    side: Side
    text: str


@dataclass(frozen=True)
class ConversationEntry:
    side: Side
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sender": self.side.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata:
            data["metadata"] = self.metadata
        return data


@dataclass
class ServerMessage:
    """
    One inbound message from the remote service.

    A single message can carry any combination of the fields.
    """

    tool_calls: List[ToolInvocation] = field(default_factory=list)
    fragments: List[TranscriptFragment] = field(default_factory=list)
    turn_complete: bool = False
    audio: List[InlineAudio] = field(default_factory=list)
    interrupted: bool = False

    def is_empty(self) -> bool:
        return not (
            self.tool_calls
            or self.fragments
            or self.turn_complete
            or self.audio
            or self.interrupted
        )
