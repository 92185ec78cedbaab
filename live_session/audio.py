"""
Transport PCM codec.

Outbound: float samples in [-1, 1] -> 16-bit signed little-endian PCM, with an
optional gain applied first. Inbound: 16-bit PCM (raw bytes or base64 text) ->
float32 AudioSegment.
"""

from __future__ import annotations

import base64
import binascii
import re

import numpy as np

from .errors import DecodeError
from .models import AudioSegment, InlineAudio

INT16_SCALE = 32768.0

_RATE_RE = re.compile(r"rate=(\d+)")
_CHANNELS_RE = re.compile(r"channels=(\d+)")


def encode_pcm16(samples: np.ndarray, gain: float = 1.0) -> bytes:
    """
    Encode float samples as PCM s16le.

    Values are scaled by `gain * 32768` and clipped to the int16 range, so a boosted
    gain saturates instead of wrapping around.
    """
    if samples.size == 0:
        return b""
    scaled = np.asarray(samples, dtype=np.float32) * (gain * INT16_SCALE)
    np.clip(scaled, -32768.0, 32767.0, out=scaled)
    return scaled.astype("<i2").tobytes()


def pcm16_to_float32(pcm: bytes, channels: int = 1) -> np.ndarray:
    """Convert PCM s16le bytes to float32 shaped (frames, channels)."""
    if not pcm:
        return np.zeros((0, channels), dtype=np.float32)
    s16 = np.frombuffer(pcm, dtype="<i2")
    return (s16.astype(np.float32) / INT16_SCALE).reshape(-1, channels)


def parse_mime_type(mime_type: str, default_rate: int = 24000) -> tuple[int, int]:
    """
    Pull (sample_rate, channels) out of e.g. "audio/pcm;rate=24000".
    """
    rate_match = _RATE_RE.search(mime_type or "")
    channels_match = _CHANNELS_RE.search(mime_type or "")
    rate = int(rate_match.group(1)) if rate_match else default_rate
    channels = int(channels_match.group(1)) if channels_match else 1
    return rate, channels


def decode_audio_segment(audio: InlineAudio, default_rate: int = 24000) -> AudioSegment:
    """
    Decode one inbound audio payload.

    Raises DecodeError for non-PCM payloads, bad base64, empty audio, or a byte
    count that does not split into whole 16-bit frames.
    """
    mime = (audio.mime_type or "").lower()
    if mime and not mime.startswith("audio/pcm") and not mime.startswith("audio/l16"):
        raise DecodeError(f"unsupported audio encoding: {audio.mime_type}")

    data = audio.data
    if isinstance(data, str):
        try:
            data = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"invalid base64 audio payload: {e}") from e

    sample_rate, channels = parse_mime_type(mime, default_rate=default_rate)
    if sample_rate <= 0 or channels <= 0:
        raise DecodeError(f"invalid audio format: {audio.mime_type}")
    if not data:
        raise DecodeError("empty audio payload")
    if len(data) % (2 * channels) != 0:
        raise DecodeError(f"truncated PCM payload: {len(data)} bytes for {channels} channel(s)")

    return AudioSegment(
        samples=pcm16_to_float32(data, channels=channels),
        sample_rate=sample_rate,
        channels=channels,
    )
