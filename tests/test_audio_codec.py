"""
Transport PCM codec: float capture -> PCM16, inbound PCM16 -> AudioSegment.
"""
import base64

import numpy as np
import pytest

from live_session.audio import decode_audio_segment, encode_pcm16, parse_mime_type
from live_session.errors import DecodeError
from live_session.models import AudioFrame, InlineAudio


def _as_int16(pcm: bytes) -> np.ndarray:
    return np.frombuffer(pcm, dtype="<i2")


class TestEncode:
    def test_scales_to_int16(self):
        samples = np.array([0.0, 0.5, -0.5, -1.0], dtype=np.float32)
        assert _as_int16(encode_pcm16(samples)).tolist() == [0, 16384, -16384, -32768]

    def test_two_bytes_per_sample(self):
        assert len(encode_pcm16(np.zeros(4096, dtype=np.float32))) == 8192

    def test_full_scale_positive_is_clipped(self):
        assert _as_int16(encode_pcm16(np.array([1.0], dtype=np.float32))).tolist() == [32767]

    def test_gain_is_applied_before_encoding(self):
        samples = np.array([0.1], dtype=np.float32)
        plain = _as_int16(encode_pcm16(samples))[0]
        boosted = _as_int16(encode_pcm16(samples, gain=3.0))[0]
        assert boosted == pytest.approx(plain * 3, abs=2)

    def test_boosted_gain_saturates(self):
        samples = np.array([0.6, -0.6], dtype=np.float32)
        assert _as_int16(encode_pcm16(samples, gain=3.0)).tolist() == [32767, -32768]

    def test_empty(self):
        assert encode_pcm16(np.zeros(0, dtype=np.float32)) == b""

    def test_frame_encode_uses_its_gain(self):
        frame = AudioFrame(samples=np.array([0.25], dtype=np.float32), sample_rate=16000, gain=2.0)
        assert _as_int16(frame.encode()).tolist() == [16384]

    def test_frame_is_immutable(self):
        frame = AudioFrame(samples=np.zeros(4, dtype=np.float32), sample_rate=16000)
        with pytest.raises(ValueError):
            frame.samples[0] = 1.0


class TestDecode:
    def test_raw_bytes(self):
        pcm = np.array([0, 16384, -16384], dtype="<i2").tobytes()
        segment = decode_audio_segment(InlineAudio(pcm, "audio/pcm;rate=24000"))

        assert segment.sample_rate == 24000
        assert segment.channels == 1
        assert segment.frame_count == 3
        assert segment.samples[:, 0].tolist() == [0.0, 0.5, -0.5]

    def test_base64_text(self):
        pcm = np.zeros(240, dtype="<i2").tobytes()
        segment = decode_audio_segment(InlineAudio(base64.b64encode(pcm).decode("ascii")))
        assert segment.frame_count == 240
        assert segment.duration == pytest.approx(0.01)

    def test_rate_from_mime_type(self):
        pcm = np.zeros(160, dtype="<i2").tobytes()
        segment = decode_audio_segment(InlineAudio(pcm, "audio/pcm;rate=16000"))
        assert segment.sample_rate == 16000
        assert segment.duration == pytest.approx(0.01)

    def test_default_rate_when_missing(self):
        segment = decode_audio_segment(InlineAudio(b"\x00\x00", "audio/pcm"))
        assert segment.sample_rate == 24000

    def test_odd_byte_count(self):
        with pytest.raises(DecodeError):
            decode_audio_segment(InlineAudio(b"\x00\x00\x01"))

    def test_empty_payload(self):
        with pytest.raises(DecodeError):
            decode_audio_segment(InlineAudio(b""))

    def test_bad_base64(self):
        with pytest.raises(DecodeError):
            decode_audio_segment(InlineAudio("not*base64!"))

    def test_unsupported_encoding(self):
        with pytest.raises(DecodeError):
            decode_audio_segment(InlineAudio(b"\x00\x00", "audio/mpeg"))


def test_parse_mime_type():
    assert parse_mime_type("audio/pcm;rate=16000") == (16000, 1)
    assert parse_mime_type("audio/pcm;rate=48000;channels=2") == (48000, 2)
    assert parse_mime_type("") == (24000, 1)
