"""
Gapless scheduled playback of reply audio.

PlaybackScheduler keeps a cursor `next_start` on the output's clock. Every segment
starts at max(clock, next_start) and advances the cursor by its duration, so
segments that arrive late or early still play back to back without overlap.
interrupt() is the barge-in rule: stop everything, forget the cursor.

All scheduler state is mutated on the event loop thread only; the sounddevice
output hops its end-of-segment notifications onto the loop.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

import numpy as np

from logging_setup import Component, get_logger

from .errors import AcquisitionError
from .models import AudioSegment

EndedCallback = Callable[[], None]


class PlaybackHandle(ABC):
    @abstractmethod
    def stop(self) -> None:
        """Silence the segment now. on_ended is not called for stopped segments."""


class AudioOutput(ABC):
    """An output device with its own monotonic clock in seconds."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        ...

    @abstractmethod
    def play(self, segment: AudioSegment, start_time: float, on_ended: EndedCallback) -> PlaybackHandle:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


@dataclass(eq=False)
class ScheduledPlayback:
    segment: AudioSegment
    start_time: float
    duration: float
    handle: Optional[PlaybackHandle] = field(default=None, repr=False)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class PlaybackScheduler:
    """Owns every ScheduledPlayback from schedule() until it ends or is stopped."""

    def __init__(self, output: AudioOutput, session_id: Optional[str] = None):
        self.output = output
        self.next_start = 0.0
        self._active: Set[ScheduledPlayback] = set()
        self._closed = False
        self.logger = get_logger(Component.PLAYBACK, session_id=session_id)

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def closed(self) -> bool:
        return self._closed

    def schedule(self, segment: AudioSegment) -> Optional[ScheduledPlayback]:
        """
        Queue a segment directly after the previous one, or now if the queue has drained.
        Returns None once the scheduler is closed.
        """
        if self._closed:
            return None

        start = max(self.output.current_time, self.next_start)
        entry = ScheduledPlayback(segment=segment, start_time=start, duration=segment.duration)
        self.next_start = start + entry.duration
        self._active.add(entry)
        entry.handle = self.output.play(segment, start, lambda: self._on_ended(entry))

        self.logger.debug(
            "Segment scheduled",
            start_time=round(start, 4),
            duration=round(entry.duration, 4),
            active=len(self._active),
        )
        return entry

    def _on_ended(self, entry: ScheduledPlayback) -> None:
        self._active.discard(entry)

    def interrupt(self) -> int:
        """Stop all scheduled and playing segments and reset the cursor. Returns how many were stopped."""
        stopped = list(self._active)
        self._active.clear()
        self.next_start = 0.0
        for entry in stopped:
            if entry.handle is not None:
                entry.handle.stop()
        if stopped:
            self.logger.info("Playback interrupted", stopped=len(stopped))
        return len(stopped)

    def close(self) -> None:
        """Interrupt and release the output device. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.interrupt()
        self.output.close()


def _to_mono(segment: AudioSegment, target_rate: int) -> np.ndarray:
    samples = segment.samples
    mono = samples.mean(axis=1) if samples.ndim == 2 else samples
    mono = mono.astype(np.float32, copy=False)
    if segment.sample_rate == target_rate or mono.size == 0:
        return mono
    # Linear resample onto the output rate
    out_len = max(1, int(round(mono.size * target_rate / float(segment.sample_rate))))
    positions = np.linspace(0, mono.size - 1, num=out_len)
    return np.interp(positions, np.arange(mono.size), mono).astype(np.float32)


class _Voice(PlaybackHandle):
    def __init__(self, output: "SoundDeviceOutput", samples: np.ndarray, start_frame: int, on_ended: EndedCallback):
        self.output = output
        self.samples = samples
        self.start_frame = start_frame
        self.on_ended = on_ended

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.samples.shape[0]

    def stop(self) -> None:
        self.output._remove(self)


class SoundDeviceOutput(AudioOutput):
    """
    Mono float32 OutputStream that mixes scheduled segments by frame position.

    The clock is the number of frames rendered so far divided by the sample rate,
    so it starts at 0 when the stream opens, like a fresh audio context.
    """

    def __init__(self, stream_factory, loop: asyncio.AbstractEventLoop, sample_rate: int):
        self.sample_rate = sample_rate
        self._loop = loop
        self._lock = threading.Lock()
        self._voices: List[_Voice] = []
        self._frames_rendered = 0
        self._closed = False
        self._stream = stream_factory(self._callback)
        self._stream.start()

    @classmethod
    def open(cls, sample_rate: int = 24000, device=None) -> "SoundDeviceOutput":
        """
        Open the default output device.

        Raises AcquisitionError when no output device can be opened.
        """
        import sounddevice as sd

        def factory(callback):
            return sd.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                device=device,
                callback=callback,
            )

        try:
            return cls(factory, asyncio.get_running_loop(), sample_rate)
        except (sd.PortAudioError, ValueError) as e:
            raise AcquisitionError("audio_output", str(e)) from e

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / float(self.sample_rate)

    def play(self, segment: AudioSegment, start_time: float, on_ended: EndedCallback) -> PlaybackHandle:
        voice = _Voice(self, _to_mono(segment, self.sample_rate), int(round(start_time * self.sample_rate)), on_ended)
        with self._lock:
            # the clock may have advanced since start_time was read
            voice.start_frame = max(voice.start_frame, self._frames_rendered)
            self._voices.append(voice)
        return voice

    def _remove(self, voice: _Voice) -> None:
        with self._lock:
            if voice in self._voices:
                self._voices.remove(voice)

    def _callback(self, outdata, frames, time_info, status) -> None:
        outdata.fill(0)
        finished: List[_Voice] = []
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for voice in self._voices:
                lo = max(block_start, voice.start_frame)
                hi = min(block_end, voice.end_frame)
                if lo < hi:
                    outdata[lo - block_start:hi - block_start, 0] += voice.samples[lo - voice.start_frame:hi - voice.start_frame]
                if voice.end_frame <= block_end:
                    finished.append(voice)
            for voice in finished:
                self._voices.remove(voice)
            self._frames_rendered = block_end
        np.clip(outdata, -1.0, 1.0, out=outdata)
        for voice in finished:
            try:
                self._loop.call_soon_threadsafe(voice.on_ended)
            except RuntimeError:
                # Loop already closed during shutdown
                pass

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            self._voices.clear()
        self._stream.stop()
        self._stream.close()
