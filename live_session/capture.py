"""
Microphone capture and transport encoding.

A CaptureSource is acquired once per session and yields a CaptureStream. The
AudioCaptureEncoder wires that stream to a sink: every block the device delivers
becomes an AudioFrame, is encoded to PCM16 and handed to the sink immediately.
There is no backlog buffer; a sink that cannot keep up is the sink's problem.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from logging_setup import Component, get_logger

from .errors import AcquisitionError
from .models import AudioFrame

SamplesCallback = Callable[[np.ndarray], None]
FrameSink = Callable[[bytes], None]


class CaptureStream(ABC):
    """An acquired input device. Delivers mono float32 blocks once started."""

    sample_rate: int
    frame_size: int

    @abstractmethod
    def start(self, on_samples: SamplesCallback) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop delivery and release the device handle. Safe to call twice."""


class CaptureSource(ABC):
    @abstractmethod
    async def acquire(self) -> CaptureStream:
        """
        Acquire the input device.

        Raises AcquisitionError when access is denied or no device is available.
        """


class SoundDeviceCaptureStream(CaptureStream):
    """
    sounddevice InputStream delivering blocks on the PortAudio thread; each block
    is copied and hopped onto the event loop before reaching the callback.
    """

    def __init__(self, stream, loop: asyncio.AbstractEventLoop, sample_rate: int, frame_size: int):
        self._stream = stream
        self._loop = loop
        self._on_samples: Optional[SamplesCallback] = None
        self._closed = False
        self.sample_rate = sample_rate
        self.frame_size = frame_size

    def audio_callback(self, indata, frames, time_info, status) -> None:
        if self._closed or self._on_samples is None:
            return
        block = np.array(indata[:, 0], dtype=np.float32)
        try:
            self._loop.call_soon_threadsafe(self._deliver, block)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def _deliver(self, block: np.ndarray) -> None:
        if self._closed or self._on_samples is None:
            return
        self._on_samples(block)

    def start(self, on_samples: SamplesCallback) -> None:
        import sounddevice as sd

        self._on_samples = on_samples
        try:
            self._stream.start()
        except sd.PortAudioError as e:
            raise AcquisitionError("microphone", str(e)) from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_samples = None
        self._stream.stop()
        self._stream.close()


class SoundDeviceCaptureSource(CaptureSource):
    """Default input device via sounddevice, float32 mono at the capture rate."""

    def __init__(self, sample_rate: int = 16000, frame_size: int = 4096, device=None):
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.device = device
        self.logger = get_logger(Component.AUDIO_CAPTURE)

    async def acquire(self) -> CaptureStream:
        import sounddevice as sd

        loop = asyncio.get_running_loop()
        holder: dict = {}

        def _callback(indata, frames, time_info, status):
            stream = holder.get("stream")
            if stream is not None:
                stream.audio_callback(indata, frames, time_info, status)

        try:
            raw = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.frame_size,
                device=self.device,
                callback=_callback,
            )
        except (sd.PortAudioError, ValueError) as e:
            self.logger.error("Microphone unavailable", error=str(e))
            raise AcquisitionError("microphone", str(e)) from e

        stream = SoundDeviceCaptureStream(raw, loop, self.sample_rate, self.frame_size)
        holder["stream"] = stream
        self.logger.info(
            "Microphone acquired",
            sample_rate=self.sample_rate,
            frame_size=self.frame_size,
        )
        return stream


class AudioCaptureEncoder:
    """
    Connects a CaptureStream to a byte sink.

    start() may be called once; stop() releases the device and disconnects the
    sink and may be called any number of times.
    """

    def __init__(self, stream: CaptureStream, gain: float = 1.0, session_id: Optional[str] = None):
        self.stream = stream
        self.gain = gain
        self.frames_sent = 0
        self._sink: Optional[FrameSink] = None
        self._started = False
        self._stopped = False
        self.logger = get_logger(Component.AUDIO_CAPTURE, session_id=session_id)

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def start(self, sink: FrameSink) -> None:
        if self._started or self._stopped:
            return
        self._sink = sink
        self._started = True
        self.stream.start(self._on_samples)
        self.logger.info("Capture started", gain=self.gain)

    def _on_samples(self, samples: np.ndarray) -> None:
        sink = self._sink
        if sink is None:
            return
        frame = AudioFrame(samples=samples, sample_rate=self.stream.sample_rate, gain=self.gain)
        sink(frame.encode())
        self.frames_sent += 1

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._sink = None
        self.stream.close()
        self.logger.info("Capture stopped", frames_sent=self.frames_sent)
