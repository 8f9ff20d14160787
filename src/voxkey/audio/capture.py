"""
Microphone capture for a single dictation session.

The sounddevice callback runs on PortAudio's thread and appends blocks to a
lock-protected buffer that keeps at most ``max_duration`` seconds (oldest audio
is trimmed). Each block also reports its peak level for the status UI.
"""

import logging
import threading
from collections import deque
from typing import Callable, Optional

import numpy as np

from .normalizer import AudioBuffer

logger = logging.getLogger(__name__)

DEFAULT_MAX_DURATION = 60.0


class AudioCaptureSession:
    """Owns one input stream and the samples it produces."""

    def __init__(
        self,
        device: Optional[int] = None,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        max_duration: float = DEFAULT_MAX_DURATION,
        on_level: Optional[Callable[[float], None]] = None,
        stream_factory: Optional[Callable] = None,
    ):
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self.max_duration = max_duration
        self._on_level = on_level
        self._stream_factory = stream_factory

        self._stream = None
        self._lock = threading.Lock()
        self._blocks: deque = deque()
        self._frames = 0
        self._max_frames = 0

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    @property
    def frames(self) -> int:
        with self._lock:
            return self._frames

    def _resolve_sample_rate(self) -> int:
        if self.sample_rate:
            return int(self.sample_rate)
        import sounddevice as sd
        info = sd.query_devices(self.device, 'input')
        return int(info['default_samplerate'])

    def start(self) -> None:
        """Open the input stream and start accumulating audio."""
        if self._stream is not None:
            raise RuntimeError("Capture session already started")

        self.sample_rate = self._resolve_sample_rate()
        self._max_frames = int(self.max_duration * self.sample_rate)
        with self._lock:
            self._blocks.clear()
            self._frames = 0

        stream_factory = self._stream_factory
        if stream_factory is None:
            import sounddevice as sd
            stream_factory = sd.InputStream

        stream = stream_factory(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype='int16',
            device=self.device,
            callback=self._audio_callback,
        )
        stream.start()
        self._stream = stream
        logger.debug(f"Capture started: device={self.device}, {self.sample_rate}Hz, {self.channels}ch")

    def _audio_callback(self, indata, frames, time_info, status):
        if status:
            logger.debug(f"Audio callback status: {status}")
        if indata is None or len(indata) == 0:
            return

        block = np.array(indata, dtype=np.int16, copy=True)
        with self._lock:
            self._blocks.append(block)
            self._frames += len(block)
            self._trim()

        if self._on_level is not None:
            self._on_level(float(np.max(np.abs(block.astype(np.int32)))) / 32768.0)

    def _trim(self) -> None:
        """Drop the oldest samples beyond the maximum duration. Caller holds the lock."""
        excess = self._frames - self._max_frames
        while excess > 0 and self._blocks:
            first = self._blocks[0]
            if len(first) <= excess:
                self._blocks.popleft()
                self._frames -= len(first)
                excess -= len(first)
            else:
                self._blocks[0] = first[excess:]
                self._frames -= excess
                excess = 0

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def stop(self) -> AudioBuffer:
        """Close the stream and hand over the captured audio.

        The session keeps no reference to the returned samples.
        """
        self._close_stream()
        with self._lock:
            blocks = list(self._blocks)
            self._blocks.clear()
            self._frames = 0

        if blocks:
            samples = np.concatenate(blocks)
        else:
            samples = np.zeros((0, self.channels), dtype=np.int16)
        logger.debug(f"Capture stopped: {len(samples)} frames")
        return AudioBuffer(samples=samples, sample_rate=int(self.sample_rate or 0), channels=self.channels)

    def abort(self) -> None:
        """Close the stream and discard everything captured."""
        self._close_stream()
        with self._lock:
            self._blocks.clear()
            self._frames = 0
