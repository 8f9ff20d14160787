"""
Conversion of captured or file audio to the canonical format used everywhere
else: mono, 16 kHz, float32 in [-1, 1].

Conversion is streamed: the source is read in chunks until it returns an empty
chunk, each chunk is downmixed and fed through a linear-interpolation
resampler, and the output lands in one buffer preallocated from the expected
frame count plus a guard margin.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np
import soundfile as sf

from ..errors import ConversionFailed

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
GUARD_FRAMES = 4096
CHUNK_FRAMES = 4096


@dataclass
class AudioBuffer:
    """Raw capture: samples in the device's native rate and layout."""
    samples: np.ndarray   # (frames,) or (frames, channels)
    sample_rate: int
    channels: int = 1

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0]) if self.samples.ndim else 0

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / self.sample_rate


@dataclass
class NormalizedAudio:
    """Canonical audio: mono float32 at 16 kHz."""
    samples: np.ndarray
    sample_rate: int = TARGET_SAMPLE_RATE
    path: Optional[Path] = None

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


def to_float32(chunk: np.ndarray) -> np.ndarray:
    """Scale integer PCM to [-1, 1] float32."""
    if chunk.dtype == np.int16:
        return chunk.astype(np.float32) / 32768.0
    if chunk.dtype == np.int32:
        return chunk.astype(np.float32) / 2147483648.0
    return chunk.astype(np.float32, copy=False)


def downmix(chunk: np.ndarray) -> np.ndarray:
    """Average channels into a single mono channel."""
    if chunk.ndim == 1:
        return chunk
    if chunk.shape[1] == 1:
        return chunk[:, 0]
    return chunk.mean(axis=1, dtype=np.float32)


class LinearResampler:
    """
    Streaming linear-interpolation resampler.

    Input arrives in arbitrary chunk sizes. Samples needed to interpolate the
    next output frame are carried over to the next call together with the
    fractional read position, so chunked output is identical to resampling the
    whole signal at once: N input frames yield floor((N - 1) / step) + 1
    output frames, where step = source_rate / target_rate.
    """

    def __init__(self, source_rate: int, target_rate: int = TARGET_SAMPLE_RATE):
        if source_rate <= 0 or target_rate <= 0:
            raise ValueError(f"Invalid sample rates {source_rate} -> {target_rate}")
        self.step = source_rate / target_rate
        self._carry = np.zeros(0, dtype=np.float32)
        self._position = 0.0  # next output position, relative to the start of _carry

    def process(self, chunk: np.ndarray) -> np.ndarray:
        data = np.concatenate([self._carry, chunk.astype(np.float32, copy=False)])
        n = len(data)
        if n == 0:
            return data

        last = n - 1
        if self._position > last:
            count = 0
        else:
            count = int(math.floor((last - self._position) / self.step)) + 1

        positions = self._position + self.step * np.arange(count)
        out = np.interp(positions, np.arange(n), data).astype(np.float32)

        next_position = self._position + self.step * count
        drop = min(int(math.floor(next_position)), n)
        self._carry = data[drop:]
        self._position = next_position - drop
        return out


class _ArraySource:
    """Chunk reader over an in-memory capture buffer."""

    def __init__(self, samples: np.ndarray):
        self._samples = samples
        self._offset = 0

    def read(self, frames: int) -> np.ndarray:
        chunk = self._samples[self._offset:self._offset + frames]
        self._offset += len(chunk)
        return to_float32(chunk)


class AudioNormalizer:
    """Converts AudioBuffers and audio files into NormalizedAudio."""

    def __init__(self, target_rate: int = TARGET_SAMPLE_RATE, chunk_frames: int = CHUNK_FRAMES,
                 guard_frames: int = GUARD_FRAMES):
        self.target_rate = target_rate
        self.chunk_frames = chunk_frames
        self.guard_frames = guard_frames

    def normalize(self, buffer: AudioBuffer, output_path: Optional[Union[str, Path]] = None) -> NormalizedAudio:
        """Convert a capture buffer. The caller must not touch ``buffer`` afterwards."""
        samples = np.asarray(buffer.samples)
        if buffer.channels < 1:
            raise ConversionFailed(f"Invalid channel count: {buffer.channels}")
        if samples.ndim > 2 or (samples.ndim == 2 and samples.shape[1] != buffer.channels):
            raise ConversionFailed(
                f"Sample layout {samples.shape} does not match {buffer.channels} channel(s)"
            )
        if samples.ndim == 1 and buffer.channels > 1:
            # Interleaved capture
            if len(samples) % buffer.channels:
                raise ConversionFailed("Interleaved samples are not a whole number of frames")
            samples = samples.reshape(-1, buffer.channels)

        return self._convert(_ArraySource(samples), buffer.sample_rate, len(samples), output_path)

    def normalize_file(self, path: Union[str, Path], output_path: Optional[Union[str, Path]] = None) -> NormalizedAudio:
        """Convert any format libsndfile can read."""
        try:
            sound_file = sf.SoundFile(str(path))
        except Exception as e:
            raise ConversionFailed(f"Cannot open audio file {path}: {e}") from e

        with sound_file:
            if sound_file.channels < 1:
                raise ConversionFailed(f"Invalid channel count in {path}: {sound_file.channels}")
            logger.debug(
                f"Converting {path}: {sound_file.frames} frames, "
                f"{sound_file.samplerate}Hz, {sound_file.channels}ch"
            )
            return self._convert(_FileSource(sound_file), sound_file.samplerate, sound_file.frames, output_path)

    def _convert(self, source, source_rate: int, total_frames: int, output_path) -> NormalizedAudio:
        if not source_rate or source_rate <= 0:
            raise ConversionFailed(f"Invalid sample rate: {source_rate}")

        capacity = math.ceil(total_frames * self.target_rate / source_rate) + self.guard_frames
        output = np.empty(capacity, dtype=np.float32)
        written = 0
        resampler = LinearResampler(source_rate, self.target_rate)

        while True:
            try:
                chunk = source.read(self.chunk_frames)
            except Exception as e:
                raise ConversionFailed(f"Reading audio failed after {written} frames: {e}") from e
            if len(chunk) == 0:
                break

            converted = resampler.process(downmix(chunk))
            if written + len(converted) > capacity:
                raise ConversionFailed("Converted audio is longer than expected")
            output[written:written + len(converted)] = converted
            written += len(converted)

        samples = output[:written].copy()
        path = None
        if output_path is not None:
            path = Path(output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            sf.write(str(path), samples, self.target_rate, subtype='FLOAT')

        return NormalizedAudio(samples=samples, sample_rate=self.target_rate, path=path)


class _FileSource:
    """Chunk reader over an open soundfile."""

    def __init__(self, sound_file: sf.SoundFile):
        self._file = sound_file

    def read(self, frames: int) -> np.ndarray:
        return self._file.read(frames, dtype='float32', always_2d=True)
