"""
Tests for microphone capture using a fake input stream.
"""

import numpy as np
import pytest

from voxkey.audio.capture import AudioCaptureSession


class FakeStream:
    """Stands in for sounddevice.InputStream; tests push blocks by hand."""

    def __init__(self, samplerate, channels, dtype, device, callback):
        self.samplerate = samplerate
        self.channels = channels
        self.callback = callback
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def push(self, block):
        self.callback(block, len(block), None, None)


class StreamRecorder:
    def __init__(self):
        self.streams = []

    def __call__(self, **kwargs):
        stream = FakeStream(**kwargs)
        self.streams.append(stream)
        return stream


@pytest.fixture
def recorder():
    return StreamRecorder()


def test_collects_blocks_in_order(recorder):
    """Should return captured blocks in arrival order."""
    session = AudioCaptureSession(sample_rate=16000, stream_factory=recorder)
    session.start()
    stream = recorder.streams[0]
    assert stream.started

    stream.push(np.full((160, 1), 1, dtype=np.int16))
    stream.push(np.full((160, 1), 2, dtype=np.int16))
    buffer = session.stop()

    assert buffer.sample_rate == 16000
    assert buffer.frames == 320
    assert buffer.samples[0, 0] == 1
    assert buffer.samples[-1, 0] == 2
    assert stream.closed
    assert not session.is_active


def test_block_is_copied(recorder):
    """Should copy each callback block instead of keeping the driver buffer."""
    session = AudioCaptureSession(sample_rate=16000, stream_factory=recorder)
    session.start()
    block = np.full((10, 1), 5, dtype=np.int16)
    recorder.streams[0].push(block)
    block[:] = 0

    assert session.stop().samples[0, 0] == 5


def test_trims_oldest_audio(recorder):
    """Should drop the oldest audio once the maximum duration is reached."""
    session = AudioCaptureSession(sample_rate=100, max_duration=1.0, stream_factory=recorder)
    session.start()
    stream = recorder.streams[0]
    stream.push(np.full((80, 1), 1, dtype=np.int16))
    stream.push(np.full((50, 1), 2, dtype=np.int16))

    buffer = session.stop()

    assert buffer.frames == 100
    assert (buffer.samples[:50, 0] == 1).all()
    assert (buffer.samples[50:, 0] == 2).all()


def test_reports_peak_level(recorder):
    """Should report the peak amplitude of each block."""
    levels = []
    session = AudioCaptureSession(sample_rate=16000, on_level=levels.append, stream_factory=recorder)
    session.start()
    recorder.streams[0].push(np.array([[0], [-16384], [100]], dtype=np.int16))

    assert levels == [0.5]


def test_stop_without_audio_returns_empty_buffer(recorder):
    """Should return an empty buffer when nothing was captured."""
    session = AudioCaptureSession(sample_rate=16000, channels=2, stream_factory=recorder)
    session.start()

    buffer = session.stop()

    assert buffer.samples.shape == (0, 2)
    assert buffer.duration == 0.0


def test_abort_discards_audio(recorder):
    """Should close the stream and discard captured audio on abort."""
    session = AudioCaptureSession(sample_rate=16000, stream_factory=recorder)
    session.start()
    recorder.streams[0].push(np.ones((100, 1), dtype=np.int16))

    session.abort()

    assert session.frames == 0
    assert recorder.streams[0].closed


def test_double_start_raises(recorder):
    """Should refuse to start an already running session."""
    session = AudioCaptureSession(sample_rate=16000, stream_factory=recorder)
    session.start()
    with pytest.raises(RuntimeError):
        session.start()
