"""
Pytest fixtures for voxkey tests.
"""

import sys
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from voxkey.engines.base import (  # noqa: E402
    DiarizationEngine,
    DiarizationResult,
    SpeakerSegment,
    TranscriptionEngine,
    TranscriptionResult,
)
from voxkey.errors import TranscriptionNotInitialized  # noqa: E402
from voxkey.utils import ConfigManager  # noqa: E402


class FakeTranscriber(TranscriptionEngine):
    """Returns canned text; records the audio it was given."""

    ENGINE_ID = "fake"

    def __init__(self, text="hello world", loaded=True, error=None):
        super().__init__()
        self.text = text
        self.error = error
        self._loaded = loaded
        self.calls = []

    def load(self, model_name, device="auto", compute_type="float16"):
        self._loaded = True
        return True

    def transcribe(self, audio, sample_rate=16000, language=None, initial_prompt=None,
                   vad_filter=True, **kwargs):
        if not self._loaded:
            raise TranscriptionNotInitialized()
        self.calls.append(np.asarray(audio))
        if self.error is not None:
            raise self.error
        return TranscriptionResult(text=self.text, duration_seconds=len(audio) / sample_rate)


class FakeDiarizer(DiarizationEngine):
    """
    Replays queued outcomes for each diarization path.

    Each queue entry is a DiarizationResult, an exception to raise, or None for
    an empty result. An exhausted queue yields empty results.
    """

    ENGINE_ID = "fake"

    def __init__(self, offline=None, streaming=None, loaded=True):
        super().__init__()
        self._loaded = loaded
        self.offline = list(offline or [])
        self.streaming = list(streaming or [])
        self.offline_calls = []
        self.streaming_calls = []

    def load(self):
        self._loaded = True
        return True

    @staticmethod
    def _next(queue):
        outcome = queue.pop(0) if queue else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or DiarizationResult()

    def diarize_offline(self, audio, sample_rate=16000):
        self.offline_calls.append(np.asarray(audio))
        return self._next(self.offline)

    def diarize_streaming(self, audio, sample_rate=16000):
        self.streaming_calls.append(np.asarray(audio))
        return self._next(self.streaming)


def speaker_result(speaker_id="Speaker 1", embedding=None, start=0.0, end=3.0):
    """A one-speaker diarization result."""
    if embedding is None:
        embedding = np.ones(4, dtype=np.float32)
    return DiarizationResult(
        segments=[SpeakerSegment(speaker_id=speaker_id, start=start, end=end)],
        speaker_database={speaker_id: np.asarray(embedding, dtype=np.float32)},
    )


def tone(seconds, sample_rate=16000, amplitude=0.1, frequency=440.0):
    """A float32 sine wave."""
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir):
    """Default configuration whose files all live in the temp directory."""
    manager = ConfigManager(config_path=temp_dir / "config.yaml")
    manager.set_config_value(str(temp_dir / "data"), 'storage', 'data_dir')
    return manager


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture
def fake_diarizer():
    return FakeDiarizer()
