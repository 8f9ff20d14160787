"""
Tests for the engine factory and the diarizer's matching and clustering logic.

Model inference is replaced by canned embeddings, so pyannote is not needed.
"""

import numpy as np
import pytest

from voxkey.engines import factory
from voxkey.engines.base import EngineNotAvailableError
from voxkey.engines.pyannote_engine import PyannoteDiarizer
from voxkey.errors import ModelsNotLoaded


def unit(*values):
    vector = np.asarray(values, dtype=np.float32)
    return vector / np.linalg.norm(vector)


@pytest.fixture
def diarizer():
    engine = PyannoteDiarizer(similarity_threshold=0.5, window_seconds=1.0)
    engine._loaded = True
    return engine


class TestFactory:
    """Tests for the engine registry."""

    def test_engines_registered(self):
        """Should register the bundled engines."""
        assert factory.get_engine_class("whisper") is not None
        assert "pyannote" in factory._diarizer_registry

    def test_unknown_engine(self):
        """Should reject unknown engine ids."""
        with pytest.raises(ValueError):
            factory.create_engine("does-not-exist")
        with pytest.raises(ValueError):
            factory.create_diarizer("does-not-exist")

    def test_unavailable_engine(self, monkeypatch):
        """Should raise when an engine's dependencies are missing."""
        monkeypatch.setattr(PyannoteDiarizer, "is_available", classmethod(lambda cls: False))
        with pytest.raises(EngineNotAvailableError):
            factory.create_diarizer("pyannote")

    def test_creates_configured_diarizer(self, monkeypatch):
        """Should create a diarizer with the given options."""
        monkeypatch.setattr(PyannoteDiarizer, "is_available", classmethod(lambda cls: True))
        engine = factory.create_diarizer("pyannote", device="cpu", similarity_threshold=0.4)
        assert isinstance(engine, PyannoteDiarizer)
        assert not engine.is_loaded


class TestKnownSpeakers:
    """Tests for matching voices to enrolled speakers."""

    def test_zero_vectors_dropped(self, diarizer):
        """Should ignore zero embeddings."""
        diarizer.load_known_speakers({"a": [0.0, 0.0], "b": [0.0, 2.0]})
        assert list(diarizer.known_speakers) == ["b"]
        np.testing.assert_allclose(diarizer.known_speakers["b"], [0.0, 1.0])

    def test_match_above_threshold(self, diarizer):
        """Should match only above the similarity threshold."""
        diarizer.load_known_speakers({"ada": [1.0, 0.0], "bob": [0.0, 1.0]})
        assert diarizer._match_known(unit(0.9, 0.1)) == "ada"
        assert diarizer._match_known(unit(-1.0, -1.0)) is None

    def test_dimension_mismatch_never_matches(self, diarizer):
        """Should never match embeddings of a different size."""
        diarizer.load_known_speakers({"ada": [1.0, 0.0, 0.0]})
        assert diarizer._match_known(unit(1.0, 0.0)) is None

    def test_unmatched_labels_numbered(self, diarizer):
        """Should number speakers that match no profile."""
        diarizer.load_known_speakers({"ada": [1.0, 0.0]})
        mapping, database = diarizer._resolve_labels({
            "SPEAKER_00": unit(0.0, 1.0),
            "SPEAKER_01": unit(1.0, 0.05),
            "SPEAKER_02": unit(-1.0, 0.2),
        })
        assert mapping == {"SPEAKER_00": "Speaker 1", "SPEAKER_01": "ada", "SPEAKER_02": "Speaker 2"}
        assert set(database) == {"Speaker 1", "ada", "Speaker 2"}


class TestStreaming:
    """Tests for windowed streaming diarization."""

    def test_requires_models(self):
        """Should raise when models are not loaded."""
        with pytest.raises(ModelsNotLoaded):
            PyannoteDiarizer().diarize_streaming(np.zeros(16000, dtype=np.float32))
        with pytest.raises(ModelsNotLoaded):
            PyannoteDiarizer().diarize_offline(np.zeros(16000, dtype=np.float32))

    def test_windows_clustered(self, diarizer, monkeypatch):
        """Should cluster similar windows into one speaker."""
        embeddings = iter([unit(1.0, 0.0), unit(0.95, 0.05), unit(0.0, 1.0)])
        monkeypatch.setattr(diarizer, "_extract_embedding", lambda audio, sr: next(embeddings))
        audio = np.full(3 * 16000, 0.1, dtype=np.float32)

        result = diarizer.diarize_streaming(audio, 16000)

        assert [(s.speaker_id, s.start, s.end) for s in result.segments] == [
            ("Speaker 1", 0.0, 2.0),
            ("Speaker 2", 2.0, 3.0),
        ]
        assert set(result.speaker_database) == {"Speaker 1", "Speaker 2"}

    def test_silent_and_short_windows_skipped(self, diarizer, monkeypatch):
        """Should skip silent and too-short windows."""
        calls = []

        def fake_embedding(audio, sr):
            calls.append(len(audio))
            return unit(1.0, 0.0)

        monkeypatch.setattr(diarizer, "_extract_embedding", fake_embedding)
        audio = np.concatenate([
            np.zeros(16000, dtype=np.float32),
            np.full(16000, 0.1, dtype=np.float32),
            np.full(4000, 0.1, dtype=np.float32),
        ])

        result = diarizer.diarize_streaming(audio, 16000)

        assert calls == [16000]
        assert [(s.start, s.end) for s in result.segments] == [(1.0, 2.0)]

    def test_known_speaker_resolved(self, diarizer, monkeypatch):
        """Should report enrolled speakers by profile id."""
        diarizer.load_known_speakers({"profile-1": [1.0, 0.0]})
        monkeypatch.setattr(diarizer, "_extract_embedding", lambda audio, sr: unit(1.0, 0.1))

        result = diarizer.diarize_streaming(np.full(16000, 0.1, dtype=np.float32), 16000)

        assert result.segments[0].speaker_id == "profile-1"
        assert "profile-1" in result.speaker_database
