"""
Tests for speaker enrollment and layered embedding extraction.
"""

import random
from datetime import datetime, timedelta

import numpy as np
import pytest

from conftest import FakeDiarizer, speaker_result, tone
from voxkey.engines.base import DiarizationResult
from voxkey.errors import (
    EmbeddingExtractionFailed,
    InsufficientAudio,
    ModelsNotLoaded,
    ProfileNotFound,
)
from voxkey.speakers.enrollment import (
    COLOR_PALETTE,
    UNGROUPED_LABEL,
    SpeakerEnrollmentManager,
    normalize_amplitude,
    pad_with_silence,
    pick_color,
)
from voxkey.speakers.profiles import SpeakerProfile, SpeakerProfileStore, with_changes


@pytest.fixture
def store(temp_dir):
    return SpeakerProfileStore(temp_dir / "speakers.json")


def make_manager(store, **diarizer_kwargs):
    diarizer = FakeDiarizer(**diarizer_kwargs)
    return SpeakerEnrollmentManager(diarizer, store, rng=random.Random(0)), diarizer


class TestNormalizeAmplitude:
    """Tests for peak normalization."""

    def test_scales_peak_to_target(self):
        """Should scale the peak to 0.9."""
        samples = np.array([0.0, 0.45, -0.3], dtype=np.float32)
        out = normalize_amplitude(samples)
        assert np.max(np.abs(out)) == pytest.approx(0.9)

    def test_gain_is_capped(self):
        """Should cap the gain at 100."""
        samples = np.array([0.0, 0.001], dtype=np.float32)
        out = normalize_amplitude(samples)
        assert np.max(np.abs(out)) == pytest.approx(0.1)

    def test_silence_unchanged(self):
        """Should leave silence unchanged."""
        samples = np.zeros(10, dtype=np.float32)
        np.testing.assert_array_equal(normalize_amplitude(samples), samples)

    def test_pad_with_silence(self):
        """Should pad one second of silence on each side."""
        padded = pad_with_silence(np.ones(10, dtype=np.float32))
        assert len(padded) == 32010
        assert padded[:16000].sum() == 0
        assert padded[-16000:].sum() == 0


class TestPickColor:
    """Tests for profile color assignment."""

    def test_first_color_when_empty(self):
        """Should start with the first palette color."""
        assert pick_color([]) == COLOR_PALETTE[0]

    def test_each_color_used_twice_before_moving_on(self):
        """Should use each color twice before moving on."""
        profiles = [SpeakerProfile(name="A", embedding=np.ones(4), color_hex=COLOR_PALETTE[0])]
        assert pick_color(profiles) == COLOR_PALETTE[0]

        profiles.append(SpeakerProfile(name="B", embedding=np.ones(4), color_hex=COLOR_PALETTE[0]))
        assert pick_color(profiles) == COLOR_PALETTE[1]

    def test_random_palette_color_when_exhausted(self):
        """Should pick a random palette color when all are used."""
        profiles = [
            SpeakerProfile(name=str(i), embedding=np.ones(4), color_hex=color)
            for color in COLOR_PALETTE for i in range(2)
        ]
        assert pick_color(profiles, random.Random(1)) in COLOR_PALETTE


class TestExtractEmbedding:
    """Tests for the offline -> streaming -> padded streaming ladder."""

    def test_short_sample_raises_without_attempts(self, store):
        """Should reject short samples before any extraction."""
        manager, diarizer = make_manager(store)
        with pytest.raises(InsufficientAudio):
            manager.extract_embedding(tone(2.9))
        assert diarizer.offline_calls == []
        assert diarizer.streaming_calls == []

    def test_models_not_loaded(self, store):
        """Should raise when the diarizer is not loaded."""
        manager, diarizer = make_manager(store, loaded=False)
        with pytest.raises(ModelsNotLoaded):
            manager.extract_embedding(tone(3.0))
        assert diarizer.offline_calls == []

    def test_short_sample_checked_before_models(self, store):
        """Should check the sample length before the models."""
        manager, _ = make_manager(store, loaded=False)
        with pytest.raises(InsufficientAudio):
            manager.extract_embedding(tone(1.0))

    def test_offline_success_makes_one_attempt(self, store):
        """Should stop after a successful offline pass."""
        manager, diarizer = make_manager(store, offline=[speaker_result(embedding=[1, 2, 3])])

        embedding = manager.extract_embedding(tone(3.0))

        np.testing.assert_array_equal(embedding, [1, 2, 3])
        assert len(diarizer.offline_calls) == 1
        assert diarizer.streaming_calls == []

    def test_falls_back_to_streaming(self, store):
        """Should fall back to streaming diarization."""
        manager, diarizer = make_manager(
            store,
            offline=[RuntimeError("pipeline crashed")],
            streaming=[speaker_result(embedding=[4, 5])],
        )

        embedding = manager.extract_embedding(tone(3.0))

        np.testing.assert_array_equal(embedding, [4, 5])
        assert len(diarizer.offline_calls) == 1
        assert len(diarizer.streaming_calls) == 1

    def test_falls_back_to_padded_streaming(self, store):
        """Should fall back to streaming over padded audio."""
        manager, diarizer = make_manager(
            store,
            offline=[DiarizationResult()],
            streaming=[DiarizationResult(), speaker_result(embedding=[6])],
        )

        embedding = manager.extract_embedding(tone(3.0))

        np.testing.assert_array_equal(embedding, [6])
        assert len(diarizer.streaming_calls) == 2
        assert len(diarizer.streaming_calls[1]) == len(diarizer.streaming_calls[0]) + 32000

    def test_all_attempts_fail(self, store):
        """Should raise when every attempt yields nothing."""
        manager, diarizer = make_manager(store)
        with pytest.raises(EmbeddingExtractionFailed):
            manager.extract_embedding(tone(3.0))
        assert len(diarizer.offline_calls) == 1
        assert len(diarizer.streaming_calls) == 2

    def test_sample_is_normalized_before_diarization(self, store):
        """Should normalize the sample before diarizing it."""
        manager, diarizer = make_manager(store, offline=[speaker_result()])
        manager.extract_embedding(tone(3.0, amplitude=0.1))
        assert np.max(np.abs(diarizer.offline_calls[0])) == pytest.approx(0.9, abs=1e-3)

    def test_first_non_empty_embedding_wins(self, store):
        """Should use the first non-empty embedding."""
        result = DiarizationResult(speaker_database={
            "Speaker 1": np.zeros(0, dtype=np.float32),
            "Speaker 2": np.array([7.0], dtype=np.float32),
            "Speaker 3": np.array([8.0], dtype=np.float32),
        })
        manager, _ = make_manager(store, offline=[result])
        np.testing.assert_array_equal(manager.extract_embedding(tone(3.0)), [7.0])


class TestProfileLifecycle:
    """Tests for enroll, re-enroll, edit and delete."""

    def test_enroll_persists_profile(self, store):
        """Should save the new profile."""
        manager, _ = make_manager(store, offline=[speaker_result()])

        profile = manager.enroll("  Ada Lovelace ", tone(3.0), role="Engineer", group_name="Core")

        assert profile.name == "Ada Lovelace"
        assert profile.initials == "AL"
        assert profile.color_hex == COLOR_PALETTE[0]
        reloaded = SpeakerProfileStore(store.path).load()
        assert [p.id for p in reloaded] == [profile.id]

    def test_re_enroll_changes_only_embedding(self, store):
        """Should change only the embedding and update time."""
        manager, diarizer = make_manager(store, offline=[speaker_result(embedding=[1, 0, 0])])
        original = manager.enroll("Ada", tone(3.0), role="Engineer", group_name="Core")
        original_updated_at = original.updated_at - timedelta(seconds=1)
        store.update(with_changes(original, updated_at=original_updated_at))

        diarizer.streaming.append(speaker_result(embedding=[0, 1, 0]))
        updated = manager.re_enroll(original.id, tone(3.0))

        np.testing.assert_array_equal(updated.embedding, [0, 1, 0])
        assert updated.updated_at > original_updated_at
        assert (updated.id, updated.name, updated.role, updated.group_name, updated.color_hex, updated.enrolled_at) == \
            (original.id, original.name, original.role, original.group_name, original.color_hex, original.enrolled_at)
        assert len(diarizer.offline_calls) == 1
        assert len(diarizer.streaming_calls) == 1

    def test_re_enroll_has_no_fallbacks(self, store):
        """Should make a single streaming attempt."""
        manager, diarizer = make_manager(store, offline=[speaker_result()])
        profile = manager.enroll("Ada", tone(3.0))

        with pytest.raises(EmbeddingExtractionFailed):
            manager.re_enroll(profile.id, tone(3.0))
        assert len(diarizer.streaming_calls) == 1
        assert len(diarizer.offline_calls) == 1

    def test_re_enroll_wraps_engine_errors(self, store):
        """Should report engine errors as extraction failures."""
        manager, diarizer = make_manager(store, offline=[speaker_result()])
        profile = manager.enroll("Ada", tone(3.0))
        diarizer.streaming.append(RuntimeError("boom"))

        with pytest.raises(EmbeddingExtractionFailed):
            manager.re_enroll(profile.id, tone(3.0))
        np.testing.assert_array_equal(store.get(profile.id).embedding, profile.embedding)

    def test_re_enroll_unknown_profile(self, store):
        """Should raise for an unknown profile."""
        manager, _ = make_manager(store)
        with pytest.raises(ProfileNotFound):
            manager.re_enroll("missing", tone(3.0))

    def test_update_profile(self, store):
        """Should edit profile details and bump the update time."""
        manager, _ = make_manager(store, offline=[speaker_result()])
        profile = manager.enroll("Ada", tone(3.0))

        updated = manager.update_profile(profile.id, name="Ada L.", group_name="Research")

        assert updated.name == "Ada L."
        assert updated.group_name == "Research"
        np.testing.assert_array_equal(updated.embedding, profile.embedding)

    def test_update_unknown_profile(self, store):
        """Should raise when editing an unknown profile."""
        manager, _ = make_manager(store)
        with pytest.raises(ProfileNotFound):
            manager.update_profile("missing", name="x")

    def test_delete_is_idempotent(self, store):
        """Should allow deleting a profile twice."""
        manager, _ = make_manager(store, offline=[speaker_result()])
        profile = manager.enroll("Ada", tone(3.0))

        manager.delete_profile(profile.id)
        manager.delete_profile(profile.id)

        assert manager.profiles == []

    def test_grouped_profiles(self, store):
        """Should group profiles by group name."""
        manager, _ = make_manager(store)
        store.add(SpeakerProfile(name="Zed", embedding=np.ones(4), group_name="sales"))
        store.add(SpeakerProfile(name="Ada", embedding=np.ones(4)))
        store.add(SpeakerProfile(name="Bob", embedding=np.ones(4), group_name="Design"))

        labels = [label for label, _ in manager.grouped_profiles()]

        assert labels == ["Design", "sales", UNGROUPED_LABEL]

    def test_load_known_speakers(self, store):
        """Should register every profile with the diarizer."""
        manager, diarizer = make_manager(store)
        profile = store.add(SpeakerProfile(name="Ada", embedding=[3.0, 4.0]))

        manager.load_known_speakers()

        np.testing.assert_allclose(diarizer.known_speakers[profile.id], [0.6, 0.8])

    def test_enrollment_timestamps(self, store):
        """Should set enrollment and update times."""
        manager, _ = make_manager(store, offline=[speaker_result()])
        before = datetime.now()
        profile = manager.enroll("Ada", tone(3.0))
        assert profile.enrolled_at >= before
