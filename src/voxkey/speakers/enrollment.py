"""
Speaker enrollment: turn a voice sample into a stored profile.

Embedding extraction is layered. The sample is peak-normalized, then handed
to offline diarization; if that yields no embedding, streaming diarization is
tried, then streaming diarization over the sample padded with a second of
silence on each side. The first usable embedding wins.
"""

import logging
import random
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..engines.base import DiarizationEngine, DiarizationResult
from ..errors import (
    EmbeddingExtractionFailed,
    InsufficientAudio,
    ModelsNotLoaded,
    ProfileNotFound,
)
from .profiles import SpeakerProfile, SpeakerProfileStore, with_changes

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
MIN_ENROLLMENT_SECONDS = 3.0
MIN_ENROLLMENT_SAMPLES = int(SAMPLE_RATE * MIN_ENROLLMENT_SECONDS)
TARGET_PEAK = 0.9
MAX_GAIN = 100.0
PADDING_SECONDS = 1.0
MAX_USES_PER_COLOR = 2
UNGROUPED_LABEL = "Ungrouped"

COLOR_PALETTE = [
    "#00E5FF", "#FF4081", "#7C4DFF", "#00C853", "#FFD740", "#FF6E40",
    "#448AFF", "#E040FB", "#64FFDA", "#FF5252", "#536DFE", "#B388FF",
]


def normalize_amplitude(samples: np.ndarray) -> np.ndarray:
    """Scale so the peak sits at 0.9, with gain capped at 100x. Silence is left alone."""
    samples = np.asarray(samples, dtype=np.float32)
    peak = float(np.max(np.abs(samples))) if len(samples) else 0.0
    if peak <= 0:
        return samples
    scale = min(TARGET_PEAK / peak, MAX_GAIN)
    return samples * np.float32(scale)


def pad_with_silence(samples: np.ndarray, seconds: float = PADDING_SECONDS,
                     sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    padding = np.zeros(int(seconds * sample_rate), dtype=np.float32)
    return np.concatenate([padding, samples, padding])


def pick_color(profiles: List[SpeakerProfile], rng: Optional[random.Random] = None) -> str:
    """First palette color used fewer than twice, else a random palette color."""
    usage = {color: 0 for color in COLOR_PALETTE}
    for profile in profiles:
        if profile.color_hex in usage:
            usage[profile.color_hex] += 1
    for color in COLOR_PALETTE:
        if usage[color] < MAX_USES_PER_COLOR:
            return color
    return (rng or random).choice(COLOR_PALETTE)


def first_embedding(result: Optional[DiarizationResult]) -> Optional[np.ndarray]:
    """First non-empty embedding in the speaker database, in engine order."""
    if result is None:
        return None
    for embedding in result.speaker_database.values():
        vector = np.asarray(embedding, dtype=np.float32).flatten()
        if vector.size > 0:
            return vector
    return None


class SpeakerEnrollmentManager:
    """Enrolls, re-enrolls, edits and deletes speaker profiles."""

    def __init__(self, diarizer: DiarizationEngine, store: SpeakerProfileStore,
                 rng: Optional[random.Random] = None):
        self.diarizer = diarizer
        self.store = store
        self._rng = rng or random.Random()

    # --- Queries ---

    @property
    def profiles(self) -> List[SpeakerProfile]:
        return self.store.profiles

    def find_profile(self, profile_id: str) -> Optional[SpeakerProfile]:
        return self.store.get(profile_id)

    def grouped_profiles(self) -> List[Tuple[str, List[SpeakerProfile]]]:
        """Profiles grouped by group name, ungrouped ones under a default label."""
        groups = {}
        for profile in self.store.profiles:
            label = profile.group_name.strip() or UNGROUPED_LABEL
            groups.setdefault(label, []).append(profile)
        return sorted(groups.items(), key=lambda item: item[0].lower())

    def load_known_speakers(self) -> None:
        """Register every stored profile with the diarizer."""
        self.diarizer.load_known_speakers(self.store.embeddings())

    # --- Extraction ---

    def _check_preconditions(self, samples: np.ndarray) -> None:
        if len(samples) < MIN_ENROLLMENT_SAMPLES:
            raise InsufficientAudio(len(samples) / SAMPLE_RATE, MIN_ENROLLMENT_SECONDS)
        if not self.diarizer.is_loaded:
            raise ModelsNotLoaded()

    def _attempt(self, label: str, run: Callable[[], DiarizationResult]) -> Optional[np.ndarray]:
        try:
            embedding = first_embedding(run())
        except Exception as e:
            logger.warning(f"Embedding extraction ({label}) failed: {e}")
            return None
        if embedding is None:
            logger.info(f"Embedding extraction ({label}) found no speaker")
        return embedding

    def extract_embedding(self, samples: np.ndarray) -> np.ndarray:
        """
        Extract one voice embedding from a 16 kHz mono sample.

        Raises:
            InsufficientAudio: Sample shorter than 3 seconds
            ModelsNotLoaded: Diarizer not ready
            EmbeddingExtractionFailed: No attempt produced an embedding
        """
        samples = np.asarray(samples, dtype=np.float32)
        self._check_preconditions(samples)
        normalized = normalize_amplitude(samples)

        attempts = [
            ("offline", lambda: self.diarizer.diarize_offline(normalized, SAMPLE_RATE)),
            ("streaming", lambda: self.diarizer.diarize_streaming(normalized, SAMPLE_RATE)),
            ("padded streaming", lambda: self.diarizer.diarize_streaming(pad_with_silence(normalized), SAMPLE_RATE)),
        ]
        for label, run in attempts:
            embedding = self._attempt(label, run)
            if embedding is not None:
                logger.info(f"Voice embedding extracted via {label} diarization (dim={embedding.size})")
                return embedding

        raise EmbeddingExtractionFailed()

    # --- Mutations ---

    def enroll(self, name: str, samples: np.ndarray, role: str = "", group_name: str = "") -> SpeakerProfile:
        """Create and persist a new profile from a voice sample."""
        embedding = self.extract_embedding(samples)
        profile = SpeakerProfile(
            name=name.strip(),
            role=role.strip(),
            group_name=group_name.strip(),
            color_hex=pick_color(self.store.profiles, self._rng),
            embedding=embedding,
        )
        self.store.add(profile)
        logger.info(f"Enrolled speaker '{profile.name}' ({profile.id})")
        return profile

    def re_enroll(self, profile_id: str, samples: np.ndarray) -> SpeakerProfile:
        """
        Replace a profile's embedding with one from a new sample.

        Only the embedding and ``updated_at`` change. A single streaming
        attempt is made, without the offline or padded fallbacks.
        """
        profile = self.store.get(profile_id)
        if profile is None:
            raise ProfileNotFound(profile_id)

        samples = np.asarray(samples, dtype=np.float32)
        self._check_preconditions(samples)
        normalized = normalize_amplitude(samples)

        try:
            result = self.diarizer.diarize_streaming(normalized, SAMPLE_RATE)
        except Exception as e:
            raise EmbeddingExtractionFailed(f"Voice fingerprint extraction failed: {e}") from e

        embedding = first_embedding(result)
        if embedding is None:
            raise EmbeddingExtractionFailed()

        updated = with_changes(profile, embedding=embedding, updated_at=datetime.now())
        self.store.update(updated)
        logger.info(f"Re-enrolled speaker '{updated.name}' ({updated.id})")
        return updated

    def update_profile(self, profile_id: str, name: Optional[str] = None, role: Optional[str] = None,
                       group_name: Optional[str] = None) -> SpeakerProfile:
        profile = self.store.get(profile_id)
        if profile is None:
            raise ProfileNotFound(profile_id)

        changes = {}
        if name is not None:
            changes["name"] = name.strip()
        if role is not None:
            changes["role"] = role.strip()
        if group_name is not None:
            changes["group_name"] = group_name.strip()
        if not changes:
            return profile

        updated = with_changes(profile, updated_at=datetime.now(), **changes)
        self.store.update(updated)
        return updated

    def delete_profile(self, profile_id: str) -> None:
        """Remove a profile. Unknown ids are ignored."""
        if self.store.remove(profile_id):
            logger.info(f"Deleted speaker profile {profile_id}")
