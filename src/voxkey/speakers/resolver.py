"""
Maps diarization output to enrolled speaker profiles.
"""

import logging
from collections import defaultdict
from typing import Optional, Tuple

from ..engines.base import DiarizationEngine, DiarizationResult
from .profiles import SpeakerProfile, SpeakerProfileStore

logger = logging.getLogger(__name__)


class SpeakerIdentityResolver:
    """Resolves engine speaker ids to profiles.

    The diarizer is primed with every profile's embedding, so a matched
    speaker comes back under its profile id and resolution is a lookup.
    """

    def __init__(self, store: SpeakerProfileStore):
        self.store = store

    def prepare(self, diarizer: DiarizationEngine) -> None:
        """Load all profiles into the diarizer's known-speaker registry."""
        diarizer.load_known_speakers(self.store.embeddings())

    def resolve(self, speaker_id: Optional[str]) -> Optional[SpeakerProfile]:
        if not speaker_id:
            return None
        return self.store.get(speaker_id)

    @staticmethod
    def dominant_speaker(result: Optional[DiarizationResult], start: Optional[float] = None,
                         end: Optional[float] = None) -> Optional[str]:
        """Speaker id with the most talk time, optionally within [start, end)."""
        if result is None:
            return None

        totals = defaultdict(float)
        for segment in result.segments:
            seg_start = segment.start if start is None else max(segment.start, start)
            seg_end = segment.end if end is None else min(segment.end, end)
            if seg_end > seg_start:
                totals[segment.speaker_id] += seg_end - seg_start

        if not totals:
            return None
        return max(totals.items(), key=lambda item: item[1])[0]

    def resolve_dominant(self, result: Optional[DiarizationResult], start: Optional[float] = None,
                         end: Optional[float] = None) -> Tuple[Optional[str], Optional[str]]:
        """(profile id, name) of the dominant speaker, or (None, None) when unknown."""
        profile = self.resolve(self.dominant_speaker(result, start, end))
        if profile is None:
            return None, None
        return profile.id, profile.name
