"""
Import an existing audio file as a completed meeting.

The file is converted once, diarized as a whole (when enabled), and
transcribed in fixed-size chunks; each chunk is attributed to whoever speaks
the most inside it.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from ..audio.normalizer import AudioNormalizer, NormalizedAudio
from ..engines.base import DiarizationEngine, TranscriptionEngine
from ..speakers.resolver import SpeakerIdentityResolver
from ..transcription import transcribe
from ..utils import ConfigManager, TextProcessor
from .models import Meeting, MeetingSegment, MeetingStatus

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SECONDS = 30.0
MIN_CHUNK_SECONDS = 1.0


class MeetingImporter:
    """Builds a Meeting from an audio file."""

    def __init__(
        self,
        config: ConfigManager,
        normalizer: AudioNormalizer,
        transcriber: TranscriptionEngine,
        text_processor: TextProcessor,
        diarizer: Optional[DiarizationEngine] = None,
        resolver: Optional[SpeakerIdentityResolver] = None,
    ):
        self.config = config
        self.normalizer = normalizer
        self.transcriber = transcriber
        self.text_processor = text_processor
        self.diarizer = diarizer
        self.resolver = resolver

    def import_file(self, path: Union[str, Path], title: Optional[str] = None) -> Meeting:
        """
        Convert, transcribe and attribute an audio file.

        Raises:
            ConversionFailed: If the file cannot be converted
            TranscriptionNotInitialized: If the transcription model is not loaded
        """
        path = Path(path)
        audio = self.normalizer.normalize_file(path)
        meeting = Meeting(title=title or path.stem)
        meeting.set_status(MeetingStatus.PROCESSING)
        self._transcribe_chunks(audio, meeting)
        meeting.finalize(duration=audio.duration)
        logger.info(f"Imported {path.name}: {len(meeting.segments)} segments, {audio.duration:.1f}s")
        return meeting

    def _diarize(self, audio: NormalizedAudio):
        if self.diarizer is None or self.resolver is None:
            return None
        if not self.config.get_config_value('diarization', 'enabled'):
            return None
        if not self.diarizer.is_loaded:
            logger.warning("Diarization models not loaded; importing without speakers")
            return None
        self.resolver.prepare(self.diarizer)
        return self.diarizer.diarize_offline(audio.samples, audio.sample_rate)

    def _transcribe_chunks(self, audio: NormalizedAudio, meeting: Meeting) -> None:
        chunk_seconds = float(self.config.get_config_value('meeting', 'import_chunk_seconds') or DEFAULT_CHUNK_SECONDS)
        chunk_size = int(chunk_seconds * audio.sample_rate)
        diarization = self._diarize(audio)

        for start in range(0, len(audio.samples), chunk_size):
            chunk = audio.samples[start:start + chunk_size]
            if len(chunk) <= MIN_CHUNK_SECONDS * audio.sample_rate:
                continue

            result = transcribe(self.transcriber, NormalizedAudio(samples=chunk, sample_rate=audio.sample_rate), self.config)
            text = self.text_processor.process(result.text)
            if not text or not text.strip():
                continue

            t0 = start / audio.sample_rate
            t1 = (start + len(chunk)) / audio.sample_rate
            speaker_id, speaker_name = (None, None)
            if self.resolver is not None:
                speaker_id, speaker_name = self.resolver.resolve_dominant(diarization, t0, t1)
            meeting.add_segment(MeetingSegment(
                text=text, timestamp=t0, speaker_id=speaker_id, speaker_name=speaker_name,
            ))
