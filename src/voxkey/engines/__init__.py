"""
voxkey inference engines

Unified interfaces for the transcription and diarization backends:
- Whisper (faster-whisper) - transcription
- pyannote.audio - speaker diarization and voice embeddings
"""

from .base import (
    DiarizationEngine,
    DiarizationResult,
    EngineNotAvailableError,
    SpeakerSegment,
    TranscriptionEngine,
    TranscriptionResult,
    TranscriptionSegment,
)
from .factory import (
    create_diarizer,
    create_engine,
    get_available_engines,
    get_default_engine,
    get_engine_class,
    is_engine_available,
    register_diarizer,
    register_engine,
)

__all__ = [
    # Base classes
    "DiarizationEngine",
    "DiarizationResult",
    "EngineNotAvailableError",
    "SpeakerSegment",
    "TranscriptionEngine",
    "TranscriptionResult",
    "TranscriptionSegment",
    # Factory functions
    "create_diarizer",
    "create_engine",
    "get_available_engines",
    "get_default_engine",
    "get_engine_class",
    "is_engine_available",
    "register_diarizer",
    "register_engine",
]
