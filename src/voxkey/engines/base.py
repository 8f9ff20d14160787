"""
Base classes for transcription and diarization engines.

Provides the unified interfaces that all inference backends must implement.
The pipeline only talks to these; the concrete backends live in their own
modules and register themselves with the factory.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import numpy as np

from ..errors import VoxkeyError


@dataclass
class TranscriptionSegment:
    """A single segment of transcribed audio with timing information."""
    text: str
    start: float  # Start time in seconds
    end: float    # End time in seconds


@dataclass
class TranscriptionResult:
    """Result of a transcription operation."""
    text: str
    segments: List[TranscriptionSegment] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass
class SpeakerSegment:
    """A stretch of audio attributed to one speaker.

    ``speaker_id`` is a known profile id when the engine matched an enrolled
    voice, otherwise an engine-local label such as "Speaker 1".
    """
    speaker_id: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)


@dataclass
class DiarizationResult:
    """Speaker turns plus one embedding per speaker found."""
    segments: List[SpeakerSegment] = field(default_factory=list)
    speaker_database: Dict[str, np.ndarray] = field(default_factory=dict)


class EngineNotAvailableError(VoxkeyError):
    """Raised when an engine is not available (missing dependencies)."""
    def __init__(self, engine_id: str, install_hint: str):
        self.engine_id = engine_id
        self.install_hint = install_hint
        super().__init__(f"Engine '{engine_id}' not available. {install_hint}")


class TranscriptionEngine(ABC):
    """
    Abstract base class for transcription engines.

    Readiness (``is_loaded``) is a precondition of ``transcribe``.
    """

    # Class attributes to be overridden by subclasses
    ENGINE_ID: str = "base"
    ENGINE_NAME: str = "Base Engine"

    def __init__(self):
        self._model = None
        self._model_name: Optional[str] = None
        self._device: Optional[str] = None
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        """Check if a model is currently loaded."""
        return self._loaded

    @property
    def model_name(self) -> Optional[str]:
        return self._model_name

    @property
    def device(self) -> Optional[str]:
        return self._device

    @abstractmethod
    def load(self, model_name: str, device: str = "auto", compute_type: str = "float16") -> bool:
        """
        Load a transcription model.

        Args:
            model_name: Name/ID of the model to load
            device: Device to load on ("auto", "cuda", "cpu")
            compute_type: Compute precision ("float16", "float32", "int8")

        Returns:
            True if loaded successfully, False otherwise
        """

    @abstractmethod
    def transcribe(
        self,
        audio: np.ndarray,
        sample_rate: int = 16000,
        language: Optional[str] = None,
        initial_prompt: Optional[str] = None,
        vad_filter: bool = True,
        **kwargs
    ) -> TranscriptionResult:
        """
        Transcribe audio data.

        Args:
            audio: Audio data as numpy array (float32, normalized to [-1, 1])
            sample_rate: Sample rate of the audio
            language: Language code (e.g., "en") or None for auto-detect
            initial_prompt: Optional prompt to condition the transcription
            vad_filter: Whether to apply voice activity detection
            **kwargs: Engine-specific options

        Returns:
            TranscriptionResult with text and segments

        Raises:
            TranscriptionNotInitialized: If no model is loaded
        """

    @classmethod
    def is_available(cls) -> bool:
        """
        Check if this engine is available (dependencies installed).

        Override in subclasses to check for specific dependencies.
        """
        return True

    @classmethod
    def get_install_hint(cls) -> str:
        return "Install required dependencies."


class DiarizationEngine(ABC):
    """
    Abstract base class for speaker diarization engines.

    Before processing, callers register the enrolled voices with
    ``load_known_speakers``; speakers matching one of them come back under the
    profile id they were registered with.
    """

    ENGINE_ID: str = "base"
    ENGINE_NAME: str = "Base Diarizer"

    def __init__(self):
        self._loaded = False
        self._known_speakers: Dict[str, np.ndarray] = {}

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def known_speakers(self) -> Dict[str, np.ndarray]:
        return dict(self._known_speakers)

    @abstractmethod
    def load(self) -> bool:
        """Load the diarization and embedding models. Returns True if successful."""

    def load_known_speakers(self, speakers: Mapping[str, np.ndarray]) -> None:
        """Replace the registry of enrolled voices (profile id -> embedding)."""
        known = {}
        for speaker_id, embedding in speakers.items():
            vector = np.asarray(embedding, dtype=np.float32).flatten()
            norm = np.linalg.norm(vector)
            if norm > 0:
                known[speaker_id] = vector / norm
        self._known_speakers = known

    @abstractmethod
    def diarize_offline(self, audio: np.ndarray, sample_rate: int = 16000) -> DiarizationResult:
        """Diarize a complete recording in one pass."""

    @abstractmethod
    def diarize_streaming(self, audio: np.ndarray, sample_rate: int = 16000) -> DiarizationResult:
        """Diarize by feeding the recording through the engine window by window."""

    @classmethod
    def is_available(cls) -> bool:
        return True

    @classmethod
    def get_install_hint(cls) -> str:
        return "Install required dependencies."
