"""
Whisper transcription engine using faster-whisper.

This is the default engine.
"""

import logging
from typing import Optional

import numpy as np

from ..errors import TranscriptionNotInitialized
from .base import TranscriptionEngine, TranscriptionResult, TranscriptionSegment
from .factory import register_engine

logger = logging.getLogger(__name__)


@register_engine
class WhisperEngine(TranscriptionEngine):
    """
    Transcription engine using OpenAI Whisper via faster-whisper.

    faster-whisper is a CTranslate2 implementation that's significantly faster
    than the original OpenAI implementation while maintaining the same accuracy.
    """

    ENGINE_ID = "whisper"
    ENGINE_NAME = "Whisper (faster-whisper)"

    def __init__(self):
        super().__init__()
        self._compute_type = None

    @classmethod
    def is_available(cls) -> bool:
        """Check if faster-whisper is installed."""
        try:
            import faster_whisper  # noqa: F401
        except ImportError:
            return False
        return True

    @classmethod
    def get_install_hint(cls) -> str:
        return "pip install 'voxkey[engines]'"

    def load(self, model_name: str, device: str = "auto", compute_type: str = "float16") -> bool:
        """Load a Whisper model."""
        from faster_whisper import WhisperModel

        from ..compat import get_default_device

        if device == "auto":
            device = get_default_device()

        # int8 requires CPU
        if compute_type == "int8":
            device = "cpu"

        logger.info(f"Loading Whisper model '{model_name}' on {device} ({compute_type})...")

        try:
            try:
                self._model = WhisperModel(model_name, device=device, compute_type=compute_type)
                self._device = device
            except Exception as e:
                if device == "cpu":
                    raise
                logger.warning(f"GPU load failed ({e}), falling back to CPU...")
                self._model = WhisperModel(model_name, device="cpu", compute_type="int8")
                self._device = "cpu"
        except Exception as e:
            logger.error(f"Failed to load Whisper model '{model_name}': {e}")
            self._loaded = False
            return False

        self._model_name = model_name
        self._compute_type = compute_type
        self._loaded = True
        logger.info(f"Whisper model loaded on {self._device}")
        return True

    def transcribe(
        self,
        audio: np.ndarray,
        sample_rate: int = 16000,
        language: Optional[str] = None,
        initial_prompt: Optional[str] = None,
        vad_filter: bool = True,
        **kwargs
    ) -> TranscriptionResult:
        """Transcribe audio using Whisper."""
        if not self._loaded or self._model is None:
            raise TranscriptionNotInitialized()

        if audio.dtype == np.int16:
            audio = audio.astype(np.float32) / 32768.0
        elif audio.dtype != np.float32:
            audio = audio.astype(np.float32)

        duration = len(audio) / sample_rate

        segments_iter, info = self._model.transcribe(
            audio=audio,
            language=language,
            initial_prompt=initial_prompt,
            vad_filter=vad_filter,
            condition_on_previous_text=kwargs.get("condition_on_previous_text", False),
            hallucination_silence_threshold=kwargs.get("hallucination_silence_threshold", 0.5),
        )

        segments = []
        for segment in segments_iter:
            segments.append(TranscriptionSegment(text=segment.text, start=segment.start, end=segment.end))

        full_text = "".join(s.text for s in segments).strip()
        return TranscriptionResult(text=full_text, segments=segments, duration_seconds=duration)
