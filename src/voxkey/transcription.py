"""
Glue between configuration and the inference engines: building and loading
the configured engines, and running a configured transcription.
"""

import logging
from typing import Optional

from .audio.normalizer import NormalizedAudio
from .engines import (
    DiarizationEngine,
    TranscriptionEngine,
    TranscriptionResult,
    create_diarizer,
    create_engine,
    get_default_engine,
    is_engine_available,
)
from .errors import TranscriptionNotInitialized
from .utils import ConfigManager

logger = logging.getLogger(__name__)


def create_local_engine(config: ConfigManager) -> TranscriptionEngine:
    """Create (but do not load) the configured transcription engine."""
    engine_id = config.get_config_value('model_options', 'engine') or 'whisper'
    if not is_engine_available(engine_id):
        logger.warning(f"Engine {engine_id} not available, using default")
        engine_id = get_default_engine()
    return create_engine(engine_id)


def load_local_engine(engine: TranscriptionEngine, config: ConfigManager) -> bool:
    """Load the configured model into ``engine``. Returns True on success."""
    model_options = config.get_config_section('model_options')
    model_name = model_options.get('model') or 'base'
    device = model_options.get('device') or 'auto'
    compute_type = model_options.get('compute_type') or 'int8'
    loaded = engine.load(model_name, device, compute_type)
    if not loaded:
        logger.error(f"Failed to load transcription model '{model_name}'")
    return loaded


def create_diarization_engine(config: ConfigManager) -> DiarizationEngine:
    """Create (but do not load) the configured diarization engine."""
    options = config.get_config_section('diarization')
    return create_diarizer(
        options.get('engine') or 'pyannote',
        device=options.get('device') or 'cpu',
        similarity_threshold=float(options.get('similarity_threshold') or 0.25),
        window_seconds=float(options.get('window_seconds') or 3.0),
    )


def transcribe(engine: Optional[TranscriptionEngine], audio: NormalizedAudio,
               config: ConfigManager) -> TranscriptionResult:
    """
    Transcribe canonical audio with the configured language and prompt.

    Raises:
        TranscriptionNotInitialized: If the engine is missing or not loaded
    """
    if engine is None or not engine.is_loaded:
        raise TranscriptionNotInitialized()

    model_options = config.get_config_section('model_options')
    result = engine.transcribe(
        audio.samples,
        sample_rate=audio.sample_rate,
        language=model_options.get('language') or None,
        initial_prompt=model_options.get('initial_prompt') or None,
        vad_filter=bool(model_options.get('vad_filter', True)),
    )
    logger.debug(f"Transcribed {audio.duration:.2f}s of audio: {len(result.text)} chars")
    return result
