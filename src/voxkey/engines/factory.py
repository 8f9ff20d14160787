"""
Engine factory for creating transcription and diarization engines.

Provides dynamic engine registration based on available dependencies.
"""

from typing import Dict, List, Optional, Type

from .base import DiarizationEngine, EngineNotAvailableError, TranscriptionEngine


# Registries of known engines (populated by the register_* decorators)
_engine_registry: Dict[str, Type[TranscriptionEngine]] = {}
_diarizer_registry: Dict[str, Type[DiarizationEngine]] = {}


def register_engine(engine_class: Type[TranscriptionEngine]) -> Type[TranscriptionEngine]:
    """
    Register a transcription engine class in the registry.

    Use as a decorator:
        @register_engine
        class MyEngine(TranscriptionEngine):
            ENGINE_ID = "my_engine"
    """
    _engine_registry[engine_class.ENGINE_ID] = engine_class
    return engine_class


def register_diarizer(diarizer_class: Type[DiarizationEngine]) -> Type[DiarizationEngine]:
    """Register a diarization engine class. Same usage as ``register_engine``."""
    _diarizer_registry[diarizer_class.ENGINE_ID] = diarizer_class
    return diarizer_class


def get_available_engines() -> List[str]:
    """Get list of transcription engine IDs whose dependencies are installed."""
    return [engine_id for engine_id, cls in _engine_registry.items() if cls.is_available()]


def is_engine_available(engine_id: str) -> bool:
    """
    Check if a specific transcription engine is available.

    Args:
        engine_id: The engine ID to check

    Returns:
        True if engine is registered and dependencies are installed
    """
    if engine_id not in _engine_registry:
        return False
    return _engine_registry[engine_id].is_available()


def _instantiate(registry, kind: str, engine_id: str, **kwargs):
    if engine_id not in registry:
        available = list(registry.keys())
        raise ValueError(f"Unknown {kind} '{engine_id}'. Available: {available}")

    engine_class = registry[engine_id]
    if not engine_class.is_available():
        raise EngineNotAvailableError(engine_id, engine_class.get_install_hint())

    return engine_class(**kwargs)


def create_engine(engine_id: str, **kwargs) -> TranscriptionEngine:
    """
    Create an instance of the specified transcription engine.

    Raises:
        EngineNotAvailableError: If engine is not available
        ValueError: If engine ID is unknown
    """
    return _instantiate(_engine_registry, "engine", engine_id, **kwargs)


def create_diarizer(engine_id: str, **kwargs) -> DiarizationEngine:
    """
    Create an instance of the specified diarization engine.

    Raises:
        EngineNotAvailableError: If engine is not available
        ValueError: If engine ID is unknown
    """
    return _instantiate(_diarizer_registry, "diarizer", engine_id, **kwargs)


def get_engine_class(engine_id: str) -> Optional[Type[TranscriptionEngine]]:
    return _engine_registry.get(engine_id)


def get_default_engine() -> str:
    """
    Get the default transcription engine ID (first available).

    Raises:
        RuntimeError: If no engines are available
    """
    available = get_available_engines()
    if not available:
        raise RuntimeError("No transcription engines available. Install faster-whisper.")

    if "whisper" in available:
        return "whisper"
    return available[0]


def _register_engines():
    """Import engine modules to register them."""
    from . import whisper_engine  # noqa: F401
    from . import pyannote_engine  # noqa: F401


# Register engines on module load
_register_engines()
