"""
Audio capture and conversion to the canonical 16 kHz mono float32 format.
"""

from .normalizer import (
    AudioBuffer,
    AudioNormalizer,
    LinearResampler,
    NormalizedAudio,
    TARGET_SAMPLE_RATE,
)
from .capture import AudioCaptureSession

__all__ = [
    "AudioBuffer",
    "AudioCaptureSession",
    "AudioNormalizer",
    "LinearResampler",
    "NormalizedAudio",
    "TARGET_SAMPLE_RATE",
]
