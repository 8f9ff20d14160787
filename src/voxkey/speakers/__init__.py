"""
Speaker profiles: enrollment, persistence and identity resolution.
"""

from .profiles import SpeakerProfile, SpeakerProfileStore
from .enrollment import COLOR_PALETTE, SpeakerEnrollmentManager, normalize_amplitude, pick_color
from .resolver import SpeakerIdentityResolver

__all__ = [
    "COLOR_PALETTE",
    "SpeakerEnrollmentManager",
    "SpeakerIdentityResolver",
    "SpeakerProfile",
    "SpeakerProfileStore",
    "normalize_amplitude",
    "pick_color",
]
