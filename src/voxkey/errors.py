"""
Error kinds raised by voxkey.

Every error carries a user-facing message (``str(error)``) that the status
notifications and the enrollment CLI show as-is.
"""

from typing import Optional


class VoxkeyError(Exception):
    """Base class for errors surfaced to the user."""

    default_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)


# --- Speaker enrollment ---

class EnrollmentError(VoxkeyError):
    """Base class for speaker enrollment failures."""


class InsufficientAudio(EnrollmentError):
    """Sample is shorter than the enrollment minimum."""

    def __init__(self, duration: float, minimum: float):
        self.duration = duration
        self.minimum = minimum
        super().__init__(
            f"Recording is too short ({duration:.1f}s). "
            f"Please record at least {minimum:.0f} seconds of speech."
        )


class ModelsNotLoaded(EnrollmentError):
    default_message = "Speaker models are not loaded yet. Wait for them to finish loading and try again."


class EmbeddingExtractionFailed(EnrollmentError):
    default_message = "Could not extract a voice fingerprint. Try again with a longer, clearer recording."


class ProfileNotFound(EnrollmentError):

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"Speaker profile '{profile_id}' does not exist.")


class ProfileStoreError(VoxkeyError):
    """The speaker profile file could not be read."""


# --- Audio ---

class ConversionFailed(VoxkeyError):
    default_message = "Audio conversion failed."


# --- Transcription ---

class TranscriptionNotInitialized(VoxkeyError):
    default_message = "Transcription model is not loaded yet."


# --- Storage ---

class MeetingLoadError(VoxkeyError):
    """A persisted meeting exists but cannot be decoded."""

    def __init__(self, path, reason: str = ""):
        self.path = path
        message = f"Failed to load meeting from {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
