"""
Meeting records, their storage, and audio-file import.
"""

from .models import Meeting, MeetingSegment, MeetingStatus, format_timestamp
from .store import MeetingStore
from .importer import MeetingImporter

__all__ = [
    "Meeting",
    "MeetingImporter",
    "MeetingSegment",
    "MeetingStatus",
    "MeetingStore",
    "format_timestamp",
]
