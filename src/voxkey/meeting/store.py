"""
One JSON file per meeting, named by meeting id.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from ..errors import MeetingLoadError
from .models import Meeting

logger = logging.getLogger(__name__)


class MeetingStore:
    """Persists meetings under a directory as ``<id>.json``."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, meeting_id: str) -> Path:
        return self.directory / f"{meeting_id}.json"

    def save(self, meeting: Meeting) -> Path:
        """Write the meeting atomically. Returns the record path."""
        self.directory.mkdir(parents=True, exist_ok=True)
        filepath = self._path(meeting.id)

        # Atomic write: write to temp file then rename
        temp_path = filepath.with_suffix('.tmp')
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(meeting.to_dict(), f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(filepath)
        logger.debug(f"Saved meeting {meeting.id} to {filepath}")
        return filepath

    def _read(self, filepath: Path) -> Meeting:
        try:
            data = json.loads(filepath.read_text(encoding='utf-8'))
            return Meeting.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise MeetingLoadError(filepath, str(e)) from e

    def load(self, meeting_id: str) -> Optional[Meeting]:
        """
        Load one meeting.

        Returns:
            The meeting, or None if no record exists

        Raises:
            MeetingLoadError: If the record exists but is corrupt
        """
        filepath = self._path(meeting_id)
        if not filepath.exists():
            return None
        return self._read(filepath)

    def load_all(self) -> List[Meeting]:
        """All readable meetings, newest first. Corrupt records are skipped and logged."""
        if not self.directory.exists():
            return []

        meetings = []
        for filepath in self.directory.glob("*.json"):
            try:
                meetings.append(self._read(filepath))
            except MeetingLoadError as e:
                logger.warning(f"Skipping unreadable meeting record: {e}")
        meetings.sort(key=lambda m: m.date, reverse=True)
        return meetings

    def delete(self, meeting_id: str) -> None:
        """Delete a meeting record. Missing records are ignored."""
        self._path(meeting_id).unlink(missing_ok=True)

    def export_markdown(self, meeting: Meeting, output_dir: Union[str, Path]) -> Path:
        """Write the meeting transcript as markdown next to other exports."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        filepath = output_dir / meeting.date.strftime("meeting_%Y%m%d_%H%M%S.md")
        temp_path = filepath.with_suffix('.tmp')
        temp_path.write_text(meeting.to_markdown(), encoding='utf-8')
        temp_path.replace(filepath)
        logger.info(f"Exported meeting transcript to {filepath}")
        return filepath
