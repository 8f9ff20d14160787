"""
Meeting records: a titled session made of timestamped, speaker-attributed
segments.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

UNKNOWN_SPEAKER = "Participant"


class MeetingStatus(str, Enum):
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETED = "completed"


_STATUS_ORDER = [MeetingStatus.RECORDING, MeetingStatus.PROCESSING, MeetingStatus.COMPLETED]


def format_timestamp(seconds: float) -> str:
    """Format seconds as H:MM:SS or MM:SS."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


@dataclass
class MeetingSegment:
    """A single utterance in a meeting."""
    text: str
    timestamp: float                   # Seconds from meeting start
    speaker_id: Optional[str] = None
    speaker_name: Optional[str] = None
    is_final: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "text": self.text,
            "speaker_id": self.speaker_id,
            "speaker_name": self.speaker_name,
            "is_final": self.is_final,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MeetingSegment":
        return cls(
            id=data["id"],
            timestamp=float(data["timestamp"]),
            text=data["text"],
            speaker_id=data.get("speaker_id"),
            speaker_name=data.get("speaker_name"),
            is_final=data.get("is_final", True),
        )


@dataclass
class Meeting:
    """A recorded meeting and its transcript."""
    title: str
    date: datetime = field(default_factory=datetime.now)
    duration: float = 0.0
    status: MeetingStatus = MeetingStatus.RECORDING
    segments: List[MeetingSegment] = field(default_factory=list)
    participant_ids: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    action_items: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def add_segment(self, segment: MeetingSegment, merge: bool = True) -> MeetingSegment:
        """
        Append a segment, keeping segments in timestamp order.

        With ``merge``, a segment from the same named speaker as the previous
        one is folded into it instead of starting a new line.

        Returns:
            The segment that now holds the text
        """
        if segment.timestamp < 0:
            raise ValueError(f"Segment timestamp must be >= 0, got {segment.timestamp}")
        if self.segments and segment.timestamp < self.segments[-1].timestamp:
            raise ValueError(
                f"Segment at {segment.timestamp:.2f}s is earlier than the last segment "
                f"({self.segments[-1].timestamp:.2f}s)"
            )

        if segment.speaker_id and segment.speaker_id not in self.participant_ids:
            self.participant_ids.append(segment.speaker_id)

        last = self.segments[-1] if self.segments else None
        if merge and last is not None and segment.speaker_name and last.speaker_name == segment.speaker_name:
            last.text = f"{last.text} {segment.text}".strip()
            last.is_final = segment.is_final
            return last

        self.segments.append(segment)
        return segment

    def set_status(self, status: MeetingStatus) -> None:
        """Advance the status. Moving backwards raises ValueError."""
        status = MeetingStatus(status)
        if _STATUS_ORDER.index(status) < _STATUS_ORDER.index(self.status):
            raise ValueError(f"Cannot move meeting from {self.status.value} back to {status.value}")
        self.status = status

    def finalize(self, duration: Optional[float] = None) -> None:
        """Mark completed. Duration always covers the last segment."""
        if duration is not None:
            self.duration = max(0.0, float(duration))
        if self.segments:
            self.duration = max(self.duration, self.segments[-1].timestamp)
        if self.status == MeetingStatus.RECORDING:
            self.set_status(MeetingStatus.PROCESSING)
        self.set_status(MeetingStatus.COMPLETED)

    def rename_speaker(self, speaker_id: str, name: str) -> int:
        """Rename every segment attributed to ``speaker_id``. Returns how many changed."""
        changed = 0
        for segment in self.segments:
            if segment.speaker_id == speaker_id:
                segment.speaker_name = name
                changed += 1
        return changed

    @property
    def final_transcript(self) -> str:
        lines = []
        for segment in self.segments:
            speaker = segment.speaker_name or UNKNOWN_SPEAKER
            lines.append(f"[{format_timestamp(segment.timestamp)}] {speaker}: {segment.text}")
        return "\n".join(lines)

    def to_markdown(self) -> str:
        """Render the meeting as a markdown document."""
        speakers = sorted({s.speaker_name for s in self.segments if s.speaker_name})
        lines = [
            f"# {self.title}",
            "",
            f"**Date**: {self.date.strftime('%Y-%m-%d %H:%M')}",
            f"**Duration**: {int(self.duration // 60)} minutes",
            f"**Participants**: {', '.join(speakers) if speakers else UNKNOWN_SPEAKER}",
            "",
            "---",
            "",
        ]

        if self.summary:
            lines += ["## Summary", "", self.summary.strip(), ""]
        if self.action_items:
            lines += ["## Action Items"] + [f"- [ ] {item}" for item in self.action_items] + [""]

        if self.segments:
            lines += ["## Full Transcript", ""]
            for segment in self.segments:
                speaker = segment.speaker_name or UNKNOWN_SPEAKER
                lines.append(f"**[{format_timestamp(segment.timestamp)}] {speaker}**: {segment.text}")
                lines.append("")

        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date.isoformat(),
            "duration": self.duration,
            "status": self.status.value,
            "segments": [s.to_dict() for s in self.segments],
            "participant_ids": list(self.participant_ids),
            "summary": self.summary,
            "action_items": list(self.action_items),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Meeting":
        return cls(
            id=data["id"],
            title=data["title"],
            date=datetime.fromisoformat(data["date"]),
            duration=float(data.get("duration", 0.0)),
            status=MeetingStatus(data.get("status", MeetingStatus.COMPLETED.value)),
            segments=[MeetingSegment.from_dict(s) for s in data.get("segments", [])],
            participant_ids=list(data.get("participant_ids", [])),
            summary=data.get("summary"),
            action_items=list(data.get("action_items", [])),
        )
