"""
Persisted speaker profiles.

All profiles live in a single JSON file that is rewritten wholesale (temp file
then atomic rename) on every change. The in-memory list only changes once the
write has succeeded.
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from ..errors import ProfileStoreError

logger = logging.getLogger(__name__)

FILE_VERSION = 1


@dataclass
class SpeakerProfile:
    """An enrolled voice."""
    name: str
    embedding: np.ndarray
    role: str = ""
    group_name: str = ""
    color_hex: str = "#00E5FF"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enrolled_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.embedding = np.asarray(self.embedding, dtype=np.float32).flatten()

    @property
    def initials(self) -> str:
        words = self.name.split()
        if len(words) >= 2:
            return (words[0][0] + words[1][0]).upper()
        return self.name[:2].upper()

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "group_name": self.group_name,
            "color_hex": self.color_hex,
            "embedding": [float(x) for x in self.embedding],
            "enrolled_at": self.enrolled_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SpeakerProfile":
        return cls(
            id=data["id"],
            name=data["name"],
            role=data.get("role", ""),
            group_name=data.get("group_name", ""),
            color_hex=data.get("color_hex", "#00E5FF"),
            embedding=np.asarray(data["embedding"], dtype=np.float32),
            enrolled_at=datetime.fromisoformat(data["enrolled_at"]),
            updated_at=datetime.fromisoformat(data.get("updated_at", data["enrolled_at"])),
        )


class SpeakerProfileStore:
    """The list of enrolled speakers and the file backing it."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._profiles: List[SpeakerProfile] = []

    @property
    def profiles(self) -> List[SpeakerProfile]:
        return list(self._profiles)

    def load(self) -> List[SpeakerProfile]:
        """Read the profile file. A missing file means no profiles.

        Raises:
            ProfileStoreError: If the file exists but cannot be decoded
        """
        if not self.path.exists():
            self._profiles = []
            return []

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            profiles = [SpeakerProfile.from_dict(item) for item in data.get("profiles", [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProfileStoreError(f"Failed to read speaker profiles from {self.path}: {e}") from e

        dimensions = {profile.dimension for profile in profiles}
        if len(dimensions) > 1:
            raise ProfileStoreError(
                f"Speaker profiles in {self.path} have mixed embedding sizes: {sorted(dimensions)}"
            )

        self._profiles = profiles
        logger.info(f"Loaded {len(profiles)} speaker profile(s) from {self.path}")
        return self.profiles

    def get(self, profile_id: str) -> Optional[SpeakerProfile]:
        for profile in self._profiles:
            if profile.id == profile_id:
                return profile
        return None

    def embeddings(self) -> Dict[str, np.ndarray]:
        """Profile id -> embedding, for the diarizer's known-speaker registry."""
        return {p.id: p.embedding for p in self._profiles}

    def add(self, profile: SpeakerProfile) -> SpeakerProfile:
        if self.get(profile.id) is not None:
            raise ValueError(f"Profile id {profile.id} already exists")
        if self._profiles and profile.dimension != self._profiles[0].dimension:
            raise ValueError(
                f"Embedding dimension {profile.dimension} does not match "
                f"existing profiles ({self._profiles[0].dimension})"
            )
        self._commit(self._profiles + [profile])
        return profile

    def update(self, profile: SpeakerProfile) -> SpeakerProfile:
        """Replace the stored profile that has the same id."""
        if self.get(profile.id) is None:
            raise KeyError(profile.id)
        others = [p for p in self._profiles if p.id != profile.id]
        if others and profile.dimension != others[0].dimension:
            raise ValueError(
                f"Embedding dimension {profile.dimension} does not match "
                f"existing profiles ({others[0].dimension})"
            )
        self._commit([profile if p.id == profile.id else p for p in self._profiles])
        return profile

    def remove(self, profile_id: str) -> bool:
        if self.get(profile_id) is None:
            return False
        self._commit([p for p in self._profiles if p.id != profile_id])
        return True

    def _commit(self, profiles: List[SpeakerProfile]) -> None:
        self._write(profiles)
        self._profiles = profiles

    def _write(self, profiles: List[SpeakerProfile]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": FILE_VERSION, "profiles": [p.to_dict() for p in profiles]}

        # Atomic write: write to temp file then rename
        temp_path = self.path.with_suffix('.tmp')
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(self.path)


def with_changes(profile: SpeakerProfile, **changes) -> SpeakerProfile:
    """Copy of ``profile`` with the given fields changed."""
    return replace(profile, **changes)
