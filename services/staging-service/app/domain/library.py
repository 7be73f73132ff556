from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from schemas import Difficulty


@dataclass(slots=True)
class LibraryExerciseWrite:
    """Field values written to the library on insert or update."""

    name: str
    video_url: str | None
    video_start_time: str
    video_end_time: str
    instructions: list[str]
    coaching_cues: list[str]
    screenshot_timestamps: list[str]
    difficulty: Difficulty
    equipment: list[str]
    exercise_type: str
    tracks_weight: bool
    tracks_reps: bool
    tracks_duration: bool
    tracks_distance: bool
    new_expires_at: datetime
    source_session_id: str
    owner_id: str | None
    written_at: datetime


@dataclass(slots=True)
class LibraryExercise:
    """Canonical exercise definition shared across sessions."""

    exercise_id: str
    name: str
    video_url: str | None
    video_start_time: str | None
    video_end_time: str | None
    instructions: list[str]
    coaching_cues: list[str]
    screenshot_timestamps: list[str]
    difficulty: Difficulty | None
    equipment: list[str]
    exercise_type: str
    tracks_weight: bool
    tracks_reps: bool
    tracks_duration: bool
    tracks_distance: bool
    is_new: bool
    new_expires_at: datetime | None
    source_session_id: str | None
    owner_id: str | None
    created_at: datetime
    updated_at: datetime
