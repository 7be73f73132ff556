"""Domain-level contracts shared by the service layer and storage adapters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol

from schemas import VideoAnalysis

from .library import LibraryExercise, LibraryExerciseWrite
from .session import StagingSession
from .workout import Workout, WorkoutExercise


@dataclass(slots=True)
class CreateSessionInput:
    """Validated inputs required to stage a new analysis result."""

    owner_id: str
    video_url: str
    analysis: VideoAnalysis


class LibraryStore(Protocol):
    def find_by_name(self, name: str) -> LibraryExercise | None:
        """Return the row whose name matches case-insensitively, if any."""

    def insert_exercise(self, payload: LibraryExerciseWrite) -> tuple[LibraryExercise, bool]:
        """Insert a row and return it with ``True`` when a new row was created."""

    def update_exercise(self, exercise_id: str, payload: LibraryExerciseWrite) -> LibraryExercise:
        """Overwrite descriptive fields of an existing row, keeping its owner."""

    def list_exercises(self, *, new_only: bool = False, limit: int = 100) -> list[LibraryExercise]:
        """Return library rows ordered by most recent update."""

    def clear_expired_new_flags(self, now: datetime) -> list[str]:
        """Reset lapsed ``is_new`` markers and return the affected names."""


class SessionStore(Protocol):
    def create_session(self, session: StagingSession) -> StagingSession:
        """Persist a freshly staged session."""

    def get_session(self, session_id: str) -> StagingSession | None:
        """Fetch a session by identifier or return ``None``."""

    def save_session(self, session: StagingSession) -> StagingSession:
        """Write the mutable fields of ``session`` back to the store."""

    def list_open_sessions(self, owner_id: str, now: datetime) -> list[StagingSession]:
        """Return the owner's pending/in-progress sessions that have not expired."""

    def count_open_sessions(self, owner_id: str, now: datetime) -> int:
        """Count the sessions ``list_open_sessions`` would return."""

    def list_expired_sessions(self, now: datetime) -> Iterable[StagingSession]:
        """Return open sessions whose expiry lies before ``now`` and were not auto-imported."""


class WorkoutStore(Protocol):
    def get_workout(self, workout_id: str) -> Workout | None:
        """Fetch a workout by identifier or return ``None``."""

    def find_exercise(self, workout_id: str, exercise_id: str) -> WorkoutExercise | None:
        """Return the workout row linking ``exercise_id``, if the workout already has it."""

    def append_exercise(self, workout_id: str, exercise_id: str, *, notes: str | None) -> WorkoutExercise:
        """Add ``exercise_id`` after the workout's current last exercise."""
