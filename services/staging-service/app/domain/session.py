from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from schemas import OPEN_STATUSES, AnalyzedExercise, ExerciseEdit, StagingStatus

_RANK: dict[StagingStatus, int] = {
    StagingStatus.pending: 0,
    StagingStatus.in_progress: 1,
    StagingStatus.completed: 2,
    StagingStatus.expired: 2,
    StagingStatus.error: 2,
}


def can_transition(current: StagingStatus, target: StagingStatus) -> bool:
    """Return ``True`` when moving from ``current`` to ``target`` keeps status monotonic.

    Terminal states only accept themselves; ``completed`` may be re-entered by a
    later individual import but never left.
    """
    if current == target:
        return True
    if current not in OPEN_STATUSES:
        return False
    return _RANK[target] > _RANK[current]


@dataclass(slots=True)
class StagingSession:
    """Server-held draft of AI-extracted exercises awaiting review."""

    session_id: str
    owner_id: str
    video_url: str
    video_title: str | None
    sport: str | None
    total_duration: str | None
    exercises: tuple[AnalyzedExercise, ...]
    status: StagingStatus
    created_at: datetime
    expires_at: datetime
    edited_exercises: dict[int, ExerciseEdit] = field(default_factory=dict)
    imported_exercise_ids: set[int] = field(default_factory=set)
    library_exercise_ids: dict[int, str] = field(default_factory=dict)
    auto_imported: bool = False
    completed_at: datetime | None = None
    error_message: str | None = None
    updated_at: datetime | None = None

    @property
    def total_exercises(self) -> int:
        return len(self.exercises)

    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at < now

    def accepts_imports(self) -> bool:
        return not (self.status == StagingStatus.expired and self.auto_imported)
