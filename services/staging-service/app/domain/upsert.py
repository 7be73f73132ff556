"""Name-keyed insert-or-update of merged exercises into the shared library."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from schemas import AnalyzedExercise

from .classification import classify
from .contracts import LibraryStore
from .library import LibraryExercise, LibraryExerciseWrite

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpsertResult:
    exercise: LibraryExercise
    was_inserted: bool

    @property
    def exercise_id(self) -> str:
        return self.exercise.exercise_id


def build_library_write(
    candidate: AnalyzedExercise,
    *,
    video_url: str | None,
    session_id: str,
    owner_id: str | None,
    now: datetime,
    new_flag_ttl: timedelta,
) -> LibraryExerciseWrite:
    """Project a merged exercise onto the library columns, including derived fields."""
    classification = classify(candidate.name)
    return LibraryExerciseWrite(
        name=candidate.name,
        video_url=video_url,
        video_start_time=candidate.start_time,
        video_end_time=candidate.end_time,
        instructions=list(candidate.instructions),
        coaching_cues=list(candidate.coaching_cues),
        screenshot_timestamps=list(candidate.screenshot_timestamps),
        difficulty=candidate.difficulty,
        equipment=list(candidate.equipment),
        exercise_type=classification.exercise_type,
        tracks_weight=classification.tracks_weight,
        tracks_reps=classification.tracks_reps,
        tracks_duration=classification.tracks_duration,
        tracks_distance=classification.tracks_distance,
        new_expires_at=now + new_flag_ttl,
        source_session_id=session_id,
        owner_id=owner_id,
        written_at=now,
    )


def upsert_exercise(
    repository: LibraryStore,
    candidate: AnalyzedExercise,
    *,
    video_url: str | None,
    session_id: str,
    owner_id: str | None,
    now: datetime,
    new_flag_ttl: timedelta,
) -> UpsertResult:
    """Write ``candidate`` to the library, updating the row that shares its folded name.

    Raises
    ------
    StoreWriteError
        When the lookup or the write fails; nothing else is attempted for this
        candidate.
    """
    payload = build_library_write(
        candidate,
        video_url=video_url,
        session_id=session_id,
        owner_id=owner_id,
        now=now,
        new_flag_ttl=new_flag_ttl,
    )
    existing = repository.find_by_name(candidate.name)
    if existing is not None:
        exercise = repository.update_exercise(existing.exercise_id, payload)
        logger.debug("library exercise %s updated from session %s", exercise.exercise_id, session_id)
        return UpsertResult(exercise=exercise, was_inserted=False)

    exercise, inserted = repository.insert_exercise(payload)
    if not inserted:
        # a concurrent import claimed the name between lookup and insert
        logger.info("library insert for %r converged onto existing row %s", candidate.name, exercise.exercise_id)
    return UpsertResult(exercise=exercise, was_inserted=inserted)
