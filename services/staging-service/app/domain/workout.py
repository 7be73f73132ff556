from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_PRESCRIBED_SETS: tuple[dict[str, Any], ...] = (
    {"set_number": 1, "target_reps": 10, "target_weight": None, "target_rpe": None},
)


@dataclass(slots=True)
class Workout:
    """Workout template that staged exercises can be appended to."""

    workout_id: str
    name: str
    program_id: str | None = None


@dataclass(slots=True)
class WorkoutExercise:
    workout_exercise_id: str
    workout_id: str
    exercise_id: str
    exercise_order: int
    prescribed_sets: list[dict[str, Any]] = field(default_factory=list)
    notes: str | None = None
