"""Field-level overlay of user edits onto analyzer output."""

from __future__ import annotations

from schemas import AnalyzedExercise, ExerciseEdit


def merge_exercise(original: AnalyzedExercise, edits: ExerciseEdit | None = None) -> AnalyzedExercise:
    """Return ``original`` with every field present in ``edits`` replaced.

    Lists are replaced wholesale, never concatenated.
    """
    if edits is None or edits.is_empty():
        return original
    return original.model_copy(update=edits.model_dump(exclude_unset=True))


def overlay_edits(base: ExerciseEdit | None, override: ExerciseEdit | None) -> ExerciseEdit | None:
    """Layer ``override`` on top of ``base``; fields set in ``override`` win."""
    if base is None:
        return override
    if override is None:
        return base
    combined = {**base.model_dump(exclude_unset=True), **override.model_dump(exclude_unset=True)}
    return ExerciseEdit(**combined)
