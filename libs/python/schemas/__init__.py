"""Shared schema exports."""

from .exercise import AnalyzedExercise, Difficulty, ExerciseEdit, VideoAnalysis
from .session import OPEN_STATUSES, StagingStatus

__all__ = [
    "AnalyzedExercise",
    "Difficulty",
    "ExerciseEdit",
    "VideoAnalysis",
    "OPEN_STATUSES",
    "StagingStatus",
]
