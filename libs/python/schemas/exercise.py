"""Exercise contracts produced by video analysis and consumed by staging."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Difficulty(str, Enum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"


class AnalyzedExercise(BaseModel):
    """A single exercise as extracted from a video by the analyzer."""

    name: str = Field(..., min_length=1)
    start_time: str
    end_time: str
    instructions: list[str] = Field(default_factory=list)
    coaching_cues: list[str] = Field(default_factory=list)
    screenshot_timestamps: list[str] = Field(default_factory=list)
    difficulty: Difficulty
    equipment: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ExerciseEdit(BaseModel):
    """Sparse overlay of ``AnalyzedExercise`` fields.

    Only fields that were explicitly supplied are part of the edit; use
    ``model_fields_set`` (or ``model_dump(exclude_unset=True)``) to read them.
    Explicit ``null`` values are rejected so an unset field is never mistaken
    for a cleared one.
    """

    name: str | None = Field(default=None, min_length=1)
    start_time: str | None = None
    end_time: str | None = None
    instructions: list[str] | None = None
    coaching_cues: list[str] | None = None
    screenshot_timestamps: list[str] | None = None
    difficulty: Difficulty | None = None
    equipment: list[str] | None = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _reject_explicit_nulls(self) -> "ExerciseEdit":
        nulls = sorted(name for name in self.model_fields_set if getattr(self, name) is None)
        if nulls:
            raise ValueError(f"edit fields cannot be null: {', '.join(nulls)}")
        return self

    def is_empty(self) -> bool:
        return not self.model_fields_set


class VideoAnalysis(BaseModel):
    """Structured result returned by the video analyzer."""

    video_title: str
    sport: str | None = None
    total_duration: str
    exercises: list[AnalyzedExercise] = Field(default_factory=list)
