"""Keyword tables used to derive library classification from an exercise name.

Matching is a case-insensitive substring test. ``EXERCISE_TYPE_RULES`` is
evaluated in order and the first match wins; each entry of ``TRACKING_RULES``
is evaluated on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

DEFAULT_EXERCISE_TYPE: Final[str] = "strength"

EXERCISE_TYPE_RULES: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("squat", "deadlift", "press"), "strength"),
    (("run", "sprint", "jog"), "cardio"),
    (("stretch", "mobility", "yoga"), "mobility"),
    (("plyo", "jump", "box"), "plyometric"),
    (("throw", "medicine ball", "slam"), "power"),
)

# flag -> (keywords, value when any keyword matches)
TRACKING_RULES: Final[dict[str, tuple[tuple[str, ...], bool]]] = {
    "tracks_weight": (("push up", "pull up", "bodyweight", "plank", "burpee"), False),
    "tracks_reps": (("plank", "hold", "carry", "run", "row"), False),
    "tracks_duration": (("plank", "hold", "carry", "run", "row", "bike"), True),
    "tracks_distance": (("run", "sprint", "row", "bike", "swim"), True),
}


@dataclass(frozen=True, slots=True)
class Classification:
    exercise_type: str
    tracks_weight: bool
    tracks_reps: bool
    tracks_duration: bool
    tracks_distance: bool


def _mentions(name: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in name for keyword in keywords)


def infer_exercise_type(name: str) -> str:
    folded = name.lower()
    for keywords, exercise_type in EXERCISE_TYPE_RULES:
        if _mentions(folded, keywords):
            return exercise_type
    return DEFAULT_EXERCISE_TYPE


def tracking_flags(name: str) -> dict[str, bool]:
    folded = name.lower()
    return {
        flag: matched_value if _mentions(folded, keywords) else not matched_value
        for flag, (keywords, matched_value) in TRACKING_RULES.items()
    }


def classify(name: str) -> Classification:
    """Derive the exercise type and tracking flags for ``name``."""
    return Classification(exercise_type=infer_exercise_type(name), **tracking_flags(name))
