"""Prometheus instruments for staging workflows."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

LIBRARY_WRITES = Counter(
    "staging_library_writes_total",
    "Library rows written by staging imports",
    ["outcome"],
)

SESSIONS_CREATED = Counter(
    "staging_sessions_created_total",
    "Staging sessions created",
)

SESSIONS_SWEPT = Counter(
    "staging_sessions_swept_total",
    "Expired sessions processed by the sweeper",
    ["outcome"],
)

IMPORT_BATCH_SIZE = Histogram(
    "staging_import_batch_size",
    "Number of exercise indices requested per import",
    buckets=(1, 2, 3, 5, 8, 13, 21, 34),
)

WORKOUT_EXERCISES_ADDED = Counter(
    "staging_workout_exercises_added_total",
    "Exercises appended to workouts from staging sessions",
)
