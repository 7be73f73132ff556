"""Postgres repositories for staging sessions and the exercise library."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import psycopg
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from schemas import AnalyzedExercise, Difficulty, ExerciseEdit, StagingStatus

from .domain.errors import StoreWriteError
from .domain.library import LibraryExercise, LibraryExerciseWrite
from .domain.session import StagingSession
from .domain.workout import DEFAULT_PRESCRIBED_SETS, Workout, WorkoutExercise

_SESSION_COLUMNS = """
    session_id, owner_id, video_url, video_title, sport, total_duration, analysis_result,
    status, edited_exercises, imported_exercise_ids, library_exercise_ids, auto_imported,
    error_message, created_at, expires_at, completed_at, updated_at
"""

_WORKOUT_EXERCISE_COLUMNS = "id, workout_id, exercise_card_id, exercise_order, prescribed_sets, notes"

_EXERCISE_COLUMNS = """
    exercise_id, name, video_url, video_start_time, video_end_time, instructions,
    coaching_cues, screenshot_timestamps, difficulty, equipment, exercise_type,
    tracks_weight, tracks_reps, tracks_duration, tracks_distance, is_new,
    new_expires_at, source_session_id, owner_id, created_at, updated_at
"""


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Translate driver failures into the domain ``StoreWriteError``."""
    try:
        yield
    except psycopg.Error as exc:
        raise StoreWriteError(f"failed to {action}: {exc}") from exc


class SessionRepository:
    """Postgres-backed persistence for staging sessions."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def create_session(self, session: StagingSession) -> StagingSession:
        """Insert a new session row and return it as stored."""
        analysis = {
            "video_title": session.video_title,
            "sport": session.sport,
            "total_duration": session.total_duration,
            "exercises": [exercise.model_dump(mode="json") for exercise in session.exercises],
        }
        with _store_errors("create session"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO video_analysis_sessions (
                        session_id, owner_id, video_url, video_title, sport, total_duration,
                        analysis_result, status, created_at, expires_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_SESSION_COLUMNS}
                    """,
                    (
                        session.session_id,
                        session.owner_id,
                        session.video_url,
                        session.video_title,
                        session.sport,
                        session.total_duration,
                        Json(analysis),
                        session.status.value,
                        session.created_at,
                        session.expires_at,
                        session.updated_at or session.created_at,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_session(row)

    def get_session(self, session_id: str) -> StagingSession | None:
        """Fetch a session by identifier or return ``None``."""
        try:
            uuid.UUID(session_id)
        except ValueError:
            return None
        with _store_errors("load session"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM video_analysis_sessions WHERE session_id = %s",
                    (session_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_session(row)

    def save_session(self, session: StagingSession) -> StagingSession:
        """Persist progress, edits and status of an existing session."""
        with _store_errors("save session"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE video_analysis_sessions
                    SET status = %s,
                        edited_exercises = %s,
                        imported_exercise_ids = %s,
                        library_exercise_ids = %s,
                        auto_imported = %s,
                        error_message = %s,
                        completed_at = %s,
                        updated_at = %s
                    WHERE session_id = %s
                    RETURNING {_SESSION_COLUMNS}
                    """,
                    (
                        session.status.value,
                        Json(
                            {
                                str(index): edit.model_dump(mode="json", exclude_unset=True)
                                for index, edit in session.edited_exercises.items()
                            }
                        ),
                        Json(sorted(session.imported_exercise_ids)),
                        Json({str(index): value for index, value in session.library_exercise_ids.items()}),
                        session.auto_imported,
                        session.error_message,
                        session.completed_at,
                        session.updated_at,
                        session.session_id,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        if not row:
            raise StoreWriteError(f"session {session.session_id} disappeared during update")
        return self._map_session(row)

    def list_open_sessions(self, owner_id: str, now: datetime) -> list[StagingSession]:
        """Return the owner's open, unexpired sessions, newest first."""
        with _store_errors("list open sessions"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_SESSION_COLUMNS}
                    FROM video_analysis_sessions
                    WHERE owner_id = %s
                      AND status IN ('pending', 'in_progress')
                      AND expires_at > %s
                    ORDER BY created_at DESC
                    """,
                    (owner_id, now),
                )
                rows = cur.fetchall()
        return [self._map_session(row) for row in rows]

    def count_open_sessions(self, owner_id: str, now: datetime) -> int:
        """Count open, unexpired sessions held by ``owner_id``."""
        with _store_errors("count open sessions"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT COUNT(*)
                    FROM video_analysis_sessions
                    WHERE owner_id = %s
                      AND status IN ('pending', 'in_progress')
                      AND expires_at > %s
                    """,
                    (owner_id, now),
                )
                row = cur.fetchone()
        return int(row[0])

    def list_expired_sessions(self, now: datetime) -> list[StagingSession]:
        """Return open sessions past their expiry that have not been auto-imported."""
        with _store_errors("list expired sessions"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_SESSION_COLUMNS}
                    FROM video_analysis_sessions
                    WHERE status IN ('pending', 'in_progress')
                      AND auto_imported = FALSE
                      AND expires_at < %s
                    ORDER BY expires_at
                    """,
                    (now,),
                )
                rows = cur.fetchall()
        return [self._map_session(row) for row in rows]

    def _map_session(self, row: tuple) -> StagingSession:
        """Convert a raw database tuple into a ``StagingSession``."""
        analysis: dict[str, Any] = row[6] or {}
        edits: dict[str, Any] = row[8] or {}
        library_ids: dict[str, Any] = row[10] or {}
        return StagingSession(
            session_id=str(row[0]),
            owner_id=row[1],
            video_url=row[2],
            video_title=row[3],
            sport=row[4],
            total_duration=row[5],
            exercises=tuple(AnalyzedExercise.model_validate(item) for item in analysis.get("exercises", [])),
            status=StagingStatus(row[7]),
            edited_exercises={int(index): ExerciseEdit.model_validate(edit) for index, edit in edits.items()},
            imported_exercise_ids={int(index) for index in row[9] or []},
            library_exercise_ids={int(index): str(value) for index, value in library_ids.items()},
            auto_imported=row[11],
            error_message=row[12],
            created_at=row[13],
            expires_at=row[14],
            completed_at=row[15],
            updated_at=row[16],
        )


class LibraryRepository:
    """Postgres-backed exercise library keyed by case-insensitive name."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def find_by_name(self, name: str) -> LibraryExercise | None:
        """Return the exercise whose name equals ``name`` after case folding."""
        with _store_errors("look up library exercise"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_EXERCISE_COLUMNS} FROM exercise_cards WHERE lower(name) = lower(%s)",
                    (name,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_exercise(row)

    def insert_exercise(self, payload: LibraryExerciseWrite) -> tuple[LibraryExercise, bool]:
        """Insert a library row, folding into the existing row on a name conflict.

        Returns the stored row and ``True`` when the statement created it.
        """
        exercise_id = str(uuid.uuid4())
        with _store_errors("insert library exercise"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO exercise_cards (
                        exercise_id, name, video_url, video_start_time, video_end_time,
                        instructions, coaching_cues, screenshot_timestamps, difficulty, equipment,
                        exercise_type, tracks_weight, tracks_reps, tracks_duration, tracks_distance,
                        is_new, new_expires_at, source_session_id, owner_id, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, TRUE, %s, %s, %s, %s, %s)
                    ON CONFLICT ((lower(name))) DO UPDATE SET
                        name = EXCLUDED.name,
                        video_url = EXCLUDED.video_url,
                        video_start_time = EXCLUDED.video_start_time,
                        video_end_time = EXCLUDED.video_end_time,
                        instructions = EXCLUDED.instructions,
                        coaching_cues = EXCLUDED.coaching_cues,
                        screenshot_timestamps = EXCLUDED.screenshot_timestamps,
                        difficulty = EXCLUDED.difficulty,
                        equipment = EXCLUDED.equipment,
                        exercise_type = EXCLUDED.exercise_type,
                        tracks_weight = EXCLUDED.tracks_weight,
                        tracks_reps = EXCLUDED.tracks_reps,
                        tracks_duration = EXCLUDED.tracks_duration,
                        tracks_distance = EXCLUDED.tracks_distance,
                        is_new = TRUE,
                        new_expires_at = EXCLUDED.new_expires_at,
                        source_session_id = EXCLUDED.source_session_id,
                        updated_at = EXCLUDED.updated_at
                    RETURNING {_EXERCISE_COLUMNS}, (xmax = 0) AS inserted
                    """,
                    (
                        exercise_id,
                        payload.name,
                        payload.video_url,
                        payload.video_start_time,
                        payload.video_end_time,
                        Json(payload.instructions),
                        Json(payload.coaching_cues),
                        Json(payload.screenshot_timestamps),
                        payload.difficulty.value,
                        Json(payload.equipment),
                        payload.exercise_type,
                        payload.tracks_weight,
                        payload.tracks_reps,
                        payload.tracks_duration,
                        payload.tracks_distance,
                        payload.new_expires_at,
                        payload.source_session_id,
                        payload.owner_id,
                        payload.written_at,
                        payload.written_at,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_exercise(row[:-1]), bool(row[-1])

    def update_exercise(self, exercise_id: str, payload: LibraryExerciseWrite) -> LibraryExercise:
        """Overwrite descriptive and derived fields; the owner stays untouched."""
        with _store_errors("update library exercise"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE exercise_cards
                    SET name = %s,
                        video_url = %s,
                        video_start_time = %s,
                        video_end_time = %s,
                        instructions = %s,
                        coaching_cues = %s,
                        screenshot_timestamps = %s,
                        difficulty = %s,
                        equipment = %s,
                        exercise_type = %s,
                        tracks_weight = %s,
                        tracks_reps = %s,
                        tracks_duration = %s,
                        tracks_distance = %s,
                        is_new = TRUE,
                        new_expires_at = %s,
                        source_session_id = %s,
                        updated_at = %s
                    WHERE exercise_id = %s
                    RETURNING {_EXERCISE_COLUMNS}
                    """,
                    (
                        payload.name,
                        payload.video_url,
                        payload.video_start_time,
                        payload.video_end_time,
                        Json(payload.instructions),
                        Json(payload.coaching_cues),
                        Json(payload.screenshot_timestamps),
                        payload.difficulty.value,
                        Json(payload.equipment),
                        payload.exercise_type,
                        payload.tracks_weight,
                        payload.tracks_reps,
                        payload.tracks_duration,
                        payload.tracks_distance,
                        payload.new_expires_at,
                        payload.source_session_id,
                        payload.written_at,
                        exercise_id,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        if not row:
            raise StoreWriteError(f"library exercise {exercise_id} disappeared during update")
        return self._map_exercise(row)

    def list_exercises(self, *, new_only: bool = False, limit: int = 100) -> list[LibraryExercise]:
        """Return library rows, most recently updated first."""
        limit = max(1, min(limit, 500))
        where_sql = "WHERE is_new = TRUE" if new_only else ""
        with _store_errors("list library exercises"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_EXERCISE_COLUMNS}
                    FROM exercise_cards
                    {where_sql}
                    ORDER BY updated_at DESC
                    LIMIT %s
                    """,
                    (limit,),
                )
                rows = cur.fetchall()
        return [self._map_exercise(row) for row in rows]

    def clear_expired_new_flags(self, now: datetime) -> list[str]:
        """Reset ``is_new`` on rows whose marker expired and return their names."""
        with _store_errors("clear new flags"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE exercise_cards
                    SET is_new = FALSE,
                        new_expires_at = NULL
                    WHERE is_new = TRUE
                      AND new_expires_at IS NOT NULL
                      AND new_expires_at < %s
                    RETURNING name
                    """,
                    (now,),
                )
                rows = cur.fetchall()
                conn.commit()
        return [row[0] for row in rows]

    def _map_exercise(self, row: tuple) -> LibraryExercise:
        """Convert a raw database tuple into a ``LibraryExercise``."""
        return LibraryExercise(
            exercise_id=str(row[0]),
            name=row[1],
            video_url=row[2],
            video_start_time=row[3],
            video_end_time=row[4],
            instructions=list(row[5] or []),
            coaching_cues=list(row[6] or []),
            screenshot_timestamps=list(row[7] or []),
            difficulty=Difficulty(row[8]) if row[8] else None,
            equipment=list(row[9] or []),
            exercise_type=row[10],
            tracks_weight=row[11],
            tracks_reps=row[12],
            tracks_duration=row[13],
            tracks_distance=row[14],
            is_new=row[15],
            new_expires_at=row[16],
            source_session_id=str(row[17]) if row[17] else None,
            owner_id=row[18],
            created_at=row[19],
            updated_at=row[20],
        )


class WorkoutRepository:
    """Reads workouts and appends library exercises to them."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def get_workout(self, workout_id: str) -> Workout | None:
        try:
            uuid.UUID(workout_id)
        except ValueError:
            return None
        with _store_errors("load workout"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT id, name, program_id FROM workouts WHERE id = %s", (workout_id,))
                row = cur.fetchone()
        if not row:
            return None
        return Workout(
            workout_id=str(row[0]),
            name=row[1],
            program_id=str(row[2]) if row[2] else None,
        )

    def find_exercise(self, workout_id: str, exercise_id: str) -> WorkoutExercise | None:
        with _store_errors("look up workout exercise"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_WORKOUT_EXERCISE_COLUMNS}
                    FROM workout_exercises
                    WHERE workout_id = %s AND exercise_card_id = %s
                    LIMIT 1
                    """,
                    (workout_id, exercise_id),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_workout_exercise(row)

    def append_exercise(self, workout_id: str, exercise_id: str, *, notes: str | None) -> WorkoutExercise:
        """Insert the exercise one past the workout's highest ``exercise_order``."""
        with _store_errors("add workout exercise"), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO workout_exercises (
                        id, workout_id, exercise_card_id, exercise_order, prescribed_sets, notes
                    )
                    SELECT %s, %s, %s, COALESCE(MAX(exercise_order), 0) + 1, %s, %s
                    FROM workout_exercises
                    WHERE workout_id = %s
                    RETURNING {_WORKOUT_EXERCISE_COLUMNS}
                    """,
                    (
                        str(uuid.uuid4()),
                        workout_id,
                        exercise_id,
                        Json(list(DEFAULT_PRESCRIBED_SETS)),
                        notes,
                        workout_id,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_workout_exercise(row)

    def _map_workout_exercise(self, row: tuple) -> WorkoutExercise:
        return WorkoutExercise(
            workout_exercise_id=str(row[0]),
            workout_id=str(row[1]),
            exercise_id=str(row[2]),
            exercise_order=row[3],
            prescribed_sets=list(row[4] or []),
            notes=row[5],
        )
