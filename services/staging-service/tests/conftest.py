from __future__ import annotations

import copy
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import routes
from app.api.errors import install_error_handlers
from app.config import Settings
from app.domain.contracts import CreateSessionInput
from app.domain.errors import StoreWriteError
from app.domain.library import LibraryExercise, LibraryExerciseWrite
from app.domain.service import StagingService
from app.domain.session import StagingSession
from app.domain.sweeper import ExpirationSweeper
from app.domain.workout import DEFAULT_PRESCRIBED_SETS, Workout, WorkoutExercise
from schemas import OPEN_STATUSES, AnalyzedExercise, Difficulty, VideoAnalysis


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeSessionRepository:
    """In-memory session store mimicking the Postgres repository."""

    def __init__(self) -> None:
        self._sessions: dict[str, StagingSession] = {}
        self.saves = 0

    def create_session(self, session: StagingSession) -> StagingSession:
        self._sessions[session.session_id] = copy.deepcopy(session)
        return copy.deepcopy(session)

    def get_session(self, session_id: str) -> StagingSession | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    def save_session(self, session: StagingSession) -> StagingSession:
        if session.session_id not in self._sessions:
            raise StoreWriteError(f"session {session.session_id} disappeared during update")
        self.saves += 1
        self._sessions[session.session_id] = copy.deepcopy(session)
        return copy.deepcopy(session)

    def list_open_sessions(self, owner_id: str, now: datetime) -> list[StagingSession]:
        results = [
            copy.deepcopy(session)
            for session in self._sessions.values()
            if session.owner_id == owner_id and session.status in OPEN_STATUSES and session.expires_at > now
        ]
        results.sort(key=lambda s: s.created_at, reverse=True)
        return results

    def count_open_sessions(self, owner_id: str, now: datetime) -> int:
        return len(self.list_open_sessions(owner_id, now))

    def list_expired_sessions(self, now: datetime) -> list[StagingSession]:
        return [
            copy.deepcopy(session)
            for session in self._sessions.values()
            if session.status in OPEN_STATUSES and not session.auto_imported and session.expires_at < now
        ]

    def stored(self, session_id: str) -> StagingSession:
        return self._sessions[session_id]


class FakeLibraryRepository:
    """In-memory library keyed by folded name, with write-failure injection."""

    def __init__(self) -> None:
        self.rows: dict[str, LibraryExercise] = {}
        self.fail_names: set[str] = set()
        self.writes = 0

    def _check(self, name: str) -> None:
        if name.lower() in self.fail_names:
            raise StoreWriteError(f"failed to write library exercise {name!r}")

    def _find(self, name: str) -> LibraryExercise | None:
        for row in self.rows.values():
            if row.name.lower() == name.lower():
                return replace(row)
        return None

    def find_by_name(self, name: str) -> LibraryExercise | None:
        return self._find(name)

    def insert_exercise(self, payload: LibraryExerciseWrite) -> tuple[LibraryExercise, bool]:
        self._check(payload.name)
        existing = self._find(payload.name)
        if existing is not None:
            return self.update_exercise(existing.exercise_id, payload), False
        self.writes += 1
        row = LibraryExercise(
            exercise_id=str(uuid.uuid4()),
            name=payload.name,
            video_url=payload.video_url,
            video_start_time=payload.video_start_time,
            video_end_time=payload.video_end_time,
            instructions=list(payload.instructions),
            coaching_cues=list(payload.coaching_cues),
            screenshot_timestamps=list(payload.screenshot_timestamps),
            difficulty=payload.difficulty,
            equipment=list(payload.equipment),
            exercise_type=payload.exercise_type,
            tracks_weight=payload.tracks_weight,
            tracks_reps=payload.tracks_reps,
            tracks_duration=payload.tracks_duration,
            tracks_distance=payload.tracks_distance,
            is_new=True,
            new_expires_at=payload.new_expires_at,
            source_session_id=payload.source_session_id,
            owner_id=payload.owner_id,
            created_at=payload.written_at,
            updated_at=payload.written_at,
        )
        self.rows[row.exercise_id] = row
        return replace(row), True

    def update_exercise(self, exercise_id: str, payload: LibraryExerciseWrite) -> LibraryExercise:
        self._check(payload.name)
        self.writes += 1
        current = self.rows[exercise_id]
        row = replace(
            current,
            name=payload.name,
            video_url=payload.video_url,
            video_start_time=payload.video_start_time,
            video_end_time=payload.video_end_time,
            instructions=list(payload.instructions),
            coaching_cues=list(payload.coaching_cues),
            screenshot_timestamps=list(payload.screenshot_timestamps),
            difficulty=payload.difficulty,
            equipment=list(payload.equipment),
            exercise_type=payload.exercise_type,
            tracks_weight=payload.tracks_weight,
            tracks_reps=payload.tracks_reps,
            tracks_duration=payload.tracks_duration,
            tracks_distance=payload.tracks_distance,
            is_new=True,
            new_expires_at=payload.new_expires_at,
            source_session_id=payload.source_session_id,
            updated_at=payload.written_at,
        )
        self.rows[exercise_id] = row
        return replace(row)

    def list_exercises(self, *, new_only: bool = False, limit: int = 100) -> list[LibraryExercise]:
        rows = [row for row in self.rows.values() if row.is_new or not new_only]
        rows.sort(key=lambda r: r.updated_at, reverse=True)
        return [replace(row) for row in rows[:limit]]

    def clear_expired_new_flags(self, now: datetime) -> list[str]:
        cleared = []
        for exercise_id, row in self.rows.items():
            if row.is_new and row.new_expires_at is not None and row.new_expires_at < now:
                self.rows[exercise_id] = replace(row, is_new=False, new_expires_at=None)
                cleared.append(row.name)
        return cleared


class FakeWorkoutRepository:
    """In-memory workouts with append ordering and failure injection."""

    def __init__(self) -> None:
        self.workouts: dict[str, Workout] = {}
        self.rows: list[WorkoutExercise] = []
        self.fail_appends = False

    def add_workout(self, name: str, program_id: str | None = None) -> Workout:
        workout = Workout(workout_id=str(uuid.uuid4()), name=name, program_id=program_id)
        self.workouts[workout.workout_id] = workout
        return workout

    def get_workout(self, workout_id: str) -> Workout | None:
        return self.workouts.get(workout_id)

    def find_exercise(self, workout_id: str, exercise_id: str) -> WorkoutExercise | None:
        for row in self.rows:
            if row.workout_id == workout_id and row.exercise_id == exercise_id:
                return replace(row)
        return None

    def append_exercise(self, workout_id: str, exercise_id: str, *, notes: str | None) -> WorkoutExercise:
        if self.fail_appends:
            raise StoreWriteError(f"failed to add exercise to workout {workout_id}")
        orders = [row.exercise_order for row in self.rows if row.workout_id == workout_id]
        row = WorkoutExercise(
            workout_exercise_id=str(uuid.uuid4()),
            workout_id=workout_id,
            exercise_id=exercise_id,
            exercise_order=max(orders, default=0) + 1,
            prescribed_sets=[dict(item) for item in DEFAULT_PRESCRIBED_SETS],
            notes=notes,
        )
        self.rows.append(row)
        return replace(row)

    def in_workout(self, workout_id: str) -> list[WorkoutExercise]:
        return sorted((row for row in self.rows if row.workout_id == workout_id), key=lambda r: r.exercise_order)


def make_exercise(name: str, **overrides) -> AnalyzedExercise:
    fields = {
        "name": name,
        "start_time": "00:10",
        "end_time": "00:45",
        "instructions": [f"Set up for {name}", f"Perform {name}"],
        "coaching_cues": ["Brace your core"],
        "screenshot_timestamps": ["00:15", "00:30"],
        "difficulty": Difficulty.intermediate,
        "equipment": ["barbell"],
    }
    fields.update(overrides)
    return AnalyzedExercise(**fields)


def make_analysis(*names: str) -> VideoAnalysis:
    names = names or ("Barbell Squat", "Romanian Deadlift", "Box Jump")
    return VideoAnalysis(
        video_title="Lower body session",
        sport="weightlifting",
        total_duration="12:30",
        exercises=[make_exercise(name) for name in names],
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> Settings:
    return Settings(sweep_enabled=False)


@pytest.fixture
def sessions() -> FakeSessionRepository:
    return FakeSessionRepository()


@pytest.fixture
def library() -> FakeLibraryRepository:
    return FakeLibraryRepository()


@pytest.fixture
def workouts() -> FakeWorkoutRepository:
    return FakeWorkoutRepository()


@pytest.fixture
def service(sessions, library, workouts, clock, settings) -> StagingService:
    return StagingService(sessions, library, clock=clock, settings=settings, workouts=workouts)


@pytest.fixture
def sweeper(sessions, service, clock) -> ExpirationSweeper:
    return ExpirationSweeper(sessions, service, clock)


@pytest.fixture
def stage(service):
    """Create a staging session for ``owner`` from the given exercise names."""

    def _stage(*names: str, owner: str = "owner-1") -> StagingSession:
        return service.create_session(
            CreateSessionInput(
                owner_id=owner,
                video_url="https://youtube.com/watch?v=abc123",
                analysis=make_analysis(*names),
            )
        )

    return _stage


@pytest.fixture
def api_client(service, sweeper):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    install_error_handlers(app)
    app.state.staging_service = service
    app.state.sweeper = sweeper

    with TestClient(app) as client:
        yield client
