"""Staging session lifecycle: quota, edits, imports and state transitions."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, Mapping, Protocol

from schemas import ExerciseEdit, StagingStatus

from .contracts import CreateSessionInput, LibraryStore, SessionStore, WorkoutStore
from .errors import NotFoundError, QuotaExceededError, SessionClosedError, StoreWriteError, UpstreamError, ValidationError
from .library import LibraryExercise
from .merge import merge_exercise, overlay_edits
from .session import StagingSession, can_transition
from .upsert import upsert_exercise
from .workout import Workout, WorkoutExercise
from .. import metrics
from ..clock import Clock, SystemClock
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


class VideoAnalyzer(Protocol):
    def analyze(self, video_url: str, sport: str | None = None):
        """Return a ``VideoAnalysis`` or raise ``UpstreamError``."""


@dataclass(slots=True)
class ImportOutcome:
    """Result of importing a batch of exercise indices from one session."""

    session: StagingSession
    inserted: int = 0
    updated: int = 0
    exercises: list[LibraryExercise] = field(default_factory=list)
    failed_indices: list[int] = field(default_factory=list)

    @property
    def status(self) -> StagingStatus:
        return self.session.status

    @property
    def total_imported(self) -> int:
        return len(self.session.imported_exercise_ids)

    @property
    def total_exercises(self) -> int:
        return self.session.total_exercises


@dataclass(slots=True)
class WorkoutOutcome:
    """Library import plus the workout rows appended for it."""

    workout: Workout
    imported: ImportOutcome
    added: list[WorkoutExercise] = field(default_factory=list)
    already_present: list[str] = field(default_factory=list)

    @property
    def exercise_ids(self) -> list[str]:
        return [exercise.exercise_id for exercise in self.imported.exercises]


class StagingService:
    """Session workflows backed by the session and library stores."""

    def __init__(
        self,
        sessions: SessionStore,
        library: LibraryStore,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
        analyzer: VideoAnalyzer | None = None,
        workouts: WorkoutStore | None = None,
    ) -> None:
        """Store collaborators and derive the time-box settings."""
        self._sessions = sessions
        self._library = library
        self._workouts = workouts
        self._clock = clock or SystemClock()
        self._analyzer = analyzer
        settings = settings or get_settings()
        self._session_ttl = timedelta(hours=settings.session_ttl_hours)
        self._new_flag_ttl = timedelta(days=settings.new_flag_ttl_days)
        self._max_open_sessions = settings.max_open_sessions

    @property
    def max_open_sessions(self) -> int:
        return self._max_open_sessions

    # -- quota ---------------------------------------------------------------

    def open_session_count(self, owner_id: str) -> int:
        """Count the owner's pending/in-progress sessions that have not yet expired."""
        return self._sessions.count_open_sessions(owner_id, self._clock.now())

    def can_create_session(self, owner_id: str) -> bool:
        return self.open_session_count(owner_id) < self._max_open_sessions

    def ensure_quota(self, owner_id: str) -> None:
        """Raise ``QuotaExceededError`` when the owner may not open another session."""
        current = self.open_session_count(owner_id)
        if current >= self._max_open_sessions:
            raise QuotaExceededError(
                f"Maximum {self._max_open_sessions} open staging sessions allowed. "
                "Please complete or discard existing sessions.",
                {"currentCount": current, "maxAllowed": self._max_open_sessions},
            )

    # -- creation ------------------------------------------------------------

    def create_session(self, payload: CreateSessionInput) -> StagingSession:
        """Stage an analysis result for review, enforcing the open-session quota."""
        self.ensure_quota(payload.owner_id)
        now = self._clock.now()
        analysis = payload.analysis
        session = StagingSession(
            session_id=str(uuid.uuid4()),
            owner_id=payload.owner_id,
            video_url=payload.video_url,
            video_title=analysis.video_title,
            sport=analysis.sport,
            total_duration=analysis.total_duration,
            exercises=tuple(analysis.exercises),
            status=StagingStatus.pending,
            created_at=now,
            expires_at=now + self._session_ttl,
            updated_at=now,
        )
        created = self._sessions.create_session(session)
        metrics.SESSIONS_CREATED.inc()
        logger.info(
            "staged session %s for owner %s with %d exercises",
            created.session_id,
            created.owner_id,
            created.total_exercises,
        )
        return created

    def analyze_and_stage(self, owner_id: str, video_url: str, sport: str | None = None) -> StagingSession:
        """Check quota, run the analyzer, then stage its result.

        The quota is checked before the analyzer is called so a rejected
        request never costs an analysis.
        """
        self.ensure_quota(owner_id)
        if self._analyzer is None:
            raise UpstreamError("video analyzer is not configured")
        analysis = self._analyzer.analyze(video_url, sport)
        return self.create_session(CreateSessionInput(owner_id=owner_id, video_url=video_url, analysis=analysis))

    # -- reads ---------------------------------------------------------------

    def get_session(self, session_id: str) -> StagingSession:
        session = self._sessions.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found", {"sessionId": session_id})
        return session

    def list_open_sessions(self, owner_id: str) -> list[StagingSession]:
        return self._sessions.list_open_sessions(owner_id, self._clock.now())

    def list_library(self, *, new_only: bool = False, limit: int = 100) -> list[LibraryExercise]:
        return self._library.list_exercises(new_only=new_only, limit=limit)

    # -- edits and imports ---------------------------------------------------

    def save_edits(self, session_id: str, edits: Mapping[int, ExerciseEdit]) -> StagingSession:
        """Persist edits without importing anything."""
        session = self.get_session(session_id)
        self._ensure_accepts_imports(session)
        self._validate_indices(session, edits.keys())
        if not self._apply_edits(session, edits):
            return session
        session.updated_at = self._clock.now()
        return self._sessions.save_session(session)

    def import_selected(
        self,
        session_id: str,
        indices: Iterable[int],
        request_edits: Mapping[int, ExerciseEdit] | None = None,
        mark_complete: bool | None = None,
    ) -> ImportOutcome:
        """Import the selected exercise indices into the library.

        Parameters
        ----------
        session_id:
            Session to import from.
        indices:
            Positions in the session's exercise list. All of them are validated
            before anything is written.
        request_edits:
            Edits supplied with this request; they take precedence over edits
            saved on the session and are persisted with it.
        mark_complete:
            Forces the completion decision. When omitted, the session completes
            once every exercise has been imported at least once.
        """
        session = self.get_session(session_id)
        self._ensure_accepts_imports(session)
        request_edits = request_edits or {}
        selected = list(dict.fromkeys(indices))
        self._validate_indices(session, [*selected, *request_edits.keys()])
        metrics.IMPORT_BATCH_SIZE.observe(len(selected))

        logger.info("importing %d exercises from session %s", len(selected), session.session_id)
        outcome = self._import_indices(session, selected, request_edits)
        self._apply_edits(session, request_edits)

        self._settle(session, mark_complete)
        session.updated_at = self._clock.now()
        outcome.session = self._sessions.save_session(session)
        logger.info(
            "imported %d new, updated %d existing (session %s %s)",
            outcome.inserted,
            outcome.updated,
            session.session_id,
            outcome.session.status.value,
        )
        return outcome

    def add_to_workout(
        self,
        session_id: str,
        indices: Iterable[int],
        workout_id: str,
        request_edits: Mapping[int, ExerciseEdit] | None = None,
    ) -> WorkoutOutcome:
        """Import the selected exercises and append each one to a workout.

        Exercises the workout already contains are imported but not appended
        again. A failed append is logged and skipped, like a failed library write.
        """
        session = self.get_session(session_id)
        self._ensure_accepts_imports(session)
        workout = self._workouts.get_workout(workout_id) if self._workouts is not None else None
        if workout is None:
            raise NotFoundError("Workout not found", {"workoutId": workout_id})
        request_edits = request_edits or {}
        selected = list(dict.fromkeys(indices))
        self._validate_indices(session, [*selected, *request_edits.keys()])
        metrics.IMPORT_BATCH_SIZE.observe(len(selected))

        imported = self._import_indices(session, selected, request_edits)
        result = WorkoutOutcome(workout=workout, imported=imported)
        notes = f"Imported from video: {session.video_title or 'Unknown'}"
        for exercise in imported.exercises:
            if self._workouts.find_exercise(workout.workout_id, exercise.exercise_id) is not None:
                result.already_present.append(exercise.exercise_id)
                continue
            try:
                row = self._workouts.append_exercise(workout.workout_id, exercise.exercise_id, notes=notes)
            except StoreWriteError as exc:
                logger.warning("failed to add %r to workout %s: %s", exercise.name, workout.workout_id, exc)
                continue
            result.added.append(row)
        metrics.WORKOUT_EXERCISES_ADDED.inc(len(result.added))

        self._apply_edits(session, request_edits)
        self._settle(session)
        session.updated_at = self._clock.now()
        imported.session = self._sessions.save_session(session)
        logger.info(
            "added %d exercises to workout %s from session %s",
            len(result.added),
            workout.workout_id,
            session.session_id,
        )
        return result

    def auto_import(self, session: StagingSession) -> ImportOutcome:
        """Force-import every exercise of a lapsed session using only its saved edits.

        The session is marked expired only when every exercise made it into the
        library; otherwise the progress is saved and the session stays open so
        the next sweep retries the remainder.
        """
        if not session.accepts_imports():
            raise SessionClosedError("Session expired and exercises were auto-imported")
        outcome = self._import_indices(session, range(session.total_exercises), {})
        if not outcome.failed_indices:
            self._advance(session, StagingStatus.expired)
            session.auto_imported = True
        session.updated_at = self._clock.now()
        outcome.session = self._sessions.save_session(session)
        return outcome

    def mark_error(self, session_id: str, message: str) -> StagingSession:
        """Move an open session into the terminal ``error`` state."""
        session = self.get_session(session_id)
        if not self._advance(session, StagingStatus.error):
            raise SessionClosedError(
                f"Session is {session.status.value} and cannot be marked as failed",
                {"status": session.status.value},
            )
        session.error_message = message
        session.updated_at = self._clock.now()
        return self._sessions.save_session(session)

    def clear_expired_new_flags(self) -> list[str]:
        """Drop the "newly added" marker from library rows whose marker lapsed."""
        names = self._library.clear_expired_new_flags(self._clock.now())
        if names:
            logger.info("cleared new flag from %d exercises", len(names))
        return names

    # -- internals -----------------------------------------------------------

    def _ensure_accepts_imports(self, session: StagingSession) -> None:
        if session.accepts_imports():
            return
        raise SessionClosedError(
            "Session expired and exercises were auto-imported",
            {"status": session.status.value},
        )

    def _validate_indices(self, session: StagingSession, indices: Iterable[int]) -> None:
        invalid = sorted({index for index in indices if not 0 <= index < session.total_exercises})
        if invalid:
            raise ValidationError(
                "Invalid exercise index",
                {"invalidIndices": invalid, "totalExercises": session.total_exercises},
            )

    def _import_indices(
        self,
        session: StagingSession,
        indices: Iterable[int],
        request_edits: Mapping[int, ExerciseEdit],
    ) -> ImportOutcome:
        outcome = ImportOutcome(session=session)
        now = self._clock.now()
        for index in indices:
            edits = overlay_edits(session.edited_exercises.get(index), request_edits.get(index))
            candidate = merge_exercise(session.exercises[index], edits)
            try:
                result = upsert_exercise(
                    self._library,
                    candidate,
                    video_url=session.video_url,
                    session_id=session.session_id,
                    owner_id=session.owner_id,
                    now=now,
                    new_flag_ttl=self._new_flag_ttl,
                )
            except StoreWriteError as exc:
                logger.warning(
                    "failed to import exercise %d (%r) from session %s: %s",
                    index,
                    candidate.name,
                    session.session_id,
                    exc,
                )
                metrics.LIBRARY_WRITES.labels(outcome="failed").inc()
                outcome.failed_indices.append(index)
                continue

            if result.was_inserted:
                outcome.inserted += 1
                metrics.LIBRARY_WRITES.labels(outcome="inserted").inc()
            else:
                outcome.updated += 1
                metrics.LIBRARY_WRITES.labels(outcome="updated").inc()
            outcome.exercises.append(result.exercise)
            session.imported_exercise_ids.add(index)
            session.library_exercise_ids[index] = result.exercise_id
        return outcome

    def _apply_edits(self, session: StagingSession, edits: Mapping[int, ExerciseEdit]) -> bool:
        changed = False
        for index, edit in edits.items():
            if edit.is_empty():
                continue
            session.edited_exercises[index] = overlay_edits(session.edited_exercises.get(index), edit)
            changed = True
        return changed

    def _settle(self, session: StagingSession, mark_complete: bool | None = None) -> None:
        if mark_complete is not None:
            should_complete = mark_complete
        else:
            should_complete = len(session.imported_exercise_ids) >= session.total_exercises
        target = StagingStatus.completed if should_complete else StagingStatus.in_progress
        if not self._advance(session, target):
            logger.debug("session %s stays %s", session.session_id, session.status.value)

    def _advance(self, session: StagingSession, target: StagingStatus) -> bool:
        if not can_transition(session.status, target):
            return False
        session.status = target
        if not session.is_open() and session.completed_at is None:
            session.completed_at = self._clock.now()
        return True
