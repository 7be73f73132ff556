"""HTTP route definitions for the staging service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from schemas import AnalyzedExercise, Difficulty, ExerciseEdit, StagingStatus, VideoAnalysis

from ..domain.contracts import CreateSessionInput
from ..domain.errors import NotFoundError
from ..domain.library import LibraryExercise
from ..domain.service import StagingService
from ..domain.session import StagingSession
from ..domain.sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateSessionRequest(CamelModel):
    """Analyzer output staged on behalf of the requesting owner."""

    video_url: str = Field(..., alias="videoUrl", min_length=1)
    analysis: VideoAnalysis


class AnalyzeVideoRequest(CamelModel):
    """Video to analyze before staging its exercises."""

    video_url: str = Field(..., alias="videoUrl", min_length=1)
    sport: str | None = None


class SessionSummary(CamelModel):
    session_id: str = Field(..., alias="sessionId")
    video_url: str = Field(..., alias="videoUrl")
    video_title: str | None = Field(default=None, alias="videoTitle")
    sport: str | None = None
    status: StagingStatus
    total_exercises: int = Field(..., alias="totalExercises")
    total_imported: int = Field(..., alias="totalImported")
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")

    @classmethod
    def from_domain(cls, session: StagingSession) -> "SessionSummary":
        return cls(
            session_id=session.session_id,
            video_url=session.video_url,
            video_title=session.video_title,
            sport=session.sport,
            status=session.status,
            total_exercises=session.total_exercises,
            total_imported=len(session.imported_exercise_ids),
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


class SessionDetail(SessionSummary):
    """Full view of a staging session including edits and import progress."""

    total_duration: str | None = Field(default=None, alias="totalDuration")
    exercises: list[AnalyzedExercise]
    edited_exercises: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="editedExercises")
    imported_indices: list[int] = Field(default_factory=list, alias="importedIndices")
    library_exercise_ids: dict[str, str] = Field(default_factory=dict, alias="libraryExerciseIds")
    auto_imported: bool = Field(default=False, alias="autoImported")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    error_message: str | None = Field(default=None, alias="errorMessage")

    @classmethod
    def from_domain(cls, session: StagingSession) -> "SessionDetail":
        summary = SessionSummary.from_domain(session)
        return cls(
            **summary.model_dump(),
            total_duration=session.total_duration,
            exercises=list(session.exercises),
            edited_exercises={
                str(index): edit.model_dump(mode="json", exclude_unset=True)
                for index, edit in sorted(session.edited_exercises.items())
            },
            imported_indices=sorted(session.imported_exercise_ids),
            library_exercise_ids={str(index): value for index, value in sorted(session.library_exercise_ids.items())},
            auto_imported=session.auto_imported,
            completed_at=session.completed_at,
            error_message=session.error_message,
        )


class OpenSessionsResponse(CamelModel):
    sessions: list[SessionSummary]
    open_session_count: int = Field(..., alias="openSessionCount")
    max_allowed: int = Field(..., alias="maxAllowed")
    can_create_new_session: bool = Field(..., alias="canCreateNewSession")


class QuotaResponse(CamelModel):
    open_session_count: int = Field(..., alias="openSessionCount")
    max_allowed: int = Field(..., alias="maxAllowed")
    can_create_new_session: bool = Field(..., alias="canCreateNewSession")


class SaveEditsRequest(CamelModel):
    edited_exercises: dict[int, ExerciseEdit] = Field(..., alias="editedExercises")


class MarkErrorRequest(BaseModel):
    message: str = Field(..., min_length=1)


class ImportRequest(CamelModel):
    """Payload accepted when importing staged exercises into the library."""

    session_id: str = Field(..., alias="sessionId", min_length=1)
    exercise_indices: list[int] = Field(..., alias="exerciseIndices")
    edited_exercises: dict[int, ExerciseEdit] | None = Field(default=None, alias="editedExercises")
    mark_complete: bool | None = Field(default=None, alias="markComplete")


class AddToWorkoutRequest(CamelModel):
    """Exercises to import from a session and append to the workout in the path."""

    session_id: str = Field(..., alias="sessionId", min_length=1)
    exercise_indices: list[int] = Field(..., alias="exerciseIndices", min_length=1)
    edited_exercises: dict[int, ExerciseEdit] | None = Field(default=None, alias="editedExercises")


class ImportedExercise(BaseModel):
    id: str
    name: str
    difficulty: Difficulty | None
    equipment: list[str]
    is_new: bool

    @classmethod
    def from_domain(cls, exercise: LibraryExercise) -> "ImportedExercise":
        return cls(
            id=exercise.exercise_id,
            name=exercise.name,
            difficulty=exercise.difficulty,
            equipment=exercise.equipment,
            is_new=exercise.is_new,
        )


class ImportResponse(CamelModel):
    success: bool = True
    inserted: int
    updated: int
    session_status: StagingStatus = Field(..., alias="sessionStatus")
    total_imported: int = Field(..., alias="totalImported")
    total_exercises: int = Field(..., alias="totalExercises")
    exercises: list[ImportedExercise]


class AddToWorkoutResponse(CamelModel):
    success: bool = True
    added: int
    exercise_ids: list[str] = Field(..., alias="exerciseIds")
    workout_exercise_ids: list[str] = Field(..., alias="workoutExerciseIds")
    workout_id: str = Field(..., alias="workoutId")
    workout_name: str = Field(..., alias="workoutName")
    program_id: str | None = Field(default=None, alias="programId")
    session_status: StagingStatus = Field(..., alias="sessionStatus")


class SweepResponse(CamelModel):
    success: bool = True
    message: str
    processed: int
    exercises_imported: int = Field(..., alias="exercisesImported")
    failed: int = 0


class ClearNewFlagsResponse(BaseModel):
    success: bool = True
    message: str
    cleared: int
    exercises: list[str]


class LibraryExerciseResponse(CamelModel):
    id: str
    name: str
    video_url: str | None = Field(default=None, alias="videoUrl")
    video_start_time: str | None = Field(default=None, alias="videoStartTime")
    video_end_time: str | None = Field(default=None, alias="videoEndTime")
    instructions: list[str]
    coaching_cues: list[str] = Field(..., alias="coachingCues")
    screenshot_timestamps: list[str] = Field(..., alias="screenshotTimestamps")
    difficulty: Difficulty | None
    equipment: list[str]
    exercise_type: str = Field(..., alias="exerciseType")
    tracks_weight: bool = Field(..., alias="tracksWeight")
    tracks_reps: bool = Field(..., alias="tracksReps")
    tracks_duration: bool = Field(..., alias="tracksDuration")
    tracks_distance: bool = Field(..., alias="tracksDistance")
    is_new: bool
    new_expires_at: datetime | None = Field(default=None, alias="newExpiresAt")
    source_session_id: str | None = Field(default=None, alias="sourceSessionId")

    @classmethod
    def from_domain(cls, exercise: LibraryExercise) -> "LibraryExerciseResponse":
        return cls(
            id=exercise.exercise_id,
            name=exercise.name,
            video_url=exercise.video_url,
            video_start_time=exercise.video_start_time,
            video_end_time=exercise.video_end_time,
            instructions=exercise.instructions,
            coaching_cues=exercise.coaching_cues,
            screenshot_timestamps=exercise.screenshot_timestamps,
            difficulty=exercise.difficulty,
            equipment=exercise.equipment,
            exercise_type=exercise.exercise_type,
            tracks_weight=exercise.tracks_weight,
            tracks_reps=exercise.tracks_reps,
            tracks_duration=exercise.tracks_duration,
            tracks_distance=exercise.tracks_distance,
            is_new=exercise.is_new,
            new_expires_at=exercise.new_expires_at,
            source_session_id=exercise.source_session_id,
        )


def get_service(request: Request) -> StagingService:
    """Resolve the `StagingService` stored on the FastAPI application state."""
    service: StagingService = request.app.state.staging_service
    return service


def get_sweeper(request: Request) -> ExpirationSweeper:
    """Resolve the `ExpirationSweeper` stored on the FastAPI application state."""
    sweeper: ExpirationSweeper = request.app.state.sweeper
    return sweeper


def _owned_session(service: StagingService, session_id: str, owner_id: str | None) -> StagingSession:
    session = service.get_session(session_id)
    if owner_id is not None and session.owner_id != owner_id:
        raise NotFoundError("Session not found", {"sessionId": session_id})
    return session


@router.post("/sessions", response_model=SessionDetail, status_code=status.HTTP_201_CREATED)
def create_session(
    payload: CreateSessionRequest,
    owner_id: str = Header(..., alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> SessionDetail:
    """Stage an analysis result produced by the external analyzer."""
    session = service.create_session(
        CreateSessionInput(owner_id=owner_id, video_url=payload.video_url, analysis=payload.analysis)
    )
    return SessionDetail.from_domain(session)


@router.post("/sessions/analyze", response_model=SessionDetail, status_code=status.HTTP_201_CREATED)
def analyze_video(
    payload: AnalyzeVideoRequest,
    owner_id: str = Header(..., alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> SessionDetail:
    """Run the analyzer on a video and stage the extracted exercises."""
    session = service.analyze_and_stage(owner_id, payload.video_url, payload.sport)
    return SessionDetail.from_domain(session)


@router.get("/sessions", response_model=OpenSessionsResponse)
def list_open_sessions(
    owner_id: str = Header(..., alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> OpenSessionsResponse:
    """List the owner's open sessions along with the quota state."""
    sessions = service.list_open_sessions(owner_id)
    return OpenSessionsResponse(
        sessions=[SessionSummary.from_domain(session) for session in sessions],
        open_session_count=len(sessions),
        max_allowed=service.max_open_sessions,
        can_create_new_session=len(sessions) < service.max_open_sessions,
    )


@router.get("/sessions/quota", response_model=QuotaResponse)
def session_quota(
    owner_id: str = Header(..., alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> QuotaResponse:
    """Report whether the owner may open another session."""
    count = service.open_session_count(owner_id)
    return QuotaResponse(
        open_session_count=count,
        max_allowed=service.max_open_sessions,
        can_create_new_session=count < service.max_open_sessions,
    )


@router.post("/sessions/expire", response_model=SweepResponse)
def expire_sessions(sweeper: ExpirationSweeper = Depends(get_sweeper)) -> SweepResponse:
    """Force-import every session whose review window lapsed."""
    result = sweeper.run()
    return SweepResponse(
        message=result.message,
        processed=result.processed,
        exercises_imported=result.exercises_imported,
        failed=result.failed,
    )


@router.get("/sessions/{session_id}", response_model=SessionDetail)
def get_session(
    session_id: str,
    owner_id: str | None = Header(default=None, alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> SessionDetail:
    """Return a staging session with its edits and import progress."""
    return SessionDetail.from_domain(_owned_session(service, session_id, owner_id))


@router.put("/sessions/{session_id}/edits", response_model=SessionDetail)
def save_edits(
    session_id: str,
    payload: SaveEditsRequest,
    owner_id: str | None = Header(default=None, alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> SessionDetail:
    """Store edits on the session without importing anything."""
    _owned_session(service, session_id, owner_id)
    session = service.save_edits(session_id, payload.edited_exercises)
    return SessionDetail.from_domain(session)


@router.post("/sessions/{session_id}/error", response_model=SessionDetail)
def mark_session_failed(
    session_id: str,
    payload: MarkErrorRequest,
    owner_id: str | None = Header(default=None, alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> SessionDetail:
    """Record that analysis for an open session failed."""
    _owned_session(service, session_id, owner_id)
    return SessionDetail.from_domain(service.mark_error(session_id, payload.message))


@router.post("/library/import", response_model=ImportResponse)
def import_to_library(
    payload: ImportRequest,
    owner_id: str | None = Header(default=None, alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> ImportResponse:
    """Import selected exercises from a session, applying any supplied edits."""
    _owned_session(service, payload.session_id, owner_id)
    outcome = service.import_selected(
        payload.session_id,
        payload.exercise_indices,
        payload.edited_exercises,
        payload.mark_complete,
    )
    return ImportResponse(
        inserted=outcome.inserted,
        updated=outcome.updated,
        session_status=outcome.status,
        total_imported=outcome.total_imported,
        total_exercises=outcome.total_exercises,
        exercises=[ImportedExercise.from_domain(exercise) for exercise in outcome.exercises],
    )


@router.post("/workouts/{workout_id}/exercises", response_model=AddToWorkoutResponse)
def add_exercises_to_workout(
    workout_id: str,
    payload: AddToWorkoutRequest,
    owner_id: str | None = Header(default=None, alias="X-Owner-ID"),
    service: StagingService = Depends(get_service),
) -> AddToWorkoutResponse:
    """Import selected exercises from a session and append them to a workout."""
    _owned_session(service, payload.session_id, owner_id)
    outcome = service.add_to_workout(
        payload.session_id,
        payload.exercise_indices,
        workout_id,
        payload.edited_exercises,
    )
    return AddToWorkoutResponse(
        added=len(outcome.added),
        exercise_ids=outcome.exercise_ids,
        workout_exercise_ids=[row.workout_exercise_id for row in outcome.added],
        workout_id=outcome.workout.workout_id,
        workout_name=outcome.workout.name,
        program_id=outcome.workout.program_id,
        session_status=outcome.imported.status,
    )


@router.get("/library/exercises", response_model=list[LibraryExerciseResponse])
def list_library_exercises(
    new_only: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    service: StagingService = Depends(get_service),
) -> list[LibraryExerciseResponse]:
    """List library rows, optionally only those still flagged as newly added."""
    return [
        LibraryExerciseResponse.from_domain(exercise)
        for exercise in service.list_library(new_only=new_only, limit=limit)
    ]


@router.post("/library/new-flags/clear", response_model=ClearNewFlagsResponse)
def clear_new_flags(service: StagingService = Depends(get_service)) -> ClearNewFlagsResponse:
    """Drop the "newly added" marker from rows whose marker lapsed."""
    names = service.clear_expired_new_flags()
    if not names:
        message = "No exercises with expired New flags to clear"
    else:
        message = f"Cleared New flag from {len(names)} exercises"
    return ClearNewFlagsResponse(message=message, cleared=len(names), exercises=names)
