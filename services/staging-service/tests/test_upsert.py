from __future__ import annotations

from datetime import timedelta

import pytest

from app.domain.errors import StoreWriteError
from app.domain.upsert import build_library_write, upsert_exercise

from conftest import FakeLibraryRepository, make_exercise

NEW_FLAG_TTL = timedelta(days=7)


def _upsert(library, candidate, clock, *, owner_id="owner-1", session_id="session-1"):
    return upsert_exercise(
        library,
        candidate,
        video_url="https://youtube.com/watch?v=abc123",
        session_id=session_id,
        owner_id=owner_id,
        now=clock.now(),
        new_flag_ttl=NEW_FLAG_TTL,
    )


def test_first_write_inserts_and_second_updates(library, clock):
    first = _upsert(library, make_exercise("Barbell Squat"), clock)
    second = _upsert(library, make_exercise("Barbell Squat"), clock)

    assert first.was_inserted is True
    assert second.was_inserted is False
    assert first.exercise_id == second.exercise_id
    assert len(library.rows) == 1
    assert second.exercise == first.exercise
    assert library.rows[first.exercise_id] == first.exercise


def test_names_match_case_insensitively(library, clock):
    first = _upsert(library, make_exercise("Barbell Squat"), clock)
    second = _upsert(library, make_exercise("barbell squat", equipment=["smith machine"]), clock)

    assert second.exercise_id == first.exercise_id
    row = library.rows[first.exercise_id]
    assert row.name == "barbell squat"
    assert row.equipment == ["smith machine"]


def test_update_keeps_original_owner_and_refreshes_new_flag(library, clock):
    first = _upsert(library, make_exercise("Barbell Squat"), clock, owner_id="owner-1")
    clock.advance(days=3)
    second = _upsert(library, make_exercise("Barbell Squat"), clock, owner_id="owner-2", session_id="session-2")

    assert second.exercise.owner_id == "owner-1"
    assert second.exercise.source_session_id == "session-2"
    assert second.exercise.is_new is True
    assert second.exercise.new_expires_at == clock.now() + NEW_FLAG_TTL
    assert second.exercise.created_at == first.exercise.created_at


def test_write_carries_derived_classification(library, clock):
    result = _upsert(library, make_exercise("Plank Hold"), clock)

    assert result.exercise.exercise_type == "strength"
    assert result.exercise.tracks_weight is False
    assert result.exercise.tracks_duration is True


def test_build_library_write_maps_analyzer_fields(clock):
    candidate = make_exercise("Hill Sprint", start_time="02:00", end_time="02:40")
    payload = build_library_write(
        candidate,
        video_url="https://youtube.com/watch?v=xyz",
        session_id="session-9",
        owner_id="owner-9",
        now=clock.now(),
        new_flag_ttl=NEW_FLAG_TTL,
    )

    assert payload.video_start_time == "02:00"
    assert payload.video_end_time == "02:40"
    assert payload.exercise_type == "cardio"
    assert payload.tracks_distance is True
    assert payload.new_expires_at == clock.now() + NEW_FLAG_TTL


class _RacingLibrary(FakeLibraryRepository):
    """Lookup misses even though another writer already holds the name."""

    def find_by_name(self, name):
        return None


def test_insert_race_converges_on_existing_row(clock):
    library = _RacingLibrary()
    first = _upsert(library, make_exercise("Box Jump"), clock)
    second = _upsert(library, make_exercise("BOX JUMP"), clock)

    assert first.was_inserted is True
    assert second.was_inserted is False
    assert second.exercise_id == first.exercise_id
    assert len(library.rows) == 1


def test_write_failure_propagates(library, clock):
    library.fail_names.add("box jump")

    with pytest.raises(StoreWriteError):
        _upsert(library, make_exercise("Box Jump"), clock)
    assert library.rows == {}
