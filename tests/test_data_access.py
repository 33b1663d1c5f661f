import asyncio
import datetime
import os
import sys

import pytest
import pytest_asyncio

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
import data_access
from errors import PartialWriteError, RemoteError
from models import Exercise, NewWorkout, SetEntry, WorkoutExerciseDraft
from store import RemoteStore


def bench_workout(user_id: str, exercise_id: int = 1, workout_date: str | None = None) -> NewWorkout:
    return NewWorkout(
        user_id=user_id,
        workout_date=workout_date,
        exercises=[
            WorkoutExerciseDraft(
                instance_id="local-1",
                exercise=Exercise(id=exercise_id, name="Bench Press"),
                sets=[
                    SetEntry(set_number=1, reps=10, weight_kg=50.0),
                    SetEntry(set_number=2, reps=5, weight_kg=60.0),
                ],
            )
        ],
    )


@pytest_asyncio.fixture
async def store(tmp_path):
    store = RemoteStore(str(tmp_path / "workout.db"))
    await store.create_profile("u1")
    return store


@pytest.mark.asyncio
async def test_save_and_fetch_normalised(store):
    wid = await data_access.save_workout(
        store, bench_workout("u1", workout_date="2024-01-02T01:30:00+00:00")
    )
    page = await data_access.fetch_workouts(store, "u1", 0, 10, tz="America/New_York")
    assert len(page) == 1
    workout = page[0]
    assert workout["id"] == wid
    assert workout["date"] == "2024-01-01"
    assert workout["time"] == "08:30 PM"
    assert workout["total_volume"] == 800.0
    exercise = workout["exercises"][0]
    assert exercise["instance_id"] == f"{exercise['workout_exercise_id']}-0"
    assert exercise["exercise"]["name"] == "Bench Press"
    assert exercise["exercise"]["source"] == "predefined"
    assert [s["set_number"] for s in exercise["sets"]] == [1, 2]
    profile = await data_access.fetch_profile(store, "u1")
    assert profile["total_volume"] == 800.0
    assert profile["total_workouts"] == 1


def test_normalise_fills_missing_exercise():
    row = {
        "id": 5,
        "user_id": "u1",
        "workout_date": None,
        "created_at": "2024-03-01T12:00:00+00:00",
        "workout_exercises": [
            {
                "id": 9,
                "order": 2,
                "exercise": None,
                "sets": [{"set_number": 1, "reps": 3, "weight_kg": None}],
            }
        ],
    }
    workout = data_access.normalize_workout(row)
    assert workout["date"] == "2024-03-01"
    assert workout["time"] == "12:00 PM"
    exercise = workout["exercises"][0]
    assert exercise["instance_id"] == "9-2"
    assert exercise["exercise"]["name"] == "Unknown"
    assert exercise["exercise"]["primary_muscle_group"] == "other"
    assert exercise["exercise"]["source"] == "predefined"
    assert exercise["exercise"]["uses_reps"] is True
    assert exercise["exercise"]["uses_weight"] is True
    assert workout["total_volume"] == 0.0


@pytest.mark.asyncio
async def test_failed_exercise_insert_deletes_partial_workout(store):
    with pytest.raises(PartialWriteError) as info:
        await data_access.save_workout(store, bench_workout("u1", exercise_id=999))
    assert info.value.workout_id is not None
    assert "FOREIGN KEY" in info.value.message
    assert await data_access.fetch_workouts(store, "u1", 0, 10) == []
    profile = await data_access.fetch_profile(store, "u1")
    assert profile["total_workouts"] == 0


@pytest.mark.asyncio
async def test_missing_profile_fails_aggregate_update(store):
    with pytest.raises(PartialWriteError) as info:
        await data_access.save_workout(store, bench_workout("nobody"))
    assert info.value.message == "profile not found"
    assert await data_access.fetch_workouts(store, "nobody", 0, 10) == []


@pytest.mark.asyncio
async def test_delete_workout(store):
    wid = await data_access.save_workout(store, bench_workout("u1"))
    await data_access.delete_workout(store, wid)
    profile = await data_access.fetch_profile(store, "u1")
    assert profile["total_volume"] == 0
    assert profile["total_workouts"] == 0
    with pytest.raises(RemoteError) as info:
        await data_access.delete_workout(store, wid)
    assert info.value.status == 404
    assert info.value.message == "workout not found"


@pytest.mark.asyncio
async def test_fetch_volume_data(store):
    await data_access.save_workout(
        store, bench_workout("u1", workout_date="2024-01-01T10:00:00+00:00")
    )
    await data_access.save_workout(
        store, bench_workout("u1", workout_date="2023-06-01T10:00:00+00:00")
    )
    rows = await data_access.fetch_volume_data(
        store, "u1", "7days", today=datetime.date(2024, 1, 3)
    )
    assert rows == [{"date": "2024-01-01", "volume": 800.0}]
    rows = await data_access.fetch_volume_data(
        store, "u1", "12months", today=datetime.date(2024, 1, 3)
    )
    assert [r["date"] for r in rows] == ["2023-06-01", "2024-01-01"]
    with pytest.raises(ValueError):
        await data_access.fetch_volume_data(store, "u1", "forever")


@pytest.mark.asyncio
async def test_profile_update_and_catalog(store):
    profile = await data_access.update_profile(
        store, "u1", {"name": "Ada", "unit_preference": "imperial"}
    )
    assert profile["name"] == "Ada"
    assert profile["unit_preference"] == "imperial"
    with pytest.raises(RemoteError) as info:
        await data_access.update_profile(store, "u1", {"total_volume": 1})
    assert info.value.status == 400

    await store.create_user_exercise("u1", "Sled Push", primary_muscle_group="legs")
    names = [e["name"] for e in await data_access.fetch_available_exercises(store)]
    assert "Bench Press" in names
    assert "Sled Push" not in names
    mine = await data_access.fetch_available_exercises(store, "u1")
    assert any(e["name"] == "Sled Push" and e["source"] == "user" for e in mine)

    equipment = await data_access.fetch_equipment(store)
    barbell = next(e for e in equipment if e["name"] == "Olympic Barbell")
    assert "Chest" in barbell["muscles"]


@pytest.mark.asyncio
async def test_cancelled_save_deletes_partial_workout(store):
    gate = asyncio.Event()
    original = store.insert_sets

    async def stalled(workout_exercise_id, sets):
        await gate.wait()
        await original(workout_exercise_id, sets)

    store.insert_sets = stalled
    task = asyncio.ensure_future(data_access.save_workout(store, bench_workout("u1")))
    for _ in range(50):
        await asyncio.sleep(0.01)
        if await store.fetch_workouts_page("u1", 0, 10):
            break
    assert len(await store.fetch_workouts_page("u1", 0, 10)) == 1
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert await store.fetch_workouts_page("u1", 0, 10) == []


@pytest.mark.asyncio
async def test_user_exercise_source_survives_normalisation(store):
    custom = await store.create_user_exercise("u1", "Sled Push", primary_muscle_group="legs")
    await data_access.save_workout(
        store,
        NewWorkout(
            user_id="u1",
            exercises=[
                WorkoutExerciseDraft(
                    instance_id="local-1",
                    exercise=Exercise(id=custom, name="Sled Push", source="user"),
                    sets=[SetEntry(set_number=1, reps=5, weight_kg=40.0)],
                )
            ],
        ),
    )
    exercise = (await data_access.fetch_workouts(store, "u1", 0, 10))[0]["exercises"][0]
    assert exercise["exercise"]["name"] == "Sled Push"
    assert exercise["exercise"]["source"] == "user"
