import asyncio
import datetime
import os
import sys

import pytest
import pytest_asyncio

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from cache import ClientCache
from errors import PartialWriteError, RemoteError, TimedOut, ValidationError
from models import Exercise, SetEntry, WorkoutExerciseDraft
from store import RemoteStore
from workout_service import WorkoutService
from workout_state import DraftStore, WorkoutState, set_exercises


class GatedStore(RemoteStore):
    """Store whose workout insert waits until the test opens the gate."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.gate = asyncio.Event()
        self.page_fetches = 0

    async def insert_workout(self, user_id, workout_date=None):
        await self.gate.wait()
        return await super().insert_workout(user_id, workout_date)

    async def fetch_workouts_page(self, user_id, page_index, page_size):
        self.page_fetches += 1
        return await super().fetch_workouts_page(user_id, page_index, page_size)


def bench_state(exercise_id: int = 1, reps: int = 10, weight: float = 50.0) -> WorkoutState:
    return set_exercises(
        WorkoutState(),
        [
            WorkoutExerciseDraft(
                instance_id="draft-1",
                exercise=Exercise(id=exercise_id, name="Bench Press"),
                sets=[SetEntry(set_number=1, reps=reps, weight_kg=weight)],
            )
        ],
    )


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest_asyncio.fixture
async def store(tmp_path):
    store = GatedStore(str(tmp_path / "workout.db"))
    await store.create_profile("u1")
    return store


@pytest.mark.asyncio
async def test_save_shows_optimistic_workout_first(store, tmp_path):
    drafts = DraftStore(str(tmp_path / "draft.json"))
    state = bench_state()
    drafts.save(state)
    service = WorkoutService(store, ClientCache(), drafts=drafts)
    history = service.history("u1")
    assert await history.load_more() == []
    assert history.is_reaching_end

    task = asyncio.ensure_future(service.save_workout("u1", state))
    await settle()
    assert not task.done()
    pending = history.workouts[0]
    assert str(pending["id"]).startswith("temp-")
    assert pending["total_volume"] == 500

    store.gate.set()
    workout_id = await task
    saved = history.workouts
    assert len(saved) == 1
    assert saved[0]["id"] == workout_id
    assert saved[0]["total_volume"] == 500
    assert drafts.load() is None

    profile = await service.profile("u1")
    assert profile["total_volume"] == 500
    assert profile["total_workouts"] == 1


@pytest.mark.asyncio
async def test_failed_save_rolls_back(store, tmp_path):
    store.gate.set()
    drafts = DraftStore(str(tmp_path / "draft.json"))
    drafts.save(bench_state(exercise_id=999))
    service = WorkoutService(store, ClientCache(), drafts=drafts)
    history = service.history("u1")
    await history.load_more()
    with pytest.raises(PartialWriteError):
        await service.save_workout("u1", bench_state(exercise_id=999))
    assert history.workouts == []
    assert drafts.load() is not None


@pytest.mark.asyncio
async def test_invalid_draft_never_reaches_store(store):
    store.gate.set()
    service = WorkoutService(store, ClientCache())
    with pytest.raises(ValidationError):
        await service.save_workout("u1", bench_state(reps=0))
    assert store.page_fetches == 0


@pytest.mark.asyncio
async def test_delete_missing_workout_restores_position(store):
    store.gate.set()
    service = WorkoutService(store, ClientCache())
    for reps in (1, 2, 3):
        await service.save_workout("u1", bench_state(reps=reps))
    history = service.history("u1")
    await history.load_more()
    before = history.workouts
    target = before[1]["id"]
    await store.delete_workout(target)

    seen = []
    service.cache.subscribe(history.key(0), lambda key, page: seen.append([w["id"] for w in page]))
    with pytest.raises(RemoteError) as info:
        await service.delete_workout("u1", target)
    assert info.value.status == 404
    assert seen[0] == [before[0]["id"], before[2]["id"]]
    assert history.workouts == before
    assert history.workouts[1]["id"] == target


@pytest.mark.asyncio
async def test_delete_existing_workout(store):
    store.gate.set()
    service = WorkoutService(store, ClientCache())
    first = await service.save_workout("u1", bench_state())
    second = await service.save_workout("u1", bench_state(reps=2))
    history = service.history("u1")
    await history.load_more()
    await service.delete_workout("u1", first)
    assert [w["id"] for w in history.workouts] == [second]
    with pytest.raises(ValidationError):
        await service.delete_workout("u1", "temp-123")


# the end is only known once a short page arrives, so an exact multiple of
# page_size costs one extra empty fetch
@pytest.mark.asyncio
@pytest.mark.parametrize("total,expected_fetches,last_page", [(23, 3, 3), (20, 3, 0), (0, 1, 0)])
async def test_pagination_stops_at_short_page(store, total, expected_fetches, last_page):
    store.gate.set()
    for _ in range(total):
        await store.insert_workout("u1")
    service = WorkoutService(store, ClientCache(), page_size=10)
    history = service.history("u1")
    pages = []
    while not history.is_reaching_end:
        pages.append(await history.load_more())
    assert store.page_fetches == expected_fetches
    assert len(pages[-1]) == last_page
    assert len(history.workouts) == total
    assert await history.load_more() == []
    assert store.page_fetches == expected_fetches


@pytest.mark.asyncio
async def test_update_profile_is_optimistic_and_rolls_back(store):
    store.gate.set()
    service = WorkoutService(store, ClientCache())
    await service.profile("u1")
    profile = await service.update_profile("u1", {"name": "Ada", "weight_kg": 70})
    assert profile["name"] == "Ada"
    assert (await store.get_profile("u1"))["weight_kg"] == 70

    async def broken(user_id, partial):
        raise RemoteError("database is locked", status=500)

    store.update_profile = broken
    with pytest.raises(RemoteError):
        await service.update_profile("u1", {"name": "Grace"})
    assert (await service.profile("u1"))["name"] == "Ada"
    with pytest.raises(ValidationError):
        await service.update_profile("u1", {"total_volume": 1})


@pytest.mark.asyncio
async def test_catalog_reads(store):
    service = WorkoutService(store, ClientCache())
    exercises = await service.available_exercises()
    assert any(e["name"] == "Plank" and e["uses_duration"] for e in exercises)
    equipment = await service.equipment()
    assert len(equipment) == 6


class SlowSetStore(RemoteStore):
    async def insert_sets(self, workout_exercise_id, sets):
        await asyncio.sleep(1)
        return await super().insert_sets(workout_exercise_id, sets)


@pytest.mark.asyncio
async def test_timed_out_save_leaves_no_partial_workout(tmp_path):
    store = SlowSetStore(str(tmp_path / "workout.db"))
    await store.create_profile("u1")
    service = WorkoutService(store, ClientCache(timeout=0.2))
    history = service.history("u1")
    await history.load_more()
    with pytest.raises(TimedOut):
        await service.save_workout("u1", bench_state())
    assert history.workouts == []
    assert await store.fetch_workouts_page("u1", 0, 10) == []
    profile = await store.get_profile("u1")
    assert profile["total_workouts"] == 0


@pytest.mark.asyncio
async def test_calendar_dates_and_day_filter(store):
    store.gate.set()
    service = WorkoutService(store, ClientCache(), tz="America/New_York")
    late = await service.save_workout("u1", bench_state(), "2024-01-02T01:30:00+00:00")
    noon = await service.save_workout("u1", bench_state(reps=2), "2024-01-01T17:00:00+00:00")
    other = await service.save_workout("u1", bench_state(reps=3), "2024-01-05T17:00:00+00:00")
    history = service.history("u1")
    await history.load_all()
    assert history.workout_dates() == {"2024-01-01", "2024-01-05"}
    assert sorted(w["id"] for w in history.workouts_on("2024-01-01")) == sorted([late, noon])
    assert [w["id"] for w in history.workouts_on(datetime.date(2024, 1, 5))] == [other]
    assert history.workouts_on("2024-01-02") == []
    assert len(history.workouts_on(None)) == 3
