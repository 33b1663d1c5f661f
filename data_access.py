"""Fail-fast wrappers over :class:`store.RemoteStore`.

Store errors propagate unchanged; nothing here retries.
"""
from __future__ import annotations

import asyncio
import datetime
import logging
from zoneinfo import ZoneInfo

from errors import PartialWriteError, RemoteError
from models import NewWorkout
from store import RemoteStore

logger = logging.getLogger(__name__)

RANGE_DAYS = {"7days": 7, "8weeks": 56, "12months": 365}

_EXERCISE_FALLBACK = {
    "id": None,
    "name": "Unknown",
    "primary_muscle_group": "other",
    "secondary_muscle_group": None,
    "category": "other",
    "uses_reps": True,
    "uses_weight": True,
    "uses_duration": False,
    "uses_distance": False,
    "is_deleted": False,
}


def _local_datetime(value: str, tz: str) -> datetime.datetime:
    moment = datetime.datetime.fromisoformat(value)
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(tz))


def workout_volume(workout: dict) -> float:
    total = 0.0
    for ex in workout.get("exercises", []):
        for s in ex.get("sets", []):
            total += (s.get("reps") or 0) * (s.get("weight_kg") or 0.0)
    return round(total, 2)


def normalize_workout(row: dict, tz: str = "UTC") -> dict:
    """Convert a stored workout row into the shape the history list renders."""
    stamp = row.get("workout_date") or row.get("created_at")
    local = _local_datetime(stamp, tz) if stamp else None
    exercises = []
    for we in sorted(row.get("workout_exercises", []), key=lambda e: e.get("order") or 0):
        exercise = dict(_EXERCISE_FALLBACK)
        exercise.update({k: v for k, v in (we.get("exercise") or {}).items() if v is not None})
        exercise["source"] = we.get("exercise_type") or "predefined"
        exercises.append(
            {
                "instance_id": f"{we['id']}-{we.get('order') or 0}",
                "workout_exercise_id": we["id"],
                "order": we.get("order") or 0,
                "effort_level": we.get("effort_level"),
                "exercise": exercise,
                "sets": [
                    {
                        "set_number": s["set_number"],
                        "reps": s.get("reps"),
                        "weight_kg": s.get("weight_kg"),
                        "duration_seconds": s.get("duration_seconds"),
                        "distance_meters": s.get("distance_meters"),
                    }
                    for s in sorted(we.get("sets", []), key=lambda s: s["set_number"])
                ],
            }
        )
    workout = {
        "id": row["id"],
        "user_id": row.get("user_id"),
        "workout_date": row.get("workout_date"),
        "created_at": row.get("created_at"),
        "date": local.strftime("%Y-%m-%d") if local else None,
        "time": local.strftime("%I:%M %p") if local else None,
        "exercises": exercises,
    }
    workout["total_volume"] = workout_volume(workout)
    return workout


async def fetch_workouts(
    store: RemoteStore, user_id: str, page_index: int, page_size: int, tz: str = "UTC"
) -> list[dict]:
    rows = await store.fetch_workouts_page(user_id, page_index, page_size)
    return [normalize_workout(r, tz) for r in rows]


async def save_workout(store: RemoteStore, workout: NewWorkout) -> int:
    """Persist ``workout`` and add its volume to the owner's aggregates.

    The writes are sequential. When any write after the workout row fails, the
    partial workout is deleted again and :class:`PartialWriteError` is raised
    with the store's message.
    """
    workout_id = await store.insert_workout(workout.user_id, workout.workout_date)
    try:
        for position, ex in enumerate(workout.exercises):
            we_id = await store.insert_workout_exercise(
                workout_id, ex.ref, position, ex.effort_level
            )
            await store.insert_sets(we_id, ex.sets)
        await store.update_user_aggregates(workout.user_id, workout.total_volume(), 1)
    except RemoteError as e:
        logger.warning("save of workout %s failed, deleting it: %s", workout_id, e.message)
        await asyncio.shield(_discard_partial(store, workout_id))
        raise PartialWriteError(e.message, workout_id=workout_id) from e
    except asyncio.CancelledError:
        logger.warning("save of workout %s was cancelled, deleting it", workout_id)
        await asyncio.shield(_discard_partial(store, workout_id))
        raise
    return workout_id


async def _discard_partial(store: RemoteStore, workout_id: int) -> None:
    try:
        await store.delete_workout(workout_id, adjust_aggregates=False)
    except RemoteError as e:
        logger.error("could not delete partial workout %s: %s", workout_id, e.message)


async def delete_workout(store: RemoteStore, workout_id: int) -> None:
    await store.delete_workout(workout_id)


async def fetch_volume_data(
    store: RemoteStore, user_id: str, time_range: str, today: datetime.date | None = None
) -> list[dict]:
    if time_range not in RANGE_DAYS:
        raise ValueError(f"unknown time range: {time_range}")
    return await store.fetch_volume_by_day(user_id, RANGE_DAYS[time_range], today)


async def fetch_profile(store: RemoteStore, user_id: str) -> dict:
    return await store.get_profile(user_id)


async def update_profile(store: RemoteStore, user_id: str, updates: dict) -> dict:
    return await store.update_profile(user_id, updates)


async def fetch_available_exercises(store: RemoteStore, user_id: str | None = None) -> list[dict]:
    rows = await store.list_exercises(user_id)
    return [r for r in rows if not r.get("is_deleted")]


async def fetch_equipment(store: RemoteStore) -> list[dict]:
    return await store.list_equipment()
