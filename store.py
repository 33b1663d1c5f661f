"""Backend store consumed by the client layers.

Every operation is async and fails with :class:`errors.RemoteError`, carrying the
underlying message unchanged.
"""
from __future__ import annotations

import datetime
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Iterable

from db import (
    AsyncEquipmentRepository,
    AsyncExerciseCatalogRepository,
    AsyncProfileRepository,
    AsyncSetRepository,
    AsyncWorkoutExerciseRepository,
    AsyncWorkoutRepository,
)
from errors import RemoteError
from models import PredefinedRef, SetEntry, UserDefinedRef

logger = logging.getLogger(__name__)


class RemoteStore:
    """Provides the remote operations the application depends on."""

    def __init__(self, db_path: str = "workout.db") -> None:
        self.db_path = db_path
        self.workouts = AsyncWorkoutRepository(db_path)
        self.workout_exercises = AsyncWorkoutExerciseRepository(db_path)
        self.sets = AsyncSetRepository(db_path)
        self.profiles = AsyncProfileRepository(db_path)
        self.exercises = AsyncExerciseCatalogRepository(db_path)
        self.equipment = AsyncEquipmentRepository(db_path)

    @asynccontextmanager
    async def _remote(self, operation: str):
        try:
            yield
        except RemoteError:
            raise
        except ValueError as e:
            status = 404 if "not found" in str(e) else 400
            logger.warning("%s rejected: %s", operation, e)
            raise RemoteError(str(e), status=status) from e
        except sqlite3.IntegrityError as e:
            logger.warning("%s violated a constraint: %s", operation, e)
            raise RemoteError(str(e), status=400) from e
        except sqlite3.Error as e:
            logger.error("%s failed: %s", operation, e)
            raise RemoteError(str(e), status=500) from e

    async def fetch_workouts_page(
        self, user_id: str, page_index: int, page_size: int
    ) -> list[dict]:
        """Return one page of workouts, newest first, with exercises and sets nested."""
        async with self._remote("fetch_workouts_page"):
            if page_index < 0 or page_size <= 0:
                raise ValueError("page_index must be >= 0 and page_size > 0")
            workouts = await self.workouts.fetch_page(
                user_id, page_size, page_index * page_size
            )
            exercises = await self.workout_exercises.fetch_for_workouts(
                [w["id"] for w in workouts]
            )
            sets = await self.sets.fetch_for_workout_exercises(
                [we["id"] for we in exercises]
            )
        sets_by_we: dict[int, list[dict]] = {}
        for s in sets:
            sets_by_we.setdefault(s["workout_exercise_id"], []).append(s)
        ex_by_workout: dict[int, list[dict]] = {}
        for we in exercises:
            exercise = None
            if we["exercise_id"] is not None:
                exercise = {
                    "id": we["exercise_id"],
                    "name": we["name"],
                    "primary_muscle_group": we["primary_muscle_group"],
                    "secondary_muscle_group": we["secondary_muscle_group"],
                    "category": we["category"],
                    "uses_reps": bool(we["uses_reps"]),
                    "uses_weight": bool(we["uses_weight"]),
                    "uses_duration": bool(we["uses_duration"]),
                    "uses_distance": bool(we["uses_distance"]),
                    "is_deleted": bool(we["is_deleted"]),
                }
            ex_by_workout.setdefault(we["workout_id"], []).append(
                {
                    "id": we["id"],
                    "workout_id": we["workout_id"],
                    "exercise_type": we["exercise_type"],
                    "predefined_exercise_id": we["predefined_exercise_id"],
                    "user_exercise_id": we["user_exercise_id"],
                    "order": we["position"],
                    "effort_level": we["effort_level"],
                    "created_at": we["created_at"],
                    "exercise": exercise,
                    "sets": sets_by_we.get(we["id"], []),
                }
            )
        for w in workouts:
            w["workout_exercises"] = ex_by_workout.get(w["id"], [])
        return workouts

    async def insert_workout(self, user_id: str, workout_date: str | None = None) -> int:
        async with self._remote("insert_workout"):
            return await self.workouts.create(user_id, workout_date)

    async def insert_workout_exercise(
        self,
        workout_id: int,
        exercise_ref: PredefinedRef | UserDefinedRef,
        order: int = 0,
        effort_level: str | None = None,
    ) -> int:
        predefined_id = exercise_ref.id if exercise_ref.kind == "predefined" else None
        user_exercise_id = exercise_ref.id if exercise_ref.kind == "user" else None
        async with self._remote("insert_workout_exercise"):
            return await self.workout_exercises.add(
                workout_id,
                exercise_ref.kind,
                predefined_id,
                user_exercise_id,
                order,
                effort_level,
            )

    async def insert_sets(
        self, workout_exercise_id: int, sets: Iterable[SetEntry]
    ) -> None:
        entries = [s.model_dump() for s in sets]
        async with self._remote("insert_sets"):
            await self.sets.bulk_add(workout_exercise_id, entries)

    async def update_user_aggregates(
        self, user_id: str, volume_delta: float, workouts_delta: int = 1
    ) -> None:
        async with self._remote("update_user_aggregates"):
            updated = await self.profiles.add_aggregates(
                user_id, volume_delta, workouts_delta
            )
            if not updated:
                raise ValueError("profile not found")

    async def delete_workout(self, workout_id: int, adjust_aggregates: bool = True) -> None:
        """Delete a workout and subtract it from its owner's aggregates."""
        async with self._remote("delete_workout"):
            detail = await self.workouts.fetch_detail(workout_id)
            volume = await self.workouts.volume(workout_id)
            await self.workouts.delete(workout_id)
            if adjust_aggregates:
                await self.profiles.add_aggregates(detail["user_id"], -volume, -1)

    async def fetch_volume_by_day(
        self, user_id: str, days: int, today: datetime.date | None = None
    ) -> list[dict]:
        end = today or datetime.date.today()
        start = end - datetime.timedelta(days=days)
        async with self._remote("fetch_volume_by_day"):
            rows = await self.workouts.daily_volume(
                user_id, start.isoformat(), end.isoformat()
            )
        return [{"date": r["date"], "volume": float(r["volume"] or 0)} for r in rows]

    async def get_profile(self, user_id: str) -> dict:
        async with self._remote("get_profile"):
            profile = await self.profiles.fetch_detail(user_id)
            if profile is None:
                raise ValueError("profile not found")
            return profile

    async def create_profile(self, user_id: str, **fields) -> dict:
        async with self._remote("create_profile"):
            await self.profiles.create(user_id, **fields)
            return await self.profiles.fetch_detail(user_id)

    async def update_profile(self, user_id: str, partial: dict) -> dict:
        async with self._remote("update_profile"):
            await self.profiles.update(user_id, partial)
            profile = await self.profiles.fetch_detail(user_id)
            if profile is None:
                raise ValueError("profile not found")
            return profile

    async def list_exercises(self, user_id: str | None = None) -> list[dict]:
        async with self._remote("list_exercises"):
            rows = await self.exercises.fetch_predefined()
            if user_id is not None:
                rows += await self.exercises.fetch_for_user(user_id)
            return rows

    async def create_user_exercise(self, user_id: str, name: str, **fields) -> int:
        async with self._remote("create_user_exercise"):
            return await self.exercises.add_user_exercise(user_id, name, **fields)

    async def list_equipment(self) -> list[dict]:
        async with self._remote("list_equipment"):
            return await self.equipment.fetch_all_equipment()
