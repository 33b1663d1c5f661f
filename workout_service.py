"""Workout history, saving and profile edits composed over the client cache."""
from __future__ import annotations

import datetime
import logging
import uuid
from typing import Optional
from zoneinfo import ZoneInfo

import pydantic

import data_access
from cache import CacheState, ClientCache
from errors import ValidationError
from models import TEMP_ID_PREFIX, NewWorkout, ProfileUpdate, is_temp_id
from store import RemoteStore
from workout_state import DraftStore, WorkoutState, to_new_workout

logger = logging.getLogger(__name__)


class WorkoutHistory:
    """Infinite scroll over a user's workouts, one cache key per page."""

    def __init__(self, service: "WorkoutService", user_id: str) -> None:
        self.service = service
        self.user_id = user_id
        self.page_size = service.page_size
        self.page_count = 0

    def key(self, page_index: int) -> tuple:
        return ("workouts", self.user_id, page_index, self.page_size)

    def _page(self, page_index: int) -> list[dict]:
        return self.service.cache.peek(self.key(page_index)).value or []

    @property
    def is_reaching_end(self) -> bool:
        if self.page_count == 0:
            return False
        return len(self._page(self.page_count - 1)) < self.page_size

    @property
    def is_loading(self) -> bool:
        return any(
            self.service.cache.peek(self.key(i)).status == CacheState.PENDING
            for i in range(self.page_count)
        )

    @property
    def workouts(self) -> list[dict]:
        return [w for i in range(self.page_count) for w in self._page(i)]

    def workout_dates(self) -> set[str]:
        """Local ``YYYY-MM-DD`` dates that have at least one loaded workout."""
        return {w["date"] for w in self.workouts if w.get("date")}

    def workouts_on(self, date: datetime.date | str | None) -> list[dict]:
        """Loaded workouts on the local ``date``; every workout when ``date`` is None."""
        if date is None:
            return self.workouts
        if isinstance(date, datetime.date):
            date = date.isoformat()
        return [w for w in self.workouts if w.get("date") == date]

    async def load_more(self) -> list[dict]:
        """Fetch the next page; returns an empty list once the end is reached."""
        if self.is_reaching_end:
            return []
        page_index = self.page_count
        page = await self.service.cache.get(
            self.key(page_index),
            lambda: data_access.fetch_workouts(
                self.service.store,
                self.user_id,
                page_index,
                self.page_size,
                self.service.tz,
            ),
        )
        self.page_count = page_index + 1
        return page

    async def load_all(self) -> list[dict]:
        while not self.is_reaching_end:
            await self.load_more()
        return self.workouts

    async def refresh(self) -> None:
        await self.service.cache.revalidate(("workouts", self.user_id))


class WorkoutService:
    """Entry point the UI uses for reading and changing workout data."""

    def __init__(
        self,
        store: RemoteStore,
        cache: ClientCache,
        drafts: DraftStore | None = None,
        page_size: int = 10,
        tz: str = "UTC",
    ) -> None:
        self.store = store
        self.cache = cache
        self.drafts = drafts
        self.page_size = page_size
        self.tz = tz

    def history(self, user_id: str) -> WorkoutHistory:
        return WorkoutHistory(self, user_id)

    def _optimistic_workout(self, workout: NewWorkout) -> dict:
        now = datetime.datetime.now(datetime.timezone.utc)
        local = now.astimezone(ZoneInfo(self.tz))
        return {
            "id": f"{TEMP_ID_PREFIX}{uuid.uuid4()}",
            "user_id": workout.user_id,
            "workout_date": workout.workout_date or now.isoformat(),
            "created_at": now.isoformat(),
            "date": local.strftime("%Y-%m-%d"),
            "time": local.strftime("%I:%M %p"),
            "exercises": [
                {
                    "instance_id": ex.instance_id,
                    "workout_exercise_id": None,
                    "order": ex.order,
                    "effort_level": ex.effort_level,
                    "exercise": ex.exercise.model_dump(),
                    "sets": [s.model_dump() for s in ex.sets],
                }
                for ex in workout.exercises
            ],
            "total_volume": workout.total_volume(),
        }

    async def _refresh_aggregates(self, user_id: str) -> None:
        for family in (("volume", user_id), ("profile", user_id)):
            self.cache.invalidate(family)
            await self.cache.revalidate(family)

    async def save_workout(
        self, user_id: str, state: WorkoutState, workout_date: Optional[str] = None
    ) -> int:
        """Save the draft, showing it at the top of the history immediately."""
        workout = to_new_workout(state, user_id, workout_date)
        pending = self._optimistic_workout(workout)

        def prepend(key: tuple, page: list[dict]) -> list[dict]:
            return [pending] + page if key[2] == 0 else page

        workout_id = await self.cache.mutate(
            ("workouts", user_id),
            prepend,
            lambda: data_access.save_workout(self.store, workout),
        )
        logger.info("saved workout %s for %s", workout_id, user_id)
        await self._refresh_aggregates(user_id)
        if self.drafts is not None:
            self.drafts.clear()
        return workout_id

    async def delete_workout(self, user_id: str, workout_id: int) -> None:
        if is_temp_id(workout_id):
            raise ValidationError("workout is still being saved")

        def remove(key: tuple, page: list[dict]) -> list[dict]:
            return [w for w in page if w["id"] != workout_id]

        await self.cache.mutate(
            ("workouts", user_id),
            remove,
            lambda: data_access.delete_workout(self.store, workout_id),
        )
        logger.info("deleted workout %s for %s", workout_id, user_id)
        await self._refresh_aggregates(user_id)

    async def profile(self, user_id: str) -> dict:
        return await self.cache.get(
            ("profile", user_id), lambda: data_access.fetch_profile(self.store, user_id)
        )

    async def update_profile(self, user_id: str, updates: dict) -> dict:
        """Apply ``updates`` optimistically; the local value is kept on success."""
        try:
            partial = ProfileUpdate.model_validate(updates).model_dump(exclude_unset=True)
        except pydantic.ValidationError as e:
            raise ValidationError(str(e)) from e

        def merge(key: tuple, profile: dict) -> dict:
            return {**profile, **partial}

        key = ("profile", user_id)
        stored = await self.cache.mutate(
            key,
            merge,
            lambda: data_access.update_profile(self.store, user_id, partial),
            revalidate=False,
        )
        if self.cache.peek(key).value is None:
            self.cache.set(key, stored)
        return self.cache.peek(key).value

    async def available_exercises(self, user_id: str | None = None) -> list[dict]:
        return await self.cache.get(
            ("exercises", user_id or "all"),
            lambda: data_access.fetch_available_exercises(self.store, user_id),
        )

    async def equipment(self) -> list[dict]:
        return await self.cache.get(
            ("equipment", "all"), lambda: data_access.fetch_equipment(self.store)
        )
