"""In-memory state for the workout being composed, before it is saved.

Every transition is a pure function returning a new :class:`WorkoutState`;
:class:`WorkoutEditor` wraps them for callers that want a mutable holder which
also persists the draft to local storage.
"""
from __future__ import annotations

import json
import logging
import math
import os
import uuid
from typing import Iterable, Optional

from pydantic import BaseModel

from errors import IndexOutOfRange, ValidationError
from models import (
    SET_FIELDS,
    Exercise,
    NewWorkout,
    SetEntry,
    WorkoutExerciseDraft,
)

logger = logging.getLogger(__name__)

DRAFT_KEY = "currentWorkout"


class WorkoutState(BaseModel):
    exercises: list[WorkoutExerciseDraft] = []
    selected_exercise_ids: frozenset[int] = frozenset()
    selected_exercise: Optional[WorkoutExerciseDraft] = None


def set_exercises(state: WorkoutState, exercises: Iterable[WorkoutExerciseDraft]) -> WorkoutState:
    return state.model_copy(update={"exercises": list(exercises)})


def set_selected_exercise_ids(state: WorkoutState, ids: Iterable[int]) -> WorkoutState:
    return state.model_copy(update={"selected_exercise_ids": frozenset(ids)})


def toggle_selected_exercise_id(state: WorkoutState, exercise_id: int) -> WorkoutState:
    return set_selected_exercise_ids(
        state, state.selected_exercise_ids ^ {exercise_id}
    )


def set_selected_exercise(
    state: WorkoutState, exercise: Optional[WorkoutExerciseDraft]
) -> WorkoutState:
    return state.model_copy(update={"selected_exercise": exercise})


def update_exercise_sets(
    state: WorkoutState, index: int, sets: Iterable[SetEntry]
) -> WorkoutState:
    if index < 0 or index >= len(state.exercises):
        raise IndexOutOfRange(f"Invalid exercise index: {index}")
    current = state.exercises[index]
    updated = current.model_copy(
        update={"sets": renumber_sets(sanitize_sets(current.exercise, sets))}
    )
    exercises = list(state.exercises)
    exercises[index] = updated
    selected = state.selected_exercise
    if selected is not None and selected.instance_id == updated.instance_id:
        selected = updated
    return state.model_copy(update={"exercises": exercises, "selected_exercise": selected})


def reduce(state: WorkoutState, action: dict) -> WorkoutState:
    """Apply an action dict to ``state``; unknown actions leave it unchanged."""
    kind = action.get("type")
    if kind == "SET_EXERCISES":
        return set_exercises(state, action["exercises"])
    if kind == "SET_SELECTED_EXERCISE_IDS":
        return set_selected_exercise_ids(state, action["ids"])
    if kind == "SET_SELECTED_EXERCISE":
        return set_selected_exercise(state, action.get("exercise"))
    if kind == "UPDATE_EXERCISE_SETS":
        return update_exercise_sets(state, action["exercise_index"], action["sets"])
    return state


def add_selected_exercises(
    state: WorkoutState, catalog: Iterable[Exercise]
) -> WorkoutState:
    """Append a draft with one blank set for every selected catalog exercise."""
    by_id = {ex.id: ex for ex in catalog}
    exercises = list(state.exercises)
    for exercise_id in sorted(state.selected_exercise_ids):
        exercise = by_id.get(exercise_id)
        if exercise is None:
            logger.warning("selected exercise %s is not in the catalog", exercise_id)
            continue
        exercises.append(
            WorkoutExerciseDraft(
                instance_id=str(uuid.uuid4()),
                exercise=exercise,
                order=len(exercises),
                sets=[new_set(exercise, 1)],
            )
        )
    return state.model_copy(
        update={"exercises": exercises, "selected_exercise_ids": frozenset()}
    )


def remove_exercise(state: WorkoutState, index: int) -> WorkoutState:
    if index < 0 or index >= len(state.exercises):
        raise IndexOutOfRange(f"Invalid exercise index: {index}")
    removed = state.exercises[index]
    exercises = [
        ex.model_copy(update={"order": pos})
        for pos, ex in enumerate(e for i, e in enumerate(state.exercises) if i != index)
    ]
    selected = state.selected_exercise
    if selected is not None and selected.instance_id == removed.instance_id:
        selected = None
    return state.model_copy(update={"exercises": exercises, "selected_exercise": selected})


def new_set(exercise: Exercise, set_number: int) -> SetEntry:
    """Blank set exposing only the fields ``exercise`` uses."""
    values = {field: (0 if exercise.uses(field) else None) for field in SET_FIELDS}
    return SetEntry(set_number=set_number, **values)


def append_set(exercise: Exercise, sets: list[SetEntry]) -> list[SetEntry]:
    return list(sets) + [new_set(exercise, len(sets) + 1)]


def remove_set(sets: list[SetEntry], index: int) -> list[SetEntry]:
    if index < 0 or index >= len(sets):
        raise IndexOutOfRange(f"Invalid set index: {index}")
    return renumber_sets(s for i, s in enumerate(sets) if i != index)


def update_set_field(exercise: Exercise, entry: SetEntry, field: str, value) -> SetEntry:
    """Return ``entry`` with ``field`` set from raw input, clamped to >= 0."""
    if field not in SET_FIELDS:
        raise ValidationError(f"unknown set field: {field}")
    if not exercise.uses(field):
        return entry.model_copy(update={field: None})
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = 0.0
    if not math.isfinite(number):
        number = 0.0
    if field in ("reps", "duration_seconds"):
        number = int(number)
    return entry.model_copy(update={field: max(number, 0)})


def sanitize_sets(exercise: Exercise, sets: Iterable[SetEntry]) -> list[SetEntry]:
    """Null every field the exercise does not use."""
    result = []
    for s in sets:
        if isinstance(s, dict):
            s = SetEntry.model_validate(s)
        cleared = {f: None for f in SET_FIELDS if not exercise.uses(f)}
        result.append(s.model_copy(update=cleared) if cleared else s)
    return result


def renumber_sets(sets: Iterable[SetEntry]) -> list[SetEntry]:
    return [s.model_copy(update={"set_number": n}) for n, s in enumerate(sets, start=1)]


def set_is_valid(exercise: Exercise, entry: SetEntry) -> bool:
    for field in SET_FIELDS:
        if exercise.uses(field):
            value = getattr(entry, field)
            if value is None or not math.isfinite(value) or value <= 0:
                return False
    return True


def is_saveable(state: WorkoutState) -> bool:
    if not state.exercises:
        return False
    for ex in state.exercises:
        if not ex.sets:
            return False
        if not all(set_is_valid(ex.exercise, s) for s in ex.sets):
            return False
    return True


def to_new_workout(
    state: WorkoutState, user_id: str, workout_date: str | None = None
) -> NewWorkout:
    if not is_saveable(state):
        raise ValidationError(
            "a workout needs at least one exercise and every set needs its values filled in"
        )
    exercises = [
        ex.model_copy(
            update={"order": pos, "sets": renumber_sets(sanitize_sets(ex.exercise, ex.sets))}
        )
        for pos, ex in enumerate(state.exercises)
    ]
    return NewWorkout(user_id=user_id, workout_date=workout_date, exercises=exercises)


class DraftStore:
    """Keeps the unsaved workout in a JSON file under a fixed key."""

    def __init__(self, path: str = "workout_draft.json") -> None:
        self.path = path

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f) or {}

    def load(self) -> Optional[WorkoutState]:
        raw = self._read().get(DRAFT_KEY)
        if raw is None:
            return None
        return WorkoutState.model_validate(raw)

    def save(self, state: WorkoutState) -> None:
        data = self._read()
        data[DRAFT_KEY] = state.model_dump(mode="json")
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)

    def clear(self) -> None:
        data = self._read()
        if data.pop(DRAFT_KEY, None) is None:
            return
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)


class WorkoutEditor:
    """Mutable holder for the draft workout, persisted after every change."""

    def __init__(self, drafts: DraftStore | None = None) -> None:
        self.drafts = drafts
        restored = drafts.load() if drafts is not None else None
        self.state = restored or WorkoutState()

    def _commit(self, state: WorkoutState) -> WorkoutState:
        self.state = state
        if self.drafts is not None:
            self.drafts.save(state)
        return state

    def dispatch(self, action: dict) -> WorkoutState:
        return self._commit(reduce(self.state, action))

    def toggle(self, exercise_id: int) -> WorkoutState:
        return self._commit(toggle_selected_exercise_id(self.state, exercise_id))

    def add_selected(self, catalog: Iterable[Exercise]) -> WorkoutState:
        return self._commit(add_selected_exercises(self.state, catalog))

    def remove(self, index: int) -> WorkoutState:
        return self._commit(remove_exercise(self.state, index))

    def open(self, index: int | None) -> WorkoutState:
        exercise = None if index is None else self.state.exercises[index]
        return self._commit(set_selected_exercise(self.state, exercise))

    def add_set(self, index: int) -> WorkoutState:
        if index < 0 or index >= len(self.state.exercises):
            raise IndexOutOfRange(f"Invalid exercise index: {index}")
        ex = self.state.exercises[index]
        return self._commit(
            update_exercise_sets(self.state, index, append_set(ex.exercise, ex.sets))
        )

    def edit_set(self, index: int, set_index: int, field: str, value) -> WorkoutState:
        if index < 0 or index >= len(self.state.exercises):
            raise IndexOutOfRange(f"Invalid exercise index: {index}")
        ex = self.state.exercises[index]
        if set_index < 0 or set_index >= len(ex.sets):
            raise IndexOutOfRange(f"Invalid set index: {set_index}")
        sets = list(ex.sets)
        sets[set_index] = update_set_field(ex.exercise, sets[set_index], field, value)
        return self._commit(update_exercise_sets(self.state, index, sets))

    def reset(self) -> WorkoutState:
        self.state = WorkoutState()
        if self.drafts is not None:
            self.drafts.clear()
        return self.state

    @property
    def saveable(self) -> bool:
        return is_saveable(self.state)
