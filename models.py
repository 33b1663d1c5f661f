from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

TEMP_ID_PREFIX = "temp-"

SET_FIELDS = ("reps", "weight_kg", "duration_seconds", "distance_meters")

# capability flag gating each set field
FIELD_FLAGS = {
    "reps": "uses_reps",
    "weight_kg": "uses_weight",
    "duration_seconds": "uses_duration",
    "distance_meters": "uses_distance",
}


class PredefinedRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["predefined"] = "predefined"
    id: int


class UserDefinedRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    id: int


ExerciseRef = Annotated[Union[PredefinedRef, UserDefinedRef], Field(discriminator="kind")]


class Exercise(BaseModel):
    id: int
    name: str
    primary_muscle_group: str = "other"
    secondary_muscle_group: Optional[str] = None
    category: str = "other"
    uses_reps: bool = True
    uses_weight: bool = True
    uses_duration: bool = False
    uses_distance: bool = False
    is_deleted: bool = False
    source: Literal["predefined", "user"] = "predefined"

    def ref(self) -> PredefinedRef | UserDefinedRef:
        if self.source == "user":
            return UserDefinedRef(id=self.id)
        return PredefinedRef(id=self.id)

    def uses(self, field: str) -> bool:
        return bool(getattr(self, FIELD_FLAGS[field]))


class SetEntry(BaseModel):
    set_number: int = Field(ge=1)
    reps: Optional[int] = None
    weight_kg: Optional[float] = None
    duration_seconds: Optional[int] = None
    distance_meters: Optional[float] = None


class WorkoutExerciseDraft(BaseModel):
    instance_id: str
    exercise: Exercise
    order: int = 0
    effort_level: Optional[str] = None
    sets: list[SetEntry] = []

    @property
    def ref(self) -> PredefinedRef | UserDefinedRef:
        return self.exercise.ref()


class NewWorkout(BaseModel):
    user_id: str
    workout_date: Optional[str] = None
    exercises: list[WorkoutExerciseDraft]

    def total_volume(self) -> float:
        return round(
            sum(
                (s.reps or 0) * (s.weight_kg or 0.0)
                for ex in self.exercises
                for s in ex.sets
            ),
            2,
        )


class Profile(BaseModel):
    id: str
    name: str = "New User"
    gender: Optional[Literal["male", "female", "other"]] = None
    date_of_birth: Optional[str] = None
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    body_fat_percentage: Optional[float] = None
    unit_preference: Literal["metric", "imperial"] = "metric"
    theme_preference: Literal["light", "dark"] = "light"
    total_volume: float = 0.0
    total_workouts: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1)
    gender: Optional[Literal["male", "female", "other"]] = None
    date_of_birth: Optional[str] = None
    weight_kg: Optional[float] = Field(default=None, ge=0)
    height_cm: Optional[float] = Field(default=None, ge=0)
    body_fat_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    unit_preference: Optional[Literal["metric", "imperial"]] = None
    theme_preference: Optional[Literal["light", "dark"]] = None


class DailyVolume(BaseModel):
    date: str
    volume: float


def is_temp_id(value) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)
