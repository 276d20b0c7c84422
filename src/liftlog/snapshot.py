"""Canonical workout snapshot documents.

A snapshot is written once per completion event and carries everything needed
to re-derive every metric without consulting any other state: workout
metadata, each exercise instance with a denormalized definition, and every
set including soft-deleted ones. Field names are snake_case with explicit
units; timestamps serialize as ISO-8601.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .records import ExerciseDefinition, ExerciseInstance, SetRecord, Workout
from .snapshot_migrations import CURRENT_SCHEMA_VERSION, migrate_snapshot


def _normalize_non_empty(value: str, *, field_name: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} must not be empty")
    return normalized


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class SnapshotSet(_Frozen):
    set_id: str
    set_number: int = Field(ge=0)
    weight_kg: float | None = None
    reps: int | None = None
    rpe: float | None = None
    rir: int | None = None
    rest_seconds: int | None = None
    tempo: str | None = None
    is_warmup: bool = False
    is_failure: bool = False
    is_dropset: bool = False
    is_deleted: bool = False
    completed_at: datetime | None = None

    @field_validator("set_id")
    @classmethod
    def validate_set_id(cls, value: str) -> str:
        return _normalize_non_empty(value, field_name="set_id")


class SnapshotExerciseDefinition(_Frozen):
    name: str
    movement_pattern: str | None = None
    primary_muscle_groups: list[str] = Field(default_factory=list)
    secondary_muscle_groups: list[str] = Field(default_factory=list)
    equipment: str | None = None


class SnapshotExercise(_Frozen):
    exercise_id: str
    exercise_ref_id: str
    order: int = 0
    superset_id: str | None = None
    notes: str | None = None
    is_deleted: bool = False
    exercise_definition: SnapshotExerciseDefinition
    sets: list[SnapshotSet] = Field(default_factory=list)

    @field_validator("exercise_id")
    @classmethod
    def validate_exercise_id(cls, value: str) -> str:
        return _normalize_non_empty(value, field_name="exercise_id")


class SnapshotMetadata(_Frozen):
    name: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    timezone: str | None = None
    bodyweight_kg: float | None = None
    sleep_hours: float | None = None
    readiness_score: int | None = None
    notes: str | None = None
    template_id: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None


class WorkoutSnapshot(_Frozen):
    schema_version: str
    workout_id: str
    created_at: datetime
    updated_at: datetime
    metadata: SnapshotMetadata
    exercises: list[SnapshotExercise] = Field(default_factory=list)

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, value: str) -> str:
        if value != CURRENT_SCHEMA_VERSION:
            raise ValueError(
                f"schema_version must be {CURRENT_SCHEMA_VERSION}; migrate older documents first"
            )
        return value

    @field_validator("workout_id")
    @classmethod
    def validate_workout_id(cls, value: str) -> str:
        return _normalize_non_empty(value, field_name="workout_id")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return self.model_dump_json()


# ---------------------------------------------------------------------------
# Records -> snapshot
# ---------------------------------------------------------------------------


def _snapshot_set(s: SetRecord) -> SnapshotSet:
    return SnapshotSet(
        set_id=s.id,
        set_number=s.set_number,
        weight_kg=s.weight_kg,
        reps=s.reps,
        rpe=s.rpe,
        rir=s.rir,
        rest_seconds=s.rest_seconds,
        tempo=s.tempo,
        is_warmup=s.is_warmup,
        is_failure=s.is_failure,
        is_dropset=s.is_dropset,
        is_deleted=s.is_deleted,
        completed_at=s.completed_at,
    )


def _snapshot_exercise(exercise: ExerciseInstance) -> SnapshotExercise:
    definition = exercise.definition
    return SnapshotExercise(
        exercise_id=exercise.id,
        exercise_ref_id=exercise.exercise_ref_id,
        order=exercise.order,
        superset_id=exercise.superset_id,
        notes=exercise.notes,
        is_deleted=exercise.is_deleted,
        exercise_definition=SnapshotExerciseDefinition(
            name=definition.name,
            movement_pattern=definition.movement_pattern,
            primary_muscle_groups=list(definition.primary_muscle_groups),
            secondary_muscle_groups=list(definition.secondary_muscle_groups),
            equipment=definition.equipment,
        ),
        sets=[_snapshot_set(s) for s in sorted(exercise.sets, key=lambda s: (s.set_number, s.id))],
    )


def build_workout_snapshot(
    workout: Workout,
    *,
    created_at: datetime | None = None,
) -> WorkoutSnapshot:
    """Snapshot a completed workout. Soft-deleted children are kept for audit."""
    if workout.completed_at is None:
        raise ValueError(f"workout {workout.id} is not completed; only completed workouts are snapshotted")
    stamped = created_at or workout.updated_at or workout.completed_at
    return WorkoutSnapshot(
        schema_version=CURRENT_SCHEMA_VERSION,
        workout_id=workout.id,
        created_at=stamped,
        updated_at=workout.updated_at or stamped,
        metadata=SnapshotMetadata(
            name=workout.name,
            started_at=workout.started_at,
            completed_at=workout.completed_at,
            timezone=workout.timezone,
            bodyweight_kg=workout.bodyweight_kg,
            sleep_hours=workout.sleep_hours,
            readiness_score=workout.readiness_score,
            notes=workout.notes,
            template_id=workout.template_id,
            is_deleted=workout.is_deleted,
            deleted_at=workout.deleted_at,
        ),
        exercises=[
            _snapshot_exercise(exercise)
            for exercise in sorted(workout.exercises, key=lambda e: (e.order, e.id))
        ],
    )


# ---------------------------------------------------------------------------
# Snapshot -> records
# ---------------------------------------------------------------------------


def parse_snapshot(document: dict[str, Any] | str | bytes) -> WorkoutSnapshot:
    """Migrate a stored document to the current version, then validate it."""
    if isinstance(document, (str, bytes)):
        document = json.loads(document)
    if not isinstance(document, dict):
        raise ValueError("snapshot document must be a JSON object")
    return WorkoutSnapshot.model_validate(migrate_snapshot(document))


def workout_from_snapshot(snapshot: WorkoutSnapshot) -> Workout:
    """Rebuild the in-memory records a snapshot was taken from."""
    metadata = snapshot.metadata
    exercises = []
    for ex in snapshot.exercises:
        definition = ex.exercise_definition
        exercises.append(
            ExerciseInstance(
                id=ex.exercise_id,
                workout_id=snapshot.workout_id,
                exercise_ref_id=ex.exercise_ref_id,
                definition=ExerciseDefinition(
                    name=definition.name,
                    movement_pattern=definition.movement_pattern,
                    primary_muscle_groups=tuple(definition.primary_muscle_groups),
                    secondary_muscle_groups=tuple(definition.secondary_muscle_groups),
                    equipment=definition.equipment,
                ),
                order=ex.order,
                superset_id=ex.superset_id,
                notes=ex.notes,
                is_deleted=ex.is_deleted,
                sets=tuple(
                    SetRecord(
                        id=s.set_id,
                        exercise_instance_id=ex.exercise_id,
                        set_number=s.set_number,
                        weight_kg=s.weight_kg,
                        reps=s.reps,
                        rpe=s.rpe,
                        rir=s.rir,
                        rest_seconds=s.rest_seconds,
                        tempo=s.tempo,
                        is_warmup=s.is_warmup,
                        is_failure=s.is_failure,
                        is_dropset=s.is_dropset,
                        is_deleted=s.is_deleted,
                        completed_at=s.completed_at,
                    )
                    for s in ex.sets
                ),
            )
        )
    return Workout(
        id=snapshot.workout_id,
        started_at=metadata.started_at,
        name=metadata.name,
        completed_at=metadata.completed_at,
        template_id=metadata.template_id,
        timezone=metadata.timezone,
        bodyweight_kg=metadata.bodyweight_kg,
        sleep_hours=metadata.sleep_hours,
        readiness_score=metadata.readiness_score,
        notes=metadata.notes,
        is_deleted=metadata.is_deleted,
        deleted_at=metadata.deleted_at,
        created_at=snapshot.created_at,
        updated_at=snapshot.updated_at,
        exercises=tuple(exercises),
    )


def latest_snapshots(snapshots: Iterable[WorkoutSnapshot]) -> list[WorkoutSnapshot]:
    """Most recent snapshot per workout by ``created_at``; later input wins ties."""
    latest: dict[str, WorkoutSnapshot] = {}
    for snapshot in snapshots:
        current = latest.get(snapshot.workout_id)
        if current is None or snapshot.created_at >= current.created_at:
            latest[snapshot.workout_id] = snapshot
    return sorted(latest.values(), key=lambda s: s.metadata.started_at)
