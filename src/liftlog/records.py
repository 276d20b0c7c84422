"""Canonical in-memory record shapes and the store-boundary normalization step.

Rows arrive from storage in two historical shapes: snake_case canonical rows
and camelCase legacy rows (``weightKg``, ``isWarmup``, ...). Both are folded
into the frozen dataclasses below exactly once, here. Everything downstream
operates on one shape only.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping


@dataclass(frozen=True)
class SetRecord:
    """One resistance-training effort."""

    id: str
    exercise_instance_id: str
    set_number: int
    weight_kg: float | None = None  # None for bodyweight work
    reps: int | None = None
    rpe: float | None = None  # 1-10
    rir: int | None = None  # 0-5
    rest_seconds: int | None = None
    tempo: str | None = None
    is_warmup: bool = False
    is_failure: bool = False
    is_dropset: bool = False
    is_deleted: bool = False
    completed_at: datetime | None = None
    previous_version_id: str | None = None


@dataclass(frozen=True)
class ExerciseDefinition:
    """Exercise library entry, denormalized at logging time."""

    name: str
    movement_pattern: str | None = None
    primary_muscle_groups: tuple[str, ...] = ()
    secondary_muscle_groups: tuple[str, ...] = ()
    equipment: str | None = None


@dataclass(frozen=True)
class ExerciseInstance:
    """One exercise performed within one workout."""

    id: str
    workout_id: str
    exercise_ref_id: str
    definition: ExerciseDefinition
    order: int
    superset_id: str | None = None
    notes: str | None = None
    is_deleted: bool = False
    sets: tuple[SetRecord, ...] = ()


@dataclass(frozen=True)
class Workout:
    """One training session. ``duration_seconds`` is derived, never stored."""

    id: str
    started_at: datetime
    name: str | None = None
    completed_at: datetime | None = None
    template_id: str | None = None
    timezone: str | None = None
    bodyweight_kg: float | None = None
    sleep_hours: float | None = None
    readiness_score: int | None = None
    notes: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    exercises: tuple[ExerciseInstance, ...] = field(default=())

    @property
    def duration_seconds(self) -> int | None:
        if self.completed_at is None:
            return None
        return math.floor((self.completed_at - self.started_at).total_seconds())

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


# ---------------------------------------------------------------------------
# Boundary normalization
# ---------------------------------------------------------------------------

_MISSING = object()


def _pick(row: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = row.get(key, _MISSING)
        if value is not _MISSING:
            return value
    return default


def _as_optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def _as_optional_int(value: Any) -> int | None:
    parsed = _as_optional_float(value)
    if parsed is None:
        return None
    return int(parsed)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def _as_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp: datetime, ISO-8601 string, or epoch seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        return datetime.fromisoformat(raw)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def _muscle_groups(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = list(value)
    return tuple(p.strip() for p in (str(part) for part in parts) if p.strip())


def _required_id(row: Mapping[str, Any], *keys: str, kind: str) -> str:
    value = _as_optional_text(_pick(row, *keys))
    if value is None:
        raise ValueError(f"{kind} row is missing an identifier ({'/'.join(keys)})")
    return value


def normalize_set_row(row: Mapping[str, Any]) -> SetRecord:
    """Fold a canonical or legacy set row into a ``SetRecord``."""
    return SetRecord(
        id=_required_id(row, "id", "set_id", kind="set"),
        exercise_instance_id=_as_optional_text(
            _pick(row, "exercise_instance_id", "workout_exercise_id", "workoutExerciseId")
        )
        or "",
        set_number=_as_optional_int(_pick(row, "set_number", "setNumber")) or 0,
        weight_kg=_as_optional_float(_pick(row, "weight_kg", "weightKg")),
        reps=_as_optional_int(row.get("reps")),
        rpe=_as_optional_float(row.get("rpe")),
        rir=_as_optional_int(row.get("rir")),
        rest_seconds=_as_optional_int(_pick(row, "rest_seconds", "restSeconds")),
        tempo=_as_optional_text(row.get("tempo")),
        is_warmup=_as_bool(_pick(row, "is_warmup", "isWarmup", default=False)),
        is_failure=_as_bool(_pick(row, "is_failure", "isFailure", default=False)),
        is_dropset=_as_bool(_pick(row, "is_dropset", "isDropset", default=False)),
        is_deleted=_as_bool(_pick(row, "is_deleted", "isDeleted", default=False)),
        completed_at=parse_timestamp(_pick(row, "completed_at", "completedAt")),
        previous_version_id=_as_optional_text(
            _pick(row, "previous_version_id", "previousVersionId")
        ),
    )


def normalize_definition(row: Mapping[str, Any]) -> ExerciseDefinition:
    primary = _pick(row, "primary_muscle_groups", "primaryMuscleGroups")
    if primary is None:
        primary = _pick(row, "muscle_group", "muscleGroup")
    return ExerciseDefinition(
        name=_as_optional_text(row.get("name")) or "Unknown exercise",
        movement_pattern=_as_optional_text(_pick(row, "movement_pattern", "movementPattern")),
        primary_muscle_groups=_muscle_groups(primary),
        secondary_muscle_groups=_muscle_groups(
            _pick(row, "secondary_muscle_groups", "secondaryMuscleGroups")
        ),
        equipment=_as_optional_text(row.get("equipment")),
    )


def normalize_exercise_row(
    row: Mapping[str, Any],
    *,
    definition: Mapping[str, Any] | ExerciseDefinition | None = None,
    sets: list[SetRecord] | tuple[SetRecord, ...] = (),
) -> ExerciseInstance:
    """Fold a workout-exercise row (plus its definition and sets) into an instance."""
    instance_id = _required_id(row, "id", "exercise_id", kind="exercise instance")
    # Table rows use exercise_id for the library reference; snapshots use it
    # for the instance and carry exercise_ref_id separately.
    ref_id = _pick(row, "exercise_ref_id", "exerciseRefId")
    if ref_id is None:
        ref_id = _pick(row, "exercise_id", "exerciseId") if "id" in row else row.get("exerciseId")
    if definition is None:
        definition = _pick(row, "exercise_definition", "exerciseDefinition", default=row)
    if not isinstance(definition, ExerciseDefinition):
        definition = normalize_definition(definition)
    ordered_sets = tuple(
        sorted(
            (s if s.exercise_instance_id else _with_parent(s, instance_id) for s in sets),
            key=lambda s: (s.set_number, s.id),
        )
    )
    return ExerciseInstance(
        id=instance_id,
        workout_id=_as_optional_text(_pick(row, "workout_id", "workoutId")) or "",
        exercise_ref_id=_as_optional_text(ref_id) or "",
        definition=definition,
        order=_as_optional_int(row.get("order")) or 0,
        superset_id=_as_optional_text(_pick(row, "superset_id", "supersetId")),
        notes=_as_optional_text(row.get("notes")),
        is_deleted=_as_bool(_pick(row, "is_deleted", "isDeleted", default=False)),
        sets=ordered_sets,
    )


def _with_parent(set_record: SetRecord, instance_id: str) -> SetRecord:
    return replace(set_record, exercise_instance_id=instance_id)


def normalize_workout_row(
    row: Mapping[str, Any],
    *,
    exercises: list[ExerciseInstance] | tuple[ExerciseInstance, ...] = (),
) -> Workout:
    """Fold a workout row into a ``Workout``. ``started_at`` is required."""
    workout_id = _required_id(row, "id", "workout_id", kind="workout")
    started_at = parse_timestamp(_pick(row, "started_at", "startedAt"))
    if started_at is None:
        raise ValueError(f"workout {workout_id} is missing started_at")
    return Workout(
        id=workout_id,
        started_at=started_at,
        name=_as_optional_text(row.get("name")),
        completed_at=parse_timestamp(_pick(row, "completed_at", "completedAt")),
        template_id=_as_optional_text(_pick(row, "template_id", "templateId")),
        timezone=_as_optional_text(row.get("timezone")),
        bodyweight_kg=_as_optional_float(_pick(row, "bodyweight_kg", "bodyweightKg")),
        sleep_hours=_as_optional_float(_pick(row, "sleep_hours", "sleepHours")),
        readiness_score=_as_optional_int(_pick(row, "readiness_score", "readinessScore")),
        notes=_as_optional_text(row.get("notes")),
        is_deleted=_as_bool(_pick(row, "is_deleted", "isDeleted", default=False)),
        deleted_at=parse_timestamp(_pick(row, "deleted_at", "deletedAt")),
        created_at=parse_timestamp(_pick(row, "created_at", "createdAt")),
        updated_at=parse_timestamp(_pick(row, "updated_at", "updatedAt")),
        exercises=tuple(sorted(exercises, key=lambda e: (e.order, e.id))),
    )


def superset_groups(exercises: tuple[ExerciseInstance, ...] | list[ExerciseInstance]) -> dict[str, list[ExerciseInstance]]:
    """Group non-deleted instances by superset id; singletons are not supersets."""
    groups: dict[str, list[ExerciseInstance]] = defaultdict(list)
    for exercise in exercises:
        if exercise.is_deleted or exercise.superset_id is None:
            continue
        groups[exercise.superset_id].append(exercise)
    return {
        superset_id: sorted(members, key=lambda e: e.order)
        for superset_id, members in groups.items()
        if len(members) >= 2
    }
