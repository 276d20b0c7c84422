"""Analytics export document for web consumers.

Pre-computed aggregates sit next to the raw canonical snapshots they were
derived from, so a client can recompute anything itself. Inner keys are
camelCase to match the document consumers already read.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from .aggregation import movement_pattern_balance, week_start, workout_date
from .calculations import (
    DEFAULT_ONE_RM_FORMULA,
    OneRepMaxFormula,
    average_rpe,
    count_hard_sets,
    set_volume,
    workout_sets,
)
from .personal_records import pr_history
from .progression import detect_progression, session_series
from .records import Workout
from .snapshot import latest_snapshots, parse_snapshot, workout_from_snapshot
from .snapshot_migrations import CURRENT_SCHEMA_VERSION

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"
SECONDS_PER_WEEK = 7 * 24 * 60 * 60


def _round(value: float, digits: int = 0) -> float:
    """Round half up, the way the mobile client rounds."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _weeks_between(first: datetime, last: datetime) -> float:
    return max(1.0, (last - first).total_seconds() / SECONDS_PER_WEEK)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def build_summary(workouts: list[Workout]) -> dict[str, Any]:
    if not workouts:
        return {
            "totalWorkouts": 0,
            "totalVolume": 0,
            "totalSets": 0,
            "totalExercises": 0,
            "dateRange": {"start": None, "end": None},
            "averageWorkoutDuration": None,
            "averageWorkoutsPerWeek": 0,
        }

    total_volume = 0.0
    total_sets = 0
    exercise_ids: set[str] = set()
    durations: list[int] = []
    for workout in workouts:
        for exercise in workout.exercises:
            if not exercise.is_deleted:
                exercise_ids.add(exercise.exercise_ref_id)
        live = workout_sets(workout)
        total_sets += len(live)
        total_volume += sum((set_volume(s.weight_kg, s.reps) for s in live), 0.0)
        if workout.duration_seconds:
            durations.append(workout.duration_seconds)

    ordered = sorted(workouts, key=lambda w: w.started_at)
    earliest, latest = ordered[0].started_at, ordered[-1].started_at
    return {
        "totalWorkouts": len(workouts),
        "totalVolume": _round(total_volume),
        "totalSets": total_sets,
        "totalExercises": len(exercise_ids),
        "dateRange": {"start": earliest.isoformat(), "end": latest.isoformat()},
        "averageWorkoutDuration": _round(sum(durations) / len(durations)) if durations else None,
        "averageWorkoutsPerWeek": _round(len(workouts) / _weeks_between(earliest, latest), 1),
    }


def build_time_series(workouts: list[Workout], timezone_name: str | None = None) -> list[dict[str, Any]]:
    buckets: dict[str, dict[str, Any]] = {}
    for workout in workouts:
        key = week_start(workout_date(workout, timezone_name)).isoformat()
        bucket = buckets.setdefault(key, {"workoutCount": 0, "sets": []})
        bucket["workoutCount"] += 1
        bucket["sets"].extend(workout_sets(workout))

    series = []
    for key in sorted(buckets):
        week_sets = buckets[key]["sets"]
        avg = average_rpe(week_sets)
        series.append(
            {
                "week": key,
                "volume": _round(sum((set_volume(s.weight_kg, s.reps) for s in week_sets), 0.0)),
                "workoutCount": buckets[key]["workoutCount"],
                "avgRPE": _round(avg, 1) if avg is not None else None,
                "hardSets": count_hard_sets(week_sets),
                "totalSets": len(week_sets),
                "fatigueIndex": _round(avg * len(week_sets)) if avg is not None else 0,
            }
        )
    return series


def build_exercise_analytics(
    workouts: list[Workout],
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> list[dict[str, Any]]:
    definitions: dict[str, Any] = {}
    for workout in sorted(workouts, key=lambda w: w.started_at):
        for exercise in workout.exercises:
            if not exercise.is_deleted:
                definitions.setdefault(exercise.exercise_ref_id, exercise.definition)

    result = []
    for ref_id, definition in definitions.items():
        weights = session_series(workouts, ref_id, "max_weight", formula)
        if not weights:
            continue
        one_rms = session_series(workouts, ref_id, "est_1rm", formula)
        volumes = session_series(workouts, ref_id, "volume", formula)
        sessions = [
            {
                "date": ts.isoformat(),
                "maxWeight": weight,
                "est1RM": _round(one_rm, 1),
                "volume": _round(volume),
            }
            for (ts, weight), (_, one_rm), (_, volume) in zip(weights, one_rms, volumes)
        ]
        result.append(
            {
                "exerciseId": ref_id,
                "exerciseRefId": ref_id,
                "name": definition.name,
                "movementPattern": definition.movement_pattern,
                "primaryMuscles": list(definition.primary_muscle_groups),
                "equipment": definition.equipment,
                "progressionData": sessions,
                "prHistory": [
                    {
                        "type": event["type"],
                        "value": _round(event["value"], 1) if event["type"] == "1rm" else event["value"],
                        "date": event["date"].isoformat(),
                    }
                    for event in pr_history(workouts, ref_id, formula)
                ],
                "trend": detect_progression(one_rms),
                "frequency": _round(len(sessions) / _weeks_between(weights[0][0], weights[-1][0]), 1),
                "totalVolume": sum(s["volume"] for s in sessions),
                "maxWeight": max(s["maxWeight"] for s in sessions),
                "maxEst1RM": max(s["est1RM"] for s in sessions),
            }
        )
    result.sort(key=lambda item: -item["totalVolume"])
    return result


def build_balance(
    workouts: list[Workout],
    now: datetime,
    weeks: int = 4,
    timezone_name: str | None = None,
) -> dict[str, Any]:
    balance = movement_pattern_balance(workouts, now, weeks, timezone_name=timezone_name)
    return {
        "muscleGroupVolume": [
            {"group": row["group"], "volume": _round(row["volume"])}
            for row in balance["muscle_group_volume"]
        ],
        "movementPatternVolume": [
            {"pattern": row["pattern"], "volume": _round(row["volume"])}
            for row in balance["movement_pattern_volume"]
        ],
        "pushPullRatio": _round(balance["push_pull_ratio"], 2),
        "upperLowerRatio": _round(balance["upper_lower_ratio"], 2),
        "squatVolume": _round(balance["squat_volume"]),
        "hingeVolume": _round(balance["hinge_volume"]),
        "balanceScore": _round(balance["muscle_balance_score"], 1),
    }


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


def build_analytics_export(
    documents: Iterable[dict[str, Any] | str],
    now: datetime | None = None,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
    balance_weeks: int = 4,
    *,
    timezone_name: str | None = None,
) -> dict[str, Any]:
    """Build the export from stored snapshot documents of any supported version.

    Raises ``SchemaVersionError`` for a document that cannot be migrated.
    """
    now = now or datetime.now(timezone.utc)
    snapshots = latest_snapshots(parse_snapshot(doc) for doc in documents)
    kept = [s for s in snapshots if not s.metadata.is_deleted]
    workouts = [workout_from_snapshot(s) for s in kept]

    export = {
        "export_version": EXPORT_VERSION,
        "generated_at": now.isoformat(),
        "schema_version": CURRENT_SCHEMA_VERSION,
        "summary": build_summary(workouts),
        "timeSeries": build_time_series(workouts, timezone_name),
        "exerciseAnalytics": build_exercise_analytics(workouts, formula),
        "balance": build_balance(workouts, now, balance_weeks, timezone_name),
        "workouts": [s.to_document() for s in kept],
    }
    logger.info(
        "Built analytics export: %d workouts (%d deleted workouts dropped)",
        len(kept),
        len(snapshots) - len(kept),
        extra={"liftlog_workouts": len(kept), "liftlog_export_version": EXPORT_VERSION},
    )
    return export
