"""Windowed aggregates: weekly rollups, training load, balance, effort and recovery.

All functions take the workouts to aggregate plus an explicit ``now`` and
return plain dicts. Weeks start on Sunday in the workout's local time.
Deleted workouts, exercises and sets are filtered before anything is summed.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from .calculations import (
    average_rpe,
    count_hard_sets,
    effort_density,
    fatigue_index,
    set_volume,
    workout_sets,
    working_sets,
)
from .records import ExerciseInstance, SetRecord, Workout

LIGHT_LOAD_BELOW = 0.8
HEAVY_LOAD_ABOVE = 1.2
DEFAULT_RPE_COVERAGE = 0.3
INTENSITY_BASELINE_PERCENT = 70.0

UPPER_BODY_MUSCLES = ("chest", "back", "shoulders", "biceps", "triceps", "arms")
LOWER_BODY_MUSCLES = ("quads", "hamstrings", "glutes", "calves", "legs")


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def local_date(ts: datetime, timezone_name: str | None = None) -> date:
    """Calendar date of ``ts``. Naive timestamps are already local."""
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(ZoneInfo(timezone_name or "UTC")).date()


def week_start(ts: datetime | date, timezone_name: str | None = None) -> date:
    """Sunday on or before the local date of ``ts``."""
    day = ts if not isinstance(ts, datetime) else local_date(ts, timezone_name)
    return day - timedelta(days=(day.weekday() + 1) % 7)


def workout_date(workout: Workout, timezone_name: str | None = None) -> date:
    return local_date(workout.started_at, workout.timezone or timezone_name)


def workouts_in_window(
    workouts: Iterable[Workout],
    now: datetime,
    weeks: int,
    timezone_name: str | None = None,
) -> list[Workout]:
    """Non-deleted workouts whose local date falls in the last ``weeks * 7`` days."""
    today = local_date(now, timezone_name)
    cutoff = today - timedelta(days=weeks * 7)
    return [
        w for w in workouts
        if not w.is_deleted and cutoff <= workout_date(w, timezone_name) <= today
    ]


def _live_exercises(workout: Workout) -> list[ExerciseInstance]:
    return [ex for ex in workout.exercises if not ex.is_deleted]


def rpe_coverage(sets: Iterable[SetRecord]) -> float:
    """Fraction of working sets that recorded an RPE."""
    population = working_sets(sets)
    if not population:
        return 0.0
    return sum(1 for s in population if s.rpe is not None) / len(population)


def _rpe_metrics(sets: list[SetRecord], threshold: float) -> dict[str, Any]:
    coverage = rpe_coverage(sets)
    if coverage <= 0 or coverage < threshold:
        return {"has_rpe_data": False, "avg_rpe": None, "hard_sets": None, "fatigue_index": None}
    avg = average_rpe(sets)
    return {
        "has_rpe_data": True,
        "avg_rpe": avg,
        "hard_sets": count_hard_sets(sets),
        "fatigue_index": fatigue_index(avg, len(sets)),
    }


# ---------------------------------------------------------------------------
# Weekly rollup
# ---------------------------------------------------------------------------


def weekly_rollup(
    workouts: Iterable[Workout],
    *,
    timezone_name: str | None = None,
    rpe_coverage_threshold: float = DEFAULT_RPE_COVERAGE,
) -> list[dict[str, Any]]:
    """Per-week volume, working sets and workout count, oldest week first.

    ``avg_rpe``, ``hard_sets`` and ``fatigue_index`` are None for weeks where
    fewer than ``rpe_coverage_threshold`` of working sets carry an RPE.
    """
    buckets: dict[date, dict[str, Any]] = {}
    for workout in workouts:
        if workout.is_deleted:
            continue
        key = week_start(workout_date(workout, timezone_name))
        bucket = buckets.setdefault(key, {"workouts": 0, "sets": []})
        bucket["workouts"] += 1
        bucket["sets"].extend(workout_sets(workout))

    rollup: list[dict[str, Any]] = []
    for key in sorted(buckets):
        week_sets = buckets[key]["sets"]
        rollup.append(
            {
                "week": key.isoformat(),
                "volume": sum((set_volume(s.weight_kg, s.reps) for s in week_sets), 0.0),
                "sets": len(week_sets),
                "workouts": buckets[key]["workouts"],
                **_rpe_metrics(week_sets, rpe_coverage_threshold),
            }
        )
    return rollup


# ---------------------------------------------------------------------------
# Training load
# ---------------------------------------------------------------------------


def load_ratio(current: float, average: float) -> float | None:
    """current / average, or None when there is no average to compare to."""
    if average is None or average <= 0:
        return None
    return current / average


def classify_training_load(ratio: float | None) -> str:
    """light below 0.8, heavy above 1.2, moderate in between (both ends inclusive)."""
    if ratio is None:
        return "moderate"
    if ratio < LIGHT_LOAD_BELOW:
        return "light"
    if ratio > HEAVY_LOAD_ABOVE:
        return "heavy"
    return "moderate"


def load_gauge_percent(ratio: float | None) -> float:
    """0-100 gauge position for a load ratio, piecewise linear per level."""
    if ratio is None:
        return 50.0
    level = classify_training_load(ratio)
    if level == "light":
        return max(10.0, ratio * 50)
    if level == "heavy":
        return min(95.0, 50 + (ratio - 1) * 50)
    return 40 + (ratio - LIGHT_LOAD_BELOW) * 50


def _percent_change(current: float, average: float) -> float:
    if average <= 0:
        return 0.0
    return (current - average) / average * 100


def _empty_training_load() -> dict[str, Any]:
    return {
        "total_sets": 0,
        "total_volume": 0.0,
        "avg_intensity_percent": 0.0,
        "session_density": 0.0,
        "failure_sets": 0,
        "load_level": "light",
        "load_percent": 0.0,
        "load_ratio": None,
        "weekly_loads": [],
        "current_week_sets": 0,
        "current_week_volume": 0.0,
        "avg_weekly_sets": 0.0,
        "avg_weekly_volume": 0.0,
        "sets_change_percent": 0.0,
        "volume_change_percent": 0.0,
        "intensity_change_percent": 0.0,
        "has_rpe_data": False,
        "avg_rpe": None,
        "hard_sets": None,
        "fatigue_index": None,
    }


def training_load(
    workouts: Iterable[Workout],
    now: datetime,
    weeks: int = 4,
    *,
    include_current_week: bool = True,
    timezone_name: str | None = None,
    rpe_coverage_threshold: float = DEFAULT_RPE_COVERAGE,
) -> dict[str, Any]:
    """Training load over the trailing window, compared against the weekly average.

    ``include_current_week`` decides whether the in-progress week counts toward
    the average it is compared with.
    """
    window = workouts_in_window(workouts, now, weeks, timezone_name)
    if not window:
        return _empty_training_load()

    sets_by_exercise: dict[str, list[SetRecord]] = defaultdict(list)
    all_sets: list[SetRecord] = []
    for workout in window:
        for exercise in _live_exercises(workout):
            live = working_sets(exercise.sets)
            sets_by_exercise[exercise.exercise_ref_id].extend(live)
            all_sets.extend(live)

    total_volume = sum((set_volume(s.weight_kg, s.reps) for s in all_sets), 0.0)

    # Intensity is relative to each exercise's heaviest set in the window.
    intensities: list[float] = []
    for exercise_sets in sets_by_exercise.values():
        top = max((s.weight_kg or 0 for s in exercise_sets), default=0)
        if top <= 0:
            continue
        intensities.extend(s.weight_kg / top * 100 for s in exercise_sets if s.weight_kg)
    avg_intensity = sum(intensities) / len(intensities) if intensities else 0.0

    total_minutes = sum(
        (w.duration_seconds / 60 for w in window if w.duration_seconds is not None),
        0.0,
    )
    session_density = total_volume / total_minutes if total_minutes > 0 else 0.0

    weekly = weekly_rollup(
        window,
        timezone_name=timezone_name,
        rpe_coverage_threshold=rpe_coverage_threshold,
    )
    current_key = week_start(local_date(now, timezone_name)).isoformat()
    current = next((w for w in weekly if w["week"] == current_key), None)
    baseline = weekly if include_current_week else [w for w in weekly if w["week"] != current_key]

    current_volume = current["volume"] if current else 0.0
    current_sets = current["sets"] if current else 0
    avg_volume = sum(w["volume"] for w in baseline) / len(baseline) if baseline else 0.0
    avg_sets = sum(w["sets"] for w in baseline) / len(baseline) if baseline else 0.0

    ratio = load_ratio(current_volume, avg_volume)
    return {
        "total_sets": len(all_sets),
        "total_volume": total_volume,
        "avg_intensity_percent": avg_intensity,
        "session_density": session_density,
        "failure_sets": sum(1 for s in all_sets if s.is_failure),
        "load_level": classify_training_load(ratio),
        "load_percent": load_gauge_percent(ratio),
        "load_ratio": ratio,
        "weekly_loads": [
            {"week": w["week"], "volume": w["volume"], "sets": w["sets"], "workouts": w["workouts"]}
            for w in weekly
        ],
        "current_week_sets": current_sets,
        "current_week_volume": current_volume,
        "avg_weekly_sets": avg_sets,
        "avg_weekly_volume": avg_volume,
        "sets_change_percent": _percent_change(current_sets, avg_sets),
        "volume_change_percent": _percent_change(current_volume, avg_volume),
        "intensity_change_percent": (
            avg_intensity - INTENSITY_BASELINE_PERCENT if avg_intensity > 0 else 0.0
        ),
        **_rpe_metrics(all_sets, rpe_coverage_threshold),
    }


# ---------------------------------------------------------------------------
# Balance
# ---------------------------------------------------------------------------


def classify_push_pull(movement_pattern: str | None) -> str | None:
    pattern = (movement_pattern or "").lower()
    if "push" in pattern or "press" in pattern:
        return "push"
    if "pull" in pattern or "row" in pattern:
        return "pull"
    return None


def classify_upper_lower(
    muscle_groups: Iterable[str],
    movement_pattern: str | None = None,
) -> tuple[bool, bool]:
    """(is_upper, is_lower) by substring match. Labels like "core" match neither."""
    haystacks = [g.lower() for g in muscle_groups]
    haystacks.append((movement_pattern or "").lower())
    is_upper = any(m in h for m in UPPER_BODY_MUSCLES for h in haystacks)
    is_lower = any(m in h for m in LOWER_BODY_MUSCLES for h in haystacks)
    return is_upper, is_lower


def volume_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, defaulting to 1.0 when the denominator is empty.

    The 1.0 only avoids a division by zero; it does not claim the two
    buckets are balanced.
    """
    if denominator <= 0:
        return 1.0
    return numerator / denominator


def balance_score(category_volumes: Mapping[str, float]) -> float:
    """0-100, 100 when every category carries an equal share of total volume.

    Returns 0 when there is no volume to distribute.
    """
    total = sum(category_volumes.values())
    if not category_volumes or total <= 0:
        return 0.0
    ideal = 100 / len(category_volumes)
    deviations = [abs(v / total * 100 - ideal) for v in category_volumes.values()]
    return max(0.0, 100 - (sum(deviations) / len(deviations)) * 2)


def _ranked(volumes: Mapping[str, float], label: str) -> list[dict[str, Any]]:
    return [
        {label: key, "volume": value}
        for key, value in sorted(volumes.items(), key=lambda kv: (-kv[1], kv[0]))
    ]


def movement_pattern_balance(
    workouts: Iterable[Workout],
    now: datetime,
    weeks: int = 4,
    *,
    timezone_name: str | None = None,
) -> dict[str, Any]:
    """Volume by primary muscle group and movement pattern, plus derived ratios."""
    muscle_volumes: dict[str, float] = defaultdict(float)
    pattern_volumes: dict[str, float] = defaultdict(float)
    buckets = {"push": 0.0, "pull": 0.0, "upper": 0.0, "lower": 0.0, "squat": 0.0, "hinge": 0.0}

    for workout in workouts_in_window(workouts, now, weeks, timezone_name):
        for exercise in _live_exercises(workout):
            definition = exercise.definition
            volume = sum(
                (set_volume(s.weight_kg, s.reps) for s in working_sets(exercise.sets)),
                0.0,
            )
            groups = definition.primary_muscle_groups
            muscle_volumes[groups[0] if groups else "Other"] += volume
            pattern_volumes[definition.movement_pattern or "Other"] += volume

            side = classify_push_pull(definition.movement_pattern)
            if side is not None:
                buckets[side] += volume

            pattern = (definition.movement_pattern or "").lower()
            if "squat" in pattern:
                buckets["squat"] += volume
            elif "hinge" in pattern or "deadlift" in pattern:
                buckets["hinge"] += volume

            is_upper, is_lower = classify_upper_lower(groups, definition.movement_pattern)
            if is_upper:
                buckets["upper"] += volume
            if is_lower:
                buckets["lower"] += volume

    return {
        "muscle_group_volume": _ranked(muscle_volumes, "group"),
        "movement_pattern_volume": _ranked(pattern_volumes, "pattern"),
        "push_volume": buckets["push"],
        "pull_volume": buckets["pull"],
        "upper_volume": buckets["upper"],
        "lower_volume": buckets["lower"],
        "squat_volume": buckets["squat"],
        "hinge_volume": buckets["hinge"],
        "push_pull_ratio": volume_ratio(buckets["push"], buckets["pull"]),
        "upper_lower_ratio": volume_ratio(buckets["upper"], buckets["lower"]),
        "muscle_balance_score": balance_score(muscle_volumes),
    }


# ---------------------------------------------------------------------------
# Effort
# ---------------------------------------------------------------------------


def effort_summary(
    workouts: Iterable[Workout],
    now: datetime,
    weeks: int = 4,
    *,
    timezone_name: str | None = None,
) -> dict[str, Any]:
    window = workouts_in_window(workouts, now, weeks, timezone_name)
    all_sets: list[SetRecord] = []
    total_volume = 0.0
    total_seconds = 0
    for workout in window:
        live = workout_sets(workout)
        all_sets.extend(live)
        total_volume += sum((set_volume(s.weight_kg, s.reps) for s in live), 0.0)
        if workout.duration_seconds is not None:
            total_seconds += workout.duration_seconds

    avg = average_rpe(all_sets)
    weekly = weekly_rollup(window, timezone_name=timezone_name, rpe_coverage_threshold=0.0)
    return {
        "avg_rpe": avg,
        "hard_set_count": count_hard_sets(all_sets),
        "total_sets": len(all_sets),
        "effort_density": effort_density(total_volume, total_seconds),
        "fatigue_index": fatigue_index(avg, len(all_sets)),
        # Weeks without any RPE report None rather than an assumed effort.
        "weekly_fatigue": [
            {"week": w["week"], "fatigue": w["fatigue_index"]} for w in weekly
        ],
    }


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------

# Hours until one session's fatigue has fully decayed, and the volume (kg)
# treated as full fatigue, per tracked muscle group.
MUSCLE_RECOVERY_HOURS = {
    "chest": 84,
    "shoulders": 72,
    "back": 72,
    "biceps": 48,
    "triceps": 48,
    "core": 36,
    "quads": 48,
    "hamstrings": 60,
    "glutes": 60,
    "calves": 36,
}
MAX_FATIGUE_VOLUME = {
    "chest": 5000,
    "shoulders": 3000,
    "back": 6000,
    "biceps": 1500,
    "triceps": 2000,
    "core": 2000,
    "quads": 8000,
    "hamstrings": 4000,
    "glutes": 5000,
    "calves": 2500,
}
FRESH_RECOVERY = 70.0
MODERATE_RECOVERY = 40.0


def recovery_to_intensity(recovery: float) -> int:
    """0 fresh, 1 moderate, 2 fatigued."""
    if recovery >= FRESH_RECOVERY:
        return 0
    if recovery >= MODERATE_RECOVERY:
        return 1
    return 2


def recovery_score(volume_kg: float, hours_ago: float, muscle_group: str) -> float:
    """0-100, fatigue decaying linearly to zero over the group's recovery window."""
    window = MUSCLE_RECOVERY_HOURS.get(muscle_group, 72)
    decay = 1 - hours_ago / window
    fatigue = volume_kg * decay if decay > 0 else 0.0
    fatigue_percent = min(100.0, fatigue / MAX_FATIGUE_VOLUME.get(muscle_group, 5000) * 100)
    return max(0.0, 100.0 - fatigue_percent)


def _as_aware(ts: datetime, timezone_name: str | None) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=ZoneInfo(timezone_name or "UTC"))
    return ts


def _suggestion(groups: Mapping[str, dict[str, Any]]) -> dict[str, Any]:
    upper = ("chest", "shoulders", "back", "biceps", "triceps")
    lower = ("quads", "hamstrings", "glutes", "calves")
    upper_recovery = sum(groups[m]["recovery"] for m in upper) / len(upper)
    lower_recovery = sum(groups[m]["recovery"] for m in lower) / len(lower)

    def fresh(names: tuple[str, ...]) -> list[str]:
        return [m for m in names if groups[m]["recovery"] >= FRESH_RECOVERY]

    if upper_recovery >= FRESH_RECOVERY and lower_recovery < 50:
        return {"type": "upper", "fresh_muscles": fresh(upper)}
    if lower_recovery >= FRESH_RECOVERY and upper_recovery < 50:
        return {"type": "lower", "fresh_muscles": fresh(lower)}
    if upper_recovery >= FRESH_RECOVERY and lower_recovery >= FRESH_RECOVERY:
        return {"type": "full", "fresh_muscles": fresh(upper + lower)}
    return {"type": "rest", "fresh_muscles": []}


def muscle_recovery(
    workouts: Iterable[Workout],
    now: datetime,
    *,
    timezone_name: str | None = None,
) -> dict[str, Any]:
    """Per-muscle-group recovery from working-set volume in the recovery window.

    Only completed, non-deleted workouts finished within the longest recovery
    window (and not after ``now``) count. Every primary muscle group of an
    exercise is credited with its volume. Groups with no recent volume are
    fully recovered.
    """
    now = _as_aware(now, timezone_name)
    cutoff = now - timedelta(hours=max(MUSCLE_RECOVERY_HOURS.values()))
    groups: dict[str, dict[str, Any]] = {
        m: {"volume": 0.0, "last_worked": None} for m in MUSCLE_RECOVERY_HOURS
    }

    for workout in workouts:
        if workout.is_deleted or workout.completed_at is None:
            continue
        completed = _as_aware(workout.completed_at, workout.timezone or timezone_name)
        if not cutoff <= completed <= now:
            continue
        for exercise in _live_exercises(workout):
            volume = sum(
                (set_volume(s.weight_kg, s.reps) for s in working_sets(exercise.sets)),
                0.0,
            )
            if volume <= 0:
                continue
            for name in exercise.definition.primary_muscle_groups:
                entry = groups.get(name.strip().lower())
                if entry is None:
                    continue
                entry["volume"] += volume
                if entry["last_worked"] is None or completed > entry["last_worked"]:
                    entry["last_worked"] = completed

    for name, entry in groups.items():
        recovery = 100.0
        if entry["volume"] > 0:
            hours_ago = (now - entry["last_worked"]).total_seconds() / 3600
            recovery = recovery_score(entry["volume"], hours_ago, name)
        entry["recovery"] = recovery
        entry["intensity"] = recovery_to_intensity(recovery)

    return {
        "muscle_groups": groups,
        "overall_recovery": round(sum(e["recovery"] for e in groups.values()) / len(groups)),
        "suggestion": _suggestion(groups),
    }
