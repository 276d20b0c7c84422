"""Personal-record detection derived entirely from history.

There is no stored "current PR" value anywhere. A PR is decided by comparing a
candidate set against the maxima of the supplied historical population, and
PR timelines are rebuilt by replaying history in chronological order.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from .aggregation import local_date
from .calculations import (
    DEFAULT_ONE_RM_FORMULA,
    OneRepMaxFormula,
    estimated_1rm,
    resolve_one_rm_formula,
    set_volume,
    working_sets,
)
from .records import SetRecord, Workout

# Priority order for single-celebration UIs.
PR_METRICS: tuple[str, ...] = ("weight", "1rm", "volume", "reps")

# First-ever attempts only count as celebrations above these floors.
MEANINGFUL_FIRST_WEIGHT_KG = 20.0
MEANINGFUL_FIRST_REPS = 5

_PR_UNITS = {"weight": "kg", "1rm": "kg e1RM", "volume": "kg", "reps": "reps"}


def metric_value(
    s: SetRecord,
    metric: str,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> float:
    """Value of one tracked metric for a set; 0 when inputs are missing."""
    if metric == "weight":
        return float(s.weight_kg or 0)
    if metric == "1rm":
        if not s.weight_kg or not s.reps:
            return 0.0
        return estimated_1rm(s.weight_kg, s.reps, formula)
    if metric == "volume":
        return set_volume(s.weight_kg, s.reps)
    if metric == "reps":
        return float(s.reps or 0)
    raise ValueError(f"Unknown PR metric {metric!r}; expected one of: {', '.join(PR_METRICS)}")


def historical_max(
    history: Iterable[SetRecord],
    metric: str,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> float:
    """Max of ``metric`` over non-deleted working sets; 0 for an empty population."""
    return max(
        (metric_value(s, metric, formula) for s in working_sets(history)),
        default=0.0,
    )


def is_personal_record(
    value: float | None,
    history: Iterable[SetRecord],
    metric: str,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> bool:
    """Strict comparison: ``value`` must exceed the historical max. Ties never count.

    Any positive value against an empty history is a PR.
    """
    if value is None or value <= 0:
        return False
    return value > historical_max(history, metric, formula)


def detect_set_prs(
    candidate: SetRecord,
    history: Iterable[SetRecord],
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> list[str]:
    """Every metric on which ``candidate`` is a PR, in ``PR_METRICS`` order.

    The candidate itself is dropped from ``history`` if present. With no prior
    working sets, weight, 1RM and volume bootstrap as PRs but reps do not.
    """
    if candidate.is_warmup or candidate.is_deleted:
        return []
    fn = resolve_one_rm_formula(formula)
    population = [s for s in working_sets(history) if s.id != candidate.id]

    weight = candidate.weight_kg or 0
    reps = candidate.reps or 0
    checks: list[tuple[str, bool]] = [
        ("weight", weight > 0),
        ("1rm", weight > 0 and reps > 0),
        ("volume", weight > 0 and reps > 0),
        ("reps", reps > 0 and bool(population)),
    ]
    prs: list[str] = []
    for metric, applicable in checks:
        if not applicable:
            continue
        if is_personal_record(metric_value(candidate, metric, fn), population, metric, fn):
            prs.append(metric)
    return prs


# ---------------------------------------------------------------------------
# Celebration policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Celebration:
    pr_type: str
    new_value: float
    previous_value: float | None
    unit: str


def select_celebration(
    candidate: SetRecord,
    history: Iterable[SetRecord],
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> Celebration | None:
    """Collapse the detected PRs to at most one celebration.

    Priority: weight, then 1RM, then volume. With no history at all, a first
    attempt is celebrated only when it is meaningful (>= 20 kg or >= 5 reps).
    """
    if candidate.is_warmup or candidate.is_deleted:
        return None
    if not candidate.weight_kg or candidate.weight_kg <= 0 or not candidate.reps or candidate.reps <= 0:
        return None
    fn = resolve_one_rm_formula(formula)
    population = [s for s in working_sets(history) if s.id != candidate.id]

    if not population:
        if candidate.weight_kg >= MEANINGFUL_FIRST_WEIGHT_KG or candidate.reps >= MEANINGFUL_FIRST_REPS:
            return Celebration(
                pr_type="weight",
                new_value=candidate.weight_kg,
                previous_value=None,
                unit=_PR_UNITS["weight"],
            )
        return None

    detected = detect_set_prs(candidate, population, fn)
    for metric in ("weight", "1rm", "volume"):
        if metric in detected:
            return Celebration(
                pr_type=metric,
                new_value=metric_value(candidate, metric, fn),
                previous_value=historical_max(population, metric, fn),
                unit=_PR_UNITS[metric],
            )
    return None


# ---------------------------------------------------------------------------
# PR timelines
# ---------------------------------------------------------------------------


def _chronological(workouts: Iterable[Workout]) -> list[Workout]:
    return sorted(
        (w for w in workouts if not w.is_deleted),
        key=lambda w: (w.started_at, w.id),
    )


def pr_history(
    workouts: Iterable[Workout],
    exercise_ref_id: str,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> list[dict[str, Any]]:
    """Replay one exercise's working sets and emit an event per exceeded running max."""
    fn = resolve_one_rm_formula(formula)
    running = {metric: 0.0 for metric in PR_METRICS}
    events: list[dict[str, Any]] = []

    for workout in _chronological(workouts):
        for exercise in workout.exercises:
            if exercise.is_deleted or exercise.exercise_ref_id != exercise_ref_id:
                continue
            for s in working_sets(exercise.sets):
                for metric in PR_METRICS:
                    value = metric_value(s, metric, fn)
                    if value <= running[metric]:
                        continue
                    events.append(
                        {
                            "type": metric,
                            "value": value,
                            "previous_value": running[metric] or None,
                            "is_new": running[metric] > 0,
                            "date": workout.started_at,
                            "workout_id": workout.id,
                            "set_id": s.id,
                            "exercise_ref_id": exercise_ref_id,
                            "exercise_name": exercise.definition.name,
                            "timezone": workout.timezone,
                        }
                    )
                    running[metric] = value
    return events


def recent_prs(
    workouts: Iterable[Workout],
    now: datetime,
    days_back: int = 30,
    limit: int = 5,
    *,
    metrics: tuple[str, ...] = ("weight",),
    timezone_name: str | None = None,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> list[dict[str, Any]]:
    """Badge view: full-history PR events that landed in the last ``days_back`` days.

    Newest first, at most ``limit`` entries.
    """
    materialized = _chronological(workouts)
    ref_ids: list[str] = []
    for workout in materialized:
        for exercise in workout.exercises:
            if not exercise.is_deleted and exercise.exercise_ref_id not in ref_ids:
                ref_ids.append(exercise.exercise_ref_id)

    cutoff = local_date(now, timezone_name) - timedelta(days=days_back)
    recent: list[dict[str, Any]] = []
    for ref_id in ref_ids:
        for event in pr_history(materialized, ref_id, formula):
            if event["type"] not in metrics:
                continue
            if local_date(event["date"], event["timezone"] or timezone_name) >= cutoff:
                recent.append(event)

    recent.sort(key=lambda e: e["date"], reverse=True)
    return recent[:limit]
