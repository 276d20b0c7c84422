"""Derived set/exercise/workout metrics.

Nothing here is ever persisted: every value is recomputed from raw records at
read time, so a formula change applies retroactively to all history. Missing
inputs yield a neutral value (0 or None) instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from datetime import datetime

from .records import SetRecord, Workout

OneRepMaxFormula = Callable[[float, float], float]

HIGH_REP_CUTOFF = 12
HIGH_REP_MULTIPLIER = 1.3
HARD_SET_MIN_RPE = 8.0
HARD_SET_MAX_RIR = 2


# ---------------------------------------------------------------------------
# Set level
# ---------------------------------------------------------------------------


def set_volume(weight_kg: float | None, reps: float | None) -> float:
    """Volume = weight x reps. Returns 0 for missing or non-positive inputs."""
    if weight_kg is None or reps is None or weight_kg <= 0 or reps <= 0:
        return 0.0
    return float(weight_kg) * float(reps)


def brzycki_1rm(weight_kg: float, reps: float) -> float:
    """Estimate 1RM using the Brzycki formula: weight x 36 / (37 - reps)."""
    if reps <= 0 or weight_kg <= 0:
        return 0.0
    if reps == 1:
        return float(weight_kg)
    if reps > HIGH_REP_CUTOFF:
        return weight_kg * HIGH_REP_MULTIPLIER
    return weight_kg * 36 / (37 - reps)


def epley_1rm(weight_kg: float, reps: float) -> float:
    """Estimate 1RM using the Epley formula: weight x (1 + reps / 30)."""
    if reps <= 0 or weight_kg <= 0:
        return 0.0
    if reps == 1:
        return float(weight_kg)
    if reps > HIGH_REP_CUTOFF:
        return weight_kg * HIGH_REP_MULTIPLIER
    return weight_kg * (1 + reps / 30)


ONE_REP_MAX_FORMULAS: dict[str, OneRepMaxFormula] = {
    "brzycki": brzycki_1rm,
    "epley": epley_1rm,
}

DEFAULT_ONE_RM_FORMULA = "brzycki"


def resolve_one_rm_formula(formula: str | OneRepMaxFormula) -> OneRepMaxFormula:
    """Return the callable for a formula name (or pass a callable through)."""
    if callable(formula):
        return formula
    resolved = ONE_REP_MAX_FORMULAS.get(str(formula).strip().lower())
    if resolved is None:
        allowed = ", ".join(sorted(ONE_REP_MAX_FORMULAS))
        raise ValueError(f"Unknown one-rep-max formula {formula!r}; expected one of: {allowed}")
    return resolved


def estimated_1rm(
    weight_kg: float | None,
    reps: float | None,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> float:
    if weight_kg is None or reps is None:
        return 0.0
    return resolve_one_rm_formula(formula)(weight_kg, reps)


def relative_intensity(weight_kg: float | None, one_rm: float | None) -> float:
    """Fraction of 1RM lifted. 0 when either side is missing or 1RM <= 0."""
    if weight_kg is None or one_rm is None or one_rm <= 0:
        return 0.0
    return weight_kg / one_rm


def is_hard_set(s: SetRecord) -> bool:
    """RPE >= 8 or RIR <= 2. Warmups and deleted sets never qualify."""
    if s.is_deleted or s.is_warmup:
        return False
    if s.rpe is not None and s.rpe >= HARD_SET_MIN_RPE:
        return True
    return s.rir is not None and s.rir <= HARD_SET_MAX_RIR


# ---------------------------------------------------------------------------
# Exercise level
# ---------------------------------------------------------------------------


def working_sets(sets: Iterable[SetRecord], exclude_warmups: bool = True) -> list[SetRecord]:
    """Non-deleted sets, optionally without warmups. The one filter every aggregate uses."""
    return [
        s for s in sets
        if not s.is_deleted and not (exclude_warmups and s.is_warmup)
    ]


def exercise_volume(sets: Iterable[SetRecord], exclude_warmups: bool = True) -> float:
    return sum(
        (set_volume(s.weight_kg, s.reps) for s in working_sets(sets, exclude_warmups)),
        0.0,
    )


def max_weight(sets: Iterable[SetRecord], exclude_warmups: bool = True) -> float:
    return max(
        (
            s.weight_kg
            for s in working_sets(sets, exclude_warmups)
            if s.weight_kg is not None and s.weight_kg > 0
        ),
        default=0.0,
    )


def best_1rm(
    sets: Iterable[SetRecord],
    exclude_warmups: bool = True,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> float:
    fn = resolve_one_rm_formula(formula)
    return max(
        (
            fn(s.weight_kg, s.reps)
            for s in working_sets(sets, exclude_warmups)
            if s.weight_kg and s.reps
        ),
        default=0.0,
    )


def average_rpe(sets: Iterable[SetRecord]) -> float | None:
    """Mean RPE over working sets that recorded one; None when none did."""
    values = [s.rpe for s in working_sets(sets) if s.rpe is not None]
    if not values:
        return None
    return sum(values) / len(values)


def count_hard_sets(sets: Iterable[SetRecord]) -> int:
    return sum(1 for s in sets if is_hard_set(s))


def effort_density(volume_kg: float, duration_seconds: float | None) -> float:
    """Volume per minute of session time (kg/min)."""
    if duration_seconds is None or duration_seconds <= 0:
        return 0.0
    return volume_kg / (duration_seconds / 60)


def fatigue_index(avg_rpe: float | None, total_sets: int) -> float:
    if avg_rpe is None:
        return 0.0
    return avg_rpe * total_sets


# ---------------------------------------------------------------------------
# Workout level
# ---------------------------------------------------------------------------


def duration_seconds(started_at: datetime, completed_at: datetime | None) -> int | None:
    """Elapsed whole seconds; None while the workout is still open."""
    if completed_at is None:
        return None
    return math.floor((completed_at - started_at).total_seconds())


def workout_sets(workout: Workout, exclude_warmups: bool = True) -> list[SetRecord]:
    """Working sets of all non-deleted exercises in a workout."""
    result: list[SetRecord] = []
    for exercise in workout.exercises:
        if exercise.is_deleted:
            continue
        result.extend(working_sets(exercise.sets, exclude_warmups))
    return result


def workout_volume(workout: Workout) -> float:
    return sum(
        (exercise_volume(ex.sets) for ex in workout.exercises if not ex.is_deleted),
        0.0,
    )


def count_working_sets(workout: Workout) -> int:
    return len(workout_sets(workout))


def count_exercises(workout: Workout) -> int:
    return sum(1 for ex in workout.exercises if not ex.is_deleted)
