"""Short-window progression detection.

A trend is always a local one: the most recent ``window_size`` sessions,
normalized to the first of them, fitted with a least-squares line. It is
recomputed from raw sessions on every call.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any

from .calculations import (
    DEFAULT_ONE_RM_FORMULA,
    OneRepMaxFormula,
    best_1rm,
    exercise_volume,
    max_weight,
    working_sets,
)
from .records import SetRecord, Workout

DEFAULT_WINDOW_SIZE = 4
DEFAULT_THRESHOLD = 0.005

SERIES_METRICS = ("max_weight", "est_1rm", "volume")

Point = tuple[date | datetime, float]


def trend_slope(values: Sequence[float]) -> float | None:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return None
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    numerator = sum((i - mean_x) * (y - mean_y) for i, y in enumerate(values))
    denominator = sum((i - mean_x) ** 2 for i in range(n))
    return numerator / denominator


def detect_progression(
    points: Sequence[Point],
    window_size: int = DEFAULT_WINDOW_SIZE,
    threshold: float = DEFAULT_THRESHOLD,
) -> str | None:
    """Classify the recent trend as "positive", "regression" or "plateau".

    Returns None (no signal) when there are fewer than ``window_size`` points
    or the first value of the window is not positive.
    """
    if window_size < 2:
        raise ValueError("window_size must be at least 2")
    if len(points) < window_size:
        return None

    ordered = sorted(points, key=lambda p: p[0])
    recent = [value for _, value in ordered[-window_size:]]
    first = recent[0]
    if first is None or first <= 0:
        return None

    slope = trend_slope([value / first for value in recent])
    if slope is None:
        return None
    if slope > threshold:
        return "positive"
    if slope < -threshold:
        return "regression"
    return "plateau"


def _session_value(
    sets: list[SetRecord],
    metric: str,
    formula: str | OneRepMaxFormula,
) -> float:
    if metric == "max_weight":
        return max_weight(sets)
    if metric == "est_1rm":
        return best_1rm(sets, formula=formula)
    if metric == "volume":
        return exercise_volume(sets)
    raise ValueError(f"Unknown series metric {metric!r}; expected one of: {', '.join(SERIES_METRICS)}")


def session_series(
    workouts: Iterable[Workout],
    exercise_ref_id: str,
    metric: str = "max_weight",
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> list[Point]:
    """One point per session that trained ``exercise_ref_id``, oldest first.

    Several instances of the same exercise in one workout count as one session.
    Sessions with neither weight nor volume are skipped.
    """
    points: list[Point] = []
    for workout in sorted(workouts, key=lambda w: (w.started_at, w.id)):
        if workout.is_deleted:
            continue
        session_sets: list[SetRecord] = []
        for exercise in workout.exercises:
            if not exercise.is_deleted and exercise.exercise_ref_id == exercise_ref_id:
                session_sets.extend(working_sets(exercise.sets))
        if max_weight(session_sets) <= 0 and exercise_volume(session_sets) <= 0:
            continue
        points.append((workout.started_at, _session_value(session_sets, metric, formula)))
    return points


def progression_report(
    workouts: Iterable[Workout],
    exercise_ref_id: str,
    *,
    window_size: int = DEFAULT_WINDOW_SIZE,
    threshold: float = DEFAULT_THRESHOLD,
    formula: str | OneRepMaxFormula = DEFAULT_ONE_RM_FORMULA,
) -> dict[str, Any]:
    materialized = list(workouts)
    series: dict[str, list[dict[str, Any]]] = {}
    trends: dict[str, str | None] = {}
    for metric in SERIES_METRICS:
        points = session_series(materialized, exercise_ref_id, metric, formula)
        series[metric] = [{"date": ts.isoformat(), "value": value} for ts, value in points]
        trends[metric] = detect_progression(points, window_size, threshold)

    return {
        "exercise_ref_id": exercise_ref_id,
        "sessions": len(series["max_weight"]),
        "window_size": window_size,
        "series": series,
        "trends": trends,
    }
