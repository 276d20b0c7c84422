"""Consistency streaks over workout start dates."""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Any

from .aggregation import local_date, week_start

DEFAULT_WEEKLY_TARGET = 3
MAX_WEEKS = 52


def _local_dates(dates: Iterable[datetime | date], timezone_name: str | None) -> list[date]:
    result = []
    for value in dates:
        if isinstance(value, datetime):
            result.append(local_date(value, timezone_name))
        else:
            result.append(value)
    return result


def days_elapsed_in_week(today: date) -> int:
    """1 on Sunday through 7 on Saturday."""
    return (today.weekday() + 1) % 7 + 1


def expected_by_now(weekly_target: int, today: date) -> int:
    """Pro-rated workouts expected so far in the current week."""
    return math.floor(weekly_target * days_elapsed_in_week(today) / 7)


def _weekly_counts(days: list[date]) -> Counter[date]:
    return Counter(week_start(d) for d in days)


def weekly_streak(
    dates: Iterable[datetime | date],
    now: datetime,
    weekly_target: int = DEFAULT_WEEKLY_TARGET,
    *,
    timezone_name: str | None = None,
) -> int:
    """Consecutive weeks meeting ``weekly_target``, walking back from this week.

    The in-progress week is held to a pro-rated target and only extends the
    streak once it has at least one workout; a current week with nothing yet
    due is skipped rather than breaking the streak.
    """
    if weekly_target <= 0:
        raise ValueError("weekly_target must be positive")
    days = _local_dates(dates, timezone_name)
    if not days:
        return 0

    oldest = min(days)
    today = local_date(now, timezone_name)
    counts = _weekly_counts(days)
    this_week = week_start(today)

    streak = 0
    for offset in range(MAX_WEEKS):
        start = this_week - timedelta(weeks=offset)
        if start + timedelta(days=6) < oldest:
            break
        count = counts.get(start, 0)
        if offset == 0:
            if count < expected_by_now(weekly_target, today):
                break
            if count > 0:
                streak += 1
            continue
        if count < weekly_target:
            break
        streak += 1
    return streak


def _longest_weekly_streak(counts: Counter[date], today: date, weekly_target: int) -> int:
    if not counts:
        return 0
    this_week = week_start(today)
    longest = run = 0
    cursor = min(counts)
    while cursor <= this_week:
        count = counts.get(cursor, 0)
        if cursor == this_week:
            met = count > 0 and count >= expected_by_now(weekly_target, today)
        else:
            met = count >= weekly_target
        run = run + 1 if met else 0
        longest = max(longest, run)
        cursor += timedelta(weeks=1)
    return longest


def training_streaks(
    dates: Iterable[datetime | date],
    now: datetime,
    weekly_target: int = DEFAULT_WEEKLY_TARGET,
    *,
    timezone_name: str | None = None,
) -> dict[str, Any]:
    days = _local_dates(dates, timezone_name)
    today = local_date(now, timezone_name)
    counts = _weekly_counts(days)
    current = weekly_streak(days, now, weekly_target, timezone_name=timezone_name)
    this_week = counts.get(week_start(today), 0)
    return {
        "current_streak": current,
        "longest_streak": max(current, _longest_weekly_streak(counts, today, weekly_target)),
        "weekly_target": weekly_target,
        "is_on_track": this_week >= expected_by_now(weekly_target, today),
        "workouts_this_week": this_week,
    }


def daily_streak(
    dates: Iterable[datetime | date],
    now: datetime,
    *,
    timezone_name: str | None = None,
) -> dict[str, Any]:
    """Consecutive training days. A streak stays active through yesterday."""
    days = _local_dates(dates, timezone_name)
    today = local_date(now, timezone_name)
    unique = sorted(set(days), reverse=True)
    if not unique:
        return {
            "current_streak": 0,
            "longest_streak": 0,
            "total_workouts": 0,
            "workouts_this_week": 0,
            "worked_out_today": False,
            "streak_is_active": False,
        }

    yesterday = today - timedelta(days=1)
    worked_out_today = unique[0] == today

    current = 0
    check = today if worked_out_today else yesterday
    for day in unique:
        if day == check:
            current += 1
            check -= timedelta(days=1)
        elif day < check:
            break

    longest = run = 1
    for newer, older in zip(unique, unique[1:]):
        run = run + 1 if (newer - older).days == 1 else 1
        longest = max(longest, run)

    this_week = week_start(today)
    return {
        "current_streak": current,
        "longest_streak": longest,
        "total_workouts": len(days),
        "workouts_this_week": sum(1 for d in days if this_week <= d <= this_week + timedelta(days=6)),
        "worked_out_today": worked_out_today,
        "streak_is_active": unique[0] in (today, yesterday),
    }
