"""Tests for weekly and daily consistency streaks."""

from datetime import date, datetime, timedelta, timezone

import pytest

from liftlog.streaks import (
    daily_streak,
    days_elapsed_in_week,
    expected_by_now,
    training_streaks,
    weekly_streak,
)

# Wednesday 2024-03-06; the current week started Sunday 2024-03-03.
NOW = datetime(2024, 3, 6, 18, 0, tzinfo=timezone.utc)
THIS_WEEK = date(2024, 3, 3)


def _week(start: date, *days: int) -> list[date]:
    return [start + timedelta(days=d) for d in days]


def _weeks_back(n: int) -> date:
    return THIS_WEEK - timedelta(weeks=n)


class TestProRating:
    @pytest.mark.parametrize(
        ("day", "elapsed"),
        [(date(2024, 3, 3), 1), (date(2024, 3, 6), 4), (date(2024, 3, 9), 7)],
    )
    def test_days_elapsed(self, day, elapsed):
        assert days_elapsed_in_week(day) == elapsed

    def test_expected_by_now(self):
        assert expected_by_now(3, date(2024, 3, 3)) == 0
        assert expected_by_now(3, date(2024, 3, 6)) == 1
        assert expected_by_now(3, date(2024, 3, 9)) == 3


class TestWeeklyStreak:
    def test_daily_training_for_three_weeks(self):
        start = _weeks_back(3)
        dates = [start + timedelta(days=d) for d in range((NOW.date() - start).days + 1)]
        assert weekly_streak(dates, NOW, 3) >= 3
        assert weekly_streak(dates, NOW, 3) == 4

    def test_no_workouts(self):
        assert weekly_streak([], NOW) == 0

    def test_invalid_target(self):
        with pytest.raises(ValueError):
            weekly_streak([NOW], NOW, 0)

    def test_empty_current_week_is_not_yet_due(self):
        sunday = datetime(2024, 3, 3, 9, 0, tzinfo=timezone.utc)
        dates = _week(_weeks_back(1), 0, 2, 4) + _week(_weeks_back(2), 1, 3, 5)
        assert weekly_streak(dates, sunday, 3) == 2

    def test_current_week_behind_pace_breaks(self):
        saturday = datetime(2024, 3, 9, 9, 0, tzinfo=timezone.utc)
        dates = _week(THIS_WEEK, 1) + _week(_weeks_back(1), 0, 2, 4)
        assert weekly_streak(dates, saturday, 3) == 0

    def test_short_past_week_breaks(self):
        dates = (
            _week(THIS_WEEK, 1)
            + _week(_weeks_back(1), 0, 2, 4)
            + _week(_weeks_back(2), 1, 3)
            + _week(_weeks_back(3), 0, 2, 4)
        )
        assert weekly_streak(dates, NOW, 3) == 2

    def test_local_dates(self):
        # 03:00 UTC Sunday is still Saturday evening in Los Angeles.
        late = datetime(2024, 3, 3, 3, 0, tzinfo=timezone.utc)
        sunday = datetime(2024, 3, 3, 20, 0, tzinfo=timezone.utc)
        dates = [late] + _week(_weeks_back(1), 0, 2) + _week(_weeks_back(2), 0, 2, 4)
        assert weekly_streak(dates, sunday, 3, timezone_name="America/Los_Angeles") == 2
        assert weekly_streak(dates, sunday, 3) == 1


class TestTrainingStreaks:
    def test_longest_uses_full_history(self):
        dates = []
        for n in range(8, 4, -1):
            dates += _week(_weeks_back(n), 1, 3, 5)
        dates += _week(_weeks_back(1), 1, 3, 5) + _week(THIS_WEEK, 1)

        streaks = training_streaks(dates, NOW, 3)

        assert streaks["current_streak"] == 2
        assert streaks["longest_streak"] == 4
        assert streaks["weekly_target"] == 3
        assert streaks["is_on_track"] is True
        assert streaks["workouts_this_week"] == 1

    def test_off_track(self):
        saturday = datetime(2024, 3, 9, 9, 0, tzinfo=timezone.utc)
        streaks = training_streaks(_week(THIS_WEEK, 1), saturday, 3)
        assert streaks["is_on_track"] is False
        assert streaks["current_streak"] == 0


class TestDailyStreak:
    def test_active_through_yesterday(self):
        dates = [date(2024, 3, 4), date(2024, 3, 5), date(2024, 3, 1), date(2024, 2, 29)]
        streak = daily_streak(dates, NOW)
        assert streak == {
            "current_streak": 2,
            "longest_streak": 2,
            "total_workouts": 4,
            "workouts_this_week": 2,
            "worked_out_today": False,
            "streak_is_active": True,
        }

    def test_broken_streak(self):
        streak = daily_streak([date(2024, 3, 2), date(2024, 3, 3)], NOW)
        assert streak["current_streak"] == 0
        assert streak["longest_streak"] == 2
        assert streak["streak_is_active"] is False

    def test_today_counts(self):
        streak = daily_streak([NOW, NOW - timedelta(days=1), NOW - timedelta(hours=2)], NOW)
        assert streak["worked_out_today"] is True
        assert streak["current_streak"] == 2
        assert streak["total_workouts"] == 3

    def test_empty(self):
        assert daily_streak([], NOW)["current_streak"] == 0
