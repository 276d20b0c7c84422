"""Tests for weekly rollups, training load, balance, effort and recovery aggregates."""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from liftlog.aggregation import (
    balance_score,
    classify_push_pull,
    classify_training_load,
    classify_upper_lower,
    effort_summary,
    load_gauge_percent,
    load_ratio,
    local_date,
    movement_pattern_balance,
    muscle_recovery,
    recovery_score,
    recovery_to_intensity,
    rpe_coverage,
    training_load,
    volume_ratio,
    week_start,
    weekly_rollup,
    workouts_in_window,
)

from .builders import BASE, make_exercise, make_set, make_workout, simple_workout

# Wednesday of the week starting Sunday 2024-03-03.
NOW = BASE + timedelta(days=2)


def _rpe_workout(workout_id: str, started_at: datetime, rpes: list[float | None]):
    instance_id = f"{workout_id}-bench"
    return make_workout(
        workout_id,
        started_at,
        [
            make_exercise(
                instance_id,
                [
                    make_set(f"{instance_id}-{n}", 100, 5, number=n, parent=instance_id, rpe=rpe)
                    for n, rpe in enumerate(rpes, start=1)
                ],
                workout_id=workout_id,
            )
        ],
    )


class TestCalendar:
    def test_week_starts_on_sunday(self):
        assert week_start(BASE) == date(2024, 3, 3)
        assert week_start(date(2024, 3, 3)) == date(2024, 3, 3)
        assert week_start(date(2024, 3, 9)) == date(2024, 3, 3)

    def test_week_uses_local_date(self):
        # Saturday evening in New York, Sunday in UTC.
        ts = datetime(2024, 3, 3, 2, 0, tzinfo=timezone.utc)
        assert week_start(ts) == date(2024, 3, 3)
        assert week_start(ts, "America/New_York") == date(2024, 2, 25)

    def test_naive_timestamps_are_local(self):
        assert local_date(datetime(2024, 3, 3, 23, 30), "Asia/Tokyo") == date(2024, 3, 3)

    def test_window_excludes_deleted_and_future(self):
        workouts = [
            simple_workout("in", NOW - timedelta(days=3), 100, 5),
            simple_workout("old", NOW - timedelta(days=40), 100, 5),
            replace(simple_workout("deleted", NOW - timedelta(days=1), 100, 5), is_deleted=True),
            simple_workout("future", NOW + timedelta(days=2), 100, 5),
        ]
        assert [w.id for w in workouts_in_window(workouts, NOW, 4)] == ["in"]


class TestWeeklyRollup:
    def test_buckets_by_week(self):
        workouts = [
            simple_workout("a", BASE, 100, 10),
            simple_workout("b", BASE + timedelta(days=1), 50, 10, sets=2),
            simple_workout("c", BASE - timedelta(days=7), 80, 5),
        ]
        rollup = weekly_rollup(workouts)
        assert [(w["week"], w["volume"], w["sets"], w["workouts"]) for w in rollup] == [
            ("2024-02-25", 400, 1, 1),
            ("2024-03-03", 2000, 3, 2),
        ]

    def test_rpe_below_coverage_threshold_is_hidden(self):
        rollup = weekly_rollup([_rpe_workout("w1", BASE, [9, None, None, None])])
        assert rollup[0]["has_rpe_data"] is False
        assert rollup[0]["avg_rpe"] is None
        assert rollup[0]["fatigue_index"] is None

    def test_rpe_above_coverage_threshold(self):
        rollup = weekly_rollup([_rpe_workout("w1", BASE, [9, 7, None, None])])
        assert rollup[0]["has_rpe_data"] is True
        assert rollup[0]["avg_rpe"] == 8
        assert rollup[0]["hard_sets"] == 1
        assert rollup[0]["fatigue_index"] == 32

    def test_rpe_coverage(self):
        sets = [make_set("a", rpe=8), make_set("b"), make_set("c", rpe=9, warmup=True)]
        assert rpe_coverage(sets) == 0.5
        assert rpe_coverage([]) == 0


class TestLoadClassification:
    @pytest.mark.parametrize(
        ("ratio", "level"),
        [(0.79, "light"), (0.8, "moderate"), (1.0, "moderate"), (1.2, "moderate"), (1.21, "heavy")],
    )
    def test_boundaries(self, ratio, level):
        assert classify_training_load(ratio) == level

    def test_no_baseline_is_moderate(self):
        assert classify_training_load(None) == "moderate"
        assert load_gauge_percent(None) == 50

    def test_gauge(self):
        assert load_gauge_percent(0.1) == 10
        assert load_gauge_percent(0.5) == 25
        assert load_gauge_percent(0.8) == pytest.approx(40)
        assert load_gauge_percent(1.0) == pytest.approx(50)
        assert load_gauge_percent(1.2) == pytest.approx(60)
        assert load_gauge_percent(1.5) == pytest.approx(75)
        assert load_gauge_percent(3.0) == 95

    def test_load_ratio(self):
        assert load_ratio(1500, 1000) == 1.5
        assert load_ratio(1500, 0) is None


class TestTrainingLoad:
    def _history(self, current_volume_sets: int):
        workouts = [
            simple_workout(f"p{n}", BASE - timedelta(days=7 * n), 100, 10)
            for n in (1, 2, 3)
        ]
        workouts.append(simple_workout("now", BASE, 100, 10, sets=current_volume_sets))
        return workouts

    def test_steady_training_is_moderate(self):
        load = training_load(self._history(1), NOW)
        assert load["load_ratio"] == pytest.approx(1.0)
        assert load["load_level"] == "moderate"
        assert load["load_percent"] == pytest.approx(50)
        assert load["total_sets"] == 4
        assert load["total_volume"] == 4000

    def test_spike_is_heavy(self):
        load = training_load(self._history(2), NOW)
        # 2000 against (3000 + 2000) / 4
        assert load["load_ratio"] == pytest.approx(1.6)
        assert load["load_level"] == "heavy"
        assert load["load_percent"] == pytest.approx(80)
        assert load["current_week_volume"] == 2000
        assert load["volume_change_percent"] == pytest.approx(60)

    def test_excluding_current_week_from_baseline(self):
        load = training_load(self._history(2), NOW, include_current_week=False)
        assert load["load_ratio"] == pytest.approx(2.0)
        assert load["avg_weekly_volume"] == 1000
        assert load["load_percent"] == 95

    def test_empty_window(self):
        load = training_load([], NOW)
        assert load["load_level"] == "light"
        assert load["load_percent"] == 0
        assert load["total_sets"] == 0

    def test_zero_average_volume(self):
        workout = make_workout("bw", BASE, [make_exercise("we1", [make_set("s1", None, 15)])])
        load = training_load([workout], NOW)
        assert load["load_ratio"] is None
        assert load["load_level"] == "moderate"
        assert load["load_percent"] == 50

    def test_intensity_relative_to_top_set(self):
        workout = make_workout(
            "w1",
            BASE,
            [make_exercise("we1", [make_set("s1", 100, 5), make_set("s2", 80, 5, number=2)])],
        )
        load = training_load([workout], NOW)
        assert load["avg_intensity_percent"] == pytest.approx(90)
        assert load["intensity_change_percent"] == pytest.approx(20)

    def test_session_density(self):
        workout = simple_workout("w1", BASE, 100, 10, sets=3)
        load = training_load([workout], NOW)
        # 3000 kg over 60 minutes
        assert load["session_density"] == pytest.approx(50)

    def test_failure_sets(self):
        workout = make_workout("w1", BASE, [make_exercise("we1", [make_set("s1", 100, 5, failure=True)])])
        assert training_load([workout], NOW)["failure_sets"] == 1


class TestBalanceHelpers:
    def test_push_pull(self):
        assert classify_push_pull("vertical_press") == "push"
        assert classify_push_pull("horizontal_pull") == "pull"
        assert classify_push_pull("row") == "pull"
        assert classify_push_pull("squat") is None
        assert classify_push_pull(None) is None

    def test_upper_lower(self):
        assert classify_upper_lower(["chest"]) == (True, False)
        assert classify_upper_lower(["quads", "glutes"]) == (False, True)
        assert classify_upper_lower(["core"]) == (False, False)
        assert classify_upper_lower([], "legs") == (False, True)

    def test_volume_ratio(self):
        assert volume_ratio(1000, 500) == 2
        assert volume_ratio(1000, 0) == 1.0
        assert volume_ratio(0, 0) == 1.0

    def test_balance_score(self):
        assert balance_score({"chest": 500, "back": 500}) == 100
        assert balance_score({"chest": 1000, "back": 500, "quads": 500}) == pytest.approx(100 - 200 / 9)
        assert balance_score({}) == 0
        assert balance_score({"chest": 0}) == 0


class TestMovementPatternBalance:
    def _workouts(self):
        return [
            make_workout(
                "w1",
                BASE,
                [
                    make_exercise("bench", [make_set("b1", 100, 10, parent="bench")], ref_id="bench"),
                    make_exercise(
                        "row",
                        [make_set("r1", 50, 10, parent="row")],
                        ref_id="row",
                        name="Barbell Row",
                        pattern="horizontal_pull",
                        muscles=("back",),
                        order=1,
                    ),
                    make_exercise(
                        "squat",
                        [make_set("q1", 100, 5, parent="squat")],
                        ref_id="squat",
                        name="Back Squat",
                        pattern="squat",
                        muscles=("quads",),
                        order=2,
                    ),
                ],
            )
        ]

    def test_distribution(self):
        balance = movement_pattern_balance(self._workouts(), NOW)
        assert balance["muscle_group_volume"] == [
            {"group": "chest", "volume": 1000},
            {"group": "back", "volume": 500},
            {"group": "quads", "volume": 500},
        ]
        assert balance["movement_pattern_volume"][0] == {"pattern": "horizontal_push", "volume": 1000}

    def test_ratios(self):
        balance = movement_pattern_balance(self._workouts(), NOW)
        assert balance["push_pull_ratio"] == 2
        assert balance["upper_lower_ratio"] == 3
        assert balance["squat_volume"] == 500
        assert balance["hinge_volume"] == 0

    def test_missing_muscle_groups_bucket_to_other(self):
        workout = make_workout("w1", BASE, [make_exercise("we1", [make_set("s1", 10, 10)], muscles=(), pattern=None)])
        balance = movement_pattern_balance([workout], NOW)
        assert balance["muscle_group_volume"] == [{"group": "Other", "volume": 100}]
        assert balance["push_pull_ratio"] == 1.0

    def test_nothing_in_window(self):
        balance = movement_pattern_balance(self._workouts(), NOW + timedelta(days=60))
        assert balance["muscle_group_volume"] == []
        assert balance["muscle_balance_score"] == 0


class TestEffortSummary:
    def test_summary(self):
        workouts = [
            _rpe_workout("w1", BASE, [8, 9]),
            _rpe_workout("w0", BASE - timedelta(days=7), [None, None]),
        ]
        summary = effort_summary(workouts, NOW)
        assert summary["avg_rpe"] == 8.5
        assert summary["hard_set_count"] == 2
        assert summary["total_sets"] == 4
        # 2000 kg over 120 minutes
        assert summary["effort_density"] == pytest.approx(2000 / 120)
        assert summary["fatigue_index"] == pytest.approx(34)
        assert summary["weekly_fatigue"] == [
            {"week": "2024-02-25", "fatigue": None},
            {"week": "2024-03-03", "fatigue": 17},
        ]

    def test_no_rpe_at_all(self):
        summary = effort_summary([simple_workout("w1", BASE, 100, 5)], NOW)
        assert summary["avg_rpe"] is None
        assert summary["fatigue_index"] == 0


def _finished(workout_id: str, hours_ago: float, exercises, **kwargs):
    """Workout of one hour that completed ``hours_ago`` before NOW."""
    return make_workout(
        workout_id,
        NOW - timedelta(hours=hours_ago + 1),
        exercises,
        **kwargs,
    )


class TestMuscleRecovery:
    def _history(self):
        bench = make_exercise(
            "we-bench",
            [
                make_set("b0", 60, 10, number=0, warmup=True),
                make_set("b1", 100, 10, number=1),
                make_set("b2", 100, 10, number=2),
                make_set("b3", 500, 10, number=3, deleted=True),
            ],
            muscles=("Chest", "triceps"),
            workout_id="w1",
        )
        squat = make_exercise(
            "we-squat",
            [make_set(f"q{n}", 200, 10, number=n) for n in range(4)],
            pattern="squat",
            muscles=("quads",),
            workout_id="w2",
        )
        ignored = make_exercise("we-old", [make_set("o1", 100, 10)], muscles=("back",), workout_id="w3")
        return [
            _finished("w1", 42, [bench]),
            _finished("w2", 6, [squat]),
            _finished("w3", 100, [ignored]),
            _finished("w4", 1, [replace(ignored, id="we-del", workout_id="w4")], deleted=True),
            make_workout(
                "w5",
                NOW - timedelta(hours=2),
                [replace(ignored, id="we-open", workout_id="w5")],
                minutes=None,
            ),
        ]

    def test_recovery_per_group(self):
        groups = muscle_recovery(self._history(), NOW)["muscle_groups"]
        # chest: 2000 kg, half of its 84 h window gone -> 1000 / 5000 fatigue
        assert groups["chest"]["volume"] == 2000
        assert groups["chest"]["recovery"] == pytest.approx(80.0)
        assert groups["triceps"]["recovery"] == pytest.approx(87.5)
        assert groups["quads"]["recovery"] == pytest.approx(12.5)
        assert groups["quads"]["last_worked"] == NOW - timedelta(hours=6)
        assert [groups[m]["intensity"] for m in ("chest", "quads")] == [0, 2]

    def test_untrained_groups_are_fresh(self):
        groups = muscle_recovery(self._history(), NOW)["muscle_groups"]
        assert groups["back"] == {"volume": 0.0, "last_worked": None, "recovery": 100.0, "intensity": 0}

    def test_overall_and_suggestion(self):
        report = muscle_recovery(self._history(), NOW)
        assert report["overall_recovery"] == 88
        assert report["suggestion"]["type"] == "full"
        assert "quads" not in report["suggestion"]["fresh_muscles"]

    def test_fatigued_legs_suggest_upper_body(self):
        legs = make_exercise(
            "we-legs",
            [make_set(f"l{n}", 200, 10, number=n) for n in range(4)],
            muscles=("quads", "hamstrings", "glutes", "calves"),
        )
        report = muscle_recovery([_finished("w1", 0, [legs])], NOW)
        assert report["suggestion"] == {
            "type": "upper",
            "fresh_muscles": ["chest", "shoulders", "back", "biceps", "triceps"],
        }

    def test_no_workouts(self):
        report = muscle_recovery([], NOW)
        assert report["overall_recovery"] == 100
        assert report["suggestion"]["type"] == "full"


@pytest.mark.parametrize(
    ("recovery", "intensity"),
    [(100, 0), (70, 0), (69.9, 1), (40, 1), (39.9, 2), (0, 2)],
)
def test_recovery_to_intensity(recovery, intensity):
    assert recovery_to_intensity(recovery) == intensity


def test_recovery_score_bounds():
    assert recovery_score(10_000, 0, "biceps") == 0
    assert recovery_score(10_000, 48, "biceps") == 100
    assert recovery_score(1000, 0, "unknown") == pytest.approx(80.0)
