"""Property-based checks for the metric and PR invariants."""

from hypothesis import given, settings
from hypothesis import strategies as st

from liftlog.calculations import brzycki_1rm, epley_1rm, exercise_volume, set_volume
from liftlog.personal_records import detect_set_prs, is_personal_record, select_celebration

from .builders import make_set

weights = st.floats(min_value=0.5, max_value=500, allow_nan=False, allow_infinity=False)
reps = st.integers(min_value=1, max_value=50)


@st.composite
def set_lists(draw, max_size=12):
    rows = draw(
        st.lists(
            st.tuples(
                st.one_of(st.none(), weights),
                st.one_of(st.none(), reps),
                st.booleans(),
                st.booleans(),
            ),
            max_size=max_size,
        )
    )
    return [
        make_set(f"h{i}", weight, rep, number=i, warmup=warmup, deleted=deleted)
        for i, (weight, rep, warmup, deleted) in enumerate(rows)
    ]


@given(weights)
def test_single_rep_is_the_weight(weight):
    assert brzycki_1rm(weight, 1) == weight
    assert epley_1rm(weight, 1) == weight


@given(weights, st.integers(min_value=13, max_value=100))
def test_high_reps_use_fallback(weight, rep_count):
    assert brzycki_1rm(weight, rep_count) == weight * 1.3
    assert epley_1rm(weight, rep_count) == weight * 1.3


@given(weights, st.integers(min_value=2, max_value=12))
def test_estimate_is_at_least_the_weight(weight, rep_count):
    assert brzycki_1rm(weight, rep_count) >= weight
    assert epley_1rm(weight, rep_count) >= weight


@given(set_lists())
def test_volume_ignores_warmups_and_deleted(sets):
    expected = sum(
        set_volume(s.weight_kg, s.reps) for s in sets if not s.is_warmup and not s.is_deleted
    )
    assert exercise_volume(sets) == expected
    assert exercise_volume(sets) >= 0


@given(weights, reps)
def test_any_positive_value_is_a_pr_against_empty_history(weight, rep_count):
    assert is_personal_record(weight, [], "weight")
    assert detect_set_prs(make_set("c", weight, rep_count), [])[:1] == ["weight"]


@given(set_lists(), weights, reps)
@settings(max_examples=50)
def test_matching_the_best_is_never_a_pr(history, weight, rep_count):
    history = history + [make_set("best", weight, rep_count, number=99)]
    tie = make_set("tie", weight, rep_count, number=100)
    prs = detect_set_prs(tie, history)
    assert "weight" not in prs
    assert "1rm" not in prs
    assert "volume" not in prs


@given(set_lists(), weights, reps)
def test_celebration_is_one_of_the_detected_prs(history, weight, rep_count):
    candidate = make_set("c", weight, rep_count)
    celebration = select_celebration(candidate, history)
    if celebration is None or celebration.previous_value is None:
        return
    assert celebration.pr_type in detect_set_prs(candidate, history)
    assert celebration.new_value > celebration.previous_value
