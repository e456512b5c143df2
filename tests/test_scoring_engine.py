from __future__ import annotations

import random

from nrft.config import AXES
from nrft.scoring_engine import (
    DEFAULT_HEALTH_TYPE,
    GENERIC_RECOMMENDATION,
    HEALTH_TYPE_BY_AXIS,
    RECOMMENDATIONS,
    accumulate,
    analyze,
    build_clusters,
    classify,
    compute_scores,
    derive,
    focus_axes,
)


def _random_impacts(rng: random.Random, n: int) -> dict:
    impacts = {}
    for i in range(n):
        axes = rng.sample(AXES, rng.randint(1, len(AXES)))
        impacts[f"opt-{i}"] = {axis: rng.randint(-400, 400) for axis in axes}
    return impacts


def test_no_selection_returns_baseline():
    assert compute_scores([], {}) == {axis: 100 for axis in AXES}


def test_scenario_a_single_option():
    scores = compute_scores(["a"], {"a": {"Energy": -25, "Sleep": -10}})
    assert scores == {"Sleep": 90, "Digestion": 100, "Energy": 75, "Stress": 100, "Immunity": 100}
    assert classify(scores).startswith("에너지 고갈형")


def test_scenario_b_clamps_at_zero():
    scores = compute_scores(["a", "b"], {"a": {"Sleep": -60}, "b": {"Sleep": -60}})
    assert scores["Sleep"] == 0
    assert classify(scores) == HEALTH_TYPE_BY_AXIS["Sleep"]


def test_scores_stay_in_range_for_extreme_impacts():
    rng = random.Random(20261019)
    for _ in range(200):
        impacts = _random_impacts(rng, rng.randint(1, 12))
        selected = list(impacts)
        rng.shuffle(selected)
        for clamp_each_step in (True, False):
            scores = compute_scores(selected, impacts, clamp_each_step=clamp_each_step)
            assert set(scores) == set(AXES)
            assert all(0 <= v <= 100 for v in scores.values())

    huge = {"a": {axis: -1000 for axis in AXES}, "b": {axis: 1000 for axis in AXES}}
    assert compute_scores(["a"], huge) == {axis: 0 for axis in AXES}
    assert compute_scores(["b"], huge) == {axis: 100 for axis in AXES}


def test_unknown_option_ids_contribute_nothing():
    assert compute_scores(["missing", "a"], {"a": {"Stress": -10}}) == compute_scores(["a"], {"a": {"Stress": -10}})


def test_per_step_clamping_follows_encounter_order():
    impacts = {"up": {"Sleep": 5}, "down": {"Sleep": -60}}
    assert compute_scores(["up", "down"], impacts)["Sleep"] == 40
    assert compute_scores(["down", "up"], impacts)["Sleep"] == 45


def test_sum_then_clamp_is_order_independent():
    impacts = {"up": {"Sleep": 5}, "down": {"Sleep": -60}, "deep": {"Sleep": -90}}
    first = compute_scores(["up", "down", "deep"], impacts, clamp_each_step=False)
    second = compute_scores(["deep", "down", "up"], impacts, clamp_each_step=False)
    assert first == second
    assert first["Sleep"] == 0
    assert compute_scores(["down", "up"], impacts, clamp_each_step=False)["Sleep"] == 45
    assert compute_scores(["up", "down"], impacts, clamp_each_step=False)["Sleep"] == 45


def test_extended_axes_are_kept_apart_from_scores():
    acc = accumulate(["a"], {"a": {"Sleep": -10, "Defense": -30, "note": "n/a"}})
    assert acc["scores"]["Sleep"] == 90
    assert "Defense" not in acc["scores"]
    assert acc["extended"] == {"Defense": 70}


def test_classify_tie_break_uses_canonical_order():
    scores = {"Sleep": 80, "Digestion": 50, "Energy": 90, "Stress": 50, "Immunity": 50}
    assert classify(scores) == HEALTH_TYPE_BY_AXIS["Digestion"]
    assert classify(dict(scores)) == classify(scores)
    assert classify({axis: 100 for axis in AXES}) == HEALTH_TYPE_BY_AXIS["Sleep"]


def test_classify_falls_back_without_axes():
    assert classify({}) == DEFAULT_HEALTH_TYPE


def test_every_axis_has_label_and_recommendation():
    for axis in AXES:
        label = HEALTH_TYPE_BY_AXIS[axis]
        assert set(RECOMMENDATIONS[label]) == {"lifestyle", "product", "message"}


def test_derive_clusters_and_recommendations():
    scores = {"Sleep": 80, "Digestion": 100, "Energy": 75, "Stress": 95, "Immunity": 100}
    out = derive(scores, HEALTH_TYPE_BY_AXIS["Energy"])
    assert out["clusters"] == {"innerBalance": 90, "energy": 75, "resilience": 95, "digestion": 100, "rest": 80}
    assert out["recommendations"] == RECOMMENDATIONS[HEALTH_TYPE_BY_AXIS["Energy"]]


def test_derive_unknown_type_uses_generic_recommendation():
    scores = {axis: 100 for axis in AXES}
    assert derive(scores, "Unknown")["recommendations"] == GENERIC_RECOMMENDATION


def test_inner_balance_rounds_half_up():
    scores = {"Sleep": 91, "Digestion": 100, "Energy": 100, "Stress": 100, "Immunity": 99.5}
    # mean = 98.1
    assert build_clusters(scores)["innerBalance"] == 98
    scores = {"Sleep": 92.5, "Digestion": 100, "Energy": 100, "Stress": 100, "Immunity": 100}
    # mean = 98.5
    assert build_clusters(scores)["innerBalance"] == 99


def test_focus_axes_are_two_lowest():
    scores = {"Sleep": 80, "Digestion": 60, "Energy": 60, "Stress": 95, "Immunity": 100}
    assert focus_axes(scores) == [{"axis": "Digestion", "score": 60}, {"axis": "Energy", "score": 60}]


def test_analyze_is_deterministic_on_recompute():
    impacts = {"a": {"Sleep": -15, "Stress": -5}, "b": {"Energy": -25, "Sleep": -5}, "c": {"Immunity": -20}}
    first = analyze(["a", "b", "c"], impacts)
    second = analyze(["a", "b", "c"], impacts)
    assert first == second
    assert first["health_type"] == classify(first["scores"])
    assert first["clusters"] == build_clusters(first["scores"])


def test_non_finite_impacts_are_ignored():
    impacts = {
        "a": {"Sleep": -50},
        "b": {"Sleep": float("nan"), "Energy": float("-inf")},
        "c": {"Stress": float("inf"), "Defense": float("nan")},
    }
    for clamp_each_step in (True, False):
        acc = accumulate(["a", "b", "c"], impacts, clamp_each_step=clamp_each_step)
        assert acc["scores"] == {"Sleep": 50, "Digestion": 100, "Energy": 100, "Stress": 100, "Immunity": 100}
        assert acc["extended"] == {}
