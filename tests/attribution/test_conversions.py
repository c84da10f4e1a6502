"""Tests for Full-Stack and Web conversion attribution."""
import numpy as np
import pandas as pd
import pytest

from src.attribution.conversions import attribute_conversions
from src.attribution.errors import InvalidWindow, MissingField, UnknownPolicy
from src.attribution.schema import AttributionPolicy, ExperimentRef, TimeWindow

from event_builders import exp, t

WINDOW = TimeWindow(t(10), t(20))


def _pairs(records):
    return sorted(zip(records["experiment_id"], records["variation_id"]))


def test_full_stack_attributes_after_first_exposure(make_decisions, make_conversions):
    decisions = make_decisions([
        ("v1", "E", "A", 11),
        ("v1", "E", "B", 13),
    ])
    conversions = make_conversions([("v1", "purchase", 15, 100)])
    out = attribute_conversions(conversions, decisions, WINDOW, "full_stack").records
    assert len(out) == 1
    row = out.iloc[0]
    assert (row["experiment_id"], row["variation_id"]) == ("E", "A")
    assert row["event_name"] == "purchase"
    assert row["revenue"] == 100
    assert list(out.columns) == [
        "experiment_id", "variation_id", "event_name", "visitor_id", "revenue", "timestamp",
    ]


def test_full_stack_conversion_before_exposure_not_attributed(make_decisions, make_conversions):
    decisions = make_decisions([("v1", "E", "A", 15)])
    conversions = make_conversions([
        ("v1", "purchase", 12, 100),
        ("v1", "purchase", 15, 50),
    ])
    out = attribute_conversions(conversions, decisions, WINDOW, "full_stack").records
    assert list(out["revenue"]) == [50]


def test_full_stack_holdback_only_subject_excluded(make_decisions, make_conversions):
    decisions = make_decisions([
        ("v1", "E", "A", 11, True),
        ("v2", "E", "A", 11, False),
    ])
    conversions = make_conversions([
        ("v1", "purchase", 15, 10),
        ("v2", "purchase", 15, 20),
    ])
    out = attribute_conversions(conversions, decisions, WINDOW, AttributionPolicy.FULL_STACK).records
    assert list(out["visitor_id"]) == ["v2"]


def test_full_stack_uses_first_in_window_decision(make_decisions, make_conversions):
    """An exposure before the window is ignored; the in-window one qualifies."""
    decisions = make_decisions([
        ("v1", "E", "A", 1),
        ("v1", "E", "B", 12),
    ])
    conversions = make_conversions([("v1", "click", 14, None)])
    out = attribute_conversions(conversions, decisions, WINDOW, "full_stack").records
    assert _pairs(out) == [("E", "B")]


def test_full_stack_conversion_outside_window(make_decisions, make_conversions):
    decisions = make_decisions([("v1", "E", "A", 11)])
    conversions = make_conversions([("v1", "purchase", 25, 100)])
    out = attribute_conversions(conversions, decisions, WINDOW, "full_stack").records
    assert out.empty


def test_full_stack_fans_out_across_experiments(make_decisions, make_conversions):
    decisions = make_decisions([
        ("v1", "E1", "A", 11),
        ("v1", "E2", "B", 12),
    ])
    conversions = make_conversions([("v1", "purchase", 15, 100)])
    out = attribute_conversions(conversions, decisions, WINDOW, "full_stack").records
    assert _pairs(out) == [("E1", "A"), ("E2", "B")]


def test_policy_divergence(make_decisions, make_conversions):
    """Exposure at t=1 (outside [10, 20]) and conversion at t=15 (inside)."""
    decisions = make_decisions([("v1", "E", "A", 1)])
    conversions = make_conversions([("v1", "purchase", 15, 100, [exp("E", "A")])])

    web = attribute_conversions(conversions, decisions, WINDOW, "web").records
    full_stack = attribute_conversions(conversions, decisions, WINDOW, "full_stack").records

    assert _pairs(web) == [("E", "A")]
    assert full_stack.empty


def test_web_fans_out_listed_experiments(make_conversions):
    conversions = make_conversions([
        ("v1", "purchase", 15, 100, [exp("E1", "A"), exp("E2", "B", True)]),
        ("v2", "purchase", 16, None, []),
    ])
    out = attribute_conversions(conversions, None, WINDOW, "web").records
    assert _pairs(out) == [("E1", "A"), ("E2", "B")]
    assert set(out["visitor_id"]) == {"v1"}


def test_web_window_applies_to_conversion_only(make_conversions):
    conversions = make_conversions([
        ("v1", "purchase", 5, 100, [exp("E", "A")]),
        ("v1", "purchase", 20, 100, [exp("E", "A")]),
    ])
    out = attribute_conversions(conversions, None, WINDOW, "web").records
    assert len(out) == 1


def test_web_one_variation_per_experiment(make_conversions):
    conversions = make_conversions([
        ("v1", "purchase", 15, 100, [exp("E", "A"), exp("E", "B")]),
    ])
    out = attribute_conversions(conversions, None, WINDOW, "web").records
    assert _pairs(out) == [("E", "A")]


def test_web_accepts_arrays_and_refs(make_conversions):
    """Parquet readers hand back numpy arrays; the append API uses ExperimentRef."""
    conversions = make_conversions([
        ("v1", "purchase", 15, 100, np.array([exp("E1", "A")], dtype=object)),
        ("v2", "purchase", 16, 100, [ExperimentRef("E2", "B")]),
    ])
    out = attribute_conversions(conversions, None, WINDOW, "web").records
    assert _pairs(out) == [("E1", "A"), ("E2", "B")]


def test_web_malformed_records_skipped(make_conversions):
    conversions = make_conversions([
        ("v1", "purchase", 15, 100, [exp("E", "A")]),
        ("v2", "purchase", 15, 100, None),
        ("v3", "purchase", 15, 100, [{"experiment_id": "E"}, exp("F", "B")]),
    ])
    outcome = attribute_conversions(conversions, None, WINDOW, "web")
    assert _pairs(outcome.records) == [("E", "A"), ("F", "B")]
    assert outcome.skipped.to_dict() == {
        "conversion_malformed_attributed_experiments": 1,
        "conversion_malformed_experiment_entry": 1,
    }


def test_unknown_policy(make_conversions):
    conversions = make_conversions([("v1", "purchase", 15, 100)])
    with pytest.raises(UnknownPolicy):
        attribute_conversions(conversions, None, WINDOW, "last_touch")
    with pytest.raises(UnknownPolicy):
        attribute_conversions(conversions, None, WINDOW, None)


def test_policy_names_normalized():
    assert AttributionPolicy.parse("Full-Stack") is AttributionPolicy.FULL_STACK
    assert AttributionPolicy.parse(" WEB ") is AttributionPolicy.WEB


def test_invalid_window(make_conversions):
    conversions = make_conversions([("v1", "purchase", 15, 100)])
    with pytest.raises(InvalidWindow):
        attribute_conversions(conversions, None, TimeWindow(t(20), t(10)), "web")


def test_web_requires_attributed_experiments(make_conversions):
    conversions = make_conversions([("v1", "purchase", 15, 100)]).drop(
        columns=["attributed_experiments"]
    )
    with pytest.raises(MissingField) as excinfo:
        attribute_conversions(conversions, None, WINDOW, "web")
    assert excinfo.value.dataset == "conversions"


def test_full_stack_requires_decisions(make_conversions):
    conversions = make_conversions([("v1", "purchase", 15, 100)])
    with pytest.raises(ValueError):
        attribute_conversions(conversions, None, WINDOW, "full_stack")


def test_missing_revenue_column_allowed(make_decisions, make_conversions):
    decisions = make_decisions([("v1", "E", "A", 11)])
    conversions = make_conversions([("v1", "click", 15, None)]).drop(columns=["revenue"])
    out = attribute_conversions(conversions, decisions, WINDOW, "full_stack").records
    assert len(out) == 1
    assert pd.isna(out.iloc[0]["revenue"])


def test_deterministic(make_decisions, make_conversions):
    decisions = make_decisions([
        ("v1", "E", "A", 11),
        ("v2", "E", "B", 11),
        ("v1", "F", "A", 12),
    ])
    conversions = make_conversions([
        ("v1", "purchase", 15, 100, [exp("E", "A")]),
        ("v2", "purchase", 15, 10, [exp("E", "B")]),
    ])
    for policy in ("full_stack", "web"):
        first = attribute_conversions(conversions, decisions, WINDOW, policy).records
        second = attribute_conversions(conversions, decisions, WINDOW, policy).records
        pd.testing.assert_frame_equal(first, second)
