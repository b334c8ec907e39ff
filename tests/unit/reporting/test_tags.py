"""
Tests for billing group parsing, accumulation and ranking
"""
import math
import pytest

from costguard.modules.reporting.domain.ports import BillingGroup
from costguard.modules.reporting.domain.tags import (
    NO_VALUE,
    RankedEntry,
    accumulate,
    parse_group_key,
    parse_service_key,
    rank,
    top_n,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Project$web", "web"),
        ("Project$", NO_VALUE),
        ("", NO_VALUE),
        ("Environment$prod", "Environment$prod"),
        ("Project$a$b", "a$b"),
    ],
)
def test_parse_group_key(raw, expected):
    assert parse_group_key(raw, "Project") == expected


def test_parse_service_key_defaults_to_unknown():
    assert parse_service_key("") == "UNKNOWN"
    assert parse_service_key("Amazon DynamoDB") == "Amazon DynamoDB"


def test_accumulate_sums_across_buckets():
    groups = [
        BillingGroup("Project$web", 1.5),
        BillingGroup("Project$api", 2.0),
        BillingGroup("Project$web", 0.5),
        BillingGroup("Project$", 0.25),
    ]
    totals = accumulate(groups, key_parser=lambda raw: parse_group_key(raw, "Project"))
    assert dict(totals) == {"web": 2.0, "api": 2.0, NO_VALUE: 0.25}


def test_accumulate_skips_non_finite_amounts():
    groups = [
        BillingGroup("a", 1.0),
        BillingGroup("a", math.nan),
        BillingGroup("b", math.inf),
        BillingGroup("b", 3.0),
    ]
    assert dict(accumulate(groups)) == {"a": 1.0, "b": 3.0}


def test_accumulate_result_is_read_only():
    totals = accumulate([BillingGroup("a", 1.0)])
    with pytest.raises(TypeError):
        totals["a"] = 2.0


def test_rank_orders_by_amount_then_key():
    ranked = rank({"zeta": 5.0, "alpha": 5.0, "beta": 9.0, "gamma": 0.0})
    assert [entry.key for entry in ranked] == ["beta", "alpha", "zeta", "gamma"]


def test_rank_is_idempotent():
    ranked = rank({"x": 1.0, "y": 3.0, "z": 3.0})
    again = rank({entry.key: entry.amount for entry in ranked})
    assert again == ranked


def test_top_n():
    ranked = [RankedEntry("a", 3.0), RankedEntry("b", 2.0), RankedEntry("c", 1.0)]
    assert top_n(ranked, 2) == ranked[:2]
    assert top_n(ranked, 10) == ranked
    assert top_n(ranked, 0) == []


def test_top_n_accepts_any_ranked_sequence():
    assert top_n(("x", "y", "z"), 2) == ["x", "y"]
    assert top_n(["x"], -1) == []
