"""
Tests for consensus aggregation.

Tests cover:
- Filtering of unusable responses
- MAJORITY / WEIGHTED / FIRST winner selection
- Deterministic tie-breaking
- Per-field averaging and half-up rounding
"""

import itertools

import pytest

from llm_consensus.ai.signal_parser import SignalType
from llm_consensus.strategy.aggregator import (
    AggregationMode,
    aggregate,
    group_votes,
    round_half_up,
)


# ============================================================================
# Usable Filtering
# ============================================================================

def test_no_responses_returns_none():
    assert aggregate([]) is None


def test_all_failed_returns_none(make_response):
    responses = [
        make_response("a", ok=False, error="Circuit breaker is open for provider a"),
        make_response("b", ok=False, error="HTTP 500"),
    ]
    assert aggregate(responses) is None


def test_failed_responses_ignored(make_response):
    responses = [
        make_response("a", ok=False, error="timeout"),
        make_response("b", type="SELL", confidence=60, price=50),
    ]
    result = aggregate(responses)

    assert result.signal_type == SignalType.SELL
    assert [m.provider_id for m in result.members] == ["b"]


# ============================================================================
# Winner Selection
# ============================================================================

def test_weighted_scenario(make_response):
    """Two confident BUYs outweigh one SELL."""
    responses = [
        make_response("a", type="BUY", confidence=80, price=100, stop_loss=95, take_profit=110),
        make_response("b", type="BUY", confidence=60, price=102, stop_loss=95, take_profit=110),
        make_response("c", type="SELL", confidence=90, price=101),
    ]
    result = aggregate(responses, AggregationMode.WEIGHTED)

    assert result.signal_type == SignalType.BUY
    assert result.price == 101.0
    assert result.confidence == 70
    assert result.stop_loss == 95
    assert result.take_profit == 110
    assert result.vote_counts == {"BUY": 2, "SELL": 1}


def test_weighted_high_confidence_minority_can_win(make_response):
    responses = [
        make_response("a", type="BUY", confidence=20),
        make_response("b", type="BUY", confidence=20),
        make_response("c", type="SELL", confidence=95),
    ]
    # BUY: 2 * 20 = 40, SELL: 1 * 95 = 95
    assert aggregate(responses, AggregationMode.WEIGHTED).signal_type == SignalType.SELL


def test_majority_counts_votes_only(make_response):
    responses = [
        make_response("a", type="BUY", confidence=20),
        make_response("b", type="BUY", confidence=20),
        make_response("c", type="SELL", confidence=95),
    ]
    assert aggregate(responses, AggregationMode.MAJORITY).signal_type == SignalType.BUY


def test_first_mode_uses_first_usable(make_response):
    responses = [
        make_response("a", ok=False, error="down"),
        make_response("b", type="SELL", confidence=10),
        make_response("c", type="BUY", confidence=90),
        make_response("d", type="BUY", confidence=90),
    ]
    result = aggregate(responses, AggregationMode.FIRST)

    assert result.signal_type == SignalType.SELL
    assert result.confidence == 10


def test_first_mode_missing_type_is_hold(make_response):
    responses = [make_response("a", confidence=30), make_response("b", type="BUY")]
    assert aggregate(responses, AggregationMode.FIRST).signal_type == SignalType.HOLD


def test_mode_accepts_string(make_response):
    responses = [make_response("a", type="BUY")]
    assert aggregate(responses, "MAJORITY").mode == AggregationMode.MAJORITY


# ============================================================================
# Defaults & Tie-Breaking
# ============================================================================

def test_missing_type_grouped_as_hold(make_response):
    groups = group_votes([make_response("a", confidence=40), make_response("b", type="HOLD")])
    assert list(groups) == [SignalType.HOLD]
    assert groups[SignalType.HOLD].count == 2


def test_missing_confidence_defaults_to_fifty(make_response):
    result = aggregate([make_response("a", type="BUY")])
    assert result.confidence == 50


@pytest.mark.parametrize("mode", [AggregationMode.MAJORITY, AggregationMode.WEIGHTED])
def test_tie_broken_alphabetically(make_response, mode):
    responses = [
        make_response("a", type="SELL", confidence=70),
        make_response("b", type="HOLD", confidence=70),
        make_response("c", type="BUY", confidence=70),
    ]
    assert aggregate(responses, mode).signal_type == SignalType.BUY


def test_tie_between_hold_and_sell(make_response):
    responses = [
        make_response("a", type="SELL", confidence=50),
        make_response("b", type="HOLD", confidence=50),
    ]
    assert aggregate(responses).signal_type == SignalType.HOLD


def test_result_independent_of_input_permutation(make_response):
    responses = [
        make_response("a", type="BUY", confidence=60, price=10),
        make_response("b", type="SELL", confidence=60, price=11),
        make_response("c", type="HOLD", confidence=60, price=12),
        make_response("d", type="SELL", confidence=30, price=13),
        make_response("e", type="BUY", confidence=30, price=14),
    ]
    outcomes = {
        (r.signal_type, r.confidence, r.price)
        for r in (aggregate(list(p)) for p in itertools.permutations(responses))
    }
    assert len(outcomes) == 1


# ============================================================================
# Averaging & Rounding
# ============================================================================

def test_fields_averaged_only_over_suppliers(make_response):
    responses = [
        make_response("a", type="BUY", price=100, stop_loss=90),
        make_response("b", type="BUY", price=110),
        make_response("c", type="BUY"),
    ]
    result = aggregate(responses)

    assert result.price == 105
    assert result.stop_loss == 90
    assert result.take_profit == 0


def test_money_rounded_to_two_places(make_response):
    responses = [
        make_response("a", type="BUY", price=100.001),
        make_response("b", type="BUY", price=100.002),
        make_response("c", type="BUY", price=100.004),
    ]
    assert aggregate(responses).price == 100.0


def test_confidence_rounds_half_up(make_response):
    responses = [
        make_response("a", type="BUY", confidence=70),
        make_response("b", type="BUY", confidence=71),
    ]
    # mean 70.5 -> 71 (banker's rounding would give 70)
    assert aggregate(responses).confidence == 71


@pytest.mark.parametrize("value,places,expected", [
    (0.125, 2, 0.13),
    (2.5, 0, 3.0),
    (1.005, 2, 1.01),
    (-1.5, 0, -2.0),
    (101.0, 2, 101.0),
])
def test_round_half_up(value, places, expected):
    assert round_half_up(value, places) == expected
