"""
tests/test_factor_evaluator.py
──────────────────────────────
Graded severity bands (default policy):

    GTE 100, value 95   miss 5  ≤ tol 10  → minor, 90 − 0.5·20      = 80
    GTE 100, value 50   miss 50 > tol 10  → major, 70 − 0.5·40      = 50
    RANGE 21–45, 50     miss 5  > tol 4.5 → major, 70 − (5/45)·40  ≈ 65.56
    any threshold, value None             → major at the floor (30)
"""
from __future__ import annotations

import pytest

from models.ips import FactorDefinition, FactorEvaluationDetail, Severity, Tier
from risk_engine.factor_evaluator import (
    FactorEvaluator,
    classify_tier,
    composite_score,
    evaluate_factor,
    weighted_score,
)
from risk_engine.factor_registry import FactorContext
from risk_engine.policy import ScoringPolicy


def _factor(direction="gte", threshold=100.0, threshold_max=None, weight=1.0, key="f") -> FactorDefinition:
    return FactorDefinition(
        key=key, weight=weight, direction=direction, threshold=threshold, threshold_max=threshold_max
    )


class TestTiers:
    @pytest.mark.parametrize(
        "score, tier",
        [
            (100.0, Tier.ELITE),
            (90.0, Tier.ELITE),
            (89.99, Tier.QUALITY),
            (75.0, Tier.QUALITY),
            (74.99, Tier.SPECULATIVE),
            (60.0, Tier.SPECULATIVE),
            (59.99, Tier.NONE),
            (0.0, Tier.NONE),
        ],
    )
    def test_cutoffs(self, score: float, tier: Tier) -> None:
        assert classify_tier(score) == tier

    def test_composite_blend(self) -> None:
        assert composite_score(80.0, 90.0) == pytest.approx(86.0)

    def test_composite_weights_from_policy(self) -> None:
        policy = ScoringPolicy(composite_yield_weight=0.5, composite_ips_weight=0.5)
        assert composite_score(80.0, 90.0, policy) == pytest.approx(85.0)


class TestEvaluateFactor:
    def test_pass(self) -> None:
        detail = evaluate_factor(_factor(), 120.0)
        assert detail.passed
        assert detail.severity == Severity.PASS
        assert detail.score == 100.0

    def test_minor_miss(self) -> None:
        detail = evaluate_factor(_factor(), 95.0)
        assert not detail.passed
        assert detail.severity == Severity.MINOR_MISS
        assert detail.score == pytest.approx(80.0)
        assert detail.distance == pytest.approx(5.0)

    def test_major_miss(self) -> None:
        detail = evaluate_factor(_factor(), 50.0)
        assert detail.severity == Severity.MAJOR_MISS
        assert detail.score == pytest.approx(50.0)

    def test_major_miss_floor(self) -> None:
        detail = evaluate_factor(_factor(), -500.0)
        assert detail.score == pytest.approx(30.0)

    def test_lte_minor_miss(self) -> None:
        detail = evaluate_factor(_factor("lte", 0.20), 0.21)
        assert detail.severity == Severity.MINOR_MISS
        assert detail.score == pytest.approx(80.0)

    def test_range_above_max(self) -> None:
        detail = evaluate_factor(_factor("range", 21, 45), 50)
        assert detail.severity == Severity.MAJOR_MISS
        assert detail.score == pytest.approx(70.0 - 5 / 45 * 40)

    def test_range_inside(self) -> None:
        assert evaluate_factor(_factor("range", 21, 45), 30).passed

    def test_eq(self) -> None:
        assert evaluate_factor(_factor("eq", 1.0), 1.0).passed
        assert not evaluate_factor(_factor("eq", 1.0), 1.2).passed

    def test_zero_threshold_uses_unit_scale(self) -> None:
        detail = evaluate_factor(_factor("gte", 0.0), -0.5)
        assert detail.severity == Severity.MAJOR_MISS
        assert detail.score == pytest.approx(50.0)

    def test_missing_value_fails(self) -> None:
        detail = evaluate_factor(_factor(), None)
        assert not detail.passed
        assert detail.severity == Severity.MAJOR_MISS
        assert detail.score == pytest.approx(30.0)
        assert detail.distance is None

    def test_null_threshold_auto_passes(self) -> None:
        detail = evaluate_factor(_factor(threshold=None), None)
        assert detail.passed
        assert detail.target == "no constraint"

    def test_binary_mode(self) -> None:
        policy = ScoringPolicy(severity_mode="binary")
        assert evaluate_factor(_factor(), 120.0, policy).score == 100.0
        assert evaluate_factor(_factor(), 95.0, policy).score == 50.0
        assert evaluate_factor(_factor(), None, policy).score == 50.0

    def test_pass_iff_severity_pass(self) -> None:
        with pytest.raises(ValueError):
            FactorEvaluationDetail(
                key="f",
                display_name="f",
                value=1.0,
                target=">= 2",
                passed=True,
                weight=1.0,
                severity=Severity.MINOR_MISS,
                score=80.0,
            )


class TestFactorEvaluator:
    def test_weighted_score(self) -> None:
        factors = [
            _factor("lte", 0.20, key="opt-delta", weight=3),
            _factor("gte", 100.0, key="opt-oi", weight=1),
        ]
        context = FactorContext(values={"opt-delta": 0.15, "opt-oi": 95})
        evaluation = FactorEvaluator().evaluate(factors, context)

        # (100·3 + 80·1) / 4
        assert evaluation.ips_score == pytest.approx(95.0)
        assert evaluation.tier == Tier.ELITE
        assert evaluation.passed_count == 1

    def test_disabled_factors_ignored(self) -> None:
        factors = [
            _factor(key="opt-oi", threshold=100.0),
            FactorDefinition(key="opt-iv", weight=5, threshold=0.9, enabled=False),
        ]
        evaluation = FactorEvaluator().evaluate(factors, FactorContext(values={"opt-oi": 200}))
        assert [d.key for d in evaluation.details] == ["opt-oi"]
        assert evaluation.ips_score == pytest.approx(100.0)

    def test_missing_keys_reported(self) -> None:
        evaluation = FactorEvaluator().evaluate([_factor(key="opt-oi")], FactorContext())
        assert evaluation.missing_keys == ["opt-oi"]
        assert evaluation.ips_score == pytest.approx(30.0)

    def test_idempotent(self, make_candidate) -> None:
        factors = [_factor("lte", 0.25, key="opt-delta"), _factor("gte", 0.5, key="spread-risk-reward")]
        context = FactorContext(candidate=make_candidate())
        evaluator = FactorEvaluator()
        assert evaluator.evaluate(factors, context) == evaluator.evaluate(factors, context)

    def test_unmapped(self) -> None:
        factors = [_factor(key="opt-delta"), _factor(key="made-up-factor")]
        assert FactorEvaluator().unmapped(factors) == ["made-up-factor"]

    def test_empty_details_are_neutral(self) -> None:
        assert weighted_score(()) == 50.0
