"""
risk_engine/factor_evaluator.py
───────────────────────────────
Weighted IPS factor evaluation for a candidate or an open position.

Per enabled factor:
    value   = registry.resolve(key, context)
    passed  = direction test against threshold (null threshold → auto-pass,
              null value with a threshold → fail)
    score   = 100 when passed, else by severity mode:

      graded (default)
        tolerance = 10% of |reference threshold|   (1.0 when the reference is 0)
        minor miss  miss ≤ tolerance   score = max(70, 90 − miss/tolerance·20)
        major miss  otherwise          score = max(30, 70 − min(1, miss/|ref|)·40)
        no value                       major miss at the floor (30)

      binary
        100 / 50

ips_score = Σ score·weight / Σ weight   (50 when Σ weight is 0)
composite = 0.4·yield + 0.6·ips
tier      = elite ≥ 90, quality ≥ 75, speculative ≥ 60, else none
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from models.ips import FactorDefinition, FactorDirection, FactorEvaluationDetail, Severity, Tier
from risk_engine.factor_registry import FactorContext, FactorRegistry, registry as default_registry
from risk_engine.policy import ScoringPolicy

logger = logging.getLogger(__name__)


def classify_tier(ips_score: float, policy: ScoringPolicy | None = None) -> Tier:
    policy = policy or ScoringPolicy()
    if ips_score >= policy.elite_cutoff:
        return Tier.ELITE
    if ips_score >= policy.quality_cutoff:
        return Tier.QUALITY
    if ips_score >= policy.speculative_cutoff:
        return Tier.SPECULATIVE
    return Tier.NONE


def composite_score(yield_score: float, ips_score: float, policy: ScoringPolicy | None = None) -> float:
    policy = policy or ScoringPolicy()
    blended = policy.composite_yield_weight * yield_score + policy.composite_ips_weight * ips_score
    return max(0.0, min(100.0, blended))


def passes(factor: FactorDefinition, value: Optional[float]) -> bool:
    if factor.threshold is None:
        return True
    if value is None:
        return False
    if factor.direction == FactorDirection.GTE:
        return value >= factor.threshold
    if factor.direction == FactorDirection.LTE:
        return value <= factor.threshold
    if factor.direction == FactorDirection.EQ:
        return math.isclose(value, factor.threshold, rel_tol=1e-9, abs_tol=1e-9)
    return factor.threshold <= value <= factor.threshold_max


def miss_distance(factor: FactorDefinition, value: float) -> tuple[float, float]:
    """Return (miss magnitude, reference threshold) for a failing value."""

    threshold = factor.threshold
    if factor.direction == FactorDirection.GTE:
        return max(0.0, threshold - value), threshold
    if factor.direction == FactorDirection.LTE:
        return max(0.0, value - threshold), threshold
    if factor.direction == FactorDirection.EQ:
        return abs(value - threshold), threshold
    if value < threshold:
        return threshold - value, threshold
    return max(0.0, value - factor.threshold_max), factor.threshold_max


def evaluate_factor(
    factor: FactorDefinition,
    value: Optional[float],
    policy: ScoringPolicy | None = None,
) -> FactorEvaluationDetail:
    policy = policy or ScoringPolicy()
    target = factor.describe_target()

    def detail(passed: bool, severity: Severity, score: float, distance: Optional[float]) -> FactorEvaluationDetail:
        return FactorEvaluationDetail(
            key=factor.key,
            display_name=factor.display_name,
            value=value,
            target=target,
            passed=passed,
            weight=factor.weight,
            severity=severity,
            score=score,
            distance=distance,
        )

    if passes(factor, value):
        return detail(True, Severity.PASS, policy.binary_pass_score, 0.0)

    binary = policy.severity_mode == "binary"
    if value is None:
        score = policy.binary_fail_score if binary else policy.major_score_min
        return detail(False, Severity.MAJOR_MISS, score, None)

    miss, reference = miss_distance(factor, value)
    scale = abs(reference) if reference else 1.0
    tolerance = scale * policy.minor_tolerance

    if miss <= tolerance:
        severity = Severity.MINOR_MISS
        ratio = miss / tolerance if tolerance else 0.0
        band = policy.minor_score_max - policy.minor_score_min
        score = max(policy.minor_score_min, policy.minor_score_max - ratio * band)
    else:
        severity = Severity.MAJOR_MISS
        band = policy.major_score_max - policy.major_score_min
        score = max(policy.major_score_min, policy.major_score_max - min(1.0, miss / scale) * band)

    if binary:
        score = policy.binary_fail_score
    return detail(False, severity, score, miss)


@dataclass(frozen=True)
class IPSEvaluation:
    ips_score: float
    tier: Tier
    details: tuple[FactorEvaluationDetail, ...]

    @property
    def passed_count(self) -> int:
        return sum(1 for d in self.details if d.passed)

    @property
    def missing_keys(self) -> list[str]:
        return [d.key for d in self.details if d.value is None and d.severity != Severity.PASS]


def weighted_score(details: Sequence[FactorEvaluationDetail], neutral: float = 50.0) -> float:
    total_weight = sum(d.weight for d in details)
    if total_weight <= 0:
        return neutral
    raw = sum(d.score * d.weight for d in details) / total_weight
    return max(0.0, min(100.0, raw))


class FactorEvaluator:
    """Evaluates enabled factors through a :class:`FactorRegistry`.

    Args:
        registry: Factor key resolver; defaults to the module-level registry.
        policy:   Scoring policy (severity mode and bands, tier cut-offs).
    """

    def __init__(self, registry: FactorRegistry | None = None, policy: ScoringPolicy | None = None) -> None:
        self.registry = registry or default_registry
        self.policy = policy or ScoringPolicy()

    def unmapped(self, factors: Iterable[FactorDefinition]) -> list[str]:
        return self.registry.coverage(f.key for f in factors if f.enabled)

    def evaluate(self, factors: Iterable[FactorDefinition], context: FactorContext) -> IPSEvaluation:
        details = tuple(
            evaluate_factor(factor, self.registry.resolve(factor.key, context), self.policy)
            for factor in factors
            if factor.enabled
        )
        score = weighted_score(details, self.policy.neutral_ips_score)
        return IPSEvaluation(ips_score=score, tier=classify_tier(score, self.policy), details=details)
