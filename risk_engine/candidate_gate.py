"""
risk_engine/candidate_gate.py
─────────────────────────────
Staged pass/fail gating ahead of weighted scoring.

    1. pre-filter   a symbol failing any high-weight general factor is
                    dropped before candidates are generated for it
    2. high weight  a candidate failing any high-weight chain factor becomes
                    a near miss, kept with its violations (fewest first,
                    then highest credit)
    3. low weight   a candidate failing at least half of the low-weight
                    factors (rounded up) is rejected

A factor with no value never gates: missing data is scored, not filtered.
Weight classes come from :class:`risk_engine.policy.GatingPolicy`.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from models.candidate import CandidateSpread, ScoredCandidate
from models.intelligence import IntelligenceItem
from models.ips import FactorDefinition, FactorScope, IPSConfig
from models.option_contract import MarketSnapshot
from risk_engine.factor_evaluator import FactorEvaluator
from risk_engine.factor_registry import FactorContext
from risk_engine.policy import GatingPolicy

logger = logging.getLogger(__name__)

News = Mapping[str, Sequence[IntelligenceItem]]


@dataclass(frozen=True)
class NearMiss:
    """A candidate stopped by high-weight chain factors."""

    candidate: CandidateSpread
    violations: tuple[str, ...]
    scored: Optional[ScoredCandidate] = None

    @property
    def violation_count(self) -> int:
        return len(self.violations)


@dataclass(frozen=True)
class FactorSplit:
    high_general: tuple[FactorDefinition, ...] = ()
    high_chain: tuple[FactorDefinition, ...] = ()
    low: tuple[FactorDefinition, ...] = ()


def split_factors(factors: Iterable[FactorDefinition], policy: GatingPolicy | None = None) -> FactorSplit:
    policy = policy or GatingPolicy()
    enabled = [f for f in factors if f.enabled]
    total = sum(f.weight for f in enabled)
    high_general: list[FactorDefinition] = []
    high_chain: list[FactorDefinition] = []
    low: list[FactorDefinition] = []
    for factor in enabled:
        if total > 0 and factor.weight / total >= policy.high_weight_share:
            (high_chain if factor.scope == FactorScope.CHAIN else high_general).append(factor)
        else:
            low.append(factor)
    return FactorSplit(tuple(high_general), tuple(high_chain), tuple(low))


class CandidateGate:
    """Runs the three gating stages with a shared :class:`FactorEvaluator`.

    Usage::

        gate = CandidateGate(evaluator, policy.gating)
        if not gate.prefilter(snapshot, ips):
            ...generate candidates for the symbol...
        passed, near_misses = gate.filter_high_weight(candidates, ips, snapshots)
        passed, rejected = gate.filter_low_weight(passed, ips, snapshots)
    """

    def __init__(self, evaluator: FactorEvaluator, policy: GatingPolicy | None = None) -> None:
        self.evaluator = evaluator
        self.policy = policy or GatingPolicy()

    @property
    def enabled(self) -> bool:
        return self.policy.enabled

    def violations(self, factors: Sequence[FactorDefinition], context: FactorContext) -> list[str]:
        if not factors:
            return []
        evaluation = self.evaluator.evaluate(factors, context)
        return [
            f"{d.display_name}: {d.value:g} vs {d.target}"
            for d in evaluation.details
            if not d.passed and d.value is not None
        ]

    def prefilter(
        self,
        snapshot: MarketSnapshot,
        ips: IPSConfig,
        news: Sequence[IntelligenceItem] = (),
    ) -> list[str]:
        """Violations of high-weight general factors; empty means the symbol survives."""

        split = split_factors(ips.enabled_factors, self.policy)
        found = self.violations(split.high_general, FactorContext(snapshot=snapshot, news=news))
        if found:
            logger.info("%s filtered before generation: %s", snapshot.symbol, "; ".join(found))
        return found

    def _context(
        self,
        candidate: CandidateSpread,
        snapshots: Mapping[str, MarketSnapshot],
        news: News | None,
    ) -> FactorContext:
        return FactorContext(
            candidate=candidate,
            snapshot=snapshots.get(candidate.symbol),
            news=(news or {}).get(candidate.symbol, ()),
        )

    def filter_high_weight(
        self,
        candidates: Sequence[CandidateSpread],
        ips: IPSConfig,
        snapshots: Mapping[str, MarketSnapshot],
        news: News | None = None,
    ) -> tuple[list[CandidateSpread], list[NearMiss]]:
        split = split_factors(ips.enabled_factors, self.policy)
        passed: list[CandidateSpread] = []
        near: list[NearMiss] = []
        for candidate in candidates:
            found = self.violations(split.high_chain, self._context(candidate, snapshots, news))
            if found:
                logger.debug("%s near miss: %s", candidate.label, "; ".join(found))
                near.append(NearMiss(candidate=candidate, violations=tuple(found)))
            else:
                passed.append(candidate)
        near.sort(key=lambda m: (m.violation_count, -m.candidate.entry_credit, m.candidate.sequence))
        return passed, near[: self.policy.max_near_misses]

    def filter_low_weight(
        self,
        candidates: Sequence[CandidateSpread],
        ips: IPSConfig,
        snapshots: Mapping[str, MarketSnapshot],
        news: News | None = None,
    ) -> tuple[list[CandidateSpread], list[tuple[CandidateSpread, list[str]]]]:
        low = split_factors(ips.enabled_factors, self.policy).low
        if not low:
            return list(candidates), []
        limit = math.ceil(len(low) * self.policy.low_weight_fail_ratio)
        passed: list[CandidateSpread] = []
        rejected: list[tuple[CandidateSpread, list[str]]] = []
        for candidate in candidates:
            found = self.violations(low, self._context(candidate, snapshots, news))
            if len(found) >= limit:
                logger.debug("%s rejected on %d/%d low-weight factors", candidate.label, len(found), len(low))
                rejected.append((candidate, found))
            else:
                passed.append(candidate)
        return passed, rejected
