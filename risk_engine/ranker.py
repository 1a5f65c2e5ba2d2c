"""
risk_engine/ranker.py
─────────────────────
Ranked views and diversification over a pool of ScoredCandidates.

Views (diagnostic, not diversified):
    composite, ips, yield, ev_per_dollar: each descending, top-N,
    ties broken by enumeration ``sequence``

Diversification (a separate stage): walk a given order and accept a
candidate only while its sector / symbol / strategy counts are below the
caps.  Rejected candidates are dropped, not deferred.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from models.candidate import ScoredCandidate
from models.ips import Tier
from risk_engine.policy import RankingPolicy

logger = logging.getLogger(__name__)

_METRICS: dict[str, Callable[[ScoredCandidate], float]] = {
    "composite": lambda c: c.composite_score,
    "ips": lambda c: c.ips_score,
    "yield": lambda c: c.yield_score,
    "ev_per_dollar": lambda c: c.ev_per_dollar,
}


def rank_by(candidates: Iterable[ScoredCandidate], metric: str, top_n: int | None = None) -> list[ScoredCandidate]:
    """Sort descending by *metric*; equal scores keep enumeration order."""

    key = _METRICS[metric]
    ordered = sorted(candidates, key=lambda c: (-key(c), c.sequence))
    return ordered if top_n is None else ordered[:top_n]


@dataclass
class RankedViews:
    by_composite: list[ScoredCandidate] = field(default_factory=list)
    by_ips: list[ScoredCandidate] = field(default_factory=list)
    by_yield: list[ScoredCandidate] = field(default_factory=list)
    by_ev_per_dollar: list[ScoredCandidate] = field(default_factory=list)


def build_ranked_views(candidates: Sequence[ScoredCandidate], top_n: int = 20) -> RankedViews:
    return RankedViews(
        by_composite=rank_by(candidates, "composite", top_n),
        by_ips=rank_by(candidates, "ips", top_n),
        by_yield=rank_by(candidates, "yield", top_n),
        by_ev_per_dollar=rank_by(candidates, "ev_per_dollar", top_n),
    )


@dataclass
class DiversificationResult:
    selected: list[ScoredCandidate] = field(default_factory=list)
    rejected: list[tuple[ScoredCandidate, str]] = field(default_factory=list)
    sector_counts: Counter = field(default_factory=Counter)
    symbol_counts: Counter = field(default_factory=Counter)
    strategy_counts: Counter = field(default_factory=Counter)


def diversify(
    ordered: Iterable[ScoredCandidate],
    policy: RankingPolicy | None = None,
    *,
    limit: int | None = None,
) -> DiversificationResult:
    """Greedy cap-constrained selection in the order given."""

    policy = policy or RankingPolicy()
    result = DiversificationResult()
    for candidate in ordered:
        if limit is not None and len(result.selected) >= limit:
            break
        if result.sector_counts[candidate.sector] >= policy.max_per_sector:
            result.rejected.append((candidate, "sector_cap"))
            continue
        if result.symbol_counts[candidate.symbol] >= policy.max_per_symbol:
            result.rejected.append((candidate, "symbol_cap"))
            continue
        if result.strategy_counts[candidate.strategy] >= policy.max_per_strategy:
            result.rejected.append((candidate, "strategy_cap"))
            continue
        result.selected.append(candidate)
        result.sector_counts[candidate.sector] += 1
        result.symbol_counts[candidate.symbol] += 1
        result.strategy_counts[candidate.strategy] += 1

    logger.debug(
        "diversify: %d selected, %d rejected", len(result.selected), len(result.rejected)
    )
    return result


_TIER_ORDER = (Tier.ELITE, Tier.QUALITY, Tier.SPECULATIVE)


def select_tiered(candidates: Iterable[ScoredCandidate], policy: RankingPolicy | None = None) -> list[ScoredCandidate]:
    """Best-first pool by tier quota (elite, then quality, then speculative).

    Within a tier candidates are ordered by composite score.  Tier ``none``
    is never selected.
    """
    policy = policy or RankingPolicy()
    pool = list(candidates)
    picked: list[ScoredCandidate] = []
    for tier in _TIER_ORDER:
        quota = policy.tier_quotas.get(tier.value, 0)
        in_tier = [c for c in pool if c.tier == tier]
        picked.extend(rank_by(in_tier, "composite", quota))
    return picked


def diversity_score(candidate: ScoredCandidate, selected: Sequence[ScoredCandidate]) -> float:
    """0–100 concentration score of *candidate* against an existing selection (100 = no overlap)."""

    same_sector = sum(1 for s in selected if s.sector == candidate.sector)
    same_symbol = sum(1 for s in selected if s.symbol == candidate.symbol)
    same_strategy = sum(1 for s in selected if s.strategy == candidate.strategy)

    penalty = min(30, same_sector * 10) + min(40, same_symbol * 20) + min(20, same_strategy * 5)
    return max(0.0, 100.0 - penalty)
