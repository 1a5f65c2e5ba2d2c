"""
agents/proposer_engine.py
─────────────────────────
Prospective pipeline: snapshot → generate → score → rank → diversify,
with optional staged gating (risk_engine/candidate_gate.py) around generation.

Components:
    score_candidate_with_ips – yield metrics + IPS evaluation + composite for one candidate
    ProposalRun              – everything one run produced, plus its error tally
    ProposerEngine           – orchestrates the pipeline for a list of symbols

Design principles:
    - IPS problems are configuration errors and abort before any fetch
    - data gaps / provider failures are counted, never raised
    - candidates are scored independently on a thread pool bounded by
      CPU count; ranking ties break on enumeration ``sequence`` so the
      parallel order does not matter
    - zero eligible candidates is a valid, empty result
    - with gating on, near misses are reported on the run and scored when
      no candidate passed
"""
from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Mapping, Optional, Sequence

from adapters.snapshot_adapter import MarketSnapshotAdapter
from core.error_tally import ErrorTally
from models.candidate import CandidateSpread, ScoredCandidate
from models.intelligence import IntelligenceItem
from models.ips import IPSConfig
from models.option_contract import MarketSnapshot, OptionSide
from risk_engine.candidate_gate import CandidateGate, NearMiss
from risk_engine.candidate_generator import CandidateGenerator, GenerationReport
from risk_engine.factor_evaluator import FactorEvaluator, classify_tier, composite_score
from risk_engine.factor_registry import FactorContext, FactorRegistry
from risk_engine.policy import EnginePolicy
from risk_engine.ranker import RankedViews, build_ranked_views, diversify, rank_by, select_tiered
from risk_engine.yield_scorer import score_candidate

logger = logging.getLogger(__name__)


def score_candidate_with_ips(
    candidate: CandidateSpread,
    ips: IPSConfig,
    evaluator: FactorEvaluator,
    *,
    snapshot: Optional[MarketSnapshot] = None,
    news: Sequence[IntelligenceItem] = (),
    policy: EnginePolicy | None = None,
) -> ScoredCandidate:
    policy = policy or EnginePolicy()
    metrics = score_candidate(candidate, policy.scoring)
    evaluation = evaluator.evaluate(
        ips.enabled_factors,
        FactorContext(candidate=candidate, snapshot=snapshot, news=news),
    )
    return ScoredCandidate(
        candidate=candidate,
        metrics=metrics,
        ips_score=evaluation.ips_score,
        composite_score=composite_score(metrics.yield_score, evaluation.ips_score, policy.scoring),
        tier=classify_tier(evaluation.ips_score, policy.scoring),
        factor_details=evaluation.details,
    )


@dataclass
class ProposalRun:
    ips_id: str
    symbols: list[str]
    views: RankedViews = field(default_factory=RankedViews)
    shortlist: list[ScoredCandidate] = field(default_factory=list)
    tiered_shortlist: list[ScoredCandidate] = field(default_factory=list)
    rejected: list[tuple[ScoredCandidate, str]] = field(default_factory=list)
    filtered_symbols: dict[str, list[str]] = field(default_factory=dict)
    near_misses: list[NearMiss] = field(default_factory=list)
    low_weight_rejected: list[tuple[CandidateSpread, list[str]]] = field(default_factory=list)
    generation: dict[str, GenerationReport] = field(default_factory=dict)
    scored: list[ScoredCandidate] = field(default_factory=list)
    tally: ErrorTally = field(default_factory=ErrorTally)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return not self.scored


class ProposerEngine:
    """Runs the prospective pipeline for an IPS over a set of symbols.

    Args:
        market:   Snapshot adapter (injected market data collaborator).
        policy:   Engine policy; defaults to the stock policy.
        registry: Factor registry; defaults to the built-in one.
        side:     Credit spread side to generate (puts by default).

    Usage::

        engine = ProposerEngine(MarketSnapshotAdapter(provider))
        run = await engine.generate(["AAPL", "MSFT"], IPSLoader().load("conservative_pcs"))
        run.shortlist
    """

    def __init__(
        self,
        market: MarketSnapshotAdapter,
        *,
        policy: EnginePolicy | None = None,
        registry: FactorRegistry | None = None,
        side: OptionSide = OptionSide.PUT,
    ) -> None:
        self._market = market
        self.policy = policy or EnginePolicy()
        self.evaluator = FactorEvaluator(registry, self.policy.scoring)
        self.generator = CandidateGenerator(self.policy.generation, side=side)
        self.gate = CandidateGate(self.evaluator, self.policy.gating)

    # ── Scoring ─────────────────────────────────────────────────────────────

    def score_candidates(
        self,
        candidates: Sequence[CandidateSpread],
        ips: IPSConfig,
        snapshots: Mapping[str, MarketSnapshot],
        news: Mapping[str, Sequence[IntelligenceItem]] | None = None,
    ) -> list[ScoredCandidate]:
        """Score every candidate on a thread pool; output order follows input order."""

        news = news or {}
        if not candidates:
            return []

        def _score(candidate: CandidateSpread) -> ScoredCandidate:
            return score_candidate_with_ips(
                candidate,
                ips,
                self.evaluator,
                snapshot=snapshots.get(candidate.symbol),
                news=news.get(candidate.symbol, ()),
                policy=self.policy,
            )

        workers = self.policy.scoring.max_workers or os.cpu_count() or 1
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(_score, candidates))

    def _score_near_misses(
        self,
        near_misses: Sequence[NearMiss],
        ips: IPSConfig,
        snapshots: Mapping[str, MarketSnapshot],
        news: Mapping[str, Sequence[IntelligenceItem]] | None,
    ) -> list[NearMiss]:
        """Attach full scores to near misses when nothing passed the gate."""

        scored = self.score_candidates([m.candidate for m in near_misses], ips, snapshots, news)
        return [replace(miss, scored=s) for miss, s in zip(near_misses, scored)]

    # ── Pipeline ────────────────────────────────────────────────────────────

    async def generate(
        self,
        symbols: Sequence[str],
        ips: IPSConfig,
        *,
        news: Mapping[str, Sequence[IntelligenceItem]] | None = None,
        today: date | None = None,
    ) -> ProposalRun:
        ips.validate_for_run()
        run = ProposalRun(ips_id=ips.ips_id, symbols=list(symbols))

        unmapped = self.evaluator.unmapped(ips.enabled_factors)
        if unmapped:
            run.tally.warnings.append(f"factors without an extractor: {', '.join(unmapped)}")
            logger.warning("IPS %s: factors without an extractor: %s", ips.ips_id, unmapped)

        fetched = await asyncio.gather(
            *(self._market.build_snapshot(s) for s in symbols),
            return_exceptions=True,
        )

        snapshots: dict[str, MarketSnapshot] = {}
        candidates: list[CandidateSpread] = []
        for symbol, snapshot in zip(symbols, fetched):
            if isinstance(snapshot, BaseException):
                logger.warning("%s: snapshot failed: %s", symbol, snapshot)
                run.tally.failure(f"{symbol}: {snapshot}")
                continue
            for gap in snapshot.data_gaps:
                run.tally.gap(f"{symbol}: missing {gap}")
            snapshots[symbol] = snapshot
            if self.gate.enabled:
                violations = self.gate.prefilter(snapshot, ips, (news or {}).get(symbol, ()))
                if violations:
                    run.filtered_symbols[symbol] = violations
                    continue
            report = self.generator.run(snapshot, ips, today=today, start_sequence=len(candidates))
            run.generation[symbol] = report
            candidates.extend(report.candidates)

        if self.gate.enabled:
            candidates, run.near_misses = self.gate.filter_high_weight(candidates, ips, snapshots, news)
            candidates, run.low_weight_rejected = self.gate.filter_low_weight(candidates, ips, snapshots, news)

        run.scored = await asyncio.to_thread(self.score_candidates, candidates, ips, snapshots, news)
        if not run.scored and run.near_misses:
            run.near_misses = await asyncio.to_thread(self._score_near_misses, run.near_misses, ips, snapshots, news)

        ranking = self.policy.ranking
        run.views = build_ranked_views(run.scored, ranking.top_n)
        diversified = diversify(rank_by(run.scored, "composite"), ranking)
        run.shortlist = diversified.selected
        run.rejected = diversified.rejected
        run.tiered_shortlist = diversify(select_tiered(run.scored, ranking), ranking).selected
        run.finished_at = datetime.now(timezone.utc)

        logger.info(
            "IPS %s: %d symbols, %d candidates, shortlist=%d, near misses=%d, gaps=%d, failures=%d",
            ips.ips_id,
            len(symbols),
            len(run.scored),
            len(run.shortlist),
            len(run.near_misses),
            run.tally.data_gaps,
            run.tally.provider_failures,
        )
        return run
