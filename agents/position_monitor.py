"""
agents/position_monitor.py
──────────────────────────
Monitoring state machine for open credit spreads.

Per position:

    FRESH       latest stored result is younger than the freshness window
                → served from the store, no external calls
    STALE       needs a refresh
    REFRESHING  a refresh task is in flight; concurrent requests for the
                same position await that task instead of starting another
                (shielded: a cancelled waiter does not cancel the refresh
                while another caller still awaits it)
    EVALUATED   result computed and appended to the store

A refresh fetches, concurrently, the market snapshot and the five
intelligence categories.  A failed category degrades to an empty list and
is counted; the result is marked ``degraded``.  A result is persisted only
once it is fully computed, so a cancelled refresh leaves no partial row.

Exit thresholds come from the IPS exit strategies when the monitor has an
IPS that sets them; its watch criteria add WATCH_CRITERIA alerts.

Batch (``monitor_batch``):
    active positions → watch-set filter → refreshes bounded by a semaphore
    → optional batch timeout.  A failure in one position never stops the
    others.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from adapters.intelligence_provider import CategoryFetch, LayeredIntelligenceProvider
from adapters.snapshot_adapter import MarketSnapshotAdapter
from core.error_tally import ErrorTally
from database.monitor_store import MonitorStore
from models.candidate import SpreadLeg
from models.intelligence import IntelligenceItem, SignalCategory
from models.ips import IPSConfig
from models.option_contract import MarketSnapshot, OptionContract
from models.position import ActivePosition, MonitorResult, PositionStatus
from risk_engine.exit_signals import evaluate_from_legs
from risk_engine.factor_evaluator import FactorEvaluator
from risk_engine.factor_registry import FactorContext
from risk_engine.policy import EnginePolicy
from risk_engine.risk_alerts import build_alerts, overall_level, recommendations, summarize_news
from risk_engine.watch_criteria import evaluate_watch_criteria, resolve_exit_policy, watch_alerts
from risk_engine.watch_set import select_watch_set

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    REFRESHING = "refreshing"
    EVALUATED = "evaluated"


_CATEGORIES = (
    SignalCategory.CATALYSTS,
    SignalCategory.ANALYST_ACTIVITY,
    SignalCategory.FILINGS,
    SignalCategory.OPERATIONAL_RISKS,
    SignalCategory.GENERAL_NEWS,
)


def _find_leg(contracts: Iterable[OptionContract], position: ActivePosition, strike: float) -> Optional[OptionContract]:
    for contract in contracts:
        if (
            contract.expiration == position.expiration
            and contract.side == position.side
            and abs(contract.strike - strike) < 1e-6
        ):
            return contract
    return None


@dataclass
class BatchMonitorReport:
    results: dict[str, MonitorResult] = field(default_factory=dict)
    refreshed: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    timed_out: list[str] = field(default_factory=list)
    risk_summary: dict[str, int] = field(default_factory=dict)
    credits_used: int = 0
    paid_calls: int = 0
    tally: ErrorTally = field(default_factory=ErrorTally)


class PositionMonitor:
    """Refreshes and evaluates open positions.

    Args:
        market:       Snapshot adapter (quote, chain, fundamentals) for P/L and factors.
        intelligence: Layered intelligence provider for the five signal categories.
        store:        Append-only MonitorResult store; also the result cache.
        policy:       Engine policy; defaults to the stock policy.
        ips:          Optional IPS to re-score positions on each refresh; its exit
                      strategies and watch criteria, when set, replace the policy
                      exits and add watch-rule alerts.
        evaluator:    Factor evaluator used with *ips*.
    """

    def __init__(
        self,
        market: MarketSnapshotAdapter,
        intelligence: LayeredIntelligenceProvider,
        store: MonitorStore,
        *,
        policy: EnginePolicy | None = None,
        ips: IPSConfig | None = None,
        evaluator: FactorEvaluator | None = None,
    ) -> None:
        self._market = market
        self._intel = intelligence
        self._store = store
        self.policy = policy or EnginePolicy()
        self._ips = ips
        self.exit_policy = resolve_exit_policy(self.policy.exits, ips.exit_strategies if ips is not None else None)
        self._evaluator = evaluator or FactorEvaluator(policy=self.policy.scoring)
        self._states: dict[str, MonitorState] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._waiters: dict[asyncio.Task, int] = {}

    def state(self, position_id: str) -> MonitorState:
        return self._states.get(position_id, MonitorState.STALE)

    # ------------------------------------------------------------------ #
    # Single position                                                      #
    # ------------------------------------------------------------------ #

    async def monitor(
        self,
        position: ActivePosition,
        *,
        force_refresh: bool = False,
        now: datetime | None = None,
    ) -> MonitorResult:
        """Return a fresh cached result or refresh *position*."""

        task = self._inflight.get(position.id)
        if task is not None:
            logger.debug("%s: joining in-flight refresh", position.id)
            return await self._join(task)

        if not force_refresh:
            latest = await self._store.latest(position.id)
            window = self.policy.monitor.freshness_hours
            if latest is not None and latest.is_fresh(window, now):
                self._states[position.id] = MonitorState.FRESH
                return latest.as_cached(now)
            # a refresh may have started while we were reading the store
            task = self._inflight.get(position.id)
            if task is not None:
                return await self._join(task)

        self._states[position.id] = MonitorState.STALE
        task = asyncio.create_task(self._refresh(position, now))
        self._inflight[position.id] = task
        task.add_done_callback(lambda t, pid=position.id: self._finish(pid, t))
        return await self._join(task)

    async def _join(self, task: asyncio.Task) -> MonitorResult:
        """Await a shared refresh; it is cancelled only together with its last waiter."""

        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._waiters[task] == 1 and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            self._waiters[task] -= 1
            if not self._waiters[task]:
                del self._waiters[task]

    def _finish(self, position_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(position_id) is task:
            del self._inflight[position_id]
        if task.cancelled() or task.exception() is not None:
            self._states[position_id] = MonitorState.STALE

    async def _fetch_category(self, symbol: str, category: SignalCategory) -> CategoryFetch:
        lookback = (
            self.policy.monitor.filings_lookback_days
            if category == SignalCategory.FILINGS
            else self.policy.monitor.lookback_days
        )
        return await self._intel.fetch(symbol, category, lookback)

    async def _refresh(self, position: ActivePosition, now: datetime | None = None) -> MonitorResult:
        self._states[position.id] = MonitorState.REFRESHING
        evaluated_at = now or datetime.now(timezone.utc)
        today = evaluated_at.date()
        tally = ErrorTally()

        snapshot, *fetches = await asyncio.gather(
            self._market.build_snapshot(position.symbol),
            *(self._fetch_category(position.symbol, c) for c in _CATEGORIES),
            return_exceptions=True,
        )

        # ── Signals ───────────────────────────────────────────────────────
        signals: dict[SignalCategory, list[IntelligenceItem]] = {}
        paid_calls = credits = cached = 0
        for category, fetched in zip(_CATEGORIES, fetches):
            if isinstance(fetched, BaseException):
                logger.warning("%s: %s fetch failed: %s", position.symbol, category.value, fetched)
                tally.failure(f"{category.value}: {fetched}")
                signals[category] = []
                continue
            signals[category] = fetched.items
            paid_calls += fetched.paid_calls
            credits += fetched.credits_used
            cached += int(fetched.from_cache)

        # ── Market data and P/L ───────────────────────────────────────────
        if isinstance(snapshot, BaseException):
            logger.warning("%s: snapshot failed: %s", position.symbol, snapshot)
            tally.failure(f"market data: {snapshot}")
            snapshot = MarketSnapshot(symbol=position.symbol, current_price=None, data_gaps=["quote", "chain"])
        for gap in snapshot.data_gaps:
            tally.gap(f"market data gap: {gap}")

        current_price = snapshot.current_price
        if current_price is not None:
            position.current_price = current_price

        dte = position.dte(today)
        short = _find_leg(snapshot.contracts, position, position.short_strike)
        long = _find_leg(snapshot.contracts, position, position.long_strike)
        pl = None
        if short is not None and long is not None:
            pl = evaluate_from_legs(
                position.credit_received,
                short,
                long,
                contracts=position.contracts,
                dte=dte,
                policy=self.exit_policy,
            )
        if pl is None:
            tally.gap("leg quotes unavailable, P/L not computed")
        else:
            position.current_spread_price = pl.spread_price
            position.pl_dollar = pl.pl_dollar
            position.pl_percent = pl.pl_percent

        # ── IPS re-score ──────────────────────────────────────────────────
        context = FactorContext(
            position=position,
            snapshot=snapshot,
            short_leg=SpreadLeg.from_contract(short) if short is not None and short.has_quote else None,
            news=signals[SignalCategory.GENERAL_NEWS],
        )
        ips_score = position.ips_score
        if self._ips is not None:
            ips_score = self._evaluator.evaluate(self._ips.enabled_factors, context).ips_score
            position.ips_score = ips_score

        # ── Alerts and recommendations ────────────────────────────────────
        days_held = position.days_held(today)
        alerts = build_alerts(
            position,
            signals,
            dte=dte,
            current_price=current_price,
            lookback_days=self.policy.monitor.lookback_days,
            policy=self.policy.alerts,
        )
        if self._ips is not None and self._ips.watch_criteria is not None:
            hits = evaluate_watch_criteria(self._ips.watch_criteria, position, context, self._evaluator.registry)
            alerts.extend(watch_alerts(hits, self.policy.alerts))
        level = overall_level(alerts)
        recs = recommendations(
            position,
            level,
            alerts,
            days_held=days_held,
            analysts=signals[SignalCategory.ANALYST_ACTIVITY],
            pl=pl,
            policy=self.policy.alerts,
        )

        result = MonitorResult(
            position_id=position.id,
            symbol=position.symbol,
            evaluated_at=evaluated_at,
            days_held=days_held,
            dte=dte,
            current_price=current_price,
            pl=pl,
            alerts=alerts,
            risk_level=level,
            recommendations=recs,
            news_summary=summarize_news(signals, self.policy.monitor.news_summary_size),
            ips_score=ips_score,
            credits_used=credits,
            paid_calls=paid_calls,
            cached_results=cached,
            degraded=bool(tally),
            data_gaps=tally.data_gaps,
            provider_failures=tally.provider_failures,
            errors=list(tally.warnings),
        )
        await self._store.append(result)
        self._states[position.id] = MonitorState.EVALUATED
        logger.info(
            "%s %s: risk=%s pl=%s alerts=%d credits=%d%s",
            position.id,
            position.symbol,
            level.value,
            f"{pl.pl_percent:.1f}%" if pl else "n/a",
            len(alerts),
            credits,
            " (degraded)" if result.degraded else "",
        )
        return result

    # ------------------------------------------------------------------ #
    # Batch                                                                #
    # ------------------------------------------------------------------ #

    async def monitor_batch(
        self,
        positions: Iterable[ActivePosition],
        *,
        force_refresh: bool = False,
        apply_watch_set: bool = True,
        timeout: float | None = None,
        now: datetime | None = None,
    ) -> BatchMonitorReport:
        report = BatchMonitorReport()
        active = [p for p in positions if p.status == PositionStatus.ACTIVE]
        today = (now or datetime.now(timezone.utc)).date()

        if apply_watch_set:
            last = await self._store.latest_for(p.id for p in active)
            watch = select_watch_set(active, last, today=today, policy=self.policy.watch)
            included = watch.included
            report.skipped = [p.id for p in watch.skipped]
        else:
            included = active

        semaphore = asyncio.Semaphore(max(1, self.policy.monitor.max_concurrency))

        async def _one(position: ActivePosition) -> MonitorResult:
            async with semaphore:
                return await self.monitor(position, force_refresh=force_refresh, now=now)

        tasks = {p.id: asyncio.create_task(_one(p)) for p in included}
        limit = timeout if timeout is not None else self.policy.monitor.batch_timeout_seconds
        if tasks:
            try:
                async with asyncio.timeout(limit):
                    await asyncio.gather(*tasks.values(), return_exceptions=True)
            except TimeoutError:
                logger.warning("monitor batch timed out after %ss", limit)
                pending = [t for t in tasks.values() if not t.done()]
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        for position_id, task in tasks.items():
            if task.cancelled():
                report.timed_out.append(position_id)
                continue
            exc = task.exception()
            if exc is not None:
                logger.error("%s: refresh failed: %s", position_id, exc)
                report.failed[position_id] = str(exc)
                report.tally.failure(f"{position_id}: {exc}")
                continue
            result = task.result()
            report.results[position_id] = result
            if result.from_cache:
                report.cached.append(position_id)
            else:
                report.refreshed.append(position_id)
                report.credits_used += result.credits_used
                report.paid_calls += result.paid_calls
                report.tally.merge(
                    ErrorTally(
                        data_gaps=result.data_gaps,
                        provider_failures=result.provider_failures,
                        warnings=[f"{position_id}: {e}" for e in result.errors],
                    )
                )

        report.risk_summary = dict(Counter(r.risk_level.value for r in report.results.values()))
        logger.info(
            "monitor batch: refreshed=%d cached=%d skipped=%d failed=%d timed_out=%d credits=%d",
            len(report.refreshed),
            len(report.cached),
            len(report.skipped),
            len(report.failed),
            len(report.timed_out),
            report.credits_used,
        )
        return report
