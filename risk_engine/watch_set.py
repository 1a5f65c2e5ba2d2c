"""Watch-set filter: which open positions are worth an external refresh this cycle.

A position is refreshed when any of these hold:
    ips_score below the threshold (75), preferring the last re-scored value
    price within 5% of the short strike (last observed price when the
        position carries none)
    DTE at or below 14
    last MonitorResult was high or critical

Positions that match none are skipped for this cycle only.  Nothing is
marked resolved.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional

from models.position import ActivePosition, MonitorResult, RiskLevel
from risk_engine.policy import WatchPolicy


@dataclass(frozen=True)
class WatchDecision:
    position_id: str
    include: bool
    reasons: tuple[str, ...] = ()


def watch_reasons(
    position: ActivePosition,
    last_result: Optional[MonitorResult] = None,
    *,
    today: date | None = None,
    policy: WatchPolicy | None = None,
) -> list[str]:
    policy = policy or WatchPolicy()
    reasons: list[str] = []

    # positions reloaded each cycle carry only entry values; the last result is newer
    ips_score = position.ips_score
    price = position.current_price
    if last_result is not None:
        if last_result.ips_score is not None:
            ips_score = last_result.ips_score
        if price is None:
            price = last_result.current_price

    if ips_score is not None and ips_score < policy.ips_score_below:
        reasons.append(f"ips_score {ips_score:.0f} < {policy.ips_score_below:g}")

    cushion = position.distance_to_short_pct(price)
    if cushion is not None and cushion < policy.near_strike_pct:
        reasons.append(f"{cushion:.1f}% from short strike")

    dte = position.dte(today)
    if dte <= policy.dte_at_most:
        reasons.append(f"{dte} DTE")

    if last_result is not None and last_result.risk_level.rank >= RiskLevel.HIGH.rank:
        reasons.append(f"last risk level {last_result.risk_level.value}")

    return reasons


@dataclass
class WatchSet:
    included: list[ActivePosition] = field(default_factory=list)
    skipped: list[ActivePosition] = field(default_factory=list)
    decisions: dict[str, WatchDecision] = field(default_factory=dict)


def select_watch_set(
    positions: Iterable[ActivePosition],
    last_results: Mapping[str, MonitorResult] | None = None,
    *,
    today: date | None = None,
    policy: WatchPolicy | None = None,
) -> WatchSet:
    last_results = last_results or {}
    watch = WatchSet()
    for position in positions:
        reasons = watch_reasons(position, last_results.get(position.id), today=today, policy=policy)
        decision = WatchDecision(position.id, bool(reasons), tuple(reasons))
        watch.decisions[position.id] = decision
        (watch.included if decision.include else watch.skipped).append(position)
    return watch
