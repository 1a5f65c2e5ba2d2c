"""
risk_engine/exit_signals.py
───────────────────────────
Live P/L and exit decision for an open credit spread.

    close_bid  = short.bid − long.ask       (what closing could fetch)
    close_ask  = short.ask − long.bid       (what closing could cost)
    spread_mid = (close_bid + close_ask) / 2

    pl_dollar  = (credit − spread_mid) · contracts · 100
    pl_percent = (credit − spread_mid) / credit · 100

    pl% ≥ profit target (50)          → exit, profit
    pl% ≤ −stop loss (200)            → exit, loss
    dte ≤ time_exit_dte (if set)      → exit, time
    warning_pct (30) ≤ pl% < target   → warning only

A threshold set to None is skipped; see risk_engine/watch_criteria.py for
the per-IPS overlay.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from models.position import ExitType, PLSnapshot
from risk_engine.policy import ExitPolicy

logger = logging.getLogger(__name__)

CONTRACT_MULTIPLIER = 100


class _Quoted(Protocol):
    bid: Optional[float]
    ask: Optional[float]


def spread_close_price(short: _Quoted, long: _Quoted) -> Optional[tuple[float, float, float]]:
    """Return (close_bid, close_ask, mid) for buying back the spread, or None without quotes."""

    if None in (short.bid, short.ask, long.bid, long.ask):
        return None
    close_bid = short.bid - long.ask
    close_ask = short.ask - long.bid
    return close_bid, close_ask, (close_bid + close_ask) / 2.0


def compute_pl(credit: float, spread_mid: float, contracts: int = 1) -> tuple[float, float]:
    """Return (pl_dollar, pl_percent). *credit* must be positive."""

    if credit <= 0:
        raise ValueError("credit must be positive")
    per_contract = credit - spread_mid
    return per_contract * contracts * CONTRACT_MULTIPLIER, per_contract / credit * 100.0


def evaluate_exit(
    credit: float,
    spread_mid: float,
    *,
    contracts: int = 1,
    dte: Optional[int] = None,
    close_bid: Optional[float] = None,
    close_ask: Optional[float] = None,
    policy: ExitPolicy | None = None,
) -> PLSnapshot:
    policy = policy or ExitPolicy()
    pl_dollar, pl_percent = compute_pl(credit, spread_mid, contracts)

    should_exit = False
    exit_type: ExitType | None = None
    exit_reason: str | None = None
    warning: str | None = None

    target = policy.profit_target_pct
    if target is not None and pl_percent >= target:
        should_exit, exit_type = True, ExitType.PROFIT
        exit_reason = f"Profit target reached: {pl_percent:.1f}% of max profit (target {target:g}%)"
    elif policy.stop_loss_pct is not None and pl_percent <= -policy.stop_loss_pct:
        should_exit, exit_type = True, ExitType.LOSS
        exit_reason = f"Stop loss triggered: {pl_percent:.1f}% of credit (limit -{policy.stop_loss_pct:g}%)"
    elif policy.time_exit_dte is not None and dte is not None and dte <= policy.time_exit_dte:
        should_exit, exit_type = True, ExitType.TIME
        exit_reason = f"Time exit: {dte} DTE remaining (limit {policy.time_exit_dte})"

    if not should_exit and target is not None and policy.warning_pct <= pl_percent < target:
        warning = f"Approaching profit target: {pl_percent:.1f}% of max profit"

    return PLSnapshot(
        spread_price=spread_mid,
        close_bid=close_bid,
        close_ask=close_ask,
        pl_dollar=pl_dollar,
        pl_percent=pl_percent,
        should_exit=should_exit,
        exit_type=exit_type,
        exit_reason=exit_reason,
        warning=warning,
    )


def evaluate_from_legs(
    credit: float,
    short: _Quoted,
    long: _Quoted,
    *,
    contracts: int = 1,
    dte: Optional[int] = None,
    policy: ExitPolicy | None = None,
) -> Optional[PLSnapshot]:
    """P/L from leg quotes; ``None`` (a data gap) when a quote is missing."""

    prices = spread_close_price(short, long)
    if prices is None:
        logger.debug("missing leg quote, P/L unavailable")
        return None
    close_bid, close_ask, mid = prices
    return evaluate_exit(
        credit,
        mid,
        contracts=contracts,
        dte=dte,
        close_bid=close_bid,
        close_ask=close_ask,
        policy=policy,
    )
