"""
risk_engine/risk_alerts.py
──────────────────────────
Risk alerts, overall risk level and templated recommendations for an open
position.

Alert rules (emitted in this order):
    EARNINGS_RISK            critical  earnings keywords in catalysts
    ANALYST_DOWNGRADE        high      downgrade keywords in analyst activity
    OPERATIONAL_RISK         high      legal / supply-chain / regulatory-action keywords
                                       in operational risks, or an 8-K event filing
                                       (routine 10-Q / 10-K text is ignored)
    HIGH_NEWS_VOLUME         medium    general news count above threshold
    EXPIRATION_APPROACHING   high ≤ 3 DTE, medium ≤ 7 DTE
    PRICE_NEAR_SHORT_STRIKE  critical < 2%, high < 5% cushion to the short strike
    WATCH_CRITERIA           policy    per-IPS watch rules, appended by the monitor
                                       (risk_engine/watch_criteria.py)

Overall level:
    critical  any critical, or ≥ 2 high
    high      ≥ 1 high, or ≥ 2 medium
    medium    ≥ 1 medium
    low       otherwise
"""
from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence

from models.intelligence import IntelligenceItem, SignalCategory
from models.position import ActivePosition, AlertType, PLSnapshot, RiskAlert, RiskLevel
from risk_engine.policy import AlertPolicy

Signals = Mapping[SignalCategory, Sequence[IntelligenceItem]]


def _mentions(items: Iterable[IntelligenceItem], keywords: Iterable[str]) -> bool:
    keywords = tuple(keywords)
    return any(kw in item.text for item in items for kw in keywords)


def build_alerts(
    position: ActivePosition,
    signals: Signals,
    *,
    dte: int,
    current_price: Optional[float] = None,
    lookback_days: int = 7,
    policy: AlertPolicy | None = None,
) -> list[RiskAlert]:
    policy = policy or AlertPolicy()
    alerts: list[RiskAlert] = []

    catalysts = signals.get(SignalCategory.CATALYSTS, ())
    analysts = signals.get(SignalCategory.ANALYST_ACTIVITY, ())
    operational = list(signals.get(SignalCategory.OPERATIONAL_RISKS, ()))
    event_filings = [
        f for f in signals.get(SignalCategory.FILINGS, ()) if _mentions([f], policy.event_filing_forms)
    ]
    news = signals.get(SignalCategory.GENERAL_NEWS, ())

    if _mentions(catalysts, policy.earnings_keywords):
        alerts.append(
            RiskAlert(
                type=AlertType.EARNINGS_RISK,
                severity=RiskLevel.CRITICAL,
                message=f"Earnings event detected for {position.symbol} - high volatility expected",
            )
        )

    if _mentions(analysts, policy.downgrade_keywords):
        alerts.append(
            RiskAlert(
                type=AlertType.ANALYST_DOWNGRADE,
                severity=RiskLevel.HIGH,
                message=f"Analyst downgrade detected for {position.symbol}",
            )
        )

    if _mentions(operational, policy.operational_keywords) or _mentions(
        event_filings, policy.filing_event_keywords
    ):
        alerts.append(
            RiskAlert(
                type=AlertType.OPERATIONAL_RISK,
                severity=RiskLevel.HIGH,
                message="Operational risk event detected (supply chain, legal, or regulatory)",
            )
        )

    if len(news) > policy.news_volume_threshold:
        alerts.append(
            RiskAlert(
                type=AlertType.HIGH_NEWS_VOLUME,
                severity=RiskLevel.MEDIUM,
                message=f"Unusually high news volume ({len(news)} articles in {lookback_days} days)",
            )
        )

    if dte <= policy.expiration_medium_dte:
        alerts.append(
            RiskAlert(
                type=AlertType.EXPIRATION_APPROACHING,
                severity=RiskLevel.HIGH if dte <= policy.expiration_high_dte else RiskLevel.MEDIUM,
                message=f"Option expiration in {dte} days",
            )
        )

    cushion = position.distance_to_short_pct(current_price)
    if cushion is not None and cushion < policy.near_strike_pct:
        alerts.append(
            RiskAlert(
                type=AlertType.PRICE_NEAR_SHORT_STRIKE,
                severity=RiskLevel.CRITICAL if cushion < policy.near_strike_critical_pct else RiskLevel.HIGH,
                message=f"Price within {cushion:.1f}% of short strike (${position.short_strike:g})",
            )
        )

    return alerts


def overall_level(alerts: Sequence[RiskAlert]) -> RiskLevel:
    critical = sum(1 for a in alerts if a.severity == RiskLevel.CRITICAL)
    high = sum(1 for a in alerts if a.severity == RiskLevel.HIGH)
    medium = sum(1 for a in alerts if a.severity == RiskLevel.MEDIUM)

    if critical >= 1 or high >= 2:
        return RiskLevel.CRITICAL
    if high >= 1 or medium >= 2:
        return RiskLevel.HIGH
    if medium >= 1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def recommendations(
    position: ActivePosition,
    level: RiskLevel,
    alerts: Sequence[RiskAlert],
    *,
    days_held: int,
    analysts: Sequence[IntelligenceItem] = (),
    pl: Optional[PLSnapshot] = None,
    policy: AlertPolicy | None = None,
) -> list[str]:
    """Deterministic recommendation strings for a level / alert / exit state."""

    policy = policy or AlertPolicy()
    recs: list[str] = []
    types = {a.type for a in alerts}

    if pl is not None and pl.should_exit:
        recs.append(f"🚪 EXIT SIGNAL: {pl.exit_reason}")
    elif pl is not None and pl.warning:
        recs.append(f"🎯 {pl.warning} - prepare to close")

    if level == RiskLevel.CRITICAL:
        recs.append("⚠️ CRITICAL: Consider closing position or rolling to different strikes")
        recs.append("Monitor price action closely - set alerts on brokerage platform")
    elif level == RiskLevel.HIGH:
        recs.append("⚠️ HIGH RISK: Review exit criteria and adjust stops if needed")
        recs.append("Consider taking profits early if trade is profitable")

    if AlertType.EARNINGS_RISK in types:
        recs.append("📊 Close before earnings or roll position to post-earnings expiration")

    if AlertType.PRICE_NEAR_SHORT_STRIKE in types:
        recs.append("📍 Price approaching short strike - consider rolling or closing to avoid assignment")

    if AlertType.WATCH_CRITERIA in types:
        recs.append("👀 IPS watch rule triggered - review the position against its IPS")

    if days_held >= policy.long_hold_days:
        recs.append(
            f"⏰ Trade held for {policy.long_hold_days}+ days - consider taking profits "
            "if target achieved (50%+ of max profit)"
        )

    if position.strategy == "put_credit_spread" and _mentions(analysts, policy.upgrade_keywords):
        recs.append("📈 Positive analyst activity - bullish signal supports put credit spreads")

    if not recs:
        recs.append("✅ No significant risks detected - monitor regularly")
        recs.append("Continue managing according to IPS exit criteria")
    return recs


def summarize_news(signals: Signals, limit: int = 5) -> list[str]:
    """Top *limit* unique headlines (by URL) across news, catalysts and analyst items."""

    pool: list[IntelligenceItem] = [
        *signals.get(SignalCategory.GENERAL_NEWS, ()),
        *signals.get(SignalCategory.CATALYSTS, ()),
        *signals.get(SignalCategory.ANALYST_ACTIVITY, ()),
    ]
    seen: set[str] = set()
    unique: list[IntelligenceItem] = []
    for item in pool:
        key = item.url or item.title
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    unique.sort(key=lambda i: i.score, reverse=True)
    return [f"[{item.category.value}] {item.title}" for item in unique[:limit]]
