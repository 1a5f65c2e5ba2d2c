"""
risk_engine/watch_criteria.py
─────────────────────────────
Per-IPS watch rules and exit strategies applied to an open position.

Watch rule value by type:
    price       current underlying price
    percentage  % move of the underlying since entry (needs entry_price)
    factor      registry value of ``rule.factor`` for the position

A rule whose value cannot be computed is left out.  Triggered rules become
WATCH_CRITERIA alerts at the ``alerts.watch_rule_severity`` level.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from models.ips import ExitStrategies, WatchCriteria, WatchRule, WatchRuleType
from models.position import ActivePosition, AlertType, RiskAlert, RiskLevel
from risk_engine.factor_registry import FactorContext, FactorRegistry, registry as default_registry
from risk_engine.policy import AlertPolicy, ExitPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchHit:
    rule: WatchRule
    value: float
    triggered: bool


def rule_value(
    rule: WatchRule,
    position: ActivePosition,
    context: FactorContext | None = None,
    registry: FactorRegistry | None = None,
) -> Optional[float]:
    if rule.type == WatchRuleType.PRICE:
        return position.current_price
    if rule.type == WatchRuleType.PERCENTAGE:
        return position.move_since_entry_pct()
    registry = registry or default_registry
    return registry.resolve(rule.factor, context or FactorContext(position=position))


def evaluate_watch_criteria(
    criteria: WatchCriteria | None,
    position: ActivePosition,
    context: FactorContext | None = None,
    registry: FactorRegistry | None = None,
) -> list[WatchHit]:
    if criteria is None:
        return []
    hits: list[WatchHit] = []
    for rule in criteria.active_rules:
        value = rule_value(rule, position, context, registry)
        if value is None:
            logger.debug("%s: watch rule %r has no value", position.id, rule.description)
            continue
        hits.append(WatchHit(rule=rule, value=value, triggered=rule.operator.compare(value, rule.value)))
    return hits


def watch_alerts(hits: Sequence[WatchHit], policy: AlertPolicy | None = None) -> list[RiskAlert]:
    policy = policy or AlertPolicy()
    severity = RiskLevel(policy.watch_rule_severity)
    return [
        RiskAlert(
            type=AlertType.WATCH_CRITERIA,
            severity=severity,
            message=f"Watch rule triggered: {hit.rule.description} (current {hit.value:.2f})",
        )
        for hit in hits
        if hit.triggered
    ]


def resolve_exit_policy(base: ExitPolicy, strategies: ExitStrategies | None) -> ExitPolicy:
    """Overlay an IPS's exit strategies on the engine exit policy."""

    if strategies is None:
        return base

    def pick(rule, current):
        if rule is None:
            return current
        return rule.value if rule.enabled else None

    time_exit_dte = pick(strategies.time, base.time_exit_dte)
    return replace(
        base,
        profit_target_pct=pick(strategies.profit, base.profit_target_pct),
        stop_loss_pct=pick(strategies.loss, base.stop_loss_pct),
        time_exit_dte=int(time_exit_dte) if time_exit_dte is not None else None,
    )
