"""
models/ips.py
─────────────
Investment Policy Statement (IPS) models.

An IPS is a named, weighted list of factor rules.  The engine reads it,
never writes it; factor values come from the registry in
``risk_engine/factor_registry.py``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class IPSConfigurationError(ValueError):
    """Raised for an IPS that cannot be evaluated (fatal, checked before any fetch)."""


class FactorDirection(str, Enum):
    GTE = "gte"        # at-least
    LTE = "lte"        # at-most
    EQ = "eq"          # equals
    RANGE = "range"    # threshold <= value <= threshold_max


class Severity(str, Enum):
    PASS = "pass"
    MINOR_MISS = "minor_miss"
    MAJOR_MISS = "major_miss"


class FactorScope(str, Enum):
    GENERAL = "general"    # symbol level: fundamentals, technicals, news
    CHAIN = "chain"        # needs a candidate leg or spread


CHAIN_KEY_PREFIXES = ("opt-", "spread-", "pos-")


class Tier(str, Enum):
    ELITE = "elite"
    QUALITY = "quality"
    SPECULATIVE = "speculative"
    NONE = "none"


class FactorDefinition(BaseModel):
    """One weighted factor rule of an IPS."""

    key: str
    weight: float = Field(gt=0)
    direction: FactorDirection = FactorDirection.GTE
    threshold: float | None = None
    threshold_max: float | None = None
    enabled: bool = True
    display_name: str = ""
    scope: FactorScope | None = None

    @model_validator(mode="after")
    def validate_range(self) -> "FactorDefinition":
        if self.direction == FactorDirection.RANGE:
            if self.threshold is not None and self.threshold_max is None:
                raise ValueError(f"range factor {self.key!r} requires threshold_max")
            if (
                self.threshold is not None
                and self.threshold_max is not None
                and self.threshold_max < self.threshold
            ):
                raise ValueError(
                    f"range factor {self.key!r}: threshold_max {self.threshold_max} "
                    f"< threshold {self.threshold}"
                )
        if not self.display_name:
            self.display_name = self.key
        if self.scope is None:
            self.scope = FactorScope.CHAIN if self.key.startswith(CHAIN_KEY_PREFIXES) else FactorScope.GENERAL
        return self

    @property
    def unconstrained(self) -> bool:
        """A null threshold means no constraint: the factor auto-passes."""
        return self.threshold is None

    def describe_target(self) -> str:
        if self.threshold is None:
            return "no constraint"
        if self.direction == FactorDirection.GTE:
            return f">= {self.threshold:g}"
        if self.direction == FactorDirection.LTE:
            return f"<= {self.threshold:g}"
        if self.direction == FactorDirection.EQ:
            return f"== {self.threshold:g}"
        return f"{self.threshold:g} to {self.threshold_max:g}"


class ExitRule(BaseModel):
    enabled: bool = True
    value: float = Field(ge=0)


class ExitStrategies(BaseModel):
    """Per-IPS exit thresholds, in the same units as the ``exits`` policy.

    profit  P/L as % of max profit at which to take profits
    loss    loss as % of credit at which to stop out
    time    exit at or below this many days to expiration

    A rule left out falls back to the engine policy; a disabled rule turns
    that check off for positions under this IPS.
    """

    profit: ExitRule | None = None
    loss: ExitRule | None = None
    time: ExitRule | None = None


class WatchRuleType(str, Enum):
    PRICE = "price"             # underlying price
    PERCENTAGE = "percentage"   # % move of the underlying since entry
    FACTOR = "factor"           # current value of a registry factor


class WatchOperator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"

    def compare(self, value: float, threshold: float) -> bool:
        if self is WatchOperator.GT:
            return value > threshold
        if self is WatchOperator.GTE:
            return value >= threshold
        if self is WatchOperator.LT:
            return value < threshold
        return value <= threshold


class WatchRule(BaseModel):
    id: str = ""
    type: WatchRuleType
    operator: WatchOperator
    value: float
    factor: str | None = None
    description: str = ""

    @model_validator(mode="after")
    def validate_factor(self) -> "WatchRule":
        if self.type == WatchRuleType.FACTOR and not self.factor:
            raise ValueError("factor watch rule requires a factor key")
        if not self.description:
            subject = self.factor if self.type == WatchRuleType.FACTOR else self.type.value
            self.description = f"{subject} {self.operator.value} {self.value:g}"
        return self


class WatchCriteria(BaseModel):
    enabled: bool = True
    rules: list[WatchRule] = Field(default_factory=list)

    @property
    def active_rules(self) -> list[WatchRule]:
        return self.rules if self.enabled else []


class IPSConfig(BaseModel):
    """A named factor set plus the DTE window candidates must fall in.

    ``exit_strategies`` and ``watch_criteria`` are optional and only used
    when monitoring open positions.
    """

    ips_id: str
    name: str = ""
    factors: list[FactorDefinition] = Field(default_factory=list)
    min_dte: int = 7
    max_dte: int = 45
    exit_strategies: ExitStrategies | None = None
    watch_criteria: WatchCriteria | None = None

    @property
    def enabled_factors(self) -> list[FactorDefinition]:
        return [f for f in self.factors if f.enabled]

    @property
    def total_weight(self) -> float:
        return sum(f.weight for f in self.enabled_factors)

    def validate_for_run(self) -> "IPSConfig":
        """Raise :class:`IPSConfigurationError` unless this IPS can drive a run."""

        if not self.enabled_factors:
            raise IPSConfigurationError(f"IPS {self.ips_id!r} has no enabled factors")
        if self.min_dte < 0 or self.max_dte < self.min_dte:
            raise IPSConfigurationError(
                f"IPS {self.ips_id!r} has invalid DTE bounds [{self.min_dte}, {self.max_dte}]"
            )
        seen: set[str] = set()
        for factor in self.enabled_factors:
            if factor.key in seen:
                raise IPSConfigurationError(
                    f"IPS {self.ips_id!r} lists factor {factor.key!r} more than once"
                )
            seen.add(factor.key)
        return self


@dataclass(frozen=True)
class FactorEvaluationDetail:
    """Outcome of one enabled factor against one subject (candidate or position)."""

    key: str
    display_name: str
    value: Optional[float]
    target: str
    passed: bool
    weight: float
    severity: Severity
    score: float
    distance: Optional[float] = None

    def __post_init__(self) -> None:
        if self.passed != (self.severity == Severity.PASS):
            raise ValueError(
                f"factor {self.key!r}: severity {self.severity.value} inconsistent with passed={self.passed}"
            )
