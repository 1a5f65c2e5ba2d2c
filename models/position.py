"""
models/position.py
──────────────────
Open-position and monitoring models.

ActivePosition  – an open credit spread, mutated only by the monitor
                  (current price / spread price)
PLSnapshot      – live P/L plus the exit decision derived from it
RiskAlert       – one {type, severity, message} alert
MonitorResult   – immutable, timestamped output of one monitoring pass;
                  persisted append-only by database/monitor_store.py
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from models.option_contract import OptionSide


class PositionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class AlertType(str, Enum):
    EARNINGS_RISK = "earnings_risk"
    ANALYST_DOWNGRADE = "analyst_downgrade"
    OPERATIONAL_RISK = "operational_risk"
    HIGH_NEWS_VOLUME = "high_news_volume"
    EXPIRATION_APPROACHING = "expiration_approaching"
    PRICE_NEAR_SHORT_STRIKE = "price_near_short_strike"
    WATCH_CRITERIA = "watch_criteria"


class ExitType(str, Enum):
    PROFIT = "profit"
    LOSS = "loss"
    TIME = "time"


class ActivePosition(BaseModel):
    """An open two-leg credit spread."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    symbol: str
    strategy: str = "put_credit_spread"
    side: OptionSide = OptionSide.PUT
    entry_date: date
    expiration: date
    short_strike: float = Field(gt=0)
    long_strike: float = Field(gt=0)
    credit_received: float = Field(gt=0)
    contracts: int = Field(default=1, ge=1)
    ips_score: float | None = None
    entry_price: float | None = None
    status: PositionStatus = PositionStatus.ACTIVE
    sector: str | None = None

    current_price: float | None = None
    current_spread_price: float | None = None
    pl_dollar: float | None = None
    pl_percent: float | None = None

    @model_validator(mode="after")
    def validate_strikes(self) -> "ActivePosition":
        """Short strike must sit closer to the money than the long strike."""

        if self.side == OptionSide.PUT and self.short_strike <= self.long_strike:
            raise ValueError("put credit spread requires short_strike > long_strike")
        if self.side == OptionSide.CALL and self.short_strike >= self.long_strike:
            raise ValueError("call credit spread requires short_strike < long_strike")
        if self.expiration < self.entry_date:
            raise ValueError("expiration precedes entry_date")
        return self

    @property
    def width(self) -> float:
        return abs(self.short_strike - self.long_strike)

    def days_held(self, today: date | None = None) -> int:
        today = today or date.today()
        return max(0, (today - self.entry_date).days)

    def dte(self, today: date | None = None) -> int:
        today = today or date.today()
        return max(0, (self.expiration - today).days)

    def move_since_entry_pct(self, price: float | None = None) -> Optional[float]:
        """Percent change of the underlying since entry; None without both prices."""
        price = price if price is not None else self.current_price
        if price is None or not self.entry_price:
            return None
        return (price - self.entry_price) / self.entry_price * 100.0

    def distance_to_short_pct(self, price: float | None = None) -> Optional[float]:
        """Percent cushion between the underlying and the short strike.

        Positive while the short strike is out of the money, negative once
        the price has crossed it.
        """
        price = price if price is not None else self.current_price
        if price is None or price <= 0:
            return None
        if self.side == OptionSide.PUT:
            return (price - self.short_strike) / price * 100.0
        return (self.short_strike - price) / price * 100.0


class RiskAlert(BaseModel):
    type: AlertType
    severity: RiskLevel
    message: str


class PLSnapshot(BaseModel):
    """Live P/L of a position and the exit decision it implies."""

    spread_price: float
    close_bid: float | None = None
    close_ask: float | None = None
    pl_dollar: float
    pl_percent: float
    should_exit: bool = False
    exit_type: ExitType | None = None
    exit_reason: str | None = None
    warning: str | None = None


class MonitorResult(BaseModel):
    """Immutable output of one monitoring pass for one position."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    position_id: str
    symbol: str
    evaluated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    days_held: int
    dte: int
    current_price: float | None = None
    pl: PLSnapshot | None = None
    alerts: list[RiskAlert] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    recommendations: list[str] = Field(default_factory=list)
    news_summary: list[str] = Field(default_factory=list)
    ips_score: float | None = None
    credits_used: int = 0
    paid_calls: int = 0
    cached_results: int = 0
    from_cache: bool = False
    age_hours: float | None = None
    degraded: bool = False
    data_gaps: int = 0
    provider_failures: int = 0
    errors: list[str] = Field(default_factory=list)

    def age(self, now: datetime | None = None) -> float:
        """Hours since this result was computed."""
        now = now or datetime.now(timezone.utc)
        return (now - self.evaluated_at).total_seconds() / 3600.0

    def is_fresh(self, window_hours: float, now: datetime | None = None) -> bool:
        return self.age(now) < window_hours

    def as_cached(self, now: datetime | None = None) -> "MonitorResult":
        """Copy marked as served from cache, with its age filled in."""
        return self.model_copy(update={"from_cache": True, "age_hours": round(self.age(now), 2)})
