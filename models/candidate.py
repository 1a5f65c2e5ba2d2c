from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from models.ips import FactorEvaluationDetail, Tier
from models.option_contract import OptionContract, OptionSide


@dataclass(frozen=True)
class SpreadLeg:
    """One leg of a vertical spread: strike plus the quote/greeks it was priced from."""

    strike: float
    bid: float
    ask: float
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None
    iv: Optional[float] = None
    open_interest: Optional[int] = None
    volume: Optional[int] = None

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2.0

    @classmethod
    def from_contract(cls, contract: OptionContract) -> "SpreadLeg":
        if not contract.has_quote:
            raise ValueError(f"{contract.symbol} {contract.strike} has no bid/ask")
        return cls(
            strike=contract.strike,
            bid=contract.bid,
            ask=contract.ask,
            delta=contract.delta,
            gamma=contract.gamma,
            theta=contract.theta,
            vega=contract.vega,
            iv=contract.iv,
            open_interest=contract.open_interest,
            volume=contract.volume,
        )


@dataclass(frozen=True)
class CandidateSpread:
    """A viable two-leg vertical credit spread.

    Only :mod:`risk_engine.candidate_generator` constructs these, after
    checking width > 0, credit > 0 and the minimum risk/reward.  ``sequence``
    is the enumeration index and is what ranking ties break on.
    """

    symbol: str
    strategy: str
    side: OptionSide
    expiration: date
    dte: int
    short_leg: SpreadLeg
    long_leg: SpreadLeg
    width: float
    entry_credit: float
    max_profit: float
    max_loss: float
    breakeven: float
    probability_of_profit: Optional[float]
    risk_reward: float
    sequence: int = 0
    sector: Optional[str] = None

    @property
    def label(self) -> str:
        kind = "P" if self.side == OptionSide.PUT else "C"
        return (
            f"{self.symbol} {self.expiration.isoformat()} "
            f"{self.short_leg.strike:g}/{self.long_leg.strike:g}{kind}"
        )


@dataclass(frozen=True)
class RiskAdjustedMetrics:
    """Numeric output of :mod:`risk_engine.yield_scorer` for one candidate."""

    pop_used: float
    expected_value: float
    ev_per_dollar: float
    roi_percent: float
    annualized_return: float
    ev_score: float
    rr_score: float
    capital_efficiency_score: float
    prob_weighted_score: float
    sharpe_ratio: float
    sharpe_score: float
    kelly_fraction: float
    yield_score: float
    explanation: str = ""


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with its yield, IPS and composite scores attached."""

    candidate: CandidateSpread
    metrics: RiskAdjustedMetrics
    ips_score: float
    composite_score: float
    tier: Tier
    factor_details: tuple[FactorEvaluationDetail, ...] = field(default_factory=tuple)

    @property
    def yield_score(self) -> float:
        return self.metrics.yield_score

    @property
    def ev_per_dollar(self) -> float:
        return self.metrics.ev_per_dollar

    @property
    def symbol(self) -> str:
        return self.candidate.symbol

    @property
    def sector(self) -> str:
        return self.candidate.sector or "Unknown"

    @property
    def strategy(self) -> str:
        return self.candidate.strategy

    @property
    def sequence(self) -> int:
        return self.candidate.sequence

    @property
    def failed_factors(self) -> list[FactorEvaluationDetail]:
        return [d for d in self.factor_details if not d.passed]
