"""
risk_engine/candidate_generator.py
──────────────────────────────────
Enumerate two-leg vertical credit spreads from a normalised option chain.

Algorithm (per side):
    1. keep contracts of the requested side that are out of the money
    2. DTE per expiration = whole days from *today*; keep the nearest
       ``max_expirations`` inside [min_dte, max_dte]
    3. within an expiration, order strikes from the money outward
       (puts descending, calls ascending), cap at ``max_strikes``
    4. for strike index i and width step w: short = strikes[i],
       long = strikes[i + w]  (w is an index step, not dollars)

Every examined pair yields a :class:`GenerationOutcome`; rejected pairs
carry a :class:`RejectionReason` so the rejection mix can be inspected.
Rejections are not errors: they are non-viable structures.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Iterator, Optional

from models.candidate import CandidateSpread, SpreadLeg
from models.ips import IPSConfig
from models.option_contract import MarketSnapshot, OptionContract, OptionSide
from risk_engine.policy import GenerationPolicy

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    LONG_INDEX_OUT_OF_RANGE = "long_index_out_of_range"
    NON_POSITIVE_WIDTH = "non_positive_width"
    MISSING_QUOTE = "missing_quote"
    NON_POSITIVE_CREDIT = "non_positive_credit"
    NON_POSITIVE_MAX_LOSS = "non_positive_max_loss"
    BELOW_MIN_RISK_REWARD = "below_min_risk_reward"


@dataclass(frozen=True)
class GenerationOutcome:
    expiration: date
    short_strike: float
    width_steps: int
    long_strike: Optional[float] = None
    candidate: Optional[CandidateSpread] = None
    reason: Optional[RejectionReason] = None

    @property
    def accepted(self) -> bool:
        return self.candidate is not None


@dataclass
class GenerationReport:
    """Collected outcomes of one generation pass over one symbol."""

    symbol: str
    candidates: list[CandidateSpread] = field(default_factory=list)
    rejections: Counter = field(default_factory=Counter)
    skipped_expirations: list[date] = field(default_factory=list)
    examined: int = 0
    data_gaps: list[str] = field(default_factory=list)

    def add(self, outcome: GenerationOutcome) -> None:
        self.examined += 1
        if outcome.accepted:
            self.candidates.append(outcome.candidate)
        else:
            self.rejections[outcome.reason] += 1


def _is_otm(contract: OptionContract, price: float) -> bool:
    if contract.side == OptionSide.PUT:
        return contract.strike < price
    return contract.strike > price


def _select_expirations(
    contracts: Iterable[OptionContract],
    today: date,
    min_dte: int,
    max_dte: int,
    max_expirations: int,
) -> list[tuple[date, int]]:
    expirations = {c.expiration for c in contracts}
    in_window = [
        (exp, (exp - today).days)
        for exp in expirations
        if min_dte <= (exp - today).days <= max_dte
    ]
    in_window.sort(key=lambda pair: pair[1])
    return in_window[:max_expirations]


def _ordered_strikes(contracts: Iterable[OptionContract], side: OptionSide, max_strikes: int) -> list[OptionContract]:
    """One contract per strike, nearest the money first."""

    by_strike: dict[float, OptionContract] = {}
    for contract in contracts:
        by_strike.setdefault(contract.strike, contract)
    ordered = sorted(by_strike.values(), key=lambda c: c.strike, reverse=(side == OptionSide.PUT))
    return ordered[:max_strikes]


def _evaluate_pair(
    symbol: str,
    short: OptionContract,
    long: OptionContract,
    *,
    side: OptionSide,
    expiration: date,
    dte: int,
    strategy: str,
    sector: Optional[str],
    min_risk_reward: float,
    sequence: int,
) -> tuple[Optional[CandidateSpread], Optional[RejectionReason]]:
    width = short.strike - long.strike if side == OptionSide.PUT else long.strike - short.strike
    if width <= 0:
        return None, RejectionReason.NON_POSITIVE_WIDTH
    if not (short.has_quote and long.has_quote):
        return None, RejectionReason.MISSING_QUOTE

    credit = short.mid - long.mid
    if credit <= 0:
        return None, RejectionReason.NON_POSITIVE_CREDIT
    max_loss = width - credit
    if max_loss <= 0:
        return None, RejectionReason.NON_POSITIVE_MAX_LOSS
    risk_reward = credit / max_loss
    if risk_reward < min_risk_reward:
        return None, RejectionReason.BELOW_MIN_RISK_REWARD

    pop = 1.0 - abs(short.delta) if short.delta is not None else None
    breakeven = short.strike - credit if side == OptionSide.PUT else short.strike + credit

    return (
        CandidateSpread(
            symbol=symbol,
            strategy=strategy,
            side=side,
            expiration=expiration,
            dte=dte,
            short_leg=SpreadLeg.from_contract(short),
            long_leg=SpreadLeg.from_contract(long),
            width=width,
            entry_credit=credit,
            max_profit=credit,
            max_loss=max_loss,
            breakeven=breakeven,
            probability_of_profit=pop,
            risk_reward=risk_reward,
            sequence=sequence,
            sector=sector,
        ),
        None,
    )


def generate_candidates(
    symbol: str,
    contracts: Iterable[OptionContract],
    current_price: float,
    *,
    min_dte: int,
    max_dte: int,
    max_expirations: int = 3,
    max_strikes: int = 50,
    widths: Iterable[int] = (1, 2),
    min_risk_reward: float = 0.05,
    side: OptionSide = OptionSide.PUT,
    strategy: str = "put_credit_spread",
    sector: Optional[str] = None,
    today: date | None = None,
    start_sequence: int = 0,
    skipped: list[date] | None = None,
) -> Iterator[GenerationOutcome]:
    """Yield one outcome per examined (short, width) pair.

    Expirations with fewer than two usable strikes are appended to
    *skipped* (when given) and produce no outcomes.
    """
    today = today or date.today()
    widths = sorted({int(w) for w in widths if int(w) >= 1})
    eligible = [c for c in contracts if c.side == side and _is_otm(c, current_price)]

    sequence = start_sequence
    for expiration, dte in _select_expirations(eligible, today, min_dte, max_dte, max_expirations):
        strikes = _ordered_strikes(
            (c for c in eligible if c.expiration == expiration), side, max_strikes
        )
        if len(strikes) < 2:
            logger.debug("%s %s: fewer than 2 strikes, skipping", symbol, expiration)
            if skipped is not None:
                skipped.append(expiration)
            continue

        for i, short in enumerate(strikes):
            for w in widths:
                j = i + w
                if j >= len(strikes):
                    yield GenerationOutcome(
                        expiration=expiration,
                        short_strike=short.strike,
                        width_steps=w,
                        reason=RejectionReason.LONG_INDEX_OUT_OF_RANGE,
                    )
                    continue
                long = strikes[j]
                candidate, reason = _evaluate_pair(
                    symbol,
                    short,
                    long,
                    side=side,
                    expiration=expiration,
                    dte=dte,
                    strategy=strategy,
                    sector=sector,
                    min_risk_reward=min_risk_reward,
                    sequence=sequence,
                )
                if candidate is not None:
                    sequence += 1
                yield GenerationOutcome(
                    expiration=expiration,
                    short_strike=short.strike,
                    long_strike=long.strike,
                    width_steps=w,
                    candidate=candidate,
                    reason=reason,
                )


class CandidateGenerator:
    """Runs :func:`generate_candidates` for a snapshot using generation policy + IPS DTE bounds.

    Args:
        policy: Generation policy (expirations, strikes, widths, min risk/reward).
        side:   Which side to build credit spreads on (puts by default).
    """

    def __init__(self, policy: GenerationPolicy | None = None, *, side: OptionSide = OptionSide.PUT) -> None:
        self.policy = policy or GenerationPolicy()
        self.side = side

    def run(
        self,
        snapshot: MarketSnapshot,
        ips: IPSConfig,
        *,
        today: date | None = None,
        start_sequence: int = 0,
    ) -> GenerationReport:
        report = GenerationReport(symbol=snapshot.symbol)
        if not snapshot.is_priced:
            report.data_gaps.append("quote")
            logger.warning("%s: no current price, no candidates generated", snapshot.symbol)
            return report
        if not snapshot.contracts:
            report.data_gaps.append("chain")
            return report

        strategy = self.policy.strategy_tag
        if self.side == OptionSide.CALL and strategy == "put_credit_spread":
            strategy = "call_credit_spread"

        for outcome in generate_candidates(
            snapshot.symbol,
            snapshot.contracts,
            snapshot.current_price,
            min_dte=ips.min_dte,
            max_dte=ips.max_dte,
            max_expirations=self.policy.max_expirations,
            max_strikes=self.policy.max_strikes,
            widths=self.policy.widths,
            min_risk_reward=self.policy.min_risk_reward,
            side=self.side,
            strategy=strategy,
            sector=snapshot.sector,
            today=today,
            start_sequence=start_sequence,
            skipped=report.skipped_expirations,
        ):
            report.add(outcome)

        logger.info(
            "%s: %d candidates from %d pairs (rejections=%s)",
            snapshot.symbol,
            len(report.candidates),
            report.examined,
            dict(report.rejections),
        )
        return report
