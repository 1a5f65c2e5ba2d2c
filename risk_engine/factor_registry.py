"""
risk_engine/factor_registry.py
──────────────────────────────
Factor key → pure extraction function.

Extractors are registered at import time with ``@registry.register(key, *aliases)``
and receive a :class:`FactorContext`.  Resolution order for a key:

    1. ``context.values[key]``   explicit flat value supplied by the caller
    2. registered extractor       (aliases map to the canonical key)
    3. ``None``                   unmapped key → factor fails as "cannot evaluate"

``registry.coverage(keys)`` lists keys with no extractor so an IPS can be
checked before a run.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Sequence

from models.candidate import CandidateSpread, SpreadLeg
from models.intelligence import IntelligenceItem
from models.option_contract import MarketSnapshot
from models.position import ActivePosition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FactorContext:
    """Everything an extractor may look at for one subject."""

    candidate: Optional[CandidateSpread] = None
    position: Optional[ActivePosition] = None
    snapshot: Optional[MarketSnapshot] = None
    short_leg: Optional[SpreadLeg] = None
    news: Sequence[IntelligenceItem] = ()
    values: Mapping[str, Optional[float]] = field(default_factory=dict)

    @property
    def current_price(self) -> Optional[float]:
        if self.snapshot is not None and self.snapshot.is_priced:
            return self.snapshot.current_price
        if self.position is not None:
            return self.position.current_price
        return None

    @property
    def leg(self) -> Optional[SpreadLeg]:
        if self.short_leg is not None:
            return self.short_leg
        if self.candidate is not None:
            return self.candidate.short_leg
        return None

    def fundamental(self, name: str) -> Optional[float]:
        if self.snapshot is None:
            return None
        return self.snapshot.fundamentals.get(name)

    def technical(self, name: str) -> Optional[float]:
        if self.snapshot is None:
            return None
        return self.snapshot.technical(name)


Extractor = Callable[[FactorContext], Optional[float]]


class FactorRegistry:
    def __init__(self) -> None:
        self._extractors: dict[str, Extractor] = {}
        self._aliases: dict[str, str] = {}

    def register(self, key: str, *aliases: str) -> Callable[[Extractor], Extractor]:
        def decorator(fn: Extractor) -> Extractor:
            if key in self._extractors:
                raise ValueError(f"factor {key!r} already registered")
            self._extractors[key] = fn
            for alias in aliases:
                self._aliases[alias] = key
            return fn

        return decorator

    def canonical(self, key: str) -> str:
        return self._aliases.get(key, key)

    def has(self, key: str) -> bool:
        return self.canonical(key) in self._extractors

    def keys(self) -> list[str]:
        return sorted(self._extractors)

    def coverage(self, keys: Iterable[str]) -> list[str]:
        """Return the keys in *keys* that have no extractor."""
        return [k for k in keys if not self.has(k)]

    def resolve(self, key: str, context: FactorContext) -> Optional[float]:
        if key in context.values:
            return _as_float(context.values[key])
        canonical = self.canonical(key)
        if canonical in context.values:
            return _as_float(context.values[canonical])
        extractor = self._extractors.get(canonical)
        if extractor is None:
            return None
        try:
            return _as_float(extractor(context))
        except (ArithmeticError, TypeError, ValueError) as exc:
            logger.warning("factor %s could not be computed: %s", key, exc)
            return None


def _as_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


registry = FactorRegistry()


# ── Option leg factors ──────────────────────────────────────────────────────

@registry.register("opt-delta", "Delta")
def _short_delta(ctx: FactorContext) -> Optional[float]:
    leg = ctx.leg
    return abs(leg.delta) if leg is not None and leg.delta is not None else None


@registry.register("opt-theta", "Theta")
def _short_theta(ctx: FactorContext) -> Optional[float]:
    return ctx.leg.theta if ctx.leg is not None else None


@registry.register("opt-vega", "Vega")
def _short_vega(ctx: FactorContext) -> Optional[float]:
    return ctx.leg.vega if ctx.leg is not None else None


@registry.register("opt-iv", "Implied Volatility")
def _short_iv(ctx: FactorContext) -> Optional[float]:
    return ctx.leg.iv if ctx.leg is not None else None


@registry.register("opt-oi", "opt-open-interest", "Open Interest")
def _short_open_interest(ctx: FactorContext) -> Optional[float]:
    return ctx.leg.open_interest if ctx.leg is not None else None


@registry.register("opt-bid-ask-spread", "Bid-Ask Spread")
def _short_bid_ask(ctx: FactorContext) -> Optional[float]:
    leg = ctx.leg
    return abs(leg.ask - leg.bid) if leg is not None else None


@registry.register("opt-iv-rank", "calc-iv-rank", "IV Rank")
def _iv_rank(ctx: FactorContext) -> Optional[float]:
    return ctx.fundamental("iv_rank")


@registry.register("opt-iv-percentile", "calc-iv-percentile", "IV Percentile")
def _iv_percentile(ctx: FactorContext) -> Optional[float]:
    return ctx.fundamental("iv_percentile")


@registry.register("opt-put-call-ratio", "calc-put-call-volume-ratio", "Put/Call Ratio")
def _put_call_ratio(ctx: FactorContext) -> Optional[float]:
    return ctx.fundamental("put_call_ratio")


@registry.register("opt-put-call-oi-ratio", "calc-put-call-oi-ratio", "Put/Call OI Ratio")
def _put_call_oi_ratio(ctx: FactorContext) -> Optional[float]:
    return ctx.fundamental("put_call_oi_ratio")


# ── Spread structure factors ────────────────────────────────────────────────

@registry.register("spread-dte", "DTE")
def _spread_dte(ctx: FactorContext) -> Optional[float]:
    if ctx.candidate is not None:
        return ctx.candidate.dte
    if ctx.position is not None:
        return ctx.position.dte()
    return None


@registry.register("spread-risk-reward", "Risk/Reward")
def _spread_risk_reward(ctx: FactorContext) -> Optional[float]:
    return ctx.candidate.risk_reward if ctx.candidate is not None else None


@registry.register("spread-pop", "Probability of Profit")
def _spread_pop(ctx: FactorContext) -> Optional[float]:
    return ctx.candidate.probability_of_profit if ctx.candidate is not None else None


@registry.register("spread-credit-pct-width", "Credit % of Width")
def _credit_pct_width(ctx: FactorContext) -> Optional[float]:
    if ctx.candidate is not None:
        return ctx.candidate.entry_credit / ctx.candidate.width * 100.0
    if ctx.position is not None:
        return ctx.position.credit_received / ctx.position.width * 100.0
    return None


@registry.register("pos-dist-short-strike", "Distance to Short Strike")
def _distance_to_short(ctx: FactorContext) -> Optional[float]:
    if ctx.position is not None:
        return ctx.position.distance_to_short_pct(ctx.current_price)
    price = ctx.current_price
    if ctx.candidate is None or not price:
        return None
    return abs(price - ctx.candidate.short_leg.strike) / price * 100.0


# ── Underlying factors ──────────────────────────────────────────────────────

@registry.register("calc-52w-range-position", "52W Range Position")
def _range_position(ctx: FactorContext) -> Optional[float]:
    high, low, price = ctx.fundamental("week_52_high"), ctx.fundamental("week_52_low"), ctx.current_price
    if high is None or low is None or not price or high <= low:
        return None
    return (price - low) / (high - low)


@registry.register("calc-dist-52w-high", "Distance from 52W High")
def _dist_52w_high(ctx: FactorContext) -> Optional[float]:
    high, price = ctx.fundamental("week_52_high"), ctx.current_price
    if not high or high <= 0 or not price:
        return None
    return (high - price) / high


@registry.register("calc-dist-52w-low", "Distance from 52W Low")
def _dist_52w_low(ctx: FactorContext) -> Optional[float]:
    low, price = ctx.fundamental("week_52_low"), ctx.current_price
    if not low or low <= 0 or not price:
        return None
    return (price - low) / low * 100.0


@registry.register("calc-market-cap-category", "stk-market-cap", "market_cap", "Market Cap Category")
def _market_cap(ctx: FactorContext) -> Optional[float]:
    return ctx.fundamental("market_cap")


@registry.register("calc-dist-target-price", "Analyst Rating Average")
def _dist_target(ctx: FactorContext) -> Optional[float]:
    target, price = ctx.fundamental("analyst_target_price"), ctx.current_price
    if not target or target <= 0 or not price:
        return None
    return (target - price) / price * 100.0


@registry.register("av-mom", "calc-price-momentum-20d", "Momentum")
def _momentum(ctx: FactorContext) -> Optional[float]:
    return ctx.technical("mom")


@registry.register("av-200-day-ma", "200 Day Moving Average")
def _price_to_sma200(ctx: FactorContext) -> Optional[float]:
    sma, price = ctx.technical("sma200"), ctx.current_price
    if not sma or not price:
        return None
    return price / sma


@registry.register("av-50-day-ma", "50 Day Moving Average")
def _price_to_sma50(ctx: FactorContext) -> Optional[float]:
    sma, price = ctx.technical("sma50"), ctx.current_price
    if not sma or not price:
        return None
    return price / sma


# ── News factors ────────────────────────────────────────────────────────────

_STRONG_POSITIVE = re.compile(r"\b(surge|soar|breakthrough|record high|strong beat|upgraded?|outperform|bullish)\b")
_POSITIVE = re.compile(r"\b(growth|gain|rise|profit|positive|beat|strong|improve|rally|boost|expand)\b")
_STRONG_NEGATIVE = re.compile(r"\b(plunge|crash|collapse|downgraded?|bankruptcy|scandal|fraud|investigation)\b")
_NEGATIVE = re.compile(r"\b(weak|decline|drop|fall|miss|negative|loss|concern|risk|cut|downside)\b")


def keyword_sentiment(items: Sequence[IntelligenceItem]) -> Optional[float]:
    """Average keyword sentiment of *items*, normalised to [-1, 1]."""

    if not items:
        return None
    total = 0
    for item in items:
        text = item.text
        score = 0
        if _STRONG_POSITIVE.search(text):
            score += 2
        if _POSITIVE.search(text):
            score += 1
        if _STRONG_NEGATIVE.search(text):
            score -= 2
        if _NEGATIVE.search(text):
            score -= 1
        total += score
    return max(-1.0, min(1.0, total / len(items) / 2.0))


@registry.register("news-sentiment", "tavily-news-sentiment-score", "News Sentiment Score")
def _news_sentiment(ctx: FactorContext) -> Optional[float]:
    return keyword_sentiment(ctx.news)


@registry.register("news-volume", "tavily-news-volume", "News Volume")
def _news_volume(ctx: FactorContext) -> Optional[float]:
    return len(ctx.news) if ctx.news else None
