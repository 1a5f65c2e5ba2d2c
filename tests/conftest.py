from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Mapping, Optional

import pytest

from adapters.base_adapter import IntelligenceSource, MarketDataAdapter
from models.candidate import CandidateSpread, RiskAdjustedMetrics, ScoredCandidate, SpreadLeg
from models.intelligence import IntelligenceItem, SignalCategory, SourceType
from models.ips import Tier
from models.option_contract import OptionContract, OptionSide, TechnicalReading
from models.position import ActivePosition

TODAY = date(2025, 1, 6)
EXPIRY = TODAY + timedelta(days=30)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeMarketData(MarketDataAdapter):
    """In-memory market data provider with call counters and failure switches."""

    def __init__(
        self,
        quotes: Mapping[str, float] | None = None,
        chains: Mapping[str, list] | None = None,
        fundamentals: Mapping[str, Mapping[str, Any]] | None = None,
        technicals: Mapping[str, float] | None = None,
        *,
        fail: set[str] | None = None,
        hang_symbols: set[str] | None = None,
    ) -> None:
        self.quotes = dict(quotes or {})
        self.chains = dict(chains or {})
        self.fundamentals = dict(fundamentals or {})
        self.technicals = dict(technicals or {})
        self.fail = set(fail or ())
        self.hang_symbols = set(hang_symbols or ())
        self.gate: asyncio.Event | None = None
        self.quote_calls = 0
        self.chain_calls = 0

    async def _maybe_wait(self, symbol: str) -> None:
        if symbol in self.hang_symbols:
            await asyncio.Event().wait()
        if self.gate is not None:
            await self.gate.wait()

    async def get_quote(self, symbol: str) -> Optional[float]:
        self.quote_calls += 1
        await self._maybe_wait(symbol)
        if "quote" in self.fail:
            raise ConnectionError("quote feed down")
        return self.quotes.get(symbol)

    async def get_option_chain(self, symbol: str, *, require_greeks: bool = False) -> list:
        self.chain_calls += 1
        if "chain" in self.fail:
            raise ConnectionError("chain feed down")
        return list(self.chains.get(symbol, []))

    async def get_fundamentals(self, symbol: str) -> Mapping[str, Any]:
        if "fundamentals" in self.fail:
            raise ConnectionError("fundamentals feed down")
        return self.fundamentals.get(symbol, {})

    async def get_technical(self, symbol: str, indicator: str, **params: Any) -> TechnicalReading:
        if f"technical:{indicator}" in self.fail:
            raise ConnectionError(f"{indicator} unavailable")
        key = f"{indicator}{params.get('time_period', '')}".lower()
        return TechnicalReading(indicator=indicator, value=self.technicals.get(key), as_of=TODAY)


class FakeSource(IntelligenceSource):
    """Intelligence feed returning canned items per category."""

    def __init__(
        self,
        items: Mapping[SignalCategory, list[IntelligenceItem]] | None = None,
        *,
        source_type: SourceType = SourceType.FREE,
        name: str = "fake",
        fail: set[SignalCategory] | None = None,
    ) -> None:
        self.items = dict(items or {})
        self.source_type = source_type
        self.name = name
        self.fail = set(fail or ())
        self.calls: list[tuple[str, SignalCategory, int]] = []

    async def search(self, symbol: str, category: SignalCategory, lookback_days: int) -> list[IntelligenceItem]:
        self.calls.append((symbol, category, lookback_days))
        if category in self.fail:
            raise ConnectionError(f"{self.name} {category.value} unavailable")
        return list(self.items.get(category, []))


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def contract(
    strike: float,
    bid: float | None,
    ask: float | None,
    *,
    delta: float | None = None,
    side: OptionSide = OptionSide.PUT,
    expiration: date = EXPIRY,
    symbol: str = "AAPL",
    open_interest: int | None = 800,
    iv: float | None = 0.30,
) -> OptionContract:
    return OptionContract(
        symbol=symbol,
        strike=strike,
        expiration=expiration,
        side=side,
        bid=bid,
        ask=ask,
        delta=delta,
        iv=iv,
        open_interest=open_interest,
    )


def put_ladder(symbol: str = "AAPL", expiration: date = EXPIRY) -> list[OptionContract]:
    """Five OTM puts under a $100 underlying, plus an ITM put and a call that must be ignored."""

    return [
        contract(99, 1.50, 1.60, delta=-0.40, symbol=symbol, expiration=expiration),
        contract(98, 1.10, 1.20, delta=-0.32, symbol=symbol, expiration=expiration),
        contract(97, 0.80, 0.90, delta=-0.25, symbol=symbol, expiration=expiration),
        contract(96, 0.55, 0.65, delta=-0.18, symbol=symbol, expiration=expiration),
        contract(95, 0.40, 0.50, delta=-0.13, symbol=symbol, expiration=expiration),
        contract(101, 2.60, 2.80, delta=-0.55, symbol=symbol, expiration=expiration),
        contract(105, 0.30, 0.40, delta=0.20, side=OptionSide.CALL, symbol=symbol, expiration=expiration),
    ]


def item(
    title: str,
    *,
    url: str | None = None,
    score: float = 0.8,
    category: SignalCategory = SignalCategory.GENERAL_NEWS,
    snippet: str = "",
) -> IntelligenceItem:
    return IntelligenceItem(
        title=title,
        snippet=snippet,
        url=url or f"https://news.example.com/{abs(hash(title))}",
        score=score,
        category=category,
    )


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def now() -> datetime:
    return datetime.combine(TODAY, time(15, 0), tzinfo=timezone.utc)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_candidate() -> Callable[..., CandidateSpread]:
    def _make(
        *,
        symbol: str = "AAPL",
        sector: str | None = "Technology",
        short_strike: float = 99.0,
        long_strike: float = 98.0,
        short_bid: float = 1.50,
        short_ask: float = 1.60,
        long_bid: float = 1.10,
        long_ask: float = 1.20,
        delta: float | None = -0.30,
        dte: int = 30,
        sequence: int = 0,
        strategy: str = "put_credit_spread",
    ) -> CandidateSpread:
        short = SpreadLeg(strike=short_strike, bid=short_bid, ask=short_ask, delta=delta, iv=0.30, open_interest=800)
        long = SpreadLeg(strike=long_strike, bid=long_bid, ask=long_ask)
        width = short_strike - long_strike
        credit = short.mid - long.mid
        max_loss = width - credit
        return CandidateSpread(
            symbol=symbol,
            strategy=strategy,
            side=OptionSide.PUT,
            expiration=TODAY + timedelta(days=dte),
            dte=dte,
            short_leg=short,
            long_leg=long,
            width=width,
            entry_credit=credit,
            max_profit=credit,
            max_loss=max_loss,
            breakeven=short_strike - credit,
            probability_of_profit=1.0 - abs(delta) if delta is not None else None,
            risk_reward=credit / max_loss,
            sequence=sequence,
            sector=sector,
        )

    return _make


@pytest.fixture
def make_scored(make_candidate) -> Callable[..., ScoredCandidate]:
    def _make(
        *,
        symbol: str = "AAPL",
        sector: str | None = "Technology",
        composite: float = 70.0,
        ips: float = 70.0,
        yield_score: float = 70.0,
        ev_per_dollar: float = 0.10,
        tier: Tier = Tier.SPECULATIVE,
        sequence: int = 0,
        strategy: str = "put_credit_spread",
    ) -> ScoredCandidate:
        metrics = RiskAdjustedMetrics(
            pop_used=0.70,
            expected_value=0.05,
            ev_per_dollar=ev_per_dollar,
            roi_percent=50.0,
            annualized_return=600.0,
            ev_score=50.0,
            rr_score=50.0,
            capital_efficiency_score=100.0,
            prob_weighted_score=52.5,
            sharpe_ratio=0.2,
            sharpe_score=60.0,
            kelly_fraction=0.1,
            yield_score=yield_score,
        )
        return ScoredCandidate(
            candidate=make_candidate(symbol=symbol, sector=sector, sequence=sequence, strategy=strategy),
            metrics=metrics,
            ips_score=ips,
            composite_score=composite,
            tier=tier,
        )

    return _make


@pytest.fixture
def make_position() -> Callable[..., ActivePosition]:
    def _make(**overrides: Any) -> ActivePosition:
        fields: dict[str, Any] = {
            "symbol": "AAPL",
            "entry_date": TODAY - timedelta(days=10),
            "expiration": EXPIRY,
            "short_strike": 94.0,
            "long_strike": 89.0,
            "credit_received": 1.50,
            "contracts": 2,
            "ips_score": 82.0,
            "sector": "Technology",
            "current_price": 100.0,
        }
        fields.update(overrides)
        return ActivePosition(**fields)

    return _make
