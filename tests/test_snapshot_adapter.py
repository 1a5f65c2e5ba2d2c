from __future__ import annotations

from datetime import date

import pytest

from adapters.snapshot_adapter import MarketSnapshotAdapter, normalize_contract, normalize_fundamentals
from conftest import EXPIRY, FakeMarketData, contract
from models.option_contract import OptionSide


class TestNormalizeContract:
    def test_ibkr_style_row(self) -> None:
        row = {"right": "P", "strike": "95", "expiry": "20250207", "bid": "1.10", "ask": "1.25", "oi": "1200"}
        parsed = normalize_contract("AAPL", row)

        assert parsed.side == OptionSide.PUT
        assert parsed.strike == 95.0
        assert parsed.expiration == date(2025, 2, 7)
        assert parsed.mid == pytest.approx(1.175)
        assert parsed.open_interest == 1200
        assert parsed.symbol == "AAPL"

    def test_tastytrade_style_row(self) -> None:
        row = {
            "option_type": "call",
            "strike": 105,
            "expiration": "2025-02-07",
            "bid": 0.5,
            "ask": "N/A",
            "implied_volatility": 0.31,
        }
        parsed = normalize_contract("AAPL", row)

        assert parsed.side == OptionSide.CALL
        assert parsed.ask is None
        assert not parsed.has_quote
        assert parsed.iv == pytest.approx(0.31)

    def test_nan_quote_is_missing(self) -> None:
        parsed = normalize_contract("AAPL", {"side": "put", "strike": 90, "expiration": "2025-02-07", "bid": float("nan")})
        assert parsed.bid is None

    @pytest.mark.parametrize(
        "row",
        [
            {"strike": 95, "expiration": "2025-02-07"},
            {"side": "put", "strike": 0, "expiration": "2025-02-07"},
            {"side": "put", "strike": 95, "expiration": "next friday"},
        ],
    )
    def test_unusable_rows(self, row) -> None:
        assert normalize_contract("AAPL", row) is None

    def test_contract_passthrough(self) -> None:
        existing = contract(95, 0.4, 0.5)
        assert normalize_contract("AAPL", existing) is existing


def test_normalize_fundamentals() -> None:
    metrics, sector = normalize_fundamentals(
        {"52WeekHigh": "199.6", "MarketCapitalization": "3000000000000", "Sector": "TECHNOLOGY", "Beta": "None"}
    )
    assert metrics["week_52_high"] == pytest.approx(199.6)
    assert metrics["market_cap"] == pytest.approx(3e12)
    assert metrics["beta"] is None
    assert sector == "TECHNOLOGY"
    assert "Sector" not in metrics


@pytest.fixture
def provider() -> FakeMarketData:
    return FakeMarketData(
        quotes={"AAPL": 100.0},
        chains={
            "AAPL": [
                contract(95, 0.4, 0.5, delta=-0.13),
                {"right": "P", "strike": "94", "expiry": EXPIRY.strftime("%Y%m%d"), "bid": "0.3", "ask": "0.4"},
                {"garbage": True},
            ]
        },
        fundamentals={"AAPL": {"week_52_high": 120, "sector": "Technology"}},
        technicals={"sma50": 98.0, "sma200": 90.0, "mom10": 1.5},
    )


class TestBuildSnapshot:
    @pytest.mark.asyncio
    async def test_complete_snapshot(self, provider: FakeMarketData) -> None:
        snapshot = await MarketSnapshotAdapter(provider).build_snapshot("AAPL")

        assert snapshot.current_price == 100.0
        assert len(snapshot.contracts) == 2
        assert snapshot.sector == "Technology"
        assert snapshot.fundamentals["week_52_high"] == 120.0
        assert snapshot.technical("sma200") == 90.0
        assert snapshot.technical("mom") == 1.5
        assert snapshot.data_gaps == []

    @pytest.mark.asyncio
    async def test_failures_become_gaps(self, provider: FakeMarketData) -> None:
        provider.fail = {"fundamentals", "technical:MOM"}
        snapshot = await MarketSnapshotAdapter(provider).build_snapshot("AAPL")

        assert snapshot.current_price == 100.0
        assert snapshot.data_gaps == ["fundamentals", "technical:mom"]
        assert snapshot.technical("mom") is None

    @pytest.mark.asyncio
    async def test_quote_and_chain_failures(self, provider: FakeMarketData) -> None:
        provider.fail = {"quote", "chain"}
        snapshot = await MarketSnapshotAdapter(provider).build_snapshot("AAPL")

        assert not snapshot.is_priced
        assert snapshot.contracts == []
        assert snapshot.data_gaps[:2] == ["quote", "chain"]

    @pytest.mark.asyncio
    async def test_require_greeks_drops_rows_without_delta(self, provider: FakeMarketData) -> None:
        contracts = await MarketSnapshotAdapter(provider, require_greeks=True).get_contracts("AAPL")
        assert [c.strike for c in contracts] == [95.0]
