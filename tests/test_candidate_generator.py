"""
tests/test_candidate_generator.py
─────────────────────────────────
Vertical credit-spread enumeration over a synthetic chain.

Put ladder under a $100 underlying, 30 DTE (mid prices):
    99 → 1.55   98 → 1.15   97 → 0.85   96 → 0.60   95 → 0.45

Widths (1, 2) over 5 strikes → 10 examined pairs:
    7 viable spreads, 3 with no long strike inside the ladder.
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import EXPIRY, TODAY, contract, put_ladder
from models.ips import FactorDefinition, IPSConfig
from models.option_contract import MarketSnapshot, OptionSide
from risk_engine.candidate_generator import (
    CandidateGenerator,
    RejectionReason,
    generate_candidates,
)
from risk_engine.policy import GenerationPolicy


@pytest.fixture
def ips() -> IPSConfig:
    return IPSConfig(
        ips_id="test",
        factors=[FactorDefinition(key="opt-delta", weight=1, direction="lte", threshold=0.3)],
        min_dte=7,
        max_dte=45,
    )


def _snapshot(contracts, price=100.0, sector="Technology") -> MarketSnapshot:
    return MarketSnapshot(symbol="AAPL", current_price=price, contracts=contracts, sector=sector)


class TestEnumeration:
    def test_counts_and_rejections(self, ips: IPSConfig) -> None:
        report = CandidateGenerator().run(_snapshot(put_ladder()), ips, today=TODAY)

        assert report.examined == 10
        assert len(report.candidates) == 7
        assert report.rejections[RejectionReason.LONG_INDEX_OUT_OF_RANGE] == 3

    def test_first_candidate_economics(self, ips: IPSConfig) -> None:
        report = CandidateGenerator().run(_snapshot(put_ladder()), ips, today=TODAY)
        first = report.candidates[0]

        assert first.short_leg.strike == 99
        assert first.long_leg.strike == 98
        assert first.width == pytest.approx(1.0)
        assert first.entry_credit == pytest.approx(0.40)
        assert first.max_profit == pytest.approx(0.40)
        assert first.max_loss == pytest.approx(0.60)
        assert first.breakeven == pytest.approx(98.60)
        assert first.risk_reward == pytest.approx(0.40 / 0.60)
        assert first.probability_of_profit == pytest.approx(0.60)
        assert first.dte == 30
        assert first.sector == "Technology"
        assert first.strategy == "put_credit_spread"
        assert first.label == f"AAPL {EXPIRY.isoformat()} 99/98P"

    def test_itm_puts_and_calls_are_ignored(self, ips: IPSConfig) -> None:
        report = CandidateGenerator().run(_snapshot(put_ladder()), ips, today=TODAY)

        strikes = {c.short_leg.strike for c in report.candidates} | {c.long_leg.strike for c in report.candidates}
        assert 101 not in strikes
        assert 105 not in strikes

    def test_every_candidate_is_viable(self, ips: IPSConfig) -> None:
        report = CandidateGenerator().run(_snapshot(put_ladder()), ips, today=TODAY)

        for candidate in report.candidates:
            assert candidate.width > 0
            assert candidate.entry_credit > 0
            assert candidate.max_loss > 0
            assert candidate.risk_reward >= GenerationPolicy().min_risk_reward
            assert candidate.short_leg.strike > candidate.long_leg.strike

    def test_sequence_is_enumeration_order(self, ips: IPSConfig) -> None:
        report = CandidateGenerator().run(_snapshot(put_ladder()), ips, today=TODAY, start_sequence=10)

        assert [c.sequence for c in report.candidates] == list(range(10, 17))

    def test_missing_delta_leaves_pop_unset(self, ips: IPSConfig) -> None:
        chain = [contract(99, 1.50, 1.60), contract(98, 1.10, 1.20)]
        report = CandidateGenerator().run(_snapshot(chain), ips, today=TODAY)

        assert report.candidates[0].probability_of_profit is None


class TestRejections:
    @pytest.mark.parametrize(
        "short_quote, long_quote, reason",
        [
            ((0.45, 0.55), (0.55, 0.65), RejectionReason.NON_POSITIVE_CREDIT),
            ((0.98, 1.02), (0.95, 0.99), RejectionReason.BELOW_MIN_RISK_REWARD),
            ((1.95, 2.05), (0.45, 0.55), RejectionReason.NON_POSITIVE_MAX_LOSS),
            ((None, 1.60), (1.10, 1.20), RejectionReason.MISSING_QUOTE),
        ],
    )
    def test_non_viable_pairs(self, ips, short_quote, long_quote, reason) -> None:
        chain = [contract(99, *short_quote), contract(98, *long_quote)]
        outcomes = list(
            generate_candidates("AAPL", chain, 100.0, min_dte=7, max_dte=45, widths=(1,), today=TODAY)
        )

        assert len(outcomes) == 2
        assert outcomes[0].reason == reason
        assert outcomes[0].candidate is None
        assert outcomes[1].reason == RejectionReason.LONG_INDEX_OUT_OF_RANGE

    def test_missing_quote_in_middle_of_ladder(self, ips: IPSConfig) -> None:
        chain = put_ladder()
        chain[2] = contract(97, None, 0.90, delta=-0.25)
        report = CandidateGenerator().run(_snapshot(chain), ips, today=TODAY)

        # 99/97, 98/97, 97/96, 97/95
        assert report.rejections[RejectionReason.MISSING_QUOTE] == 4
        assert all(97 not in (c.short_leg.strike, c.long_leg.strike) for c in report.candidates)


class TestExpirations:
    def test_window_and_nearest_three(self, ips: IPSConfig) -> None:
        chain = []
        for days in (5, 14, 21, 28, 35, 60):
            chain.extend(put_ladder(expiration=TODAY + timedelta(days=days)))
        report = CandidateGenerator().run(_snapshot(chain), ips, today=TODAY)

        assert {c.dte for c in report.candidates} == {14, 21, 28}

    def test_single_strike_expiration_is_skipped(self, ips: IPSConfig) -> None:
        lonely = TODAY + timedelta(days=20)
        chain = put_ladder() + [contract(95, 0.40, 0.50, expiration=lonely)]
        report = CandidateGenerator().run(_snapshot(chain), ips, today=TODAY)

        assert report.skipped_expirations == [lonely]
        assert {c.expiration for c in report.candidates} == {EXPIRY}

    def test_dte_bounds_come_from_ips(self) -> None:
        narrow = IPSConfig(
            ips_id="narrow",
            factors=[FactorDefinition(key="spread-dte", weight=1)],
            min_dte=40,
            max_dte=45,
        )
        report = CandidateGenerator().run(_snapshot(put_ladder()), narrow, today=TODAY)

        assert report.candidates == []
        assert report.examined == 0


class TestDataGaps:
    def test_unpriced_underlying(self, ips: IPSConfig) -> None:
        report = CandidateGenerator().run(_snapshot(put_ladder(), price=None), ips, today=TODAY)

        assert report.candidates == []
        assert report.data_gaps == ["quote"]

    def test_empty_chain(self, ips: IPSConfig) -> None:
        report = CandidateGenerator().run(_snapshot([]), ips, today=TODAY)

        assert report.candidates == []
        assert report.data_gaps == ["chain"]


class TestCallSide:
    def test_call_credit_spread(self, ips: IPSConfig) -> None:
        chain = [
            contract(101, 1.50, 1.60, delta=0.40, side=OptionSide.CALL),
            contract(102, 1.10, 1.20, delta=0.32, side=OptionSide.CALL),
            contract(99, 2.00, 2.10, delta=0.60, side=OptionSide.CALL),
        ]
        report = CandidateGenerator(side=OptionSide.CALL).run(_snapshot(chain), ips, today=TODAY)

        assert len(report.candidates) == 1
        spread = report.candidates[0]
        assert (spread.short_leg.strike, spread.long_leg.strike) == (101, 102)
        assert spread.width == pytest.approx(1.0)
        assert spread.breakeven == pytest.approx(101.40)
        assert spread.strategy == "call_credit_spread"
        assert spread.side == OptionSide.CALL
        assert spread.label.endswith("101/102C")
