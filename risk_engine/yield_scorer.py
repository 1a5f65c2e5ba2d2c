"""
risk_engine/yield_scorer.py
───────────────────────────
Risk-adjusted yield score for a credit spread.

Pure and deterministic: same candidate + policy → same metrics.

Components (each 0–100):
    risk/reward         min(100, max_profit / max_loss · 100)
    capital efficiency  annualised ROI / cap (200% → 100 pts)
    prob-weighted       min(100, PoP · ROI% · 1.5)
    expected value      50 + (EV per $ − 0.10) · 250, clamped

    yield_score = Σ weight · component   (weights from ScoringPolicy)

Sharpe-like ratio and Kelly fraction are reported but carry no weight.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from models.candidate import CandidateSpread, RiskAdjustedMetrics
from risk_engine.policy import ScoringPolicy


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def score_spread(
    max_profit: float,
    max_loss: float,
    dte: int,
    pop: Optional[float],
    policy: ScoringPolicy | None = None,
) -> RiskAdjustedMetrics:
    """Score raw spread economics. ``max_loss`` must be positive."""

    policy = policy or ScoringPolicy()
    if max_loss <= 0:
        raise ValueError("max_loss must be positive")

    p = pop if pop is not None else policy.default_pop
    q = 1.0 - p
    days = dte if dte and dte > 0 else 1
    periods_per_year = 365.0 / days

    expected_value = p * max_profit - q * max_loss
    ev_per_dollar = expected_value / max_loss
    ev_score = _clamp(50.0 + (ev_per_dollar - policy.ev_baseline) * policy.ev_slope)

    roi_percent = max_profit / max_loss * 100.0
    annualized = roi_percent * periods_per_year
    capital_efficiency = min(100.0, annualized / policy.annualized_return_cap * 100.0)

    odds = max_profit / max_loss
    rr_score = min(100.0, odds * 100.0)
    prob_weighted = min(100.0, p * roi_percent * policy.prob_weighted_multiplier)

    excess = ev_per_dollar - policy.risk_free_rate / periods_per_year
    sharpe = excess / (max_loss / (max_loss + max_profit))
    sharpe_score = _clamp(50.0 + sharpe * 50.0)

    kelly = max(0.0, (p * odds - q) / odds) if odds > 0 else 0.0

    weights = policy.yield_weights
    yield_score = _clamp(
        rr_score * weights.get("risk_reward", 0.0)
        + capital_efficiency * weights.get("capital_efficiency", 0.0)
        + prob_weighted * weights.get("prob_weighted", 0.0)
        + ev_score * weights.get("expected_value", 0.0)
        + sharpe_score * weights.get("sharpe", 0.0)
    )

    return RiskAdjustedMetrics(
        pop_used=p,
        expected_value=expected_value,
        ev_per_dollar=ev_per_dollar,
        roi_percent=roi_percent,
        annualized_return=annualized,
        ev_score=ev_score,
        rr_score=rr_score,
        capital_efficiency_score=capital_efficiency,
        prob_weighted_score=prob_weighted,
        sharpe_ratio=sharpe,
        sharpe_score=sharpe_score,
        kelly_fraction=kelly,
        yield_score=yield_score,
        explanation=explain(ev_score, capital_efficiency, ev_per_dollar, p, kelly),
    )


def score_candidate(candidate: CandidateSpread, policy: ScoringPolicy | None = None) -> RiskAdjustedMetrics:
    return score_spread(
        candidate.max_profit,
        candidate.max_loss,
        candidate.dte,
        candidate.probability_of_profit,
        policy,
    )


def explain(ev_score: float, capital_efficiency: float, ev_per_dollar: float, pop: float, kelly: float) -> str:
    """Short strengths/weaknesses summary used in ranking output."""

    strengths: list[str] = []
    weaknesses: list[str] = []

    if ev_score >= 80:
        strengths.append(f"Excellent expected value (${ev_per_dollar:.2f} per $1 at risk)")
    elif ev_score < 50:
        weaknesses.append(f"Low expected value (${ev_per_dollar:.2f} per $1 at risk)")

    if pop >= 0.75:
        strengths.append(f"High win probability ({pop * 100:.0f}%)")
    elif pop < 0.65:
        weaknesses.append(f"Lower win probability ({pop * 100:.0f}%)")

    if capital_efficiency >= 80:
        strengths.append("Efficient use of capital")
    elif capital_efficiency < 50:
        weaknesses.append("Capital-intensive setup")

    if kelly >= 0.15:
        strengths.append(f"Strong edge ({kelly * 100:.0f}% Kelly)")
    elif kelly < 0.05:
        weaknesses.append("Minimal statistical edge")

    if strengths and not weaknesses:
        return "⭐ " + ". ".join(strengths) + "."
    if strengths:
        return ". ".join(strengths) + ". However: " + ", ".join(weaknesses) + "."
    if weaknesses:
        return "⚠️ " + ". ".join(weaknesses) + "."
    return "Balanced risk/reward profile."


@dataclass(frozen=True)
class Comparison:
    winner: str        # "A", "B" or "tie"
    reason: str
    score_diff: float


def compare(a: RiskAdjustedMetrics, b: RiskAdjustedMetrics, tie_band: float = 3.0) -> Comparison:
    """Explain which of two scored spreads is better on a risk-adjusted basis."""

    diff = a.yield_score - b.yield_score
    if abs(diff) < tie_band:
        return Comparison("tie", "Trades are roughly equivalent in risk-adjusted terms", diff)

    winner = "A" if diff > 0 else "B"
    better, worse = (a, b) if winner == "A" else (b, a)
    reasons: list[str] = []
    if abs(better.ev_per_dollar - worse.ev_per_dollar) > 0.05:
        reasons.append(
            f"better expected value (${better.ev_per_dollar:.2f} vs ${worse.ev_per_dollar:.2f} per $1)"
        )
    if abs(better.kelly_fraction - worse.kelly_fraction) > 0.05:
        reasons.append(
            f"stronger statistical edge ({better.kelly_fraction * 100:.0f}% vs "
            f"{worse.kelly_fraction * 100:.0f}% Kelly)"
        )
    if abs(better.capital_efficiency_score - worse.capital_efficiency_score) > 15:
        reasons.append("more capital efficient")

    if reasons:
        reason = f"Trade {winner} is better due to {' and '.join(reasons)}"
    else:
        reason = f"Trade {winner} has a higher overall risk-adjusted score"
    return Comparison(winner, reason, abs(diff))
