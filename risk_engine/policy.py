"""
risk_engine/policy.py
─────────────────────
Named, overridable policy constants for the spread engine.

Components:
    EnginePolicy  – one dataclass per stage (generation, scoring, gating,
                    ranking, exits, alerts, watch set, monitor, intelligence)
    PolicyLoader  – loads config/engine_policy.yaml over the built-in defaults
    IPSLoader     – loads IPS profiles from config/ips_profiles.yaml

Every threshold that encodes business policy (severity bands, the 0.4/0.6
composite blend, tier cut-offs, exit thresholds, diversification caps)
lives here rather than as a literal in the stage that uses it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from models.ips import IPSConfig, IPSConfigurationError
from models.position import RiskLevel

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path(__file__).parent.parent / "config"
_POLICY_PATH = _CONFIG_DIR / "engine_policy.yaml"
_IPS_PATH = _CONFIG_DIR / "ips_profiles.yaml"


@dataclass
class GenerationPolicy:
    strategy_tag: str = "put_credit_spread"
    max_expirations: int = 3
    max_strikes: int = 50
    widths: tuple[int, ...] = (1, 2)
    min_risk_reward: float = 0.05


@dataclass
class ScoringPolicy:
    default_pop: float = 0.70
    # yield-score blend
    yield_weights: dict[str, float] = field(
        default_factory=lambda: {
            "risk_reward": 0.50,
            "capital_efficiency": 0.25,
            "prob_weighted": 0.15,
            "expected_value": 0.10,
        }
    )
    ev_baseline: float = 0.10
    ev_slope: float = 250.0
    annualized_return_cap: float = 200.0
    prob_weighted_multiplier: float = 1.5
    risk_free_rate: float = 0.05
    # composite blend
    composite_yield_weight: float = 0.4
    composite_ips_weight: float = 0.6
    # factor severity
    severity_mode: str = "graded"
    minor_tolerance: float = 0.10
    minor_score_max: float = 90.0
    minor_score_min: float = 70.0
    major_score_max: float = 70.0
    major_score_min: float = 30.0
    binary_pass_score: float = 100.0
    binary_fail_score: float = 50.0
    neutral_ips_score: float = 50.0
    # tiers
    elite_cutoff: float = 90.0
    quality_cutoff: float = 75.0
    speculative_cutoff: float = 60.0
    max_workers: int | None = None


@dataclass
class GatingPolicy:
    """Staged filters run before scoring.

    A factor is high-weight when its share of the IPS's enabled weight is
    at least ``high_weight_share``; every other factor is low-weight.
    """

    enabled: bool = False
    high_weight_share: float = 0.20
    low_weight_fail_ratio: float = 0.5
    max_near_misses: int = 20


@dataclass
class RankingPolicy:
    top_n: int = 20
    max_per_sector: int = 5
    max_per_symbol: int = 3
    max_per_strategy: int = 50
    tier_quotas: dict[str, int] = field(
        default_factory=lambda: {"elite": 5, "quality": 10, "speculative": 5}
    )


@dataclass
class ExitPolicy:
    # None turns the check off
    profit_target_pct: float | None = 50.0
    stop_loss_pct: float | None = 200.0
    warning_pct: float = 30.0
    time_exit_dte: int | None = None


@dataclass
class AlertPolicy:
    earnings_keywords: tuple[str, ...] = ("earnings", "guidance", "report", "quarterly results")
    downgrade_keywords: tuple[str, ...] = ("downgrade", "lower", "cut", "reduce")
    upgrade_keywords: tuple[str, ...] = ("upgrade", "raise", "increase")
    operational_keywords: tuple[str, ...] = (
        "lawsuit",
        "investigation",
        "recall",
        "disruption",
        "shortage",
        "supply chain",
        "regulatory action",
    )
    # filings only count when they are current reports of an event
    event_filing_forms: tuple[str, ...] = ("8-k",)
    filing_event_keywords: tuple[str, ...] = (
        "lawsuit",
        "investigation",
        "subpoena",
        "recall",
        "material weakness",
        "restatement",
    )
    news_volume_threshold: int = 10
    expiration_medium_dte: int = 7
    expiration_high_dte: int = 3
    near_strike_pct: float = 5.0
    near_strike_critical_pct: float = 2.0
    long_hold_days: int = 21
    watch_rule_severity: str = "medium"


@dataclass
class WatchPolicy:
    ips_score_below: float = 75.0
    near_strike_pct: float = 5.0
    dte_at_most: int = 14


@dataclass
class MonitorPolicy:
    freshness_hours: float = 24.0
    max_concurrency: int = 4
    batch_timeout_seconds: float | None = None
    lookback_days: int = 7
    filings_lookback_days: int = 30
    news_summary_size: int = 5


@dataclass
class IntelligencePolicy:
    cache_ttl_hours: float = 6.0
    cache_maxsize: int = 512
    requests_per_minute: int = 30
    rate_limit_max_wait_seconds: float = 5.0
    min_paid_scores: dict[str, float] = field(
        default_factory=lambda: {
            "catalysts": 0.6,
            "analyst_activity": 0.6,
            "filings": 0.0,
            "operational_risks": 0.5,
            "general_news": 0.0,
        }
    )
    paid_credits: dict[str, int] = field(
        default_factory=lambda: {
            "catalysts": 6,
            "analyst_activity": 6,
            "filings": 6,
            "operational_risks": 8,
            "general_news": 2,
        }
    )


@dataclass
class EnginePolicy:
    generation: GenerationPolicy = field(default_factory=GenerationPolicy)
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    gating: GatingPolicy = field(default_factory=GatingPolicy)
    ranking: RankingPolicy = field(default_factory=RankingPolicy)
    exits: ExitPolicy = field(default_factory=ExitPolicy)
    alerts: AlertPolicy = field(default_factory=AlertPolicy)
    watch: WatchPolicy = field(default_factory=WatchPolicy)
    monitor: MonitorPolicy = field(default_factory=MonitorPolicy)
    intelligence: IntelligencePolicy = field(default_factory=IntelligencePolicy)


def _merge(instance: Any, overrides: dict[str, Any], path: str) -> Any:
    """Apply a YAML mapping onto a policy dataclass, recursing into nested sections."""

    known = {f.name: f for f in fields(instance)}
    for key, value in (overrides or {}).items():
        if key not in known:
            logger.warning("Ignoring unknown policy key %s.%s", path, key)
            continue
        current = getattr(instance, key)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise IPSConfigurationError(f"policy section {path}.{key} must be a mapping")
            _merge(current, value, f"{path}.{key}")
        elif isinstance(current, tuple) and isinstance(value, list):
            setattr(instance, key, tuple(value))
        elif isinstance(current, dict) and isinstance(value, dict):
            setattr(instance, key, {**current, **value})
        else:
            setattr(instance, key, value)
    return instance


class PolicyLoader:
    """Load config/engine_policy.yaml and return an :class:`EnginePolicy`.

    Keys missing from the file keep their defaults, so an empty file yields
    the stock policy.

    Usage::

        policy = PolicyLoader().load()
        policy.exits.profit_target_pct   # 50.0
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _POLICY_PATH

    def load(self) -> EnginePolicy:
        policy = EnginePolicy()
        if not self._path.exists():
            logger.info("No policy file at %s, using defaults", self._path)
            return policy
        with open(self._path) as fh:
            raw = yaml.safe_load(fh) or {}
        if not isinstance(raw, dict):
            raise IPSConfigurationError(f"{self._path} must contain a mapping")
        _merge(policy, raw, "policy")
        self._check(policy)
        return policy

    @staticmethod
    def _check(policy: EnginePolicy) -> None:
        scoring = policy.scoring
        if scoring.severity_mode not in ("graded", "binary"):
            raise IPSConfigurationError(f"unknown severity_mode {scoring.severity_mode!r}")
        if not scoring.elite_cutoff >= scoring.quality_cutoff >= scoring.speculative_cutoff:
            raise IPSConfigurationError("tier cut-offs must be descending")
        if not policy.generation.widths or min(policy.generation.widths) < 1:
            raise IPSConfigurationError("generation.widths must be positive strike steps")
        if not 0 < policy.gating.high_weight_share <= 1 or not 0 < policy.gating.low_weight_fail_ratio <= 1:
            raise IPSConfigurationError("gating shares must be in (0, 1]")
        if policy.alerts.watch_rule_severity not in {level.value for level in RiskLevel}:
            raise IPSConfigurationError(f"unknown watch_rule_severity {policy.alerts.watch_rule_severity!r}")


class IPSLoader:
    """Load IPS profiles keyed by ``ips_id`` from a YAML file.

    File layout::

        profiles:
          conservative_pcs:
            name: Conservative put credit spreads
            min_dte: 14
            max_dte: 45
            factors:
              - {key: opt-delta, weight: 3, direction: lte, threshold: 0.20}
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _IPS_PATH
        self._profiles: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._profiles is None:
            if not self._path.exists():
                raise IPSConfigurationError(f"IPS file not found: {self._path}")
            with open(self._path) as fh:
                raw = yaml.safe_load(fh) or {}
            self._profiles = raw.get("profiles", {}) or {}
        return self._profiles

    def list_ids(self) -> list[str]:
        return sorted(self._load())

    def load(self, ips_id: str) -> IPSConfig:
        profiles = self._load()
        if ips_id not in profiles:
            raise IPSConfigurationError(f"unknown IPS {ips_id!r}")
        try:
            return IPSConfig(ips_id=ips_id, **(profiles[ips_id] or {}))
        except ValidationError as exc:
            raise IPSConfigurationError(f"invalid IPS {ips_id!r}: {exc}") from exc
