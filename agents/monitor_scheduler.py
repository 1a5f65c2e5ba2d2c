"""
agents/monitor_scheduler.py — periodic monitoring of open positions.

MonitorScheduler runs ``PositionMonitor.monitor_batch`` on an APScheduler
interval job.  ``run_once`` is the manual trigger; ``start`` / ``stop``
manage the periodic job.

Environment variables (via engine_config):
  MONITOR_INTERVAL_SECONDS : scheduler interval (default 3600)
  IPS_PROFILES_PATH        : IPS profiles file (default config/ips_profiles.yaml)
  DEFAULT_IPS_ID           : profile used to re-score positions on each refresh
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from adapters.base_adapter import MarketDataAdapter
from adapters.intelligence_provider import LayeredIntelligenceProvider
from adapters.news_sources import AlphaVantageNewsSource, TavilySearchSource
from adapters.snapshot_adapter import MarketSnapshotAdapter
from agents.position_monitor import BatchMonitorReport, PositionMonitor
from core.rate_limiter import TokenBucket
from database.monitor_store import MonitorStore
from engine_config import EngineEnvironmentConfig, load_engine_environment
from logging_config import get_engine_logger, get_monitor_logger
from models.position import ActivePosition
from risk_engine.policy import IPSLoader, PolicyLoader

logger = logging.getLogger(__name__)

PositionSource = Callable[[], Awaitable[Iterable[ActivePosition]]]


def build_position_monitor(
    provider: MarketDataAdapter,
    env: EngineEnvironmentConfig | None = None,
) -> PositionMonitor:
    """Wire a PositionMonitor from environment settings.

    The paid source is only configured when ``TAVILY_API_KEY`` is set.  The
    ``DEFAULT_IPS_ID`` profile is loaded up front so an unknown id fails
    before any monitoring cycle runs.
    """
    env = env or load_engine_environment()
    policy = PolicyLoader(env.policy_path).load()
    ips = IPSLoader(env.ips_path).load(env.default_ips_id).validate_for_run()
    intel_policy = policy.intelligence

    free = AlphaVantageNewsSource(env.alpha_vantage_api_key) if env.alpha_vantage_api_key else None
    paid = (
        TavilySearchSource(env.tavily_api_key, min_scores=intel_policy.min_paid_scores)
        if env.has_paid_intelligence
        else None
    )
    limiter = TokenBucket(
        capacity=env.requests_per_minute,
        refill_per_minute=env.requests_per_minute,
        max_wait_seconds=intel_policy.rate_limit_max_wait_seconds,
    )
    intelligence = LayeredIntelligenceProvider(free, paid, limiter=limiter, policy=intel_policy)
    return PositionMonitor(
        MarketSnapshotAdapter(provider),
        intelligence,
        MonitorStore(env.monitor_store_path),
        policy=policy,
        ips=ips,
    )


def build_monitor_scheduler(
    provider: MarketDataAdapter,
    positions: PositionSource,
    env: EngineEnvironmentConfig | None = None,
) -> MonitorScheduler:
    env = env or load_engine_environment()
    return MonitorScheduler(
        monitor=build_position_monitor(provider, env),
        positions=positions,
        interval_seconds=env.monitor_interval_seconds,
    )


class MonitorScheduler:
    """Drives monitoring cycles.

    Args:
        monitor:   Configured :class:`PositionMonitor`.
        positions: Async callable returning the currently open positions.
        interval_seconds: Scheduler interval in seconds.
    """

    def __init__(
        self,
        *,
        monitor: PositionMonitor,
        positions: PositionSource,
        interval_seconds: int = 3600,
    ) -> None:
        self.monitor = monitor
        self._positions = positions
        self.interval_seconds = interval_seconds
        self._scheduler: AsyncIOScheduler | None = None
        self.last_report: Optional[BatchMonitorReport] = None

    async def run_once(self, *, force_refresh: bool = False) -> Optional[BatchMonitorReport]:
        """One monitoring cycle. Errors are logged; the scheduler keeps ticking."""

        try:
            positions = list(await self._positions())
            report = await self.monitor.monitor_batch(positions, force_refresh=force_refresh)
        except Exception:
            logger.exception("monitoring cycle failed")
            return None
        self.last_report = report
        return report

    def start(self) -> None:
        """Start the APScheduler interval job."""
        get_monitor_logger()
        get_engine_logger()
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_once,
            trigger="interval",
            seconds=self.interval_seconds,
            id="position_monitor",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info("MonitorScheduler started: interval=%ds", self.interval_seconds)

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("MonitorScheduler stopped")
