from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from database.monitor_store import MonitorStore
from models.position import AlertType, ExitType, MonitorResult, PLSnapshot, RiskAlert, RiskLevel


@pytest.fixture
def store(tmp_path: Path) -> MonitorStore:
    return MonitorStore(str(tmp_path / "nested" / "monitor.db"))


def _result(position_id: str = "pos-1", hours_ago: float = 0.0, level: RiskLevel = RiskLevel.LOW) -> MonitorResult:
    evaluated = datetime(2025, 1, 6, 15, 0, tzinfo=timezone.utc) - timedelta(hours=hours_ago)
    return MonitorResult(
        position_id=position_id,
        symbol="AAPL",
        evaluated_at=evaluated,
        days_held=10,
        dte=30,
        current_price=100.0,
        pl=PLSnapshot(
            spread_price=0.475,
            close_bid=0.40,
            close_ask=0.55,
            pl_dollar=205.0,
            pl_percent=68.33,
            should_exit=True,
            exit_type=ExitType.PROFIT,
            exit_reason="Profit target reached",
        ),
        alerts=[
            RiskAlert(type=AlertType.EARNINGS_RISK, severity=RiskLevel.CRITICAL, message="earnings"),
            RiskAlert(type=AlertType.EXPIRATION_APPROACHING, severity=RiskLevel.MEDIUM, message="expiry"),
        ],
        risk_level=level,
        recommendations=["a", "b"],
        credits_used=8,
        paid_calls=1,
    )


@pytest.mark.asyncio
async def test_round_trip_is_exact(store: MonitorStore) -> None:
    result = _result()
    await store.append(result)

    loaded = await store.latest("pos-1")

    assert loaded is not None
    assert loaded.model_dump_json() == result.model_dump_json()
    assert [a.type for a in loaded.alerts] == [AlertType.EARNINGS_RISK, AlertType.EXPIRATION_APPROACHING]


@pytest.mark.asyncio
async def test_latest_is_newest(store: MonitorStore) -> None:
    await store.append(_result(hours_ago=5, level=RiskLevel.HIGH))
    await store.append(_result(hours_ago=1, level=RiskLevel.LOW))
    await store.append(_result(hours_ago=3, level=RiskLevel.MEDIUM))

    latest = await store.latest("pos-1")
    history = await store.history("pos-1")

    assert latest.risk_level == RiskLevel.LOW
    assert [r.risk_level for r in history] == [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH]
    assert await store.count("pos-1") == 3


@pytest.mark.asyncio
async def test_append_only(store: MonitorStore) -> None:
    await store.append(_result())
    await store.append(_result())
    await store.append(_result(position_id="pos-2"))

    assert await store.count() == 3
    assert await store.count("pos-2") == 1


@pytest.mark.asyncio
async def test_cached_flag_is_not_persisted(store: MonitorStore) -> None:
    result = _result()
    await store.append(result.as_cached(result.evaluated_at + timedelta(hours=2)))

    loaded = await store.latest("pos-1")
    assert loaded.from_cache is False
    assert loaded.age_hours is None


@pytest.mark.asyncio
async def test_latest_for_skips_unknown(store: MonitorStore) -> None:
    await store.append(_result(position_id="pos-1"))

    latest = await store.latest_for(["pos-1", "pos-unknown"])
    assert set(latest) == {"pos-1"}


@pytest.mark.asyncio
async def test_missing_position(store: MonitorStore) -> None:
    assert await store.latest("nobody") is None
    assert await store.history("nobody") == []
