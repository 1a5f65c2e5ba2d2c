"""adapters/snapshot_adapter.py — normalise provider data into a MarketSnapshot.

The adapter is the only place that knows provider field names.  Chain rows
come in several dialects (IBKR-style ``right: "P"``, Tastytrade-style
``option_type: "put"``, string numerics, ``oi`` vs ``open_interest``); all of
them end up as :class:`models.option_contract.OptionContract`.

Each piece of the snapshot (quote, chain, fundamentals, each technical) is
fetched concurrently and independently: a failure is logged and recorded
in ``MarketSnapshot.data_gaps``, never raised.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Mapping, Optional

from adapters.base_adapter import MarketDataAdapter, RawChainRow
from models.option_contract import MarketSnapshot, OptionContract, OptionSide, TechnicalReading

logger = logging.getLogger(__name__)

# indicator name → provider params
DEFAULT_TECHNICALS: dict[str, dict[str, Any]] = {
    "sma50": {"indicator": "SMA", "time_period": 50},
    "sma200": {"indicator": "SMA", "time_period": 200},
    "mom": {"indicator": "MOM", "time_period": 10},
}

_SIDE_ALIASES = {
    "p": OptionSide.PUT,
    "put": OptionSide.PUT,
    "c": OptionSide.CALL,
    "call": OptionSide.CALL,
}

_FUNDAMENTAL_ALIASES = {
    "52_week_high": "week_52_high",
    "52WeekHigh": "week_52_high",
    "week_52_high": "week_52_high",
    "52_week_low": "week_52_low",
    "52WeekLow": "week_52_low",
    "week_52_low": "week_52_low",
    "MarketCapitalization": "market_cap",
    "market_cap": "market_cap",
    "AnalystTargetPrice": "analyst_target_price",
    "analyst_target_price": "analyst_target_price",
    "iv_rank": "iv_rank",
    "iv_percentile": "iv_percentile",
    "put_call_ratio": "put_call_ratio",
    "put_call_oi_ratio": "put_call_oi_ratio",
    "beta": "beta",
    "Beta": "beta",
}


def _optional_float(value: Any) -> float | None:
    if value in (None, "N/A", "", "None", "-"):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_int(value: Any) -> int | None:
    number = _optional_float(value)
    return int(number) if number is not None else None


def _parse_expiration(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    for fmt in ("%Y-%m-%d", "%Y%m%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def normalize_contract(symbol: str, row: RawChainRow) -> OptionContract | None:
    """Convert one raw chain row to an :class:`OptionContract`, or ``None`` if unusable."""

    if isinstance(row, OptionContract):
        return row

    side = _SIDE_ALIASES.get(str(row.get("side") or row.get("right") or row.get("option_type") or "").lower())
    strike = _optional_float(row.get("strike"))
    expiration = _parse_expiration(row.get("expiration") or row.get("expiry"))
    if side is None or strike is None or strike <= 0 or expiration is None:
        return None

    return OptionContract(
        symbol=str(row.get("symbol") or symbol),
        strike=strike,
        expiration=expiration,
        side=side,
        bid=_optional_float(row.get("bid")),
        ask=_optional_float(row.get("ask")),
        delta=_optional_float(row.get("delta")),
        gamma=_optional_float(row.get("gamma")),
        theta=_optional_float(row.get("theta")),
        vega=_optional_float(row.get("vega")),
        iv=_optional_float(row.get("iv", row.get("implied_volatility"))),
        open_interest=_optional_int(row.get("open_interest", row.get("oi"))),
        volume=_optional_int(row.get("volume")),
    )


def normalize_fundamentals(raw: Mapping[str, Any]) -> tuple[dict[str, Optional[float]], Optional[str]]:
    """Map provider fundamentals to engine names; returns (metrics, sector)."""

    metrics: dict[str, Optional[float]] = {}
    for key, value in raw.items():
        name = _FUNDAMENTAL_ALIASES.get(key, key)
        if name in ("sector", "Sector"):
            continue
        metrics[name] = _optional_float(value)
    sector = raw.get("sector") or raw.get("Sector")
    return metrics, (str(sector) if sector else None)


class MarketSnapshotAdapter:
    """Builds :class:`MarketSnapshot` objects from an injected :class:`MarketDataAdapter`.

    Args:
        provider:   Market data collaborator.
        technicals: Indicator name → provider params; defaults to SMA50/SMA200/MOM.
        require_greeks: Passed through to ``get_option_chain``.
    """

    def __init__(
        self,
        provider: MarketDataAdapter,
        *,
        technicals: Mapping[str, Mapping[str, Any]] | None = None,
        require_greeks: bool = False,
    ) -> None:
        self._provider = provider
        self._technicals = dict(technicals if technicals is not None else DEFAULT_TECHNICALS)
        self._require_greeks = require_greeks

    async def get_quote(self, symbol: str) -> Optional[float]:
        return await self._provider.get_quote(symbol)

    async def get_contracts(self, symbol: str) -> list[OptionContract]:
        rows = await self._provider.get_option_chain(symbol, require_greeks=self._require_greeks)
        contracts: list[OptionContract] = []
        dropped = 0
        for row in rows or []:
            try:
                contract = normalize_contract(symbol, row)
            except ValueError:
                contract = None
            if contract is None:
                dropped += 1
                continue
            if self._require_greeks and contract.delta is None:
                dropped += 1
                continue
            contracts.append(contract)
        if dropped:
            logger.warning("%s: dropped %d unusable chain rows", symbol, dropped)
        return contracts

    async def _technical(self, symbol: str, name: str, params: Mapping[str, Any]) -> TechnicalReading:
        params = dict(params)
        indicator = params.pop("indicator", name)
        reading = await self._provider.get_technical(symbol, indicator, **params)
        return TechnicalReading(indicator=name, value=reading.value, as_of=reading.as_of, params=params)

    async def build_snapshot(self, symbol: str) -> MarketSnapshot:
        """Fetch quote, chain, fundamentals and technicals for *symbol* concurrently."""

        names = list(self._technicals)
        results = await asyncio.gather(
            self.get_quote(symbol),
            self.get_contracts(symbol),
            self._provider.get_fundamentals(symbol),
            *(self._technical(symbol, name, self._technicals[name]) for name in names),
            return_exceptions=True,
        )
        quote, contracts, fundamentals, *technicals = results

        snapshot = MarketSnapshot(symbol=symbol, current_price=None)

        if isinstance(quote, BaseException):
            logger.warning("%s: quote fetch failed: %s", symbol, quote)
            snapshot.data_gaps.append("quote")
        else:
            snapshot.current_price = _optional_float(quote)
            if snapshot.current_price is None:
                snapshot.data_gaps.append("quote")

        if isinstance(contracts, BaseException):
            logger.warning("%s: option chain fetch failed: %s", symbol, contracts)
            snapshot.data_gaps.append("chain")
        else:
            snapshot.contracts = contracts

        if isinstance(fundamentals, BaseException):
            logger.warning("%s: fundamentals fetch failed: %s", symbol, fundamentals)
            snapshot.data_gaps.append("fundamentals")
        else:
            snapshot.fundamentals, snapshot.sector = normalize_fundamentals(fundamentals or {})

        for name, reading in zip(names, technicals):
            if isinstance(reading, BaseException):
                logger.warning("%s: technical %s failed: %s", symbol, name, reading)
                snapshot.data_gaps.append(f"technical:{name}")
            else:
                snapshot.technicals[name] = reading

        return snapshot
