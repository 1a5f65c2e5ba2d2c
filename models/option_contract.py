from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OptionSide(str, Enum):
    """Option right. Values match the lower-case form used by chain providers."""

    PUT = "put"
    CALL = "call"


class OptionContract(BaseModel):
    """Immutable chain snapshot for one (symbol, strike, expiration, side)."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    strike: float = Field(gt=0)
    expiration: date
    side: OptionSide

    bid: float | None = None
    ask: float | None = None
    delta: float | None = None
    gamma: float | None = None
    theta: float | None = None
    vega: float | None = None
    iv: float | None = None
    open_interest: int | None = None
    volume: int | None = None

    @field_validator("bid", "ask", "delta", "gamma", "theta", "vega", "iv", mode="after")
    @classmethod
    def nan_to_none(cls, value: float | None) -> float | None:
        """Providers occasionally send NaN for an empty book; treat it as missing."""

        if value is not None and math.isnan(value):
            return None
        return value

    @property
    def has_quote(self) -> bool:
        return self.bid is not None and self.ask is not None

    @property
    def mid(self) -> Optional[float]:
        if self.has_quote:
            return (self.bid + self.ask) / 2.0
        return None


@dataclass
class TechnicalReading:
    """One technical indicator value with the date it refers to."""

    indicator: str
    value: Optional[float]
    as_of: Optional[date] = None
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class MarketSnapshot:
    """Everything the engine knows about one underlying at a point in time.

    Built by :class:`adapters.snapshot_adapter.MarketSnapshotAdapter`.  Each
    piece that could not be fetched is recorded in ``data_gaps`` instead of
    failing the whole snapshot.
    """

    symbol: str
    current_price: Optional[float]
    contracts: list[OptionContract] = field(default_factory=list)
    fundamentals: dict[str, Optional[float]] = field(default_factory=dict)
    technicals: dict[str, TechnicalReading] = field(default_factory=dict)
    sector: Optional[str] = None
    as_of: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    data_gaps: list[str] = field(default_factory=list)

    @property
    def is_priced(self) -> bool:
        return self.current_price is not None and self.current_price > 0

    def technical(self, indicator: str) -> Optional[float]:
        reading = self.technicals.get(indicator)
        return reading.value if reading is not None else None
