from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional, Union

from models.intelligence import IntelligenceItem, SignalCategory, SourceType
from models.option_contract import OptionContract, TechnicalReading

RawChainRow = Union[OptionContract, Mapping[str, Any]]


class MarketDataAdapter(ABC):
    """Abstract contract for quote / chain / fundamentals / technicals providers.

    Implementations may return chain rows either as :class:`OptionContract`
    or as raw provider dicts; :class:`adapters.snapshot_adapter.MarketSnapshotAdapter`
    normalises both.
    """

    @abstractmethod
    async def get_quote(self, symbol: str) -> Optional[float]:
        """Return the current underlying price, or ``None`` if unavailable."""

        raise NotImplementedError

    @abstractmethod
    async def get_option_chain(self, symbol: str, *, require_greeks: bool = False) -> List[RawChainRow]:
        """Return every listed contract for *symbol*."""

        raise NotImplementedError

    @abstractmethod
    async def get_fundamentals(self, symbol: str) -> Mapping[str, Any]:
        """Return named metrics (52-week high/low, market cap, target price, sector...)."""

        raise NotImplementedError

    @abstractmethod
    async def get_technical(self, symbol: str, indicator: str, **params: Any) -> TechnicalReading:
        """Return a single indicator value with its as-of date."""

        raise NotImplementedError


class IntelligenceSource(ABC):
    """One news / catalyst / filings feed."""

    source_type: SourceType = SourceType.FREE
    name: str = "source"

    @abstractmethod
    async def search(
        self,
        symbol: str,
        category: SignalCategory,
        lookback_days: int,
    ) -> List[IntelligenceItem]:
        """Return items for *symbol* in *category* published within *lookback_days*."""

        raise NotImplementedError
