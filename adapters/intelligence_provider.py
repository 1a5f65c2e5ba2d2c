"""
adapters/intelligence_provider.py
─────────────────────────────────
Cost-aware, layered lookup of intelligence items.

Lookup order for (symbol, category, lookback):
    1. TTL cache                          no cost
    2. free source                        no cost
    3. paid source, via the shared TokenBucket   costs credits

The paid source is only consulted when the free source returned nothing or
failed.  Every paid call is counted (calls and credits) on the returned
:class:`CategoryFetch` and on the provider's running totals.

Failures: if the last layer tried raises, the exception propagates to the
caller (the position monitor degrades that category to empty).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from adapters.base_adapter import IntelligenceSource
from core.rate_limiter import TokenBucket
from core.ttl_cache import TTLCache
from models.intelligence import IntelligenceItem, SignalCategory
from risk_engine.policy import IntelligencePolicy

logger = logging.getLogger(__name__)


@dataclass
class CategoryFetch:
    category: SignalCategory
    items: list[IntelligenceItem] = field(default_factory=list)
    origin: str = "none"          # cache | free | paid | none
    paid_calls: int = 0
    credits_used: int = 0

    @property
    def from_cache(self) -> bool:
        return self.origin == "cache"


class LayeredIntelligenceProvider:
    """
    Parameters
    ----------
    free : IntelligenceSource | None
        Preferred no-cost source.
    paid : IntelligenceSource | None
        Fallback source; each call draws a token from *limiter*.
    limiter : TokenBucket | None
        Shared requests-per-minute budget for paid calls.
    cache : TTLCache | None
        Result cache; defaults to one sized from *policy*.
    """

    def __init__(
        self,
        free: IntelligenceSource | None = None,
        paid: IntelligenceSource | None = None,
        *,
        limiter: TokenBucket | None = None,
        cache: TTLCache | None = None,
        policy: IntelligencePolicy | None = None,
    ) -> None:
        self.policy = policy or IntelligencePolicy()
        self._free = free
        self._paid = paid
        self._limiter = limiter if limiter is not None else TokenBucket(
            capacity=max(1, self.policy.requests_per_minute),
            refill_per_minute=max(1, self.policy.requests_per_minute),
            max_wait_seconds=self.policy.rate_limit_max_wait_seconds,
        )
        self._cache = cache if cache is not None else TTLCache(
            maxsize=self.policy.cache_maxsize,
            ttl_seconds=self.policy.cache_ttl_hours * 3600,
        )
        self.total_paid_calls = 0
        self.total_credits = 0

    def _credits_for(self, category: SignalCategory) -> int:
        return int(self.policy.paid_credits.get(category.value, 1))

    async def fetch(self, symbol: str, category: SignalCategory, lookback_days: int) -> CategoryFetch:
        key = (symbol.upper(), category.value, lookback_days)
        cached: Optional[list[IntelligenceItem]] = self._cache.get(key)
        if cached is not None:
            logger.debug("intel cache hit %s/%s", symbol, category.value)
            return CategoryFetch(category, list(cached), origin="cache")

        free_error: Optional[Exception] = None
        if self._free is not None:
            try:
                items = await self._free.search(symbol, category, lookback_days)
            except Exception as exc:
                logger.warning("free source %s failed for %s/%s: %s", self._free.name, symbol, category.value, exc)
                free_error = exc
            else:
                if items:
                    self._cache.set(key, items)
                    return CategoryFetch(category, list(items), origin="free")

        if self._paid is None:
            if free_error is not None:
                raise free_error
            return CategoryFetch(category, [], origin="free" if self._free is not None else "none")

        await self._limiter.acquire()
        items = await self._paid.search(symbol, category, lookback_days)
        credits = self._credits_for(category)
        self.total_paid_calls += 1
        self.total_credits += credits
        self._cache.set(key, items)
        logger.info(
            "paid source %s used for %s/%s: %d items, %d credits",
            self._paid.name,
            symbol,
            category.value,
            len(items),
            credits,
        )
        return CategoryFetch(category, list(items), origin="paid", paid_calls=1, credits_used=credits)
