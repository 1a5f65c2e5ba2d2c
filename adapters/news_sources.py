"""
adapters/news_sources.py — concrete intelligence feeds.

AlphaVantageNewsSource (free)
    NEWS_SENTIMENT endpoint, one request per category.  Catalysts use the
    ``earnings`` topic; analyst and operational categories are filtered by
    keyword; SEC filings are not covered and return an empty list.

TavilySearchSource (paid)
    POST https://api.tavily.com/search, several category-specific queries
    per call, run concurrently, deduplicated by URL and filtered by the
    per-category relevance floor (``intelligence.min_paid_scores``).

Environment variables (read by engine_config):
  ALPHA_VANTAGE_API_KEY
  TAVILY_API_KEY

Both raise on network / HTTP errors; the layered provider decides what a
failure means.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import httpx

from adapters.base_adapter import IntelligenceSource
from models.intelligence import IntelligenceItem, SignalCategory, SourceType
from risk_engine.policy import IntelligencePolicy

logger = logging.getLogger(__name__)

_TAVILY_URL = "https://api.tavily.com/search"
_ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"

TRUSTED_FINANCIAL_DOMAINS = [
    "sec.gov",
    "reuters.com",
    "bloomberg.com",
    "wsj.com",
    "marketwatch.com",
    "seekingalpha.com",
    "finance.yahoo.com",
    "barrons.com",
    "cnbc.com",
    "ft.com",
]

# category → (query templates, include_domains)
TAVILY_QUERIES: dict[SignalCategory, tuple[tuple[str, ...], list[str] | None]] = {
    SignalCategory.CATALYSTS: (
        ("{symbol} earnings guidance", "{symbol} earnings date announcement", "{symbol} product launch event"),
        TRUSTED_FINANCIAL_DOMAINS,
    ),
    SignalCategory.ANALYST_ACTIVITY: (
        ("{symbol} downgrade OR upgrade analyst", "{symbol} price target change", "{symbol} analyst rating"),
        TRUSTED_FINANCIAL_DOMAINS,
    ),
    SignalCategory.FILINGS: (
        ("{symbol} 8-K filing", "{symbol} 10-Q quarterly report", "{symbol} 10-K annual report"),
        ["sec.gov"],
    ),
    SignalCategory.OPERATIONAL_RISKS: (
        (
            "{symbol} supply chain disruption",
            "{symbol} margin compression pressure",
            "{symbol} competition competitive threat",
            "{symbol} regulatory investigation",
        ),
        TRUSTED_FINANCIAL_DOMAINS,
    ),
    SignalCategory.GENERAL_NEWS: (
        ("{symbol} stock news",),
        None,
    ),
}


class ProviderError(RuntimeError):
    """A feed answered, but with an error or throttling payload instead of data."""


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    text = str(value)
    for fmt in ("%Y%m%dT%H%M%S", "%Y-%m-%dT%H:%M:%S%z", "%a, %d %b %Y %H:%M:%S %Z", "%Y-%m-%d"):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _clamp_score(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


class _HttpSource(IntelligenceSource):
    def __init__(self, api_key: str, *, http_client: httpx.AsyncClient | None = None, timeout: float = 10) -> None:
        self._api_key = api_key
        self._client = http_client
        self._timeout = timeout

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        if self._client is not None:
            resp = await self._client.request(method, url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(method, url, **kwargs)
        resp.raise_for_status()
        return resp.json()


class TavilySearchSource(_HttpSource):
    source_type = SourceType.PAID
    name = "tavily"

    def __init__(
        self,
        api_key: str,
        *,
        min_scores: Mapping[str, float] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10,
    ) -> None:
        super().__init__(api_key, http_client=http_client, timeout=timeout)
        self.min_scores = dict(min_scores if min_scores is not None else IntelligencePolicy().min_paid_scores)

    async def _search_one(
        self,
        query: str,
        lookback_days: int,
        include_domains: list[str] | None,
    ) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {
            "api_key": self._api_key,
            "query": query,
            "topic": "news",
            "search_depth": "basic",
            "max_results": 8,
            "days": lookback_days,
            "include_answer": False,
        }
        if include_domains:
            payload["include_domains"] = include_domains
        data = await self._request("POST", _TAVILY_URL, json=payload)
        return list(data.get("results", []) or [])

    async def search(self, symbol: str, category: SignalCategory, lookback_days: int) -> list[IntelligenceItem]:
        templates, domains = TAVILY_QUERIES[category]
        min_score = self.min_scores.get(category.value, 0.0)
        batches = await asyncio.gather(
            *(self._search_one(t.format(symbol=symbol), lookback_days, domains) for t in templates)
        )

        items: dict[str, IntelligenceItem] = {}
        for row in (r for batch in batches for r in batch):
            url = str(row.get("url") or "")
            score = _clamp_score(row.get("score"))
            if not url or url in items or score < min_score:
                continue
            items[url] = IntelligenceItem(
                title=str(row.get("title") or ""),
                snippet=str(row.get("content") or "")[:500],
                url=url,
                published_at=_parse_datetime(row.get("published_date")),
                score=score,
                source_type=SourceType.PAID,
                category=category,
            )
        logger.debug("tavily %s/%s: %d items", symbol, category.value, len(items))
        return list(items.values())


_AV_TOPICS = {
    SignalCategory.CATALYSTS: "earnings",
}

_AV_KEYWORD_FILTERS = {
    SignalCategory.ANALYST_ACTIVITY: ("analyst", "downgrade", "upgrade", "price target", "rating"),
    SignalCategory.OPERATIONAL_RISKS: (
        "supply chain",
        "lawsuit",
        "investigation",
        "recall",
        "regulator",
        "shortage",
        "disruption",
    ),
}


class AlphaVantageNewsSource(_HttpSource):
    source_type = SourceType.FREE
    name = "alpha_vantage"

    async def search(self, symbol: str, category: SignalCategory, lookback_days: int) -> list[IntelligenceItem]:
        if category == SignalCategory.FILINGS:
            return []

        time_from = datetime.now(timezone.utc) - timedelta(days=lookback_days)
        params: dict[str, Any] = {
            "function": "NEWS_SENTIMENT",
            "tickers": symbol,
            "time_from": time_from.strftime("%Y%m%dT%H%M"),
            "limit": 50,
            "apikey": self._api_key,
        }
        if category in _AV_TOPICS:
            params["topics"] = _AV_TOPICS[category]

        data = await self._request("GET", _ALPHA_VANTAGE_URL, params=params)
        if "feed" not in data:
            message = data.get("Note") or data.get("Information") or data.get("Error Message") or "no feed"
            raise ProviderError(f"alpha vantage: {message}")

        keywords = _AV_KEYWORD_FILTERS.get(category)
        items: list[IntelligenceItem] = []
        for row in data["feed"]:
            relevance = next(
                (t.get("relevance_score") for t in row.get("ticker_sentiment", []) if t.get("ticker") == symbol),
                None,
            )
            item = IntelligenceItem(
                title=str(row.get("title") or ""),
                snippet=str(row.get("summary") or "")[:500],
                url=str(row.get("url") or ""),
                published_at=_parse_datetime(row.get("time_published")),
                score=_clamp_score(relevance),
                source_type=SourceType.FREE,
                category=category,
            )
            if keywords and not any(kw in item.text for kw in keywords):
                continue
            items.append(item)
        return items
