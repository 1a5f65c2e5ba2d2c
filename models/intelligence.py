from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SourceType(str, Enum):
    """Where an intelligence item came from. Only ``PAID`` costs credits."""

    FREE = "free"
    PAID = "paid"


class SignalCategory(str, Enum):
    CATALYSTS = "catalysts"
    ANALYST_ACTIVITY = "analyst_activity"
    FILINGS = "filings"
    OPERATIONAL_RISKS = "operational_risks"
    GENERAL_NEWS = "general_news"


class IntelligenceItem(BaseModel):
    """One article / filing / note returned by an intelligence feed."""

    title: str = ""
    snippet: str = ""
    url: str = ""
    published_at: datetime | None = None
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    source_type: SourceType = SourceType.FREE
    category: SignalCategory = SignalCategory.GENERAL_NEWS

    @property
    def text(self) -> str:
        """Lower-cased title + snippet, the surface keyword rules scan."""
        return f"{self.title} {self.snippet}".lower()
