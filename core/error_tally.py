"""core/error_tally.py — per-run count of recovered problems.

Data gaps and provider failures never abort a run; they are logged and
counted here so the caller can see how complete a result is.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class ErrorTally:
    data_gaps: int = 0
    provider_failures: int = 0
    warnings: list[str] = field(default_factory=list)

    def gap(self, message: str) -> None:
        self.data_gaps += 1
        self.warnings.append(message)

    def failure(self, message: str) -> None:
        self.provider_failures += 1
        self.warnings.append(message)

    def merge(self, other: "ErrorTally") -> None:
        self.data_gaps += other.data_gaps
        self.provider_failures += other.provider_failures
        self.warnings.extend(other.warnings)

    @property
    def total(self) -> int:
        return self.data_gaps + self.provider_failures

    def __bool__(self) -> bool:
        return self.total > 0
