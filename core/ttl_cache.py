"""core/ttl_cache.py — bounded TTL cache with LRU eviction.

Used by the layered intelligence provider so repeated monitoring passes do
not re-fetch (and re-pay for) the same symbol/category within the TTL.
Single event loop only: no lock is taken.
"""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Parameters
    ----------
    maxsize : int
        Entries kept before the least recently used one is evicted.
    ttl_seconds : float
        Default lifetime of an entry.
    clock : callable
        Monotonic time source; tests pass a fake.
    """

    def __init__(
        self,
        maxsize: int = 1024,
        ttl_seconds: float = 6 * 3600,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._maxsize = maxsize
        self._ttl = ttl_seconds
        self._clock = clock
        self._data: OrderedDict[Hashable, _Entry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() >= entry.expires_at:
            del self._data[key]
            self.misses += 1
            return None
        self._data.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl)
        while len(self._data) > self._maxsize:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("TTLCache evicted %s", evicted)

    def invalidate(self, key: Hashable) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()
