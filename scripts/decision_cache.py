"""TTL + size-capped memoization of router decisions.

Entries expire after ``ttl_seconds`` and the oldest inserted entry is evicted
once ``max_entries`` is exceeded. A cached ``None`` (the router abstained) is a
valid hit. The clock is injectable so expiry can be tested without sleeping.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 500

_MISS = object()


@dataclass
class CacheEntry:
    """A single cached decision with its insertion time."""

    cached_at: float
    decision: Any


class DecisionCache:
    """Insertion-ordered cache keyed by the full routing-options tuple."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: OrderedDict[Hashable, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: Hashable) -> tuple[bool, Any]:
        """Return ``(hit, decision)``; expired entries are dropped on access."""
        entry = self._entries.get(key, _MISS)
        if entry is _MISS:
            return False, None
        if self._clock() - entry.cached_at > self.ttl_seconds:
            del self._entries[key]
            return False, None
        return True, entry.decision

    def store(self, key: Hashable, decision: Any) -> None:
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = CacheEntry(cached_at=self._clock(), decision=decision)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()
