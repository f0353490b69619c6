"""
Process-local TTL cache shared by both caching tiers.

The hot response cache (short TTL, fingerprint keyed, fronting the warehouse)
and the client cache layer (long TTL, keyed by org + date range, served
stale-while-revalidate) are two configurations of the same TTLCache class.

Interface:
    get(key) -> payload | None
    lookup(key) -> CacheEntry | None
    put(key, payload) -> CacheEntry
    invalidate(key) -> None
    clear() -> None
    is_stale(entry) -> bool

Entries are immutable and replaced wholesale on every put, so a reader never
observes a half-written payload. Capacity is bounded; when full, the oldest
entry is evicted. Expired entries are evicted lazily on read.

Not shared across processes. Two instances may both miss and both query the
warehouse for the same fingerprint; that is accepted.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Iterable, Optional


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    payload: Any
    created_at: float


class TTLCache:
    """
    Bounded, TTL-based store with oldest-entry eviction.

    Args:
        ttl_seconds: Age at which an entry is treated as a miss and evicted.
        max_entries: Capacity; the oldest entry is evicted on overflow.
        stale_after_seconds: Optional age at which an entry is still served but
            reported stale by is_stale(). None disables staleness.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        stale_after_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError('ttl_seconds must be positive')
        if max_entries <= 0:
            raise ValueError('max_entries must be positive')
        if stale_after_seconds is not None and stale_after_seconds > ttl_seconds:
            raise ValueError('stale_after_seconds cannot exceed ttl_seconds')

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _age(self, entry: CacheEntry) -> float:
        return self._clock() - entry.created_at

    def lookup(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, evicting it first if expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._age(entry) >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry

    def get(self, key: str) -> Any:
        entry = self.lookup(key)
        return entry.payload if entry is not None else None

    def put(self, key: str, payload: Any) -> CacheEntry:
        entry = CacheEntry(fingerprint=key, payload=payload, created_at=self._clock())
        with self._lock:
            # Re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return entry

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def is_stale(self, entry: CacheEntry) -> bool:
        if self.stale_after_seconds is None:
            return False
        return self._age(entry) >= self.stale_after_seconds


# =============================================================================
# Fingerprinting
# =============================================================================


def _normalize_ids(values: Optional[Iterable[str]]) -> str:
    if not values:
        return ''
    return ','.join(sorted({v.strip() for v in values if v and v.strip()}))


def build_fingerprint(
    organization_id: str,
    app_ids: Optional[Iterable[str]],
    start: date,
    end: date,
    traffic_sources: Optional[Iterable[str]] = None,
) -> str:
    """
    Build the deterministic hot cache key for a warehouse request.

    App ids and traffic sources are de-duplicated and sorted, so the key does
    not depend on the order in which a caller listed them.

    Example:
        >>> build_fingerprint('org-1', ['b', 'a'], date(2024, 11, 1), date(2024, 11, 3))
        'aso|org-1|a,b|2024-11-01|2024-11-03|'
    """
    return '|'.join([
        'aso',
        organization_id,
        _normalize_ids(app_ids),
        start.isoformat(),
        end.isoformat(),
        _normalize_ids(traffic_sources),
    ])
