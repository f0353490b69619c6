"""
Client Cache Layer: stale-while-revalidate cache in front of the orchestrator.

Keyed by (organization, start, end) only. App and traffic-source filters are
deliberately left out of the key; they are applied locally by the aggregation
engine, so changing a filter never costs a warehouse round trip.

Lookup outcomes:
    fresh  (age < stale_after)        -> return, no fetch
    stale  (stale_after <= age < ttl) -> return immediately, refresh once in
                                         the background; the refreshed payload
                                         replaces the entry
    miss   (absent or age >= ttl)     -> await the fetch

Background refresh failures keep the stale entry and are logged. A fetch of
any kind that completes after invalidate_all() is never written back.

Invalidation:
    invalidate_all()           logout; clears every entry and pending refresh
    switch_organization(org)   clears everything when the org changes
    get(..., force_refresh=True) manual refresh; bypasses staleness
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from aso_analytics.core.cache import TTLCache
from aso_analytics.core.config import Settings
from aso_analytics.models.schemas import DateRange


logger = logging.getLogger(__name__)


Fetcher = Callable[[], Awaitable[Any]]


class CacheState(str, Enum):
    FRESH = 'fresh'
    STALE = 'stale'
    MISS = 'miss'
    REFRESHED = 'refreshed'


@dataclass(frozen=True)
class CacheLookup:
    payload: Any
    state: CacheState


def client_cache_key(organization_id: str, date_range: DateRange) -> str:
    return f"{organization_id}|{date_range.start.isoformat()}|{date_range.end.isoformat()}"


class ClientCacheLayer:
    """
    One instance per dashboard session.

    Args:
        cache: TTLCache configured with both ttl_seconds and
            stale_after_seconds.
    """

    def __init__(self, cache: TTLCache) -> None:
        if cache.stale_after_seconds is None:
            raise ValueError('ClientCacheLayer requires a cache with stale_after_seconds')
        self._cache = cache
        self._refreshing: Dict[str, 'asyncio.Task[None]'] = {}
        self._organization_id: Optional[str] = None
        # Bumped on every full invalidation; refreshes from an older
        # generation never write back
        self._generation = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> 'ClientCacheLayer':
        return cls(TTLCache(
            ttl_seconds=settings.client_cache_ttl_seconds,
            max_entries=settings.client_cache_max_entries,
            stale_after_seconds=settings.client_cache_stale_seconds,
        ))

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def organization_id(self) -> Optional[str]:
        return self._organization_id

    @property
    def pending_refreshes(self) -> Set[str]:
        return set(self._refreshing)

    # =========================================================================
    # Lookup
    # =========================================================================

    async def get(
        self,
        organization_id: str,
        date_range: DateRange,
        fetcher: Fetcher,
        force_refresh: bool = False,
    ) -> CacheLookup:
        """
        Return the payload for (organization, date range).

        Args:
            organization_id: Resolved organization.
            date_range: Requested range.
            fetcher: Coroutine factory producing a fresh payload.
            force_refresh: Bypass the cached entry and refetch now.

        Raises:
            Whatever fetcher raises on a miss or forced refresh.
        """
        key = client_cache_key(organization_id, date_range)

        if force_refresh:
            payload = await self._fetch_and_store(key, fetcher)
            return CacheLookup(payload, CacheState.REFRESHED)

        entry = self._cache.lookup(key)
        if entry is None:
            payload = await self._fetch_and_store(key, fetcher)
            return CacheLookup(payload, CacheState.MISS)

        if self._cache.is_stale(entry):
            self._schedule_refresh(key, fetcher)
            return CacheLookup(entry.payload, CacheState.STALE)

        return CacheLookup(entry.payload, CacheState.FRESH)

    async def _fetch_and_store(self, key: str, fetcher: Fetcher) -> Any:
        generation = self._generation
        payload = await fetcher()
        # An invalidation during the fetch wins; the caller still gets its payload
        if generation == self._generation:
            self._cache.put(key, payload)
        else:
            logger.debug(f"Not caching {key} fetched before invalidation")
        return payload

    def _schedule_refresh(self, key: str, fetcher: Fetcher) -> None:
        if key in self._refreshing:
            return
        task = asyncio.create_task(self._refresh(key, fetcher, self._generation))
        self._refreshing[key] = task
        task.add_done_callback(lambda t, k=key: self._refresh_done(k, t))

    async def _refresh(self, key: str, fetcher: Fetcher, generation: int) -> None:
        try:
            payload = await fetcher()
        except Exception as exc:
            logger.warning(f"Background refresh failed for {key}, keeping stale entry: {exc}")
            return
        if generation != self._generation:
            logger.debug(f"Discarding refresh for {key} after invalidation")
            return
        self._cache.put(key, payload)
        logger.debug(f"Background refresh replaced {key}")

    def _refresh_done(self, key: str, task: 'asyncio.Task[None]') -> None:
        if self._refreshing.get(key) is task:
            del self._refreshing[key]

    async def wait_for_refreshes(self) -> None:
        """Await all pending background refreshes."""
        if self._refreshing:
            await asyncio.gather(*list(self._refreshing.values()), return_exceptions=True)

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(self, organization_id: str, date_range: DateRange) -> None:
        self._cache.invalidate(client_cache_key(organization_id, date_range))

    def invalidate_all(self) -> None:
        """Drop every entry and cancel pending refreshes."""
        self._generation += 1
        for task in list(self._refreshing.values()):
            task.cancel()
        self._refreshing.clear()
        self._cache.clear()

    def switch_organization(self, organization_id: str) -> bool:
        """
        Record the active organization; clear everything when it changes.

        Returns:
            True when the cache was cleared.
        """
        if self._organization_id == organization_id:
            return False
        previous = self._organization_id
        self._organization_id = organization_id
        cleared = previous is not None or len(self._cache) > 0
        # Fetches still in flight belong to the previous organization
        self.invalidate_all()
        if not cleared:
            return False
        logger.info(f"Organization switched from {previous} to {organization_id}; client cache cleared")
        return True
