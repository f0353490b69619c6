"""
Data Access Orchestrator.

Composes access resolution, the hot response cache and the warehouse client
into one request pipeline:

    Authenticate -> ResolveScope -> CacheLookup
        hit  -> Respond
        miss -> QueryWarehouse + DiscoverDimensions -> Respond

Behavior:
- An empty allowed app set returns a successful empty response without
  touching the warehouse.
- Concurrent identical misses share one in-flight warehouse task, keyed by
  fingerprint. Callers await it through asyncio.shield, so a caller that
  times out or is cancelled never cancels the query; the query still
  completes and populates the hot cache for later callers.
- Warehouse failures surface as UpstreamQueryFailed / UpstreamTimeout and are
  never cached or retried.
- Dimension discovery failures are absorbed: available traffic sources are
  derived from the fetched rows instead.
- One overall deadline (request_timeout_seconds) covers scope resolution,
  cache lookup and the query. A bare resolve() gets the same deadline.
- An audit event is written fire-and-forget after each successful response;
  audit failures are logged and swallowed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Awaitable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar

from aso_analytics.core.cache import TTLCache, build_fingerprint
from aso_analytics.core.config import Settings
from aso_analytics.core.errors import (
    AsoAnalyticsError,
    AuthenticationRequired,
    UpstreamQueryFailed,
    UpstreamTimeout,
)
from aso_analytics.core.warehouse import WarehouseClient
from aso_analytics.models.schemas import (
    AccessScope,
    AuditEvent,
    DataRequest,
    DataResponse,
    MetricRow,
    QueryMeta,
    ScopeMeta,
)
from aso_analytics.services.access import AccessRepository, resolve_scope


logger = logging.getLogger(__name__)

T = TypeVar('T')


NO_APPS_MESSAGE = 'No apps attached to this organization'
NO_ACCESSIBLE_APPS_MESSAGE = 'None of the requested apps are accessible'


@dataclass(frozen=True)
class WarehouseResult:
    """Hot cache payload: fetched rows plus discovered traffic sources."""
    rows: Tuple[MetricRow, ...]
    traffic_sources: Tuple[str, ...]


def sources_from_rows(rows: Iterable[MetricRow]) -> List[str]:
    return sorted({row.traffic_source for row in rows})


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


class DataAccessService:
    """
    Request orchestrator. One instance per process; the hot cache and the
    in-flight task map are the only shared mutable state.
    """

    def __init__(
        self,
        settings: Settings,
        repository: AccessRepository,
        warehouse: WarehouseClient,
        hot_cache: Optional[TTLCache] = None,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._warehouse = warehouse
        self.hot_cache = hot_cache or TTLCache(
            ttl_seconds=settings.hot_cache_ttl_seconds,
            max_entries=settings.hot_cache_max_entries,
        )
        self._in_flight: Dict[str, 'asyncio.Task[WarehouseResult]'] = {}
        self._background: Set['asyncio.Task[None]'] = set()

    # =========================================================================
    # Public API
    # =========================================================================

    async def fetch(
        self,
        request: DataRequest,
        principal_id: Optional[str],
        bypass_cache: bool = False,
    ) -> DataResponse:
        """
        Serve one data request within the overall deadline.

        Args:
            request: Normalized request.
            principal_id: Authenticated principal.
            bypass_cache: Drop the hot cache entry first (manual refresh).

        Raises:
            AuthenticationRequired, ScopeRequired, NoOrganization,
            AccessLookupFailed, UpstreamQueryFailed, UpstreamTimeout
        """
        started = time.perf_counter()
        return await self._within_deadline(
            self._fetch(request, principal_id, started, bypass_cache), principal_id
        )

    async def resolve(
        self, principal_id: str, organization_id: Optional[str] = None
    ) -> AccessScope:
        """
        Resolve the scope alone, without touching cache or warehouse.

        Runs under the same overall deadline as fetch.

        Raises:
            ScopeRequired, NoOrganization, AccessLookupFailed, UpstreamTimeout
        """
        return await self._within_deadline(
            resolve_scope(principal_id, organization_id, None, self._repository), principal_id
        )

    async def drain(self) -> None:
        """Wait for pending audit writes; used at shutdown and in tests."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _within_deadline(
        self, operation: Awaitable[T], principal_id: Optional[str]
    ) -> T:
        timeout = self._settings.request_timeout_seconds
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.error(
                f"Request for {principal_id} exceeded {timeout}s deadline",
                extra={'principal_id': principal_id},
            )
            raise UpstreamTimeout(
                'Request timed out',
                details={'timeout_seconds': timeout},
            ) from exc

    async def _fetch(
        self,
        request: DataRequest,
        principal_id: Optional[str],
        started: float,
        bypass_cache: bool,
    ) -> DataResponse:
        if not principal_id:
            raise AuthenticationRequired('Missing authenticated principal')

        scope = await resolve_scope(
            principal_id, request.organization_id, request.app_ids, self._repository
        )
        app_ids = sorted(scope.allowed_app_ids)

        if not app_ids:
            message = NO_ACCESSIBLE_APPS_MESSAGE if scope.accessible_app_ids else NO_APPS_MESSAGE
            logger.info(
                f"Empty app scope for org {scope.resolved_org_id}: {message}",
                extra={'principal_id': principal_id, 'organization_id': scope.resolved_org_id},
            )
            return self._build_response(
                request, scope, app_ids, WarehouseResult((), ()), started,
                cache_hit=False, message=message,
            )

        fingerprint = build_fingerprint(
            scope.resolved_org_id,
            app_ids,
            request.date_range.start,
            request.date_range.end,
            request.traffic_sources,
        )

        if bypass_cache:
            self.hot_cache.invalidate(fingerprint)

        result = self.hot_cache.get(fingerprint)
        cache_hit = result is not None
        if result is None:
            task = self._get_or_start_query(fingerprint, app_ids, request)
            result = await asyncio.shield(task)
        else:
            logger.debug(f"Hot cache hit for {fingerprint}")

        response = self._build_response(
            request, scope, app_ids, result, started, cache_hit=cache_hit
        )
        self._emit_audit(AuditEvent(
            principal_id=principal_id,
            organization_id=scope.resolved_org_id,
            app_count=len(app_ids),
            date_range=request.date_range,
            row_count=response.meta.row_count,
            duration_ms=response.meta.query_duration_ms,
        ))
        return response

    def _get_or_start_query(
        self, fingerprint: str, app_ids: List[str], request: DataRequest
    ) -> 'asyncio.Task[WarehouseResult]':
        task = self._in_flight.get(fingerprint)
        if task is None:
            task = asyncio.create_task(self._query_warehouse(fingerprint, app_ids, request))
            self._in_flight[fingerprint] = task
            task.add_done_callback(partial(self._finish_query, fingerprint))
        else:
            logger.debug(f"Joining in-flight query for {fingerprint}")
        return task

    def _finish_query(self, fingerprint: str, task: 'asyncio.Task[WarehouseResult]') -> None:
        if self._in_flight.get(fingerprint) is task:
            del self._in_flight[fingerprint]
        # Retrieve the exception so an abandoned task does not log "never retrieved"
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"In-flight query for {fingerprint} failed: {task.exception()!r}")

    async def _query_warehouse(
        self, fingerprint: str, app_ids: List[str], request: DataRequest
    ) -> WarehouseResult:
        rows_result, sources_result = await asyncio.gather(
            self._warehouse.fetch_metrics(
                app_ids, request.date_range, request.traffic_sources or None
            ),
            self._warehouse.fetch_traffic_sources(app_ids, request.date_range),
            return_exceptions=True,
        )

        if isinstance(rows_result, AsoAnalyticsError):
            raise rows_result
        if isinstance(rows_result, BaseException):
            raise UpstreamQueryFailed(
                'Warehouse query failed',
                details={'reason': type(rows_result).__name__},
            ) from rows_result
        if not isinstance(rows_result, list):
            raise UpstreamQueryFailed('Warehouse returned a non-list payload')

        if isinstance(sources_result, BaseException):
            logger.warning(
                f"Traffic source discovery failed, deriving from rows: {sources_result!r}"
            )
            sources = sources_from_rows(rows_result)
        else:
            sources = list(sources_result)

        result = WarehouseResult(rows=tuple(rows_result), traffic_sources=tuple(sources))
        self.hot_cache.put(fingerprint, result)
        logger.info(f"Warehouse returned {len(result.rows)} rows for {fingerprint}")
        return result

    # =========================================================================
    # Response / Audit
    # =========================================================================

    @staticmethod
    def _build_response(
        request: DataRequest,
        scope: AccessScope,
        app_ids: List[str],
        result: WarehouseResult,
        started: float,
        cache_hit: bool,
        message: Optional[str] = None,
    ) -> DataResponse:
        return DataResponse(
            data=list(result.rows),
            scope=ScopeMeta(
                organization_id=scope.resolved_org_id,
                app_ids=app_ids,
                date_range=request.date_range,
                scope_source=scope.scope_source,
                queryable_org_ids=sorted(scope.queryable_org_ids),
            ),
            meta=QueryMeta(
                row_count=len(result.rows),
                query_duration_ms=_elapsed_ms(started),
                available_traffic_sources=list(result.traffic_sources),
                accessible_app_ids=sorted(scope.accessible_app_ids),
                cache_hit=cache_hit,
                timestamp=datetime.now(timezone.utc),
            ),
            message=message,
        )

    def _emit_audit(self, event: AuditEvent) -> None:
        task = asyncio.create_task(self._write_audit(event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _write_audit(self, event: AuditEvent) -> None:
        try:
            await self._repository.record_audit(event)
        except Exception as exc:
            logger.warning(
                f"Audit write failed for {event.principal_id}: {exc}",
                extra={'principal_id': event.principal_id},
            )
