"""
Dashboard session service.

Ties the pipeline together for one dashboard view:

    Orchestrator -> Client Cache -> Local Aggregation -> Two-Path Calculator
                 -> Intelligence Engine

Each principal gets its own ClientCacheLayer. Raw rows for (organization,
date range) are cached once; app and traffic-source filters are applied
locally on every view. The previous equal-length period is fetched through
the same cache to feed period comparison and anomaly attribution.

Sessions are held in a bounded TTLCache. A session idle for longer than
dashboard_session_ttl_seconds is dropped, and once dashboard_max_sessions is
reached the least recently used session is evicted along with its cache.

Session operations:
- view: filtered summary, two-path breakdown and intelligence report
- switch_organization: clears the session cache when the org changes
- refresh: bypasses both cache tiers for the selection
- logout: drops the session and everything cached for it
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from aso_analytics.core.cache import TTLCache
from aso_analytics.core.config import Settings
from aso_analytics.core.errors import AsoAnalyticsError
from aso_analytics.core.formulas import DEFAULT_FORMULAS, FormulaRegistry
from aso_analytics.models.schemas import (
    DashboardMeta,
    DashboardRequest,
    DashboardResponse,
    DataRequest,
    DataResponse,
    DateRange,
    SessionStatus,
)
from aso_analytics.services.aggregation import aggregate, compare_periods, previous_period
from aso_analytics.services.client_cache import CacheLookup, ClientCacheLayer
from aso_analytics.services.data_access import DataAccessService
from aso_analytics.services.intelligence import build_intelligence_report
from aso_analytics.services.two_path import DEFAULT_TRAFFIC_SOURCES, build_breakdown


logger = logging.getLogger(__name__)


class DashboardService:
    """
    Per-principal dashboard sessions over a shared DataAccessService.
    """

    def __init__(
        self,
        settings: Settings,
        data_access: DataAccessService,
        formulas: FormulaRegistry = DEFAULT_FORMULAS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._data_access = data_access
        self._formulas = formulas
        # Principal id -> ClientCacheLayer; idle and least recently used
        # sessions are evicted
        self._sessions = TTLCache(
            ttl_seconds=settings.dashboard_session_ttl_seconds,
            max_entries=settings.dashboard_max_sessions,
            clock=clock,
        )

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def session(self, principal_id: str) -> ClientCacheLayer:
        """Return the principal's session, creating it if needed, and mark it used."""
        layer: Optional[ClientCacheLayer] = self._sessions.get(principal_id)
        if layer is None:
            layer = ClientCacheLayer.from_settings(self._settings)
            logger.debug(f"Dashboard session opened for {principal_id}")
        self._sessions.put(principal_id, layer)
        return layer

    def status(self, principal_id: str) -> SessionStatus:
        layer: Optional[ClientCacheLayer] = self._sessions.get(principal_id)
        if layer is None:
            return SessionStatus(principal_id=principal_id, cached_entries=0)
        return SessionStatus(
            principal_id=principal_id,
            organization_id=layer.organization_id,
            cached_entries=len(layer),
        )

    # =========================================================================
    # View
    # =========================================================================

    async def view(self, principal_id: str, request: DashboardRequest) -> DashboardResponse:
        """
        Build the dashboard for one selection.

        Raises:
            The orchestrator's errors for the current period. Failures of the
            previous-period fetch only drop comparison and attribution.
        """
        scope = await self._data_access.resolve(principal_id, request.organization_id)
        org_id = scope.resolved_org_id
        layer = self.session(principal_id)
        layer.switch_organization(org_id)

        current = await self._load(
            principal_id, layer, org_id, request.date_range, request.force_refresh
        )
        payload: DataResponse = current.payload

        previous_range = previous_period(request.date_range)
        previous_payload: Optional[DataResponse] = None
        try:
            previous = await self._load(
                principal_id, layer, org_id, previous_range, request.force_refresh
            )
            previous_payload = previous.payload
        except AsoAnalyticsError as exc:
            logger.warning(f"Previous period fetch failed for {org_id}: {exc.message}")

        series = aggregate(
            payload.data, request.date_range, request.app_ids, request.traffic_sources
        )
        breakdown = build_breakdown(series)

        comparison = None
        previous_breakdown = None
        if previous_payload is not None:
            previous_series = aggregate(
                previous_payload.data, previous_range, request.app_ids, request.traffic_sources
            )
            comparison = compare_periods(series, previous_series)
            previous_breakdown = build_breakdown(previous_series)

        report = build_intelligence_report(
            series.timeseries, breakdown, previous_breakdown, self._formulas
        )

        return DashboardResponse(
            series=series,
            comparison=comparison,
            two_path=breakdown,
            intelligence=report,
            meta=DashboardMeta(
                cache_state=current.state.value,
                organization_id=org_id,
                row_count=len(payload.data),
                available_traffic_sources=(
                    payload.meta.available_traffic_sources or list(DEFAULT_TRAFFIC_SOURCES)
                ),
                accessible_app_ids=payload.meta.accessible_app_ids,
                generated_at=datetime.now(timezone.utc),
            ),
            message=payload.message,
        )

    async def _load(
        self,
        principal_id: str,
        layer: ClientCacheLayer,
        organization_id: str,
        date_range: DateRange,
        force_refresh: bool,
    ) -> CacheLookup:
        # App and source filters stay out of the fetch; they are applied locally
        request = DataRequest(organization_id=organization_id, date_range=date_range)

        async def fetcher() -> DataResponse:
            return await self._data_access.fetch(
                request, principal_id, bypass_cache=force_refresh
            )

        return await layer.get(organization_id, date_range, fetcher, force_refresh=force_refresh)

    # =========================================================================
    # Session Operations
    # =========================================================================

    async def refresh(self, principal_id: str, request: DashboardRequest) -> DashboardResponse:
        return await self.view(principal_id, request.model_copy(update={'force_refresh': True}))

    async def switch_organization(self, principal_id: str, organization_id: str) -> SessionStatus:
        """
        Switch the session to another organization.

        The org goes through scope resolution, so a principal that may not
        select orgs stays on its own.
        """
        scope = await self._data_access.resolve(principal_id, organization_id)
        self.session(principal_id).switch_organization(scope.resolved_org_id)
        return self.status(principal_id)

    def logout(self, principal_id: str) -> SessionStatus:
        layer: Optional[ClientCacheLayer] = self._sessions.get(principal_id)
        self._sessions.invalidate(principal_id)
        if layer is not None:
            layer.invalidate_all()
            logger.info(f"Session for {principal_id} cleared on logout")
        return SessionStatus(principal_id=principal_id, cached_entries=0)
