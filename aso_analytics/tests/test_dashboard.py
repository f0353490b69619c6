"""
Tests for dashboard sessions over the orchestrator and the client cache.

Test Categories:
- TestView: full pipeline, local filters, cache states
- TestSessionOperations: refresh, organization switch, logout
- TestSessionStore: bounded, idle-expiring session storage
- TestDeadline: scope resolution on dashboard paths is time-boxed
"""

import asyncio
from datetime import date

import pytest

from aso_analytics.core.errors import UpstreamQueryFailed, UpstreamTimeout
from aso_analytics.models import DashboardRequest, DateRange, PrincipalRecord, TrafficSourceGroup
from aso_analytics.services.client_cache import CacheState
from aso_analytics.services.dashboard import DashboardService
from aso_analytics.services.data_access import DataAccessService


def _request(**kwargs) -> DashboardRequest:
    return DashboardRequest(
        date_range=DateRange(start=date(2024, 11, 1), end=date(2024, 11, 3)), **kwargs
    )


@pytest.fixture
def data_access(test_settings, fake_repository, fake_warehouse) -> DataAccessService:
    return DataAccessService(test_settings, fake_repository, fake_warehouse)


@pytest.fixture
def dashboard(test_settings, data_access) -> DashboardService:
    return DashboardService(test_settings, data_access)


class TestView:

    @pytest.mark.asyncio
    async def test_first_view_fetches_both_periods(self, dashboard, fake_warehouse):
        response = await dashboard.view('user-1', _request())

        assert response.meta.cache_state == CacheState.MISS.value
        assert response.meta.organization_id == 'org-1'
        assert response.meta.row_count == 6
        assert response.meta.accessible_app_ids == ['app-1', 'app-2']
        assert response.series.summary.impressions == 4700
        assert response.two_path.groups[TrafficSourceGroup.SEARCH].downloads == 135
        assert response.comparison is not None
        assert response.comparison.previous_range == DateRange(
            start=date(2024, 10, 29), end=date(2024, 10, 31)
        )

        ranges = [call.args[1] for call in fake_warehouse.fetch_metrics.await_args_list]
        assert ranges == [
            DateRange(start=date(2024, 11, 1), end=date(2024, 11, 3)),
            DateRange(start=date(2024, 10, 29), end=date(2024, 10, 31)),
        ]

    @pytest.mark.asyncio
    async def test_second_view_is_served_from_session_cache(self, dashboard, fake_warehouse):
        await dashboard.view('user-1', _request())
        response = await dashboard.view('user-1', _request())

        assert response.meta.cache_state == CacheState.FRESH.value
        assert fake_warehouse.fetch_metrics.await_count == 2

    @pytest.mark.asyncio
    async def test_filters_are_applied_locally(self, dashboard, fake_warehouse):
        await dashboard.view('user-1', _request())

        response = await dashboard.view(
            'user-1', _request(app_ids=['app-2'], traffic_sources=['App Store Browse'])
        )

        assert response.series.summary.impressions == 500
        assert response.series.summary.downloads == 10
        # Unfiltered row count of the cached payload
        assert response.meta.row_count == 6
        assert fake_warehouse.fetch_metrics.await_count == 2

    @pytest.mark.asyncio
    async def test_previous_period_failure_drops_comparison(self, dashboard, fake_warehouse, sample_rows):
        async def current_only(app_ids, date_range, sources):
            if date_range.start != date(2024, 11, 1):
                raise UpstreamQueryFailed('Warehouse query failed')
            return list(sample_rows)

        fake_warehouse.fetch_metrics.side_effect = current_only

        response = await dashboard.view('user-1', _request())

        assert response.comparison is None
        assert response.intelligence.anomalies == []
        assert response.series.summary.downloads == 195

    @pytest.mark.asyncio
    async def test_current_period_failure_propagates(self, dashboard, fake_warehouse):
        fake_warehouse.fetch_metrics.side_effect = UpstreamQueryFailed('Warehouse query failed')

        with pytest.raises(UpstreamQueryFailed):
            await dashboard.view('user-1', _request())

    @pytest.mark.asyncio
    async def test_short_range_reports_insufficient_stability(self, dashboard):
        response = await dashboard.view('user-1', _request())

        assert response.intelligence.stability.score is None
        assert response.intelligence.stability.data_points == 3


class TestSessionOperations:

    @pytest.mark.asyncio
    async def test_refresh_bypasses_both_tiers(self, dashboard, fake_warehouse):
        await dashboard.view('user-1', _request())

        response = await dashboard.refresh('user-1', _request())

        assert response.meta.cache_state == CacheState.REFRESHED.value
        assert fake_warehouse.fetch_metrics.await_count == 4

    @pytest.mark.asyncio
    async def test_member_cannot_switch_to_another_org(self, dashboard):
        await dashboard.view('user-1', _request())

        status = await dashboard.switch_organization('user-1', 'org-9')

        assert status.organization_id == 'org-1'
        assert status.cached_entries == 2

    @pytest.mark.asyncio
    async def test_platform_admin_switch_clears_session(self, dashboard, fake_repository):
        fake_repository.get_principal.return_value = PrincipalRecord(
            principal_id='admin', role='SUPER_ADMIN', organization_id=None
        )
        await dashboard.view('admin', _request(organization_id='org-1'))
        assert dashboard.status('admin').cached_entries == 2

        status = await dashboard.switch_organization('admin', 'org-2')

        assert status.organization_id == 'org-2'
        assert status.cached_entries == 0

    @pytest.mark.asyncio
    async def test_logout_drops_session(self, dashboard):
        await dashboard.view('user-1', _request())

        status = dashboard.logout('user-1')

        assert status.cached_entries == 0
        assert dashboard.status('user-1') == status
        assert dashboard.status('user-1').organization_id is None

    def test_status_without_session(self, dashboard):
        status = dashboard.status('nobody')

        assert status.organization_id is None
        assert status.cached_entries == 0

    @pytest.mark.asyncio
    async def test_status_after_first_switch_reports_org(self, dashboard):
        status = await dashboard.switch_organization('user-1', 'org-1')

        assert status.organization_id == 'org-1'
        assert status.cached_entries == 0
        assert dashboard.status('user-1').organization_id == 'org-1'


class TestSessionStore:

    def test_sessions_are_bounded(self, test_settings, data_access):
        settings = test_settings.model_copy(update={'dashboard_max_sessions': 3})
        dashboard = DashboardService(settings, data_access)

        for index in range(50):
            dashboard.session(f'user-{index}')

        assert dashboard.session_count == 3
        assert dashboard.status('user-0').organization_id is None
        assert dashboard.status('user-0').cached_entries == 0

    def test_least_recently_used_session_is_evicted(self, test_settings, data_access):
        settings = test_settings.model_copy(update={'dashboard_max_sessions': 2})
        dashboard = DashboardService(settings, data_access)
        first = dashboard.session('user-a')
        dashboard.session('user-b')

        assert dashboard.session('user-a') is first
        dashboard.session('user-c')

        assert dashboard.session('user-a') is first
        assert dashboard.session_count == 2

    @pytest.mark.asyncio
    async def test_idle_session_expires(self, test_settings, data_access, clock):
        dashboard = DashboardService(test_settings, data_access, clock=clock)
        await dashboard.view('user-1', _request())
        assert dashboard.status('user-1').cached_entries == 2

        clock.advance(test_settings.dashboard_session_ttl_seconds)

        assert dashboard.status('user-1').cached_entries == 0
        assert dashboard.session_count == 0


class TestDeadline:

    @pytest.fixture
    def slow_dashboard(self, test_settings, fake_repository, fake_warehouse) -> DashboardService:
        settings = test_settings.model_copy(update={'request_timeout_seconds': 0.05})

        async def hang(*args, **kwargs):
            await asyncio.sleep(5)

        fake_repository.get_principal.side_effect = hang
        return DashboardService(
            settings, DataAccessService(settings, fake_repository, fake_warehouse)
        )

    @pytest.mark.asyncio
    async def test_view_times_out_on_hung_access_store(self, slow_dashboard, fake_warehouse):
        with pytest.raises(UpstreamTimeout) as exc_info:
            await asyncio.wait_for(slow_dashboard.view('user-1', _request()), timeout=1.0)

        assert exc_info.value.status_code == 504
        fake_warehouse.fetch_metrics.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_switch_times_out_on_hung_access_store(self, slow_dashboard):
        with pytest.raises(UpstreamTimeout):
            await asyncio.wait_for(
                slow_dashboard.switch_organization('user-1', 'org-2'), timeout=1.0
            )
