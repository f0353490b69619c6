"""
Tests for the BigQuery warehouse client.

The google-cloud-bigquery client is replaced with a MagicMock; job.result()
yields plain dicts, which expose the same items() as BigQuery Row objects.
"""

import threading
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from google.cloud import bigquery

from aso_analytics.core.errors import UpstreamQueryFailed, UpstreamTimeout
from aso_analytics.core.warehouse import WarehouseClient
from aso_analytics.models import DateRange, MetricRow
from aso_analytics.sql.warehouse_queries import get_metrics_query, qualified_table


NOVEMBER = DateRange(start=date(2024, 11, 1), end=date(2024, 11, 3))


@pytest.fixture
def bq_client():
    client = MagicMock(spec=bigquery.Client)
    client.query.return_value.result.return_value = []
    return client


@pytest.fixture
def warehouse(test_settings, bq_client) -> WarehouseClient:
    return WarehouseClient(test_settings, client=bq_client)


def _parameters(bq_client) -> dict:
    job_config = bq_client.query.call_args.kwargs['job_config']
    return {p.name: p for p in job_config.query_parameters}


class TestFetchMetrics:

    @pytest.mark.asyncio
    async def test_rows_are_mapped(self, warehouse, bq_client):
        bq_client.query.return_value.result.return_value = [
            {'date': date(2024, 11, 1), 'app_id': 'app-1', 'traffic_source': 'App Store Search',
             'impressions': 1000, 'product_page_views': 300, 'downloads': 60},
            {'date': date(2024, 11, 2), 'app_id': 'app-1', 'traffic_source': None,
             'impressions': None, 'product_page_views': 5, 'downloads': 1},
        ]

        rows = await warehouse.fetch_metrics(['app-1'], NOVEMBER)

        assert rows[0] == MetricRow(
            date=date(2024, 11, 1), app_id='app-1', traffic_source='App Store Search',
            impressions=1000, product_page_views=300, downloads=60,
        )
        assert rows[1].traffic_source == 'Unknown'
        assert rows[1].impressions == 0

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, warehouse, bq_client):
        bq_client.query.return_value.result.return_value = [
            {'date': 'not-a-date', 'app_id': 'app-1'},
            {'date': date(2024, 11, 1), 'app_id': 'app-1', 'impressions': 10},
        ]

        rows = await warehouse.fetch_metrics(['app-1'], NOVEMBER)

        assert len(rows) == 1
        assert rows[0].impressions == 10

    @pytest.mark.asyncio
    async def test_query_is_parameterized(self, warehouse, bq_client):
        await warehouse.fetch_metrics(['app-1', 'app-2'], NOVEMBER)

        sql = bq_client.query.call_args.args[0]
        assert '`test-project.client_reports.aso_all_apple`' in sql
        assert 'app-1' not in sql
        assert '@traffic_sources' not in sql
        params = _parameters(bq_client)
        assert set(params) == {'app_ids', 'start_date', 'end_date'}
        assert params['app_ids'].values == ['app-1', 'app-2']
        assert params['start_date'].value == date(2024, 11, 1)

    @pytest.mark.asyncio
    async def test_traffic_source_filter(self, warehouse, bq_client):
        await warehouse.fetch_metrics(['app-1'], NOVEMBER, ['App Store Browse'])

        assert '@traffic_sources' in bq_client.query.call_args.args[0]
        assert _parameters(bq_client)['traffic_sources'].values == ['App Store Browse']

    @pytest.mark.asyncio
    async def test_timeouts_are_passed_to_the_job(self, warehouse, bq_client, test_settings):
        await warehouse.fetch_metrics(['app-1'], NOVEMBER)

        timeout = test_settings.bigquery_query_timeout_seconds
        assert bq_client.query.call_args.kwargs['timeout'] == timeout
        bq_client.query.return_value.result.assert_called_once_with(timeout=timeout)


class TestErrorMapping:

    @pytest.mark.asyncio
    async def test_job_timeout(self, warehouse, bq_client):
        bq_client.query.return_value.result.side_effect = FuturesTimeoutError()

        with pytest.raises(UpstreamTimeout) as exc_info:
            await warehouse.fetch_metrics(['app-1'], NOVEMBER)
        assert exc_info.value.details['query'] == 'metrics'

    @pytest.mark.asyncio
    async def test_other_failures_hide_the_sql(self, warehouse, bq_client):
        bq_client.query.side_effect = ValueError('SELECT secret FROM ...')

        with pytest.raises(UpstreamQueryFailed) as exc_info:
            await warehouse.fetch_metrics(['app-1'], NOVEMBER)
        assert exc_info.value.details == {'query': 'metrics', 'reason': 'ValueError'}
        assert 'SELECT' not in exc_info.value.message


class TestTrafficSources:

    @pytest.mark.asyncio
    async def test_sorted_and_non_empty(self, warehouse, bq_client):
        bq_client.query.return_value.result.return_value = [
            {'traffic_source': 'App Store Search'},
            {'traffic_source': ''},
            {'traffic_source': 'App Store Browse'},
        ]

        assert await warehouse.fetch_traffic_sources(['app-1'], NOVEMBER) == [
            'App Store Browse', 'App Store Search',
        ]


def test_sql_helpers():
    table = qualified_table('p', 'd', 't')

    assert table == '`p.d.t`'
    assert 'IN UNNEST(@traffic_sources)' in get_metrics_query(table, with_traffic_sources=True)


class TestLazyClient:

    @pytest.mark.asyncio
    async def test_client_is_built_in_a_worker_thread(self, test_settings, bq_client):
        settings = test_settings.model_copy(update={'bigquery_project': None})
        bq_client.project = 'discovered-project'
        built_on = []

        def build_client(**kwargs):
            built_on.append(threading.current_thread())
            return bq_client

        with patch('aso_analytics.core.warehouse.bigquery.Client', side_effect=build_client):
            await WarehouseClient(settings).fetch_metrics(['app-1'], NOVEMBER)

        assert len(built_on) == 1
        assert built_on[0] is not threading.current_thread()
        assert '`discovered-project.client_reports.aso_all_apple`' in bq_client.query.call_args.args[0]

    @pytest.mark.asyncio
    async def test_client_construction_failure_is_upstream_failure(self, test_settings):
        with patch(
            'aso_analytics.core.warehouse.bigquery.Client',
            side_effect=RuntimeError('no default credentials'),
        ):
            with pytest.raises(UpstreamQueryFailed) as exc_info:
                await WarehouseClient(test_settings).fetch_metrics(['app-1'], NOVEMBER)
        assert exc_info.value.details['reason'] == 'RuntimeError'
