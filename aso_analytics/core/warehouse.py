"""
Warehouse query client for ASO conversion metrics (BigQuery).

WarehouseClient issues the parameterized queries from
aso_analytics.sql.warehouse_queries and maps result rows to MetricRow.
The google-cloud-bigquery client is blocking, so every call runs in a worker
thread via asyncio.to_thread; the event loop is never blocked.

Error mapping:
    job timeout       -> UpstreamTimeout
    any other failure -> UpstreamQueryFailed (exception type only, never SQL)

No retries happen here; a whole-request retry is the caller's decision.

Usage:
    client = WarehouseClient(get_settings())
    rows = await client.fetch_metrics(['123'], DateRange(start=..., end=...))
    sources = await client.fetch_traffic_sources(['123'], date_range)
"""

import asyncio
import logging
import threading
from concurrent.futures import TimeoutError as FuturesTimeoutError
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from google.cloud import bigquery
from pydantic import ValidationError

from aso_analytics.core.config import Settings
from aso_analytics.core.errors import UpstreamQueryFailed, UpstreamTimeout
from aso_analytics.models.schemas import DateRange, MetricRow
from aso_analytics.sql.warehouse_queries import (
    get_metrics_query,
    get_traffic_sources_query,
    qualified_table,
)


logger = logging.getLogger(__name__)


class WarehouseClient:
    """
    Thin async facade over google.cloud.bigquery.Client.

    Args:
        settings: Application settings (project, dataset, table, timeouts).
        client: Optional pre-built bigquery.Client; otherwise created lazily on
            the first query, inside the worker thread.
    """

    def __init__(self, settings: Settings, client: Optional[bigquery.Client] = None) -> None:
        self._settings = settings
        self._client = client
        # Metrics and discovery queries may both build the client concurrently
        self._client_lock = threading.Lock()

    @property
    def client(self) -> bigquery.Client:
        with self._client_lock:
            if self._client is None:
                if self._settings.google_application_credentials:
                    self._client = bigquery.Client.from_service_account_json(
                        self._settings.google_application_credentials,
                        project=self._settings.bigquery_project,
                    )
                else:
                    self._client = bigquery.Client(project=self._settings.bigquery_project)
            return self._client

    @property
    def table(self) -> str:
        project = self._settings.bigquery_project or self.client.project
        return qualified_table(
            project, self._settings.bigquery_dataset, self._settings.bigquery_table
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def fetch_metrics(
        self,
        app_ids: Sequence[str],
        date_range: DateRange,
        traffic_sources: Optional[Sequence[str]] = None,
    ) -> List[MetricRow]:
        """
        Fetch daily metric rows for the given apps and inclusive date range.

        Raises:
            UpstreamTimeout: The BigQuery job exceeded its timeout.
            UpstreamQueryFailed: Any other warehouse failure.
        """
        with_sources = bool(traffic_sources)
        params = self._scope_parameters(app_ids, date_range)
        if with_sources:
            params.append(
                bigquery.ArrayQueryParameter('traffic_sources', 'STRING', list(traffic_sources))
            )

        records = await asyncio.to_thread(
            self._run,
            partial(get_metrics_query, with_traffic_sources=with_sources),
            params,
            'metrics',
        )
        return list(self._to_rows(records))

    async def fetch_traffic_sources(
        self,
        app_ids: Sequence[str],
        date_range: DateRange,
    ) -> List[str]:
        """Distinct traffic sources present in the app/date scope, sorted."""
        records = await asyncio.to_thread(
            self._run,
            get_traffic_sources_query,
            self._scope_parameters(app_ids, date_range),
            'traffic_sources',
        )
        return sorted({r['traffic_source'] for r in records if r.get('traffic_source')})

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _scope_parameters(app_ids: Sequence[str], date_range: DateRange) -> List[Any]:
        return [
            bigquery.ArrayQueryParameter('app_ids', 'STRING', list(app_ids)),
            bigquery.ScalarQueryParameter('start_date', 'DATE', date_range.start),
            bigquery.ScalarQueryParameter('end_date', 'DATE', date_range.end),
        ]

    def _run(
        self, build_sql: Callable[[str], str], params: List[Any], label: str
    ) -> List[Dict[str, Any]]:
        # Runs in a worker thread; building the client and resolving the
        # project may block on credential discovery
        timeout = self._settings.bigquery_query_timeout_seconds
        job_config = bigquery.QueryJobConfig(query_parameters=params)

        logger.debug(f"Executing BigQuery {label} query")
        try:
            job = self.client.query(build_sql(self.table), job_config=job_config, timeout=timeout)
            result = job.result(timeout=timeout)
            return [dict(row.items()) for row in result]
        except (TimeoutError, FuturesTimeoutError) as exc:
            logger.error(f"BigQuery {label} query timed out after {timeout}s")
            raise UpstreamTimeout(
                'Warehouse query timed out',
                details={'query': label, 'timeout_seconds': timeout},
            ) from exc
        except Exception as exc:
            logger.error(f"BigQuery {label} query failed: {type(exc).__name__}")
            raise UpstreamQueryFailed(
                'Warehouse query failed',
                details={'query': label, 'reason': type(exc).__name__},
            ) from exc

    @staticmethod
    def _to_rows(records: Iterable[Dict[str, Any]]) -> Iterable[MetricRow]:
        skipped = 0
        for record in records:
            try:
                yield MetricRow.model_validate(record)
            except ValidationError:
                skipped += 1
        if skipped:
            logger.warning(f"Skipped {skipped} malformed warehouse rows")
