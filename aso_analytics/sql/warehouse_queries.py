"""
Warehouse (BigQuery) queries for ASO conversion metrics.

Every query here is parameterized with BigQuery named parameters; values are
never interpolated into the SQL text. Only the table location, which comes
from Settings, is formatted in.

Named parameters:
    @app_ids          ARRAY<STRING>  resolved app ids
    @start_date       DATE           inclusive lower bound
    @end_date         DATE           inclusive upper bound
    @traffic_sources  ARRAY<STRING>  optional source filter
"""


def qualified_table(project: str, dataset: str, table: str) -> str:
    """Return a backtick-quoted `project.dataset.table` reference."""
    return f"`{project}.{dataset}.{table}`"


def _source_filter(with_traffic_sources: bool) -> str:
    if not with_traffic_sources:
        return ""
    return "\n      AND traffic_source IN UNNEST(@traffic_sources)"


# =============================================================================
# METRICS QUERY
# =============================================================================

def get_metrics_query(table: str, with_traffic_sources: bool = False) -> str:
    """
    Daily metrics per app and traffic source over an inclusive date range.

    Rows are not aggregated; duplicates per (date, app_id, traffic_source)
    are summed downstream by the aggregation engine.

    Args:
        table: Qualified table reference from qualified_table().
        with_traffic_sources: Add the @traffic_sources filter.

    Returns:
        BigQuery Standard SQL string.
    """
    return f"""
    SELECT
      date,
      COALESCE(app_id, client) AS app_id,
      traffic_source,
      impressions,
      product_page_views,
      downloads
    FROM {table}
    WHERE COALESCE(app_id, client) IN UNNEST(@app_ids)
      AND date BETWEEN @start_date AND @end_date{_source_filter(with_traffic_sources)}
    ORDER BY date DESC
    """


# =============================================================================
# DIMENSION DISCOVERY QUERY
# =============================================================================

def get_traffic_sources_query(table: str) -> str:
    """
    Distinct traffic sources present for the same app and date scope.

    Never filtered by @traffic_sources so the dashboard can offer every
    source the scope has, not just the selected ones.
    """
    return f"""
    SELECT DISTINCT traffic_source
    FROM {table}
    WHERE COALESCE(app_id, client) IN UNNEST(@app_ids)
      AND date BETWEEN @start_date AND @end_date
      AND traffic_source IS NOT NULL
    ORDER BY traffic_source
    """
