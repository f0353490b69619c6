"""
SQL query module for the ASO Analytics backend.

Provides parameterized queries for:
- The analytics warehouse (warehouse_queries, BigQuery Standard SQL)
- The access-control store (access_queries, PostgreSQL)

Example usage:
    from aso_analytics.sql import get_metrics_query, qualified_table

    table = qualified_table('my-project', 'client_reports', 'aso_all_apple')
    sql = get_metrics_query(table, with_traffic_sources=True)
"""

from aso_analytics.sql.access_queries import (
    get_agency_clients_query,
    get_attached_apps_query,
    get_insert_audit_query,
    get_principal_role_query,
)
from aso_analytics.sql.warehouse_queries import (
    get_metrics_query,
    get_traffic_sources_query,
    qualified_table,
)

__all__ = [
    # Warehouse
    'qualified_table',
    'get_metrics_query',
    'get_traffic_sources_query',
    # Access-control store
    'get_principal_role_query',
    'get_agency_clients_query',
    'get_attached_apps_query',
    'get_insert_audit_query',
]
