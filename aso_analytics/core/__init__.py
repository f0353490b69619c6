"""
Core infrastructure package for the ASO Analytics backend.

Provides:
- Configuration management via pydantic-settings (config)
- Async PostgreSQL connectivity via asyncpg (database)
- The authenticated principal dependency (dependencies)
- The error taxonomy rendered to API callers (errors)

Also in this package, imported from their modules directly:
- cache: TTLCache and build_fingerprint
- formulas: scoring constants for the intelligence engine
- warehouse: the BigQuery query client

Usage:
    from aso_analytics.core import get_settings, init_db, close_db, PrincipalDep
"""

from aso_analytics.core.config import Settings, get_settings
from aso_analytics.core.database import close_db, get_db_pool, init_db
from aso_analytics.core.dependencies import PRINCIPAL_HEADER, PrincipalDep, get_principal_id
from aso_analytics.core.errors import (
    AccessLookupFailed,
    AsoAnalyticsError,
    AuthenticationRequired,
    InvalidRequest,
    NoOrganization,
    ScopeRequired,
    UpstreamQueryFailed,
    UpstreamTimeout,
)

__all__ = [
    # Configuration
    'Settings',
    'get_settings',
    # Database pool lifecycle
    'init_db',
    'close_db',
    'get_db_pool',
    # FastAPI dependency injection
    'PRINCIPAL_HEADER',
    'get_principal_id',
    'PrincipalDep',
    # Errors
    'AsoAnalyticsError',
    'AuthenticationRequired',
    'ScopeRequired',
    'NoOrganization',
    'InvalidRequest',
    'AccessLookupFailed',
    'UpstreamQueryFailed',
    'UpstreamTimeout',
]
