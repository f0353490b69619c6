"""
Settings and environment management module for the ASO Analytics backend.

This module provides centralized configuration management using pydantic-settings,
which automatically loads settings from environment variables and .env files.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults for development
- Singleton pattern via @lru_cache for efficient access
- Warehouse (BigQuery) location and credentials
- Cache lifetimes for the hot response cache and the client cache layer

Environment Variables:
- DATABASE_URL: PostgreSQL connection string for the access-control store (Required)
- BIGQUERY_PROJECT: BigQuery project ID hosting the conversion metrics
- BIGQUERY_DATASET / BIGQUERY_TABLE: Fully qualified metrics table location
- GOOGLE_APPLICATION_CREDENTIALS: Path to GCP service account JSON
- REQUEST_TIMEOUT_SECONDS: Overall deadline for a data request

Usage:
    from aso_analytics.core.config import get_settings

    settings = get_settings()
    ttl = settings.hot_cache_ttl_seconds
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        database_url: PostgreSQL connection string for roles, app access,
            agency relationships and the audit table. Required.
        bigquery_project: BigQuery project ID. When unset the client falls
            back to the project of the active credentials.
        bigquery_dataset: Dataset holding the ASO metrics table.
        bigquery_table: Table with one row per date/app/traffic source.
        google_application_credentials: Path to a service account JSON file.
        bigquery_query_timeout_seconds: Per-job timeout handed to BigQuery.
        request_timeout_seconds: Overall deadline across scope resolution,
            cache lookup and warehouse query.
        hot_cache_ttl_seconds: Lifetime of a hot response cache entry.
        hot_cache_max_entries: Capacity of the hot response cache.
        client_cache_stale_seconds: Age after which a client cache entry is
            served stale and revalidated in the background.
        client_cache_ttl_seconds: Age after which a client cache entry is dropped.
        client_cache_max_entries: Capacity of each client cache.
        dashboard_session_ttl_seconds: Idle time after which a dashboard
            session and its client cache are dropped.
        dashboard_max_sessions: Number of concurrent dashboard sessions kept;
            the least recently used one is dropped on overflow.
        cors_origins: Allowed dashboard origins.
        log_level: Root log level.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Access-control store
    # =========================================================================

    database_url: str

    # =========================================================================
    # Warehouse (BigQuery)
    # =========================================================================

    bigquery_project: Optional[str] = None
    bigquery_dataset: str = 'client_reports'
    bigquery_table: str = 'aso_all_apple'
    google_application_credentials: Optional[str] = None
    bigquery_query_timeout_seconds: float = 20.0

    # =========================================================================
    # Request handling
    # =========================================================================

    # One deadline for authorize + scope + cache + query. Exceeding it
    # surfaces UpstreamTimeout rather than UpstreamQueryFailed.
    request_timeout_seconds: float = 25.0

    # =========================================================================
    # Caching
    # =========================================================================

    # Hot response cache: short-lived, fingerprint keyed, one per process
    hot_cache_ttl_seconds: float = 30.0
    hot_cache_max_entries: int = 200

    # Client cache layer: keyed by (org, date range) only
    client_cache_stale_seconds: float = 1800.0
    client_cache_ttl_seconds: float = 3600.0
    client_cache_max_entries: int = 50

    # Dashboard sessions: one client cache per principal, idle sessions expire
    dashboard_session_ttl_seconds: float = 28800.0
    dashboard_max_sessions: int = 1000

    # =========================================================================
    # HTTP / logging
    # =========================================================================

    cors_origins: List[str] = [
        'http://localhost:3000',
        'http://127.0.0.1:3000',
    ]
    log_level: str = 'INFO'


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The application settings instance with all configuration values.

    Raises:
        pydantic.ValidationError: If required environment variables are missing
            or have invalid values (e.g., DATABASE_URL not set).

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
