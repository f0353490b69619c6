"""
ASO Analytics Services Module

Business logic for the ASO analytics backend. Pure computation modules are
stateless; the orchestrator and the dashboard service hold the caches.

Services:
- access: Principal lookup, agency expansion and app scope resolution
- data_access: Request orchestrator (scope, hot cache, warehouse, audit)
- aggregation: Local filtering, daily series and period comparison
- two_path: Search vs browse conversion funnel and derived KPIs
- intelligence: Stability, opportunities, simulation, anomaly attribution
- client_cache: Per-session stale-while-revalidate cache
- dashboard: Per-principal dashboard sessions

All services are consumed by the API layer (aso_analytics/api/).
"""

# =============================================================================
# Access Resolution Exports
# =============================================================================

from aso_analytics.services.access import (
    AccessRepository,
    is_platform_wide,
    expand_agency_access,
    resolve_scope,
)

# =============================================================================
# Orchestrator Exports
# =============================================================================

from aso_analytics.services.data_access import (
    DataAccessService,
    WarehouseResult,
    sources_from_rows,
    NO_APPS_MESSAGE,
    NO_ACCESSIBLE_APPS_MESSAGE,
)

# =============================================================================
# Aggregation Exports
# =============================================================================

from aso_analytics.services.aggregation import (
    aggregate,
    compare_periods,
    guarded_ratio,
    percent_change,
    previous_period,
    summarize,
)

# =============================================================================
# Two-Path Calculator Exports
# =============================================================================

from aso_analytics.services.two_path import (
    build_breakdown,
    classify_traffic_source,
    compute_derived_kpis,
    compute_from_totals,
    compute_two_path,
    group_totals,
    validate_two_path,
    DEFAULT_TRAFFIC_SOURCES,
    SEARCH_SOURCE,
    BROWSE_SOURCE,
)

# =============================================================================
# Intelligence Engine Exports
# =============================================================================

from aso_analytics.services.intelligence import (
    attribute_anomaly,
    build_intelligence_report,
    calculate_metric_changes,
    calculate_opportunity_map,
    calculate_stability_score,
    detect_anomalies,
    simulate_outcomes,
    ATTRIBUTION_RULES,
    OPPORTUNITY_RULES,
)

# =============================================================================
# Session Layer Exports
# =============================================================================

from aso_analytics.services.client_cache import (
    CacheLookup,
    CacheState,
    ClientCacheLayer,
    client_cache_key,
)
from aso_analytics.services.dashboard import DashboardService

__all__ = [
    # ----- Access Resolution -----
    'AccessRepository',
    'is_platform_wide',
    'expand_agency_access',
    'resolve_scope',
    # ----- Orchestrator -----
    'DataAccessService',
    'WarehouseResult',
    'sources_from_rows',
    'NO_APPS_MESSAGE',
    'NO_ACCESSIBLE_APPS_MESSAGE',
    # ----- Aggregation -----
    'aggregate',
    'compare_periods',
    'guarded_ratio',
    'percent_change',
    'previous_period',
    'summarize',
    # ----- Two-Path Calculator -----
    'build_breakdown',
    'classify_traffic_source',
    'compute_derived_kpis',
    'compute_from_totals',
    'compute_two_path',
    'group_totals',
    'validate_two_path',
    'DEFAULT_TRAFFIC_SOURCES',
    'SEARCH_SOURCE',
    'BROWSE_SOURCE',
    # ----- Intelligence Engine -----
    'attribute_anomaly',
    'build_intelligence_report',
    'calculate_metric_changes',
    'calculate_opportunity_map',
    'calculate_stability_score',
    'detect_anomalies',
    'simulate_outcomes',
    'ATTRIBUTION_RULES',
    'OPPORTUNITY_RULES',
    # ----- Session Layer -----
    'CacheLookup',
    'CacheState',
    'ClientCacheLayer',
    'client_cache_key',
    'DashboardService',
]
