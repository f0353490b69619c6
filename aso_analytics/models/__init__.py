"""
Data models for the ASO Analytics backend.

Re-exports the enumerations from enums.py and the Pydantic schemas from
schemas.py so callers can write:

    from aso_analytics.models import MetricRow, DataRequest, TrafficSourceGroup
"""

from aso_analytics.models.enums import (
    AnomalyDirection,
    AttributionCategory,
    ConfidenceTier,
    ImpactLevel,
    IntelligenceStatus,
    OpportunityCategory,
    OpportunityPriority,
    PrincipalRole,
    ScopeSource,
    SimulationLever,
    StabilityInterpretation,
    TrafficSourceGroup,
)
from aso_analytics.models.schemas import (
    UNKNOWN_TRAFFIC_SOURCE,
    AccessScope,
    AggregatedSeries,
    AnomalyAttribution,
    Attribution,
    AttributionContext,
    AuditEvent,
    DashboardMeta,
    DashboardRequest,
    DashboardResponse,
    DataRequest,
    DataResponse,
    DateRange,
    DerivedKpis,
    DetectedAnomaly,
    IntelligenceReport,
    MetricChanges,
    MetricRow,
    MetricStability,
    MetricTotals,
    Opportunity,
    OpportunityMap,
    OrganizationSwitchRequest,
    PeriodComparison,
    PrincipalRecord,
    QueryMeta,
    Scenario,
    ScenarioChange,
    ScenarioImpact,
    ScopeMeta,
    SessionStatus,
    SimulationResult,
    StabilityBreakdown,
    StabilityScore,
    SummaryMetrics,
    TimeSeriesPoint,
    TwoPathBreakdown,
    TwoPathMetrics,
    TwoPathValidation,
)

__all__ = [
    # Enums
    'AnomalyDirection',
    'AttributionCategory',
    'ConfidenceTier',
    'ImpactLevel',
    'IntelligenceStatus',
    'OpportunityCategory',
    'OpportunityPriority',
    'PrincipalRole',
    'ScopeSource',
    'SimulationLever',
    'StabilityInterpretation',
    'TrafficSourceGroup',
    # Warehouse / request / response
    'UNKNOWN_TRAFFIC_SOURCE',
    'MetricRow',
    'DateRange',
    'DataRequest',
    'PrincipalRecord',
    'AccessScope',
    'ScopeMeta',
    'QueryMeta',
    'DataResponse',
    'AuditEvent',
    # Aggregation
    'MetricTotals',
    'SummaryMetrics',
    'TimeSeriesPoint',
    'AggregatedSeries',
    'PeriodComparison',
    # Two-path
    'TwoPathMetrics',
    'DerivedKpis',
    'TwoPathValidation',
    'TwoPathBreakdown',
    # Intelligence
    'MetricStability',
    'StabilityBreakdown',
    'StabilityScore',
    'Opportunity',
    'OpportunityMap',
    'ScenarioChange',
    'ScenarioImpact',
    'Scenario',
    'SimulationResult',
    'DetectedAnomaly',
    'MetricChanges',
    'AttributionContext',
    'Attribution',
    'AnomalyAttribution',
    'IntelligenceReport',
    # Dashboard
    'DashboardRequest',
    'DashboardMeta',
    'DashboardResponse',
    'OrganizationSwitchRequest',
    'SessionStatus',
]
