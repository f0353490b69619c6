"""
Pydantic schemas for the ASO Analytics backend.

This module defines every request/response model and every internal value
object that flows between the orchestrator, the aggregation engine, the
two-path calculator and the intelligence engine.

Conventions:
- All models use Pydantic v2 syntax (model_config = ConfigDict(...)).
- Value objects that are cached or shared across tasks are frozen; a new
  instance replaces an old one, nothing is mutated in place.
- Percentages are expressed on a 0-100 scale.
- Field names are snake_case. Historical camelCase request aliases are
  normalized once by DataRequest.from_payload and never reach the services.

Sections:
- Warehouse rows (MetricRow)
- Request contract (DateRange, DataRequest)
- Access scope and response contract (AccessScope, DataResponse)
- Aggregation (MetricTotals, SummaryMetrics, TimeSeriesPoint, AggregatedSeries)
- Two-path analysis (TwoPathMetrics, DerivedKpis, TwoPathValidation)
- Intelligence (StabilityScore, Opportunity, Scenario, Attribution, ...)
- Dashboard session (DashboardRequest, DashboardResponse)
"""

from datetime import date as DateType
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from aso_analytics.core.errors import InvalidRequest
from aso_analytics.models.enums import (
    AnomalyDirection,
    AttributionCategory,
    ConfidenceTier,
    ImpactLevel,
    IntelligenceStatus,
    OpportunityCategory,
    OpportunityPriority,
    ScopeSource,
    SimulationLever,
    StabilityInterpretation,
    TrafficSourceGroup,
)


UNKNOWN_TRAFFIC_SOURCE = 'Unknown'


# =============================================================================
# Warehouse Rows
# =============================================================================


class MetricRow(BaseModel):
    """
    One warehouse row: daily metrics for an app and traffic source.

    Not guaranteed unique per (date, app_id, traffic_source); aggregation sums
    duplicates. Null numeric cells coerce to 0 and a null traffic source
    becomes "Unknown".
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "date": "2024-11-02",
                "app_id": "1234567890",
                "traffic_source": "App Store Search",
                "impressions": 1200,
                "product_page_views": 400,
                "downloads": 90
            }
        }
    )

    date: DateType
    app_id: str
    traffic_source: str = UNKNOWN_TRAFFIC_SOURCE
    impressions: int = Field(0, ge=0)
    product_page_views: int = Field(0, ge=0)
    downloads: int = Field(0, ge=0)

    @field_validator('traffic_source', mode='before')
    @classmethod
    def _default_source(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return UNKNOWN_TRAFFIC_SOURCE
        return value

    @field_validator('impressions', 'product_page_views', 'downloads', mode='before')
    @classmethod
    def _coerce_count(cls, value: Any) -> Any:
        if value is None:
            return 0
        if isinstance(value, float):
            return int(round(value))
        return value

    @field_validator('app_id', mode='before')
    @classmethod
    def _coerce_app_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value


# =============================================================================
# Request Contract
# =============================================================================


def _parse_date(value: Any, field_name: str) -> DateType:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, DateType):
        return value
    if isinstance(value, str) and value.strip():
        try:
            # Accepts both '2024-11-01' and '2024-11-01T00:00:00Z'
            return DateType.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise InvalidRequest(
        f'Invalid or missing {field_name} date',
        details={'field': field_name},
    )


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


_BOOL_ADAPTER = TypeAdapter(bool)


def _parse_flag(value: Any, field_name: str) -> bool:
    """Lax pydantic bool parsing: 'false', '0', 'off' and 'no' are False."""
    if value is None:
        return False
    try:
        return _BOOL_ADAPTER.validate_python(value)
    except ValidationError:
        raise InvalidRequest(
            f'{field_name} must be a boolean',
            details={'field': field_name},
        ) from None


def _string_list(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise InvalidRequest(f'{field_name} must be a list of strings')
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


class DateRange(BaseModel):
    """Inclusive calendar date range."""
    model_config = ConfigDict(frozen=True)

    start: DateType
    end: DateType

    @model_validator(mode='after')
    def _check_order(self) -> 'DateRange':
        if self.end < self.start:
            raise ValueError('date_range end must not precede start')
        return self

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


class DataRequest(BaseModel):
    """
    Canonical data request.

    Build it with DataRequest.from_payload() when the body comes from a
    client, so every historical alias is folded into these field names.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "organization_id": "org-1",
                "app_ids": ["1234567890"],
                "date_range": {"start": "2024-11-01", "end": "2024-11-30"},
                "traffic_sources": ["App Store Search"]
            }
        }
    )

    organization_id: Optional[str] = None
    app_ids: List[str] = Field(default_factory=list)
    date_range: DateRange
    traffic_sources: List[str] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> 'DataRequest':
        """
        Normalize a raw request body.

        Accepted aliases:
            organization_id | org_id | organizationId
            app_ids | selectedApps | appIds
            date_range | dateRange, with start | from and end | to
            traffic_sources | trafficSources

        Raises:
            InvalidRequest: If the body is not an object, or the date range
                or either bound is missing or malformed.
        """
        if not isinstance(payload, Mapping):
            raise InvalidRequest('Request body must be a JSON object')

        raw_range = _first_present(payload, 'date_range', 'dateRange')
        if not isinstance(raw_range, Mapping):
            raise InvalidRequest(
                'date_range with start and end is required',
                details={'field': 'date_range'},
            )

        start = _parse_date(_first_present(raw_range, 'start', 'from'), 'start')
        end = _parse_date(_first_present(raw_range, 'end', 'to'), 'end')
        if end < start:
            raise InvalidRequest(
                'date_range end must not precede start',
                details={'start': start.isoformat(), 'end': end.isoformat()},
            )

        org = _first_present(payload, 'organization_id', 'org_id', 'organizationId')
        org = str(org).strip() if org is not None and str(org).strip() else None

        return cls(
            organization_id=org,
            app_ids=_string_list(
                _first_present(payload, 'app_ids', 'selectedApps', 'appIds'), 'app_ids'
            ),
            date_range=DateRange(start=start, end=end),
            traffic_sources=_string_list(
                _first_present(payload, 'traffic_sources', 'trafficSources'),
                'traffic_sources',
            ),
        )


# =============================================================================
# Access Scope & Response Contract
# =============================================================================


class PrincipalRecord(BaseModel):
    """Role row returned by the access-control store for one principal."""
    model_config = ConfigDict(frozen=True)

    principal_id: str
    role: str
    organization_id: Optional[str] = None


class AccessScope(BaseModel):
    """
    Effective access scope for one request. Built once, read-only.

    accessible_app_ids holds every app attached to a queryable org;
    allowed_app_ids is that set intersected with the requested subset.
    """
    model_config = ConfigDict(frozen=True)

    principal_id: str
    resolved_org_id: str
    queryable_org_ids: FrozenSet[str]
    accessible_app_ids: FrozenSet[str] = frozenset()
    allowed_app_ids: FrozenSet[str] = frozenset()
    scope_source: ScopeSource


class ScopeMeta(BaseModel):
    organization_id: str
    app_ids: List[str]
    date_range: DateRange
    scope_source: ScopeSource
    queryable_org_ids: List[str]


class QueryMeta(BaseModel):
    row_count: int
    query_duration_ms: int
    available_traffic_sources: List[str]
    accessible_app_ids: List[str]
    cache_hit: bool = False
    timestamp: datetime


class DataResponse(BaseModel):
    """
    Response of the data endpoint.

    Zero rows is a valid success; message explains an empty scope.
    """
    data: List[MetricRow]
    scope: ScopeMeta
    meta: QueryMeta
    message: Optional[str] = None


class AuditEvent(BaseModel):
    """Best-effort audit record written after every successful fetch."""
    model_config = ConfigDict(frozen=True)

    principal_id: str
    organization_id: str
    app_count: int
    date_range: DateRange
    row_count: int
    duration_ms: int


# =============================================================================
# Aggregation
# =============================================================================


class MetricTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    impressions: int = 0
    product_page_views: int = 0
    downloads: int = 0


class SummaryMetrics(MetricTotals):
    """Totals plus the two headline conversion rates."""
    # downloads / product_page_views * 100
    product_page_cvr: float = 0.0
    # downloads / impressions * 100
    impressions_cvr: float = 0.0


class TimeSeriesPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: DateType
    impressions: int = 0
    product_page_views: int = 0
    downloads: int = 0
    # downloads / impressions * 100
    cvr: float = 0.0
    # Direct installs as a share of downloads (0-100)
    direct_share: float = 0.0


class AggregatedSeries(BaseModel):
    """
    Filtered re-aggregation of cached rows.

    timeseries has exactly one point per calendar day of the range.
    """
    model_config = ConfigDict(frozen=True)

    date_range: DateRange
    summary: SummaryMetrics
    timeseries: List[TimeSeriesPoint]
    by_source: Dict[str, MetricTotals]


class PeriodComparison(BaseModel):
    """Percentage deltas of the current period against the previous one."""
    model_config = ConfigDict(frozen=True)

    current: SummaryMetrics
    previous: SummaryMetrics
    previous_range: DateRange
    delta_pct: Dict[str, float]


# =============================================================================
# Two-Path Analysis
# =============================================================================


class TwoPathMetrics(BaseModel):
    """
    Install decomposition into page-driven and direct installs.

    Downloads above product page views (branded search) are expected;
    the excess is reported as direct installs.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "impressions": 50000,
                "product_page_views": 10000,
                "downloads": 12000,
                "pdp_driven_installs": 10000,
                "direct_installs": 2000,
                "total_cvr": 24.0,
                "pdp_cvr": 100.0,
                "direct_cvr": 5.0,
                "tap_through_rate": 20.0,
                "funnel_leak_rate": 0.0,
                "direct_install_share": 16.67,
                "pdp_install_share": 83.33
            }
        }
    )

    impressions: int = 0
    product_page_views: int = 0
    downloads: int = 0
    pdp_driven_installs: int = 0
    direct_installs: int = 0
    total_cvr: float = 0.0
    pdp_cvr: float = 0.0
    direct_cvr: float = 0.0
    tap_through_rate: float = 0.0
    funnel_leak_rate: float = 0.0
    direct_install_share: float = 0.0
    pdp_install_share: float = 0.0


class DerivedKpis(BaseModel):
    """Cross-channel KPIs computed from search and browse two-path metrics."""
    model_config = ConfigDict(frozen=True)

    # search / browse impressions; 999 when browse has none but search does
    search_browse_ratio: float = 0.0
    # Combined tap-through across search and browse
    first_impression_effectiveness: float = 0.0
    # Search conversion weighted by its share of installs
    metadata_strength: float = 0.0
    # Browse conversion weighted by its share of installs
    creative_strength: float = 0.0
    combined_funnel_leak: float = 0.0
    # Search direct installs as a share of search downloads
    direct_install_propensity: float = 0.0


class TwoPathValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    warnings: List[str] = Field(default_factory=list)


class TwoPathBreakdown(BaseModel):
    """Two-path metrics for the whole selection and per traffic-source group."""
    model_config = ConfigDict(frozen=True)

    total: TwoPathMetrics
    groups: Dict[TrafficSourceGroup, TwoPathMetrics]
    derived: DerivedKpis
    warnings: Dict[TrafficSourceGroup, List[str]] = Field(default_factory=dict)


# =============================================================================
# Intelligence: Stability Score
# =============================================================================


class MetricStability(BaseModel):
    model_config = ConfigDict(frozen=True)

    cv: float
    score: float
    mean: float
    std: float


class StabilityBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    impressions: MetricStability
    downloads: MetricStability
    cvr: MetricStability
    direct_share: MetricStability


class StabilityScore(BaseModel):
    """Weighted volatility score. score is None below the minimum history."""
    model_config = ConfigDict(frozen=True)

    status: IntelligenceStatus
    score: Optional[float] = None
    interpretation: Optional[StabilityInterpretation] = None
    color: Optional[str] = None
    breakdown: Optional[StabilityBreakdown] = None
    data_points: int = 0
    period: Optional[DateRange] = None
    message: Optional[str] = None


# =============================================================================
# Intelligence: Opportunity Map
# =============================================================================


class Opportunity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: OpportunityCategory
    category: str
    priority: OpportunityPriority
    score: float = Field(..., ge=0.0, le=100.0)
    current_value: float
    benchmark: float
    gap: float
    message: str
    actionable_insight: str
    potential_impact: ImpactLevel


class OpportunityMap(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: IntelligenceStatus
    opportunities: List[Opportunity] = Field(default_factory=list)
    message: Optional[str] = None


# =============================================================================
# Intelligence: Outcome Simulation
# =============================================================================


class ScenarioChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str
    current_value: float
    improved_value: float
    change: float


class ScenarioImpact(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str = 'installs'
    current_value: float
    projected_value: float
    delta: float


class Scenario(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: SimulationLever
    name: str
    description: str
    lever: ScenarioChange
    impact: ScenarioImpact
    calculation: str
    confidence: ConfidenceTier


class SimulationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: IntelligenceStatus
    scenarios: List[Scenario] = Field(default_factory=list)
    disclaimer: str = ''
    message: Optional[str] = None


# =============================================================================
# Intelligence: Anomaly Attribution
# =============================================================================


class DetectedAnomaly(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: DateType
    metric: str
    direction: AnomalyDirection
    value: float
    baseline_mean: float
    z_score: float
    magnitude_pct: float
    severity: ImpactLevel


class MetricChanges(BaseModel):
    """Period-over-period percentage changes evaluated by attribution rules."""
    model_config = ConfigDict(frozen=True)

    search_impressions: float = 0.0
    search_cvr: float = 0.0
    search_pdp_cvr: float = 0.0
    browse_impressions: float = 0.0
    browse_cvr: float = 0.0
    browse_pdp_cvr: float = 0.0
    total_impressions: float = 0.0
    total_downloads: float = 0.0
    total_cvr: float = 0.0
    direct_share: float = 0.0
    search_browse_ratio: float = 0.0


class AttributionContext(BaseModel):
    """Two-path metrics of the anomaly period and the period before it."""
    model_config = ConfigDict(frozen=True)

    current_search: TwoPathMetrics
    current_browse: TwoPathMetrics
    previous_search: TwoPathMetrics
    previous_browse: TwoPathMetrics


class Attribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern_id: str
    category: AttributionCategory
    confidence: ConfidenceTier
    message: str
    actionable_insight: str
    related_metrics: List[str] = Field(default_factory=list)


class AnomalyAttribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: IntelligenceStatus
    anomaly: Optional[DetectedAnomaly] = None
    changes: Optional[MetricChanges] = None
    attributions: List[Attribution] = Field(default_factory=list)
    message: Optional[str] = None


class IntelligenceReport(BaseModel):
    """All four analyses for one dashboard selection."""
    model_config = ConfigDict(frozen=True)

    stability: StabilityScore
    opportunities: OpportunityMap
    simulation: SimulationResult
    anomalies: List[AnomalyAttribution] = Field(default_factory=list)


# =============================================================================
# Dashboard Session
# =============================================================================


class DashboardRequest(BaseModel):
    """
    Dashboard view request. app_ids and traffic_sources are applied locally
    over the client cache entry for (organization, date range).
    """
    organization_id: Optional[str] = None
    date_range: DateRange
    app_ids: List[str] = Field(default_factory=list)
    traffic_sources: List[str] = Field(default_factory=list)
    force_refresh: bool = False

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> 'DashboardRequest':
        """Normalize with the same aliases as DataRequest.from_payload."""
        base = DataRequest.from_payload(payload)
        force = _first_present(payload, 'force_refresh', 'forceRefresh')
        return cls(
            organization_id=base.organization_id,
            date_range=base.date_range,
            app_ids=base.app_ids,
            traffic_sources=base.traffic_sources,
            force_refresh=_parse_flag(force, 'force_refresh'),
        )


class DashboardMeta(BaseModel):
    cache_state: str
    organization_id: str
    row_count: int
    available_traffic_sources: List[str]
    accessible_app_ids: List[str]
    generated_at: datetime


class DashboardResponse(BaseModel):
    series: AggregatedSeries
    comparison: Optional[PeriodComparison] = None
    two_path: TwoPathBreakdown
    intelligence: IntelligenceReport
    meta: DashboardMeta
    message: Optional[str] = None


class OrganizationSwitchRequest(BaseModel):
    organization_id: str


class SessionStatus(BaseModel):
    principal_id: str
    organization_id: Optional[str] = None
    cached_entries: int
