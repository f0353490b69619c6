"""
ASO Intelligence Engine.

Four independent, pure analyses over already-computed aggregates:

1. Stability Score      - weighted coefficient-of-variation volatility score
2. Opportunity Map      - benchmark gaps ranked into prioritized opportunities
3. Outcome Simulation   - closed-form install projections for fixed levers
4. Anomaly Attribution  - likely causes for a detected anomaly, from
                          period-over-period changes

plus detect_anomalies(), a rolling z-score detector that feeds attribution.

Every weight, threshold and multiplier comes from aso_analytics.core.formulas;
pass a modified config to override one. Opportunities and attributions are
declarative rule records evaluated in declaration order.

Insufficient data is reported through IntelligenceStatus.INSUFFICIENT_DATA on
the result, never raised.

Algorithm Notes:
- CV = population std / mean; a zero mean gives CV 0.
- Sub-score = clamp(0, 100, (1 - CV) * 100), rounded.
- Opportunity score = min(max_score, |gap| * multiplier).
- Percentage change from 0 is 100 when the value grew, 0 otherwise.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from aso_analytics.core.formulas import (
    DEFAULT_FORMULAS,
    AttributionConfig,
    AttributionThresholds,
    FormulaRegistry,
    OpportunityConfig,
    SimulationConfig,
    StabilityConfig,
)
from aso_analytics.models.enums import (
    AnomalyDirection,
    AttributionCategory,
    ConfidenceTier,
    ImpactLevel,
    IntelligenceStatus,
    OpportunityCategory,
    OpportunityPriority,
    SimulationLever,
    TrafficSourceGroup,
)
from aso_analytics.models.schemas import (
    AnomalyAttribution,
    Attribution,
    AttributionContext,
    DateRange,
    DerivedKpis,
    DetectedAnomaly,
    IntelligenceReport,
    MetricChanges,
    MetricStability,
    Opportunity,
    OpportunityMap,
    Scenario,
    ScenarioChange,
    ScenarioImpact,
    SimulationResult,
    StabilityBreakdown,
    StabilityScore,
    TimeSeriesPoint,
    TwoPathBreakdown,
    TwoPathMetrics,
)
from aso_analytics.services.aggregation import guarded_ratio, percent_change
from aso_analytics.services.two_path import compute_derived_kpis


logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def format_number(value: float) -> str:
    """Compact K/M formatting used in scenario calculations."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{round(value):,}"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# =============================================================================
# 1. Stability Score
# =============================================================================

def _metric_stability(values: Sequence[float]) -> MetricStability:
    array = np.asarray(values, dtype=float)
    mean = float(array.mean()) if array.size else 0.0
    # Population standard deviation (ddof=0)
    std = float(array.std()) if array.size else 0.0
    cv = std / mean if mean > 0 else 0.0
    score = round(_clamp((1 - cv) * 100, 0.0, 100.0))
    return MetricStability(cv=cv, score=score, mean=mean, std=std)


def calculate_stability_score(
    timeseries: Sequence[TimeSeriesPoint],
    config: StabilityConfig = DEFAULT_FORMULAS.stability,
) -> StabilityScore:
    """
    Weighted volatility score over the trailing window of the series.

    Args:
        timeseries: Daily points, oldest first (AggregatedSeries.timeseries).
        config: Weights, window limits and interpretation bands.

    Returns:
        StabilityScore with score in [0, 100], or score None and status
        insufficient_data when fewer than min_data_points are available.
    """
    window = list(timeseries)[-config.max_data_points:]
    period = DateRange(start=window[0].date, end=window[-1].date) if window else None

    if len(window) < config.min_data_points:
        return StabilityScore(
            status=IntelligenceStatus.INSUFFICIENT_DATA,
            color='gray',
            data_points=len(window),
            period=period,
            message=(
                f"Need at least {config.min_data_points} days of data "
                f"for stability analysis"
            ),
        )

    breakdown = StabilityBreakdown(
        impressions=_metric_stability([p.impressions for p in window]),
        downloads=_metric_stability([p.downloads for p in window]),
        cvr=_metric_stability([p.cvr for p in window]),
        direct_share=_metric_stability([p.direct_share for p in window]),
    )
    weights = config.weights
    final = (
        breakdown.impressions.score * weights.impressions
        + breakdown.downloads.score * weights.downloads
        + breakdown.cvr.score * weights.cvr
        + breakdown.direct_share.score * weights.direct_share
    )
    final = round(_clamp(final, 0.0, 100.0))

    band = next((b for b in config.bands if final >= b.min_score), config.bands[-1])

    return StabilityScore(
        status=IntelligenceStatus.OK,
        score=final,
        interpretation=band.interpretation,
        color=band.color,
        breakdown=breakdown,
        data_points=len(window),
        period=period,
    )


# =============================================================================
# 2. Opportunity Map
# =============================================================================

@dataclass(frozen=True)
class OpportunityInputs:
    derived: DerivedKpis
    search: TwoPathMetrics
    browse: TwoPathMetrics


@dataclass(frozen=True)
class OpportunityFinding:
    current_value: float
    benchmark: float
    gap: float
    multiplier: float
    message: str
    actionable_insight: str


@dataclass(frozen=True)
class OpportunityRule:
    """One benchmark check. evaluate returns None when the rule does not fire."""
    id: OpportunityCategory
    label: str
    potential_impact: ImpactLevel
    evaluate: Callable[[OpportunityInputs, OpportunityConfig], Optional[OpportunityFinding]]


def _icon_title(inputs: OpportunityInputs, config: OpportunityConfig) -> Optional[OpportunityFinding]:
    benchmark = config.thresholds.tap_through_rate
    current = inputs.derived.first_impression_effectiveness
    if current >= benchmark:
        return None
    return OpportunityFinding(
        current, benchmark, benchmark - current, config.multipliers.icon_title,
        f"Tap-through rate is {current:.1f}% (benchmark: {benchmark:g}%)",
        "Test new icon variants with A/B testing. Refine title to include primary "
        "value proposition.",
    )


def _search_pdp_cvr(inputs: OpportunityInputs, config: OpportunityConfig) -> Optional[OpportunityFinding]:
    benchmark = config.thresholds.pdp_cvr_search
    current = inputs.search.pdp_cvr
    if current >= benchmark or inputs.search.product_page_views < config.min_page_views:
        return None
    return OpportunityFinding(
        current, benchmark, benchmark - current, config.multipliers.pdp_cvr,
        f"Search PDP CVR is {current:.1f}% (benchmark: {benchmark:g}%)",
        "Optimize first 3 screenshots for search intent. Show core features immediately.",
    )


def _browse_pdp_cvr(inputs: OpportunityInputs, config: OpportunityConfig) -> Optional[OpportunityFinding]:
    benchmark = config.thresholds.pdp_cvr_browse
    current = inputs.browse.pdp_cvr
    if current >= benchmark or inputs.browse.product_page_views < config.min_page_views:
        return None
    return OpportunityFinding(
        current, benchmark, benchmark - current, config.multipliers.pdp_cvr,
        f"Browse PDP CVR is {current:.1f}% (benchmark: {benchmark:g}%)",
        "Refresh screenshots with premium visuals. Add preview video if missing.",
    )


def _funnel_leak(inputs: OpportunityInputs, config: OpportunityConfig) -> Optional[OpportunityFinding]:
    benchmark = config.thresholds.funnel_leak_rate
    current = inputs.derived.combined_funnel_leak
    if current <= benchmark:
        return None
    return OpportunityFinding(
        current, benchmark, current - benchmark, config.multipliers.funnel_leak,
        f"{current:.0f}% of PDP visitors don't install (benchmark: <{benchmark:g}%)",
        'Audit value proposition clarity. Ensure screenshots answer "Why should I install?"',
    )


def _search_discovery(inputs: OpportunityInputs, config: OpportunityConfig) -> Optional[OpportunityFinding]:
    benchmark = config.thresholds.search_browse_ratio_low
    current = inputs.derived.search_browse_ratio
    if current >= benchmark:
        return None
    return OpportunityFinding(
        current, benchmark, benchmark - current, config.multipliers.search_browse_ratio,
        f"Search/Browse ratio is {current:.2f}:1 (too Browse-heavy)",
        "Expand keyword coverage. Run search ads to test new keywords. Improve "
        "category relevance.",
    )


def _browse_discovery(inputs: OpportunityInputs, config: OpportunityConfig) -> Optional[OpportunityFinding]:
    benchmark = config.thresholds.search_browse_ratio_high
    current = inputs.derived.search_browse_ratio
    if current <= benchmark:
        return None
    multipliers = config.multipliers
    return OpportunityFinding(
        current, benchmark, current - benchmark,
        multipliers.search_browse_ratio * multipliers.search_heavy_factor,
        f"Search/Browse ratio is {current:.2f}:1 (too Search-heavy)",
        "Invest in featuring opportunities. Optimize category positioning. Improve "
        "visual appeal.",
    )


def _brand_recognition(inputs: OpportunityInputs, config: OpportunityConfig) -> Optional[OpportunityFinding]:
    benchmark = config.thresholds.direct_propensity
    current = inputs.derived.direct_install_propensity
    if current >= benchmark:
        return None
    return OpportunityFinding(
        current, benchmark, benchmark - current, config.multipliers.direct_propensity,
        f"Direct install propensity is {current:.1f}% (benchmark: {benchmark:g}%)",
        "Users don't recognize your brand in search. Consider off-platform marketing "
        "to build awareness.",
    )


def _channel_balance(inputs: OpportunityInputs, config: OpportunityConfig) -> Optional[OpportunityFinding]:
    metadata = inputs.derived.metadata_strength
    creative = inputs.derived.creative_strength
    imbalance = abs(metadata - creative)
    if imbalance <= config.thresholds.channel_imbalance:
        return None

    benchmark = config.thresholds.channel_imbalance_benchmark
    if metadata < creative:
        message = f"Metadata strength ({metadata:.2f}) lags behind Creative ({creative:.2f})"
        insight = 'Invest in keyword optimization to match creative performance'
    else:
        message = f"Creative strength ({creative:.2f}) lags behind Metadata ({metadata:.2f})"
        insight = 'Upgrade creative assets to match metadata performance'
    return OpportunityFinding(
        imbalance, benchmark, imbalance - benchmark, config.multipliers.channel_imbalance,
        message, insight,
    )


OPPORTUNITY_RULES: Tuple[OpportunityRule, ...] = (
    OpportunityRule(OpportunityCategory.ICON_TITLE, 'Icon & Title', ImpactLevel.HIGH, _icon_title),
    OpportunityRule(OpportunityCategory.SEARCH_PDP_CVR, 'Search Creative Assets', ImpactLevel.HIGH, _search_pdp_cvr),
    OpportunityRule(OpportunityCategory.BROWSE_PDP_CVR, 'Browse Creative Assets', ImpactLevel.HIGH, _browse_pdp_cvr),
    OpportunityRule(OpportunityCategory.FUNNEL_LEAK, 'Funnel Optimization', ImpactLevel.HIGH, _funnel_leak),
    OpportunityRule(OpportunityCategory.SEARCH_DISCOVERY, 'Metadata Discovery', ImpactLevel.MEDIUM, _search_discovery),
    OpportunityRule(OpportunityCategory.BROWSE_DISCOVERY, 'Creative Discovery', ImpactLevel.MEDIUM, _browse_discovery),
    OpportunityRule(OpportunityCategory.BRAND_RECOGNITION, 'Brand Recognition', ImpactLevel.LOW, _brand_recognition),
    OpportunityRule(OpportunityCategory.CHANNEL_BALANCE, 'Channel Balance', ImpactLevel.MEDIUM, _channel_balance),
)


def opportunity_priority(score: float, config: OpportunityConfig) -> OpportunityPriority:
    for priority in (OpportunityPriority.CRITICAL, OpportunityPriority.HIGH, OpportunityPriority.MEDIUM):
        if score >= config.priority_thresholds[priority]:
            return priority
    return OpportunityPriority.LOW


def calculate_opportunity_map(
    derived: DerivedKpis,
    search: TwoPathMetrics,
    browse: TwoPathMetrics,
    config: OpportunityConfig = DEFAULT_FORMULAS.opportunity,
    rules: Sequence[OpportunityRule] = OPPORTUNITY_RULES,
) -> OpportunityMap:
    """
    Rank benchmark gaps into at most max_opportunities opportunities,
    highest score first.
    """
    if search.impressions + browse.impressions == 0:
        return OpportunityMap(
            status=IntelligenceStatus.INSUFFICIENT_DATA,
            message='No search or browse impressions in the selected period',
        )

    inputs = OpportunityInputs(derived=derived, search=search, browse=browse)
    found: List[Opportunity] = []
    for rule in rules:
        finding = rule.evaluate(inputs, config)
        if finding is None:
            continue
        score = min(config.max_score, abs(finding.gap) * finding.multiplier)
        found.append(Opportunity(
            id=rule.id,
            category=rule.label,
            priority=opportunity_priority(score, config),
            score=score,
            current_value=finding.current_value,
            benchmark=finding.benchmark,
            gap=finding.gap,
            message=finding.message,
            actionable_insight=finding.actionable_insight,
            potential_impact=rule.potential_impact,
        ))

    # sorted() is stable, so equal scores keep rule order
    ranked = sorted(found, key=lambda o: o.score, reverse=True)
    return OpportunityMap(
        status=IntelligenceStatus.OK,
        opportunities=ranked[:config.max_opportunities],
    )


# =============================================================================
# 3. Outcome Simulation
# =============================================================================

def simulate_outcomes(
    search: TwoPathMetrics,
    browse: TwoPathMetrics,
    derived: DerivedKpis,
    config: SimulationConfig = DEFAULT_FORMULAS.simulation,
) -> SimulationResult:
    """
    Project install deltas for the four fixed improvement levers.

    Scenarios below min_impact are dropped; the rest are ranked by absolute
    delta and capped at max_scenarios.
    """
    impressions = search.impressions + browse.impressions
    page_views = search.product_page_views + browse.product_page_views
    downloads = search.downloads + browse.downloads

    if impressions == 0:
        return SimulationResult(
            status=IntelligenceStatus.INSUFFICIENT_DATA,
            disclaimer=config.disclaimer,
            message='No search or browse impressions to project from',
        )

    scenarios: List[Scenario] = []

    def add(lever: SimulationLever, name: str, description: str,
            change: ScenarioChange, delta: float, calculation: str) -> None:
        if delta < config.min_impact:
            return
        scenarios.append(Scenario(
            id=lever,
            name=name,
            description=description,
            lever=change,
            impact=ScenarioImpact(
                current_value=downloads,
                projected_value=downloads + delta,
                delta=delta,
            ),
            calculation=calculation,
            confidence=config.confidence.get(lever, ConfidenceTier.LOW),
        ))

    # Tap-through: extra page views convert at the current combined PDP CVR
    pp = config.tap_through_improvement_pp
    current_ttr = derived.first_impression_effectiveness
    current_pdp_cvr = guarded_ratio(downloads, page_views) * 100
    extra_views = impressions * pp / 100
    ttr_delta = extra_views * current_pdp_cvr / 100
    add(
        SimulationLever.IMPROVE_TAP_THROUGH,
        'Improve Icon/Title Tap-Through',
        f"Optimize icon and title to increase tap-through rate by {pp:g} percentage points",
        ScenarioChange(
            metric='Tap-Through Rate',
            current_value=current_ttr,
            improved_value=min(current_ttr + pp, config.max_tap_through),
            change=pp,
        ),
        ttr_delta,
        f"{format_number(extra_views)} new PPV x {current_pdp_cvr:.1f}% PDP CVR = "
        f"{format_number(ttr_delta)} installs",
    )

    # PDP CVR: relative improvement, capped
    relative = config.pdp_cvr_relative_improvement
    improved_pdp_cvr = min(current_pdp_cvr * (1 + relative), config.max_pdp_cvr)
    cvr_gain = improved_pdp_cvr - current_pdp_cvr
    pdp_delta = page_views * cvr_gain / 100
    add(
        SimulationLever.IMPROVE_PDP_CVR,
        'Improve Product Page Conversion',
        f"Optimize screenshots and preview video to improve PDP CVR by {relative * 100:.0f}%",
        ScenarioChange(
            metric='PDP CVR',
            current_value=current_pdp_cvr,
            improved_value=improved_pdp_cvr,
            change=cvr_gain,
        ),
        pdp_delta,
        f"{format_number(page_views)} PPV x +{cvr_gain:.1f}pp CVR = "
        f"{format_number(pdp_delta)} installs",
    )

    # Funnel leak: reduction in percentage points, floored
    current_leak = derived.combined_funnel_leak
    improved_leak = max(current_leak - config.funnel_leak_reduction_pp, config.min_funnel_leak)
    leak_reduction = max(0.0, current_leak - improved_leak)
    leak_delta = page_views * leak_reduction / 100
    add(
        SimulationLever.REDUCE_FUNNEL_LEAK,
        'Reduce Funnel Leak',
        f"Improve value prop clarity to reduce PDP drop-off by "
        f"{config.funnel_leak_reduction_pp:g} percentage points",
        ScenarioChange(
            metric='Funnel Leak Rate',
            current_value=current_leak,
            improved_value=improved_leak,
            change=-leak_reduction,
        ),
        leak_delta,
        f"{format_number(page_views)} PPV x +{leak_reduction:.1f}pp CVR = "
        f"{format_number(leak_delta)} installs",
    )

    # Search impressions: extra impressions convert at the search total CVR
    increase = config.search_impressions_increase
    extra_impressions = search.impressions * increase
    search_delta = extra_impressions * search.total_cvr / 100
    add(
        SimulationLever.INCREASE_SEARCH_IMPRESSIONS,
        'Increase Search Impressions',
        f"Expand keyword coverage and improve rankings to boost search impressions "
        f"by {increase * 100:.0f}%",
        ScenarioChange(
            metric='Search Impressions',
            current_value=search.impressions,
            improved_value=search.impressions + extra_impressions,
            change=extra_impressions,
        ),
        search_delta,
        f"{format_number(extra_impressions)} new impressions x {search.total_cvr:.2f}% CVR = "
        f"{format_number(search_delta)} installs",
    )

    ranked = sorted(scenarios, key=lambda s: abs(s.impact.delta), reverse=True)
    return SimulationResult(
        status=IntelligenceStatus.OK,
        scenarios=ranked[:config.max_scenarios],
        disclaimer=config.disclaimer,
    )


# =============================================================================
# 4a. Anomaly Detection
# =============================================================================

ANOMALY_METRICS: Tuple[str, ...] = ('impressions', 'downloads', 'cvr')


def _anomaly_severity(z_score: float, threshold: float) -> ImpactLevel:
    magnitude = abs(z_score)
    if magnitude >= threshold + 1.0:
        return ImpactLevel.HIGH
    if magnitude >= threshold + 0.5:
        return ImpactLevel.MEDIUM
    return ImpactLevel.LOW


def detect_anomalies(
    timeseries: Sequence[TimeSeriesPoint],
    metrics: Sequence[str] = ANOMALY_METRICS,
    config: AttributionConfig = DEFAULT_FORMULAS.attribution,
    min_baseline: int = DEFAULT_FORMULAS.stability.min_data_points,
) -> List[DetectedAnomaly]:
    """
    Flag days whose value deviates from the trailing baseline by at least
    anomaly_z_threshold standard deviations.

    The baseline is the preceding anomaly_baseline_days points (at least
    min_baseline of them). A flat baseline (std 0) never flags.

    Returns:
        Anomalies ordered by date, then by |z| descending.
    """
    points = list(timeseries)
    window = config.anomaly_baseline_days
    threshold = config.anomaly_z_threshold
    found: List[DetectedAnomaly] = []

    for metric in metrics:
        values = np.asarray([float(getattr(p, metric)) for p in points], dtype=float)
        for i in range(min_baseline, len(values)):
            baseline = values[max(0, i - window):i]
            mean = float(baseline.mean())
            std = float(baseline.std())
            if std == 0:
                continue
            z_score = (values[i] - mean) / std
            if abs(z_score) < threshold:
                continue
            found.append(DetectedAnomaly(
                date=points[i].date,
                metric=metric,
                direction=AnomalyDirection.SPIKE if z_score > 0 else AnomalyDirection.DROP,
                value=float(values[i]),
                baseline_mean=mean,
                z_score=float(z_score),
                magnitude_pct=percent_change(float(values[i]), mean),
                severity=_anomaly_severity(z_score, threshold),
            ))

    found.sort(key=lambda a: (a.date, -abs(a.z_score)))
    return found


# =============================================================================
# 4b. Anomaly Attribution
# =============================================================================

def calculate_metric_changes(context: AttributionContext) -> MetricChanges:
    """Period-over-period percentage changes used by the attribution rules."""
    cur_s, cur_b = context.current_search, context.current_browse
    prev_s, prev_b = context.previous_search, context.previous_browse
    current_kpis = compute_derived_kpis(cur_s, cur_b)
    previous_kpis = compute_derived_kpis(prev_s, prev_b)

    return MetricChanges(
        search_impressions=percent_change(cur_s.impressions, prev_s.impressions),
        search_cvr=percent_change(cur_s.total_cvr, prev_s.total_cvr),
        search_pdp_cvr=percent_change(cur_s.pdp_cvr, prev_s.pdp_cvr),
        browse_impressions=percent_change(cur_b.impressions, prev_b.impressions),
        browse_cvr=percent_change(cur_b.total_cvr, prev_b.total_cvr),
        browse_pdp_cvr=percent_change(cur_b.pdp_cvr, prev_b.pdp_cvr),
        total_impressions=percent_change(
            cur_s.impressions + cur_b.impressions, prev_s.impressions + prev_b.impressions
        ),
        total_downloads=percent_change(
            cur_s.downloads + cur_b.downloads, prev_s.downloads + prev_b.downloads
        ),
        total_cvr=percent_change(
            (cur_s.total_cvr + cur_b.total_cvr) / 2, (prev_s.total_cvr + prev_b.total_cvr) / 2
        ),
        direct_share=percent_change(
            (cur_s.direct_install_share + cur_b.direct_install_share) / 2,
            (prev_s.direct_install_share + prev_b.direct_install_share) / 2,
        ),
        search_browse_ratio=percent_change(
            current_kpis.search_browse_ratio, previous_kpis.search_browse_ratio
        ),
    )


@dataclass(frozen=True)
class Explanation:
    category: AttributionCategory
    message: str
    actionable_insight: str


@dataclass(frozen=True)
class AttributionRule:
    """
    One attribution pattern.

    matches decides whether the pattern fires; explain renders the category
    and text, which may depend on the direction of a change.
    """
    pattern_id: str
    confidence: ConfidenceTier
    related_metrics: Tuple[str, ...]
    matches: Callable[[MetricChanges, AttributionThresholds], bool]
    explain: Callable[[MetricChanges], Explanation]


def _fixed(category: AttributionCategory, message: str, insight: str) -> Callable[[MetricChanges], Explanation]:
    explanation = Explanation(category, message, insight)
    return lambda changes: explanation


def _direct_share_spike_text(changes: MetricChanges) -> Explanation:
    return Explanation(
        AttributionCategory.BRAND,
        f"Direct install share spiked by {changes.direct_share:.0f}%, indicating a brand "
        f"awareness surge. This typically follows off-platform marketing, press coverage, "
        f"influencer mentions, or viral moments.",
        'Identify the source of brand awareness (check social mentions, press, campaigns). '
        'Capitalize on momentum with search ads on brand terms.',
    )


def _ratio_shift_text(changes: MetricChanges) -> Explanation:
    shift = changes.search_browse_ratio
    if shift > 0:
        return Explanation(
            AttributionCategory.METADATA,
            f"Search/Browse ratio shifted {abs(shift):.0f}% toward Search-heavy, indicating "
            f"recent keyword expansion or improved rankings.",
            'Monitor keyword performance to sustain search growth. Consider search ads to '
            'scale winners.',
        )
    return Explanation(
        AttributionCategory.FEATURING,
        f"Search/Browse ratio shifted {abs(shift):.0f}% toward Browse-heavy, indicating "
        f"recent featuring gained or category visibility improved.",
        'Capitalize on featuring momentum. Optimize screenshots for discovery traffic.',
    )


ATTRIBUTION_RULES: Tuple[AttributionRule, ...] = (
    AttributionRule(
        'keyword_rank_loss', ConfidenceTier.HIGH,
        ('search_impressions', 'search_cvr', 'direct_install_share'),
        lambda c, t: (
            c.search_impressions < t.search_impression_drop_severe
            and c.search_cvr < t.search_cvr_drop_significant
            and abs(c.direct_share) < t.direct_share_stable_range
        ),
        _fixed(
            AttributionCategory.METADATA,
            'Search impressions and CVR both declined while direct install share remained '
            'stable. This pattern suggests keyword rank loss or increased competition in '
            'your primary search terms.',
            'Audit keyword rankings for top 10 keywords. Check competitor activity. Consider '
            'search ads to regain visibility.',
        ),
    ),
    AttributionRule(
        'branded_search_shift', ConfidenceTier.HIGH,
        ('search_impressions', 'search_cvr'),
        lambda c, t: (
            c.search_impressions < t.search_impression_drop_severe
            and c.search_cvr > t.search_cvr_increase_significant
        ),
        _fixed(
            AttributionCategory.BRAND,
            'Search impressions dropped but CVR improved, indicating a shift toward '
            'higher-intent, branded searches. This is typically positive: your audience is '
            'more qualified.',
            'Monitor brand search volume. This may follow a marketing campaign or PR event. '
            'Consider expanding branded keyword coverage.',
        ),
    ),
    AttributionRule(
        'featuring_loss', ConfidenceTier.HIGH,
        ('browse_impressions', 'browse_pdp_cvr', 'search_impressions'),
        lambda c, t: (
            c.browse_impressions < t.browse_impression_drop_severe
            and abs(c.browse_pdp_cvr) < t.browse_pdp_cvr_stable_range
            and abs(c.search_impressions) < t.impressions_stable_range
        ),
        _fixed(
            AttributionCategory.FEATURING,
            'Browse impressions dropped significantly while Search remained stable and '
            'Browse PDP CVR held steady. This strongly indicates loss of App Store featuring '
            '(Today tab, category placement, or collections).',
            'Check App Store Today tab and category pages for your app. Contact your Apple '
            'rep if you had scheduled featuring. Review recent metadata changes that may '
            'have affected editorial eligibility.',
        ),
    ),
    AttributionRule(
        'featuring_audience_mismatch', ConfidenceTier.MEDIUM,
        ('browse_impressions', 'browse_pdp_cvr', 'funnel_leak_rate'),
        lambda c, t: (
            c.browse_impressions > t.browse_impression_spike
            and c.browse_pdp_cvr < t.browse_pdp_cvr_drop_severe
        ),
        _fixed(
            AttributionCategory.CREATIVE,
            "Browse impressions spiked (likely from featuring) but PDP CVR declined, "
            "suggesting your creative assets aren't optimized for the broader audience that "
            "featuring attracts.",
            'Featuring brings discovery traffic with lower intent. Ensure your first 3 '
            'screenshots clearly communicate value prop. Add preview video if missing.',
        ),
    ),
    AttributionRule(
        'listing_update_regression', ConfidenceTier.HIGH,
        ('search_pdp_cvr', 'browse_pdp_cvr', 'funnel_leak_rate'),
        lambda c, t: (
            c.search_pdp_cvr < t.pdp_cvr_drop_both_channels
            and c.browse_pdp_cvr < t.pdp_cvr_drop_both_channels
            and abs(c.total_impressions) < t.impressions_stable_range
        ),
        _fixed(
            AttributionCategory.CREATIVE,
            'PDP CVR declined across both Search and Browse while impressions remained '
            'stable. This pattern strongly suggests a recent metadata or screenshot update '
            'that degraded conversion performance.',
            'Review recent App Store listing changes. If you updated screenshots or '
            'description in the past 7 days, consider rolling back. Run A/B test to validate.',
        ),
    ),
    AttributionRule(
        'brand_awareness_surge', ConfidenceTier.MEDIUM,
        ('direct_install_share', 'search_impressions'),
        lambda c, t: c.direct_share > t.direct_share_spike,
        _direct_share_spike_text,
    ),
    AttributionRule(
        'creative_fatigue', ConfidenceTier.MEDIUM,
        ('browse_pdp_cvr', 'creative_strength', 'funnel_leak_rate'),
        lambda c, t: (
            c.browse_pdp_cvr < t.browse_pdp_cvr_fatigue_drop
            and abs(c.direct_share) < t.direct_share_stable_range
            and abs(c.browse_impressions) < t.impressions_stable_range
        ),
        _fixed(
            AttributionCategory.CREATIVE,
            "Browse PDP CVR declined while impressions and direct install share remained "
            "stable. This pattern suggests creative fatigue: users have seen your "
            "screenshots before and they're no longer compelling.",
            'Refresh screenshots with new visuals. Highlight different features. Test '
            'seasonal or themed variations. Preview video refresh.',
        ),
    ),
    AttributionRule(
        'platform_wide_decline', ConfidenceTier.LOW,
        ('search_impressions', 'browse_impressions', 'search_cvr', 'browse_cvr'),
        lambda c, t: (
            c.search_impressions < t.all_metrics_drop
            and c.browse_impressions < t.all_metrics_drop
            and c.search_cvr < t.all_metrics_cvr_drop
            and c.browse_cvr < t.all_metrics_cvr_drop
        ),
        _fixed(
            AttributionCategory.ALGORITHM,
            'All major metrics declined uniformly across both Search and Browse. This '
            'pattern suggests an App Store algorithm update, technical issue, or '
            'account-level change rather than organic performance degradation.',
            'Check Apple Developer forums for algorithm updates. Verify your app is live in '
            'all markets. Review App Store Connect for account warnings or policy violations.',
        ),
    ),
    AttributionRule(
        'external_traffic', ConfidenceTier.HIGH,
        ('downloads', 'impressions', 'direct_install_share'),
        lambda c, t: (
            c.total_downloads > t.downloads_spike
            and abs(c.total_impressions) < t.impressions_stable_range
            and c.direct_share > t.direct_share_external_rise
        ),
        _fixed(
            AttributionCategory.BRAND,
            'Downloads spiked while impressions remained flat, and direct install share '
            'increased significantly. This indicates external traffic (deep links, QR '
            'codes, influencer links, or campaign attribution issues).',
            'Check campaign analytics for external sources. Review deep link attribution. '
            'Verify tracking pixels if running paid campaigns.',
        ),
    ),
    AttributionRule(
        'search_browse_shift', ConfidenceTier.MEDIUM,
        ('search_browse_ratio', 'search_impressions', 'browse_impressions'),
        lambda c, t: abs(c.search_browse_ratio) > t.search_browse_ratio_shift,
        _ratio_shift_text,
    ),
)


def attribute_anomaly(
    context: AttributionContext,
    anomaly: Optional[DetectedAnomaly] = None,
    config: AttributionConfig = DEFAULT_FORMULAS.attribution,
    rules: Sequence[AttributionRule] = ATTRIBUTION_RULES,
) -> AnomalyAttribution:
    """
    Match period-over-period changes against the attribution rules.

    Matches are ordered by confidence (high, medium, low); ties keep rule
    declaration order. At most max_attributions are returned.
    """
    previous_volume = (
        context.previous_search.impressions + context.previous_browse.impressions
    )
    if previous_volume == 0:
        return AnomalyAttribution(
            status=IntelligenceStatus.INSUFFICIENT_DATA,
            anomaly=anomaly,
            message='No previous-period data to compare against',
        )

    changes = calculate_metric_changes(context)
    matched: List[Attribution] = []
    for rule in rules:
        if not rule.matches(changes, config.thresholds):
            continue
        explanation = rule.explain(changes)
        matched.append(Attribution(
            pattern_id=rule.pattern_id,
            category=explanation.category,
            confidence=rule.confidence,
            message=explanation.message,
            actionable_insight=explanation.actionable_insight,
            related_metrics=list(rule.related_metrics),
        ))

    weights = config.confidence_weights
    matched.sort(key=lambda a: weights.get(a.confidence, 0), reverse=True)

    return AnomalyAttribution(
        status=IntelligenceStatus.OK,
        anomaly=anomaly,
        changes=changes,
        attributions=matched[:config.max_attributions],
    )


# =============================================================================
# Report
# =============================================================================

def build_intelligence_report(
    timeseries: Sequence[TimeSeriesPoint],
    breakdown: TwoPathBreakdown,
    previous: Optional[TwoPathBreakdown] = None,
    formulas: FormulaRegistry = DEFAULT_FORMULAS,
    max_anomalies: int = 3,
) -> IntelligenceReport:
    """
    Run all four analyses for one selection.

    Attribution runs once per detected anomaly (most significant first, up to
    max_anomalies) against the previous-period breakdown, when one is given.
    """
    search = breakdown.groups[TrafficSourceGroup.SEARCH]
    browse = breakdown.groups[TrafficSourceGroup.BROWSE]

    anomalies: List[AnomalyAttribution] = []
    if previous is not None:
        context = AttributionContext(
            current_search=search,
            current_browse=browse,
            previous_search=previous.groups[TrafficSourceGroup.SEARCH],
            previous_browse=previous.groups[TrafficSourceGroup.BROWSE],
        )
        detected = detect_anomalies(timeseries, config=formulas.attribution)
        strongest = sorted(detected, key=lambda a: abs(a.z_score), reverse=True)[:max_anomalies]
        anomalies = [
            attribute_anomaly(context, anomaly, config=formulas.attribution)
            for anomaly in strongest
        ]
        if strongest:
            logger.info(f"Attributed {len(strongest)} of {len(detected)} detected anomalies")

    return IntelligenceReport(
        stability=calculate_stability_score(timeseries, formulas.stability),
        opportunities=calculate_opportunity_map(
            breakdown.derived, search, browse, formulas.opportunity
        ),
        simulation=simulate_outcomes(search, browse, breakdown.derived, formulas.simulation),
        anomalies=anomalies,
    )
