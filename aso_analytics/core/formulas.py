"""
Formula registry for the intelligence engine.

Every weight, threshold, multiplier and cap used by the stability score,
opportunity map, outcome simulation and anomaly attribution lives here as a
named pydantic field. Callers override a value by passing a modified copy:

    config = DEFAULT_FORMULAS.opportunity.model_copy(
        update={'max_opportunities': 3}
    )
    calculate_opportunity_map(derived, search, browse, config=config)

Percentages are expressed on a 0-100 scale unless noted.
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from aso_analytics.models.enums import (
    ConfidenceTier,
    OpportunityPriority,
    SimulationLever,
    StabilityInterpretation,
)


class _FrozenConfig(BaseModel):
    model_config = ConfigDict(frozen=True)


# =============================================================================
# Stability Score
# =============================================================================


class StabilityWeights(_FrozenConfig):
    impressions: float = 0.30
    downloads: float = 0.35
    cvr: float = 0.25
    direct_share: float = 0.10


class StabilityBand(_FrozenConfig):
    min_score: float
    interpretation: StabilityInterpretation
    color: str


class StabilityConfig(_FrozenConfig):
    weights: StabilityWeights = Field(default_factory=StabilityWeights)
    # Trailing window: at least 7 points required, at most 30 used
    min_data_points: int = 7
    max_data_points: int = 30
    # Sorted from highest to lowest
    bands: List[StabilityBand] = Field(default_factory=lambda: [
        StabilityBand(min_score=80, interpretation=StabilityInterpretation.VERY_STABLE, color='green'),
        StabilityBand(min_score=60, interpretation=StabilityInterpretation.STABLE, color='green'),
        StabilityBand(min_score=40, interpretation=StabilityInterpretation.MODERATE, color='yellow'),
        StabilityBand(min_score=20, interpretation=StabilityInterpretation.UNSTABLE, color='orange'),
        StabilityBand(min_score=0, interpretation=StabilityInterpretation.HIGHLY_VOLATILE, color='red'),
    ])


# =============================================================================
# Opportunity Map
# =============================================================================


class OpportunityThresholds(_FrozenConfig):
    tap_through_rate: float = 35.0
    pdp_cvr_search: float = 25.0
    pdp_cvr_browse: float = 20.0
    funnel_leak_rate: float = 75.0
    search_browse_ratio_low: float = 0.7
    search_browse_ratio_high: float = 2.5
    direct_propensity: float = 10.0
    channel_imbalance: float = 1.5
    channel_imbalance_benchmark: float = 0.5


class OpportunityMultipliers(_FrozenConfig):
    icon_title: float = 5.0
    pdp_cvr: float = 2.0
    funnel_leak: float = 1.5
    search_browse_ratio: float = 50.0
    # Search-heavy imbalance is scored at a fraction of the browse-heavy rate
    search_heavy_factor: float = 0.2
    direct_propensity: float = 3.0
    channel_imbalance: float = 30.0


class OpportunityConfig(_FrozenConfig):
    thresholds: OpportunityThresholds = Field(default_factory=OpportunityThresholds)
    multipliers: OpportunityMultipliers = Field(default_factory=OpportunityMultipliers)
    max_score: float = 100.0
    max_opportunities: int = 5
    # PDP CVR rules only fire once a group has this many page views
    min_page_views: int = 100
    priority_thresholds: Dict[OpportunityPriority, float] = Field(default_factory=lambda: {
        OpportunityPriority.CRITICAL: 75.0,
        OpportunityPriority.HIGH: 50.0,
        OpportunityPriority.MEDIUM: 25.0,
    })


# =============================================================================
# Outcome Simulation
# =============================================================================


class SimulationConfig(_FrozenConfig):
    tap_through_improvement_pp: float = 5.0
    pdp_cvr_relative_improvement: float = 0.15
    funnel_leak_reduction_pp: float = 10.0
    search_impressions_increase: float = 0.20

    max_tap_through: float = 50.0
    max_pdp_cvr: float = 70.0
    min_funnel_leak: float = 10.0

    confidence: Dict[SimulationLever, ConfidenceTier] = Field(default_factory=lambda: {
        SimulationLever.IMPROVE_TAP_THROUGH: ConfidenceTier.HIGH,
        SimulationLever.IMPROVE_PDP_CVR: ConfidenceTier.HIGH,
        SimulationLever.REDUCE_FUNNEL_LEAK: ConfidenceTier.MEDIUM,
        SimulationLever.INCREASE_SEARCH_IMPRESSIONS: ConfidenceTier.MEDIUM,
    })

    # Minimum projected install delta for a scenario to be reported
    min_impact: float = 10.0
    max_scenarios: int = 4
    disclaimer: str = (
        'Simulations assume all else constant. Actual results may vary based on '
        'execution, market conditions, and competitive dynamics.'
    )


# =============================================================================
# Anomaly Attribution
# =============================================================================


class AttributionThresholds(_FrozenConfig):
    # Percentage change between the anomaly period and the previous period
    search_impression_drop_severe: float = -10.0
    search_cvr_drop_significant: float = -5.0
    search_cvr_increase_significant: float = 5.0

    browse_impression_drop_severe: float = -15.0
    browse_impression_spike: float = 20.0
    browse_pdp_cvr_drop_severe: float = -10.0
    browse_pdp_cvr_stable_range: float = 5.0
    browse_pdp_cvr_fatigue_drop: float = -15.0

    pdp_cvr_drop_both_channels: float = -10.0
    all_metrics_drop: float = -20.0
    all_metrics_cvr_drop: float = -10.0

    direct_share_spike: float = 20.0
    direct_share_stable_range: float = 5.0
    direct_share_external_rise: float = 15.0

    downloads_spike: float = 30.0
    impressions_stable_range: float = 10.0

    search_browse_ratio_shift: float = 30.0


class AttributionConfig(_FrozenConfig):
    thresholds: AttributionThresholds = Field(default_factory=AttributionThresholds)
    confidence_weights: Dict[ConfidenceTier, int] = Field(default_factory=lambda: {
        ConfidenceTier.HIGH: 3,
        ConfidenceTier.MEDIUM: 2,
        ConfidenceTier.LOW: 1,
    })
    max_attributions: int = 5
    # Z-score threshold and trailing baseline for flagging anomalous days
    anomaly_z_threshold: float = 2.0
    anomaly_baseline_days: int = 14


# =============================================================================
# Registry
# =============================================================================


class FormulaRegistry(_FrozenConfig):
    stability: StabilityConfig = Field(default_factory=StabilityConfig)
    opportunity: OpportunityConfig = Field(default_factory=OpportunityConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    attribution: AttributionConfig = Field(default_factory=AttributionConfig)


DEFAULT_FORMULAS = FormulaRegistry()


def validate_formula_config(registry: FormulaRegistry = DEFAULT_FORMULAS) -> List[str]:
    """
    Check registry integrity.

    Returns:
        List of human-readable problems; empty when the registry is valid.
    """
    errors: List[str] = []

    weights = registry.stability.weights
    weight_sum = weights.impressions + weights.downloads + weights.cvr + weights.direct_share
    if abs(weight_sum - 1.0) > 0.001:
        errors.append(f'Stability weights sum to {weight_sum:.3f}, expected 1.0')

    bands = registry.stability.bands
    for upper, lower in zip(bands, bands[1:]):
        if upper.min_score <= lower.min_score:
            errors.append(
                f'Stability bands out of order: {upper.interpretation.value} '
                f'and {lower.interpretation.value}'
            )

    if registry.stability.min_data_points > registry.stability.max_data_points:
        errors.append('Stability min_data_points exceeds max_data_points')

    thresholds = registry.opportunity.thresholds
    if thresholds.search_browse_ratio_low >= thresholds.search_browse_ratio_high:
        errors.append('Search/browse ratio band is empty')

    return errors
