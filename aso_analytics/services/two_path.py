"""
Two-Path Conversion Calculator.

The App Store lets a user install from two places:
1. Direct install: Impression -> GET button -> Install
2. PDP-driven install: Impression -> Product Page View -> Install

The warehouse only reports impressions, product page views and downloads, so
the split is inferred conservatively:

    pdp_driven_installs = min(product_page_views, downloads)
    direct_installs     = max(0, downloads - pdp_driven_installs)

Downloads exceeding page views is normal for branded search; the excess is
direct installs, not a data error.

Functions:
- compute_two_path(impressions, product_page_views, downloads)
- compute_from_totals(totals)
- classify_traffic_source(source) / group_totals(by_source)
- compute_derived_kpis(search, browse)
- validate_two_path(metrics, group)
- build_breakdown(series)
"""

import logging
from typing import Dict, List, Mapping

from aso_analytics.models.enums import TrafficSourceGroup
from aso_analytics.models.schemas import (
    AggregatedSeries,
    DerivedKpis,
    MetricTotals,
    TwoPathBreakdown,
    TwoPathMetrics,
    TwoPathValidation,
)
from aso_analytics.services.aggregation import guarded_ratio


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SEARCH_SOURCE = 'App Store Search'
BROWSE_SOURCE = 'App Store Browse'

# Offered by the dashboard when discovery returned nothing
DEFAULT_TRAFFIC_SOURCES: List[str] = [
    'App Referrer',
    'App Store Browse',
    'App Store Search',
    'Apple Search Ads',
    'Event Notification',
    'Institutional Purchase',
    'Other',
    'Web Referrer',
]

# Search/browse ratio reported when browse has no impressions but search does
INFINITE_RATIO_SENTINEL = 999.0

# Validation limits
MAX_PLAUSIBLE_TOTAL_CVR = 30.0
MAX_BROWSE_DIRECT_SHARE = 10.0
SHARE_SUM_TOLERANCE = 1.0


# =============================================================================
# Core Calculation
# =============================================================================

def compute_two_path(impressions: int, product_page_views: int, downloads: int) -> TwoPathMetrics:
    """
    Decompose installs into PDP-driven and direct installs.

    Negative input is logged and yields all-zero metrics.

    Example:
        >>> m = compute_two_path(100000, 30000, 5000)
        >>> m.pdp_driven_installs, m.direct_installs, round(m.pdp_cvr, 2)
        (5000, 0, 16.67)
    """
    if impressions < 0 or product_page_views < 0 or downloads < 0:
        logger.error(
            f"Negative metrics detected: impressions={impressions}, "
            f"product_page_views={product_page_views}, downloads={downloads}"
        )
        return TwoPathMetrics()

    if impressions == 0 and product_page_views == 0 and downloads == 0:
        return TwoPathMetrics()

    pdp_driven = min(product_page_views, downloads)
    direct = max(0, downloads - pdp_driven)

    funnel_leak = (1 - pdp_driven / product_page_views) * 100 if product_page_views > 0 else 0.0

    return TwoPathMetrics(
        impressions=impressions,
        product_page_views=product_page_views,
        downloads=downloads,
        pdp_driven_installs=pdp_driven,
        direct_installs=direct,
        total_cvr=guarded_ratio(downloads, impressions) * 100,
        pdp_cvr=guarded_ratio(pdp_driven, product_page_views) * 100,
        direct_cvr=guarded_ratio(direct, max(0, impressions - product_page_views)) * 100,
        tap_through_rate=guarded_ratio(product_page_views, impressions) * 100,
        funnel_leak_rate=funnel_leak,
        pdp_install_share=guarded_ratio(pdp_driven, downloads) * 100,
        direct_install_share=guarded_ratio(direct, downloads) * 100,
    )


def compute_from_totals(totals: MetricTotals) -> TwoPathMetrics:
    return compute_two_path(totals.impressions, totals.product_page_views, totals.downloads)


# =============================================================================
# Traffic Source Grouping
# =============================================================================

def classify_traffic_source(source: str) -> TrafficSourceGroup:
    """App Store Search -> search, App Store Browse -> browse, rest -> other."""
    if source == SEARCH_SOURCE:
        return TrafficSourceGroup.SEARCH
    if source == BROWSE_SOURCE:
        return TrafficSourceGroup.BROWSE
    return TrafficSourceGroup.OTHER


def group_totals(by_source: Mapping[str, MetricTotals]) -> Dict[TrafficSourceGroup, MetricTotals]:
    """Sum per-source totals into the three traffic-source groups."""
    sums = {group: [0, 0, 0] for group in TrafficSourceGroup}
    for source, totals in by_source.items():
        bucket = sums[classify_traffic_source(source)]
        bucket[0] += totals.impressions
        bucket[1] += totals.product_page_views
        bucket[2] += totals.downloads
    return {
        group: MetricTotals(impressions=i, product_page_views=p, downloads=d)
        for group, (i, p, d) in sums.items()
    }


# =============================================================================
# Derived KPIs
# =============================================================================

def compute_derived_kpis(search: TwoPathMetrics, browse: TwoPathMetrics) -> DerivedKpis:
    """
    Cross-channel KPIs from search and browse metrics.

    search_browse_ratio is search / browse impressions, INFINITE_RATIO_SENTINEL
    when only search has impressions, 0 when neither has.
    """
    total_impressions = search.impressions + browse.impressions
    total_ppv = search.product_page_views + browse.product_page_views
    total_downloads = search.downloads + browse.downloads

    if browse.impressions > 0:
        ratio = search.impressions / browse.impressions
    elif search.impressions > 0:
        ratio = INFINITE_RATIO_SENTINEL
    else:
        ratio = 0.0

    search_install_share = guarded_ratio(search.downloads, total_downloads)
    browse_install_share = guarded_ratio(browse.downloads, total_downloads)

    total_pdp_installs = search.pdp_driven_installs + browse.pdp_driven_installs
    combined_leak = (1 - total_pdp_installs / total_ppv) * 100 if total_ppv > 0 else 0.0

    return DerivedKpis(
        search_browse_ratio=ratio,
        first_impression_effectiveness=guarded_ratio(total_ppv, total_impressions) * 100,
        metadata_strength=(search.total_cvr / 100) * search_install_share * 100,
        creative_strength=(browse.total_cvr / 100) * browse_install_share * 100,
        combined_funnel_leak=combined_leak,
        direct_install_propensity=guarded_ratio(search.direct_installs, search.downloads) * 100,
    )


# =============================================================================
# Validation
# =============================================================================

def validate_two_path(metrics: TwoPathMetrics, group: TrafficSourceGroup) -> TwoPathValidation:
    """
    Flag implausible results. Never raises; warnings are informational.
    """
    warnings: List[str] = []

    if group == TrafficSourceGroup.BROWSE and metrics.direct_install_share > MAX_BROWSE_DIRECT_SHARE:
        warnings.append(
            f"Browse direct install share ({metrics.direct_install_share:.0f}%) is unusually "
            f"high. Expected < {MAX_BROWSE_DIRECT_SHARE:.0f}%."
        )
    if metrics.total_cvr > MAX_PLAUSIBLE_TOTAL_CVR:
        warnings.append(
            f"Total CVR ({metrics.total_cvr:.1f}%) exceeds typical range "
            f"(0-{MAX_PLAUSIBLE_TOTAL_CVR:.0f}%). Verify data accuracy."
        )
    if metrics.tap_through_rate > 100:
        warnings.append("Tap-through rate > 100% indicates data quality issue.")
    if metrics.pdp_cvr > 100:
        warnings.append("PDP CVR > 100% indicates data quality issue.")
    if metrics.direct_cvr > 100:
        warnings.append("Direct CVR > 100% indicates data quality issue.")

    share_sum = metrics.pdp_install_share + metrics.direct_install_share
    if metrics.downloads > 0 and abs(share_sum - 100) > SHARE_SUM_TOLERANCE:
        warnings.append(f"Install shares don't sum to 100% ({share_sum:.1f}%).")

    return TwoPathValidation(is_valid=not warnings, warnings=warnings)


# =============================================================================
# Breakdown
# =============================================================================

def build_breakdown(series: AggregatedSeries) -> TwoPathBreakdown:
    """Two-path metrics for the selection total and each traffic-source group."""
    groups = {
        group: compute_from_totals(totals)
        for group, totals in group_totals(series.by_source).items()
    }
    warnings = {}
    for group, metrics in groups.items():
        result = validate_two_path(metrics, group)
        if not result.is_valid:
            logger.debug(f"Two-path validation warnings for {group.value}: {result.warnings}")
            warnings[group] = result.warnings

    return TwoPathBreakdown(
        total=compute_from_totals(series.summary),
        groups=groups,
        derived=compute_derived_kpis(
            groups[TrafficSourceGroup.SEARCH], groups[TrafficSourceGroup.BROWSE]
        ),
        warnings=warnings,
    )
