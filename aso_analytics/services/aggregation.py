"""
Local Aggregation Engine.

Re-aggregates cached raw warehouse rows for the dashboard without another
warehouse round trip: app and traffic-source filters, totals, a gap-free
daily time series and per-source totals.

Key Features:
- Filters applied in memory; an empty filter is the identity
- Every calendar day in [start, end] is enumerated before rows are folded,
  so the series has exactly (end - start + 1) points, zero-filled
- Duplicate (date, app, source) rows are summed
- Every ratio goes through guarded_ratio (denominator 0 -> 0, never NaN/inf)
- Pure and deterministic; safe to re-run on every filter change

Functions:
- guarded_ratio(numerator, denominator)
- aggregate(rows, date_range, app_filter=None, source_filter=None)
- previous_period(date_range)
- compare_periods(current, previous)
"""

import math
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from aso_analytics.models.schemas import (
    AggregatedSeries,
    DateRange,
    MetricRow,
    MetricTotals,
    PeriodComparison,
    SummaryMetrics,
    TimeSeriesPoint,
)


# =============================================================================
# Constants
# =============================================================================

METRIC_COLUMNS: List[str] = ['impressions', 'product_page_views', 'downloads']
ROW_COLUMNS: List[str] = ['date', 'app_id', 'traffic_source'] + METRIC_COLUMNS


# =============================================================================
# Guarded Division
# =============================================================================

def guarded_ratio(numerator: float, denominator: float) -> float:
    """
    numerator / denominator, or 0.0 when the denominator is not positive
    or the result is not finite.
    """
    if not denominator or denominator <= 0:
        return 0.0
    value = numerator / denominator
    if not math.isfinite(value):
        return 0.0
    return float(value)


def summarize(totals: MetricTotals) -> SummaryMetrics:
    """Attach product_page_cvr and impressions_cvr to raw totals."""
    return SummaryMetrics(
        impressions=totals.impressions,
        product_page_views=totals.product_page_views,
        downloads=totals.downloads,
        product_page_cvr=guarded_ratio(totals.downloads, totals.product_page_views) * 100,
        impressions_cvr=guarded_ratio(totals.downloads, totals.impressions) * 100,
    )


# =============================================================================
# Aggregation
# =============================================================================

def _to_frame(
    rows: Iterable[MetricRow],
    date_range: DateRange,
    app_filter: Optional[Sequence[str]],
    source_filter: Optional[Sequence[str]],
) -> pd.DataFrame:
    frame = pd.DataFrame(
        [(r.date, r.app_id, r.traffic_source, r.impressions, r.product_page_views, r.downloads)
         for r in rows],
        columns=ROW_COLUMNS,
    )
    if frame.empty:
        return frame

    mask = (frame['date'] >= date_range.start) & (frame['date'] <= date_range.end)
    if app_filter:
        mask &= frame['app_id'].isin(list(app_filter))
    if source_filter:
        mask &= frame['traffic_source'].isin(list(source_filter))
    return frame.loc[mask]


def _daily_direct_share(daily: pd.DataFrame) -> np.ndarray:
    downloads = daily['downloads'].to_numpy(dtype=float)
    page_views = daily['product_page_views'].to_numpy(dtype=float)
    direct = np.maximum(0.0, downloads - np.minimum(page_views, downloads))
    with np.errstate(divide='ignore', invalid='ignore'):
        share = np.where(downloads > 0, direct / downloads * 100, 0.0)
    return share


def aggregate(
    rows: Iterable[MetricRow],
    date_range: DateRange,
    app_filter: Optional[Sequence[str]] = None,
    source_filter: Optional[Sequence[str]] = None,
) -> AggregatedSeries:
    """
    Filter and re-aggregate raw rows.

    Args:
        rows: Raw warehouse rows (may contain duplicates and gaps).
        date_range: Inclusive range; rows outside it are ignored.
        app_filter: App ids to keep; None or empty keeps all.
        source_filter: Traffic sources to keep; None or empty keeps all.

    Returns:
        AggregatedSeries with a zero-filled point for every day in range.

    Example:
        >>> series = aggregate(rows, DateRange(start=date(2024, 11, 1), end=date(2024, 11, 3)))
        >>> len(series.timeseries)
        3
    """
    frame = _to_frame(rows, date_range, app_filter, source_filter)
    days = pd.date_range(date_range.start, date_range.end, freq='D').date

    daily = (
        frame.groupby('date')[METRIC_COLUMNS].sum()
        .reindex(days, fill_value=0)
        .fillna(0)
        .astype('int64')
    )
    direct_share = _daily_direct_share(daily)

    timeseries = [
        TimeSeriesPoint(
            date=day,
            impressions=int(values.impressions),
            product_page_views=int(values.product_page_views),
            downloads=int(values.downloads),
            cvr=guarded_ratio(int(values.downloads), int(values.impressions)) * 100,
            direct_share=float(share),
        )
        for day, values, share in zip(days, daily.itertuples(index=False), direct_share)
    ]

    by_source: Dict[str, MetricTotals] = {}
    if not frame.empty:
        per_source = frame.groupby('traffic_source')[METRIC_COLUMNS].sum().sort_index()
        for source, values in per_source.iterrows():
            by_source[str(source)] = MetricTotals(
                impressions=int(values['impressions']),
                product_page_views=int(values['product_page_views']),
                downloads=int(values['downloads']),
            )

    totals = MetricTotals(
        impressions=int(daily['impressions'].sum()),
        product_page_views=int(daily['product_page_views'].sum()),
        downloads=int(daily['downloads'].sum()),
    )

    return AggregatedSeries(
        date_range=date_range,
        summary=summarize(totals),
        timeseries=timeseries,
        by_source=by_source,
    )


# =============================================================================
# Period Comparison
# =============================================================================

def previous_period(date_range: DateRange) -> DateRange:
    """The equal-length range immediately before date_range."""
    length = timedelta(days=date_range.days)
    return DateRange(start=date_range.start - length, end=date_range.end - length)


def percent_change(current: float, previous: float) -> float:
    """Percentage change; 100 when growing from zero, 0 when both are zero."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def compare_periods(current: AggregatedSeries, previous: AggregatedSeries) -> PeriodComparison:
    """Percentage deltas of every summary metric against the previous period."""
    fields = METRIC_COLUMNS + ['product_page_cvr', 'impressions_cvr']
    delta = {
        name: percent_change(getattr(current.summary, name), getattr(previous.summary, name))
        for name in fields
    }
    return PeriodComparison(
        current=current.summary,
        previous=previous.summary,
        previous_range=previous.date_range,
        delta_pct=delta,
    )
