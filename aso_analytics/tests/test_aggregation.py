"""
Tests for local aggregation and period comparison.

Test Categories:
- TestGuardedRatio: zero and non-finite denominators
- TestAggregate: gap filling, duplicate summing, filters, by-source totals
- TestPeriodComparison: previous range and percentage deltas
"""

from datetime import date

import pytest

from aso_analytics.models import DateRange, MetricTotals
from aso_analytics.services.aggregation import (
    aggregate,
    compare_periods,
    guarded_ratio,
    percent_change,
    previous_period,
    summarize,
)


class TestGuardedRatio:

    @pytest.mark.parametrize('numerator,denominator,expected', [
        (5, 10, 0.5),
        (5, 0, 0.0),
        (0, 0, 0.0),
        (5, -1, 0.0),
        (float('inf'), 1, 0.0),
    ])
    def test_guarded_ratio(self, numerator, denominator, expected):
        assert guarded_ratio(numerator, denominator) == expected

    def test_summary_rates_on_zero_totals(self):
        summary = summarize(MetricTotals())
        assert summary.product_page_cvr == 0.0
        assert summary.impressions_cvr == 0.0


class TestAggregate:

    def test_missing_days_are_zero_filled(self, row_factory, november_range):
        rows = [row_factory(date(2024, 11, 2), impressions=500, product_page_views=100, downloads=20)]

        series = aggregate(rows, november_range)

        assert [p.date for p in series.timeseries] == [
            date(2024, 11, 1), date(2024, 11, 2), date(2024, 11, 3),
        ]
        first, middle, last = series.timeseries
        assert (first.impressions, first.product_page_views, first.downloads) == (0, 0, 0)
        assert first.cvr == 0.0 and first.direct_share == 0.0
        assert (middle.impressions, middle.downloads) == (500, 20)
        assert middle.cvr == pytest.approx(4.0)
        assert (last.impressions, last.downloads) == (0, 0)

    def test_no_rows_still_yields_full_range(self, november_range):
        series = aggregate([], november_range)

        assert len(series.timeseries) == 3
        assert series.summary.impressions == 0
        assert series.by_source == {}

    def test_duplicates_are_summed(self, sample_rows, november_range):
        series = aggregate(sample_rows, november_range)

        by_day = {p.date: p for p in series.timeseries}
        assert by_day[date(2024, 11, 2)].impressions == 1100 + 100 + 500
        assert by_day[date(2024, 11, 2)].downloads == 70 + 5 + 10
        assert series.summary.impressions == 4700
        assert series.summary.product_page_views == 930
        assert series.summary.downloads == 195

    def test_summary_rates(self, sample_rows, november_range):
        summary = aggregate(sample_rows, november_range).summary

        assert summary.product_page_cvr == pytest.approx(195 / 930 * 100)
        assert summary.impressions_cvr == pytest.approx(195 / 4700 * 100)

    def test_direct_share_per_day(self, sample_rows, november_range):
        series = aggregate(sample_rows, november_range)

        # 11-03: 30 downloads over 40 page views, no direct installs
        assert series.timeseries[2].direct_share == 0.0
        # Same day with downloads above page views
        rows = [r for r in sample_rows if r.date != date(2024, 11, 3)]
        rows.append(sample_rows[-1].model_copy(update={'product_page_views': 10}))
        series = aggregate(rows, november_range)
        assert series.timeseries[2].direct_share == pytest.approx(20 / 30 * 100)

    def test_app_filter(self, sample_rows, november_range):
        series = aggregate(sample_rows, november_range, app_filter=['app-2'])

        assert series.summary.impressions == 500
        assert series.summary.downloads == 40
        assert set(series.by_source) == {'App Store Browse', 'Web Referrer'}

    def test_source_filter(self, sample_rows, november_range):
        series = aggregate(sample_rows, november_range, source_filter=['App Store Search'])

        assert series.summary.impressions == 2200
        assert list(series.by_source) == ['App Store Search']
        assert series.by_source['App Store Search'] == MetricTotals(
            impressions=2200, product_page_views=640, downloads=135
        )

    def test_empty_filters_keep_everything(self, sample_rows, november_range):
        unfiltered = aggregate(sample_rows, november_range)
        assert aggregate(sample_rows, november_range, [], []) == unfiltered

    def test_rows_outside_range_ignored(self, row_factory, november_range):
        rows = [
            row_factory(date(2024, 10, 31), impressions=999),
            row_factory(date(2024, 11, 1), impressions=10),
            row_factory(date(2024, 11, 4), impressions=999),
        ]

        assert aggregate(rows, november_range).summary.impressions == 10


class TestPeriodComparison:

    def test_previous_period_has_equal_length(self):
        current = DateRange(start=date(2024, 11, 1), end=date(2024, 11, 30))

        previous = previous_period(current)

        assert previous == DateRange(start=date(2024, 10, 2), end=date(2024, 10, 31))
        assert previous.days == current.days

    @pytest.mark.parametrize('current,previous,expected', [
        (150, 100, 50.0),
        (50, 100, -50.0),
        (10, 0, 100.0),
        (0, 0, 0.0),
    ])
    def test_percent_change(self, current, previous, expected):
        assert percent_change(current, previous) == pytest.approx(expected)

    def test_compare_periods(self, row_factory):
        current_range = DateRange(start=date(2024, 11, 2), end=date(2024, 11, 2))
        previous_range = previous_period(current_range)
        current = aggregate(
            [row_factory(date(2024, 11, 2), impressions=1200, product_page_views=300, downloads=60)],
            current_range,
        )
        previous = aggregate(
            [row_factory(date(2024, 11, 1), impressions=1000, product_page_views=300, downloads=40)],
            previous_range,
        )

        comparison = compare_periods(current, previous)

        assert comparison.previous_range == previous_range
        assert comparison.delta_pct['impressions'] == pytest.approx(20.0)
        assert comparison.delta_pct['product_page_views'] == pytest.approx(0.0)
        assert comparison.delta_pct['downloads'] == pytest.approx(50.0)
        assert comparison.delta_pct['product_page_cvr'] == pytest.approx(50.0)
