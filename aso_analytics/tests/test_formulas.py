"""
Tests for the formula registry and its integrity check.
"""

import pytest
from pydantic import ValidationError

from aso_analytics.core.formulas import (
    DEFAULT_FORMULAS,
    FormulaRegistry,
    OpportunityConfig,
    OpportunityThresholds,
    StabilityBand,
    StabilityConfig,
    StabilityWeights,
    validate_formula_config,
)
from aso_analytics.models import StabilityInterpretation
from aso_analytics.services.intelligence import calculate_stability_score


class TestValidateFormulaConfig:

    def test_default_registry_is_valid(self):
        assert validate_formula_config() == []
        assert validate_formula_config(FormulaRegistry()) == []

    def test_weights_must_sum_to_one(self):
        registry = FormulaRegistry(
            stability=StabilityConfig(weights=StabilityWeights(impressions=0.5))
        )

        errors = validate_formula_config(registry)

        assert len(errors) == 1
        assert 'sum to 1.200' in errors[0]

    def test_bands_must_descend(self):
        bands = [
            StabilityBand(min_score=40, interpretation=StabilityInterpretation.MODERATE, color='yellow'),
            StabilityBand(min_score=80, interpretation=StabilityInterpretation.VERY_STABLE, color='green'),
        ]
        registry = FormulaRegistry(stability=StabilityConfig(bands=bands))

        errors = validate_formula_config(registry)

        assert len(errors) == 1
        assert errors[0].startswith('Stability bands out of order')

    def test_window_limits(self):
        registry = FormulaRegistry(
            stability=StabilityConfig(min_data_points=40, max_data_points=30)
        )

        assert validate_formula_config(registry) == [
            'Stability min_data_points exceeds max_data_points'
        ]

    def test_ratio_band_must_not_be_empty(self):
        registry = FormulaRegistry(
            opportunity=OpportunityConfig(
                thresholds=OpportunityThresholds(search_browse_ratio_low=3.0)
            )
        )

        assert validate_formula_config(registry) == ['Search/browse ratio band is empty']


class TestOverrides:

    def test_configs_are_frozen(self):
        with pytest.raises(ValidationError):
            DEFAULT_FORMULAS.stability.min_data_points = 3

    def test_model_copy_override(self, series_factory):
        config = DEFAULT_FORMULAS.stability.model_copy(update={'min_data_points': 3})

        result = calculate_stability_score(series_factory([1000] * 3), config)

        assert result.score == 100
        # The shared default is untouched
        assert DEFAULT_FORMULAS.stability.min_data_points == 7
