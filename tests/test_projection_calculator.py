"""
Tests for the compound-growth projection calculator.
"""

from datetime import date

import pytest

from wealthcast.errors import InvalidInputError
from wealthcast.models.clock import FixedClock
from wealthcast.models.projection_calculator import ProjectionCalculator


@pytest.fixture
def clock():
    return FixedClock(date(2026, 1, 15))


class TestFutureValue:
    """Test cases for future_value_at_month."""

    def test_one_year_equals_annual_rate(self, clock):
        """Twelve months of growth equal one year at the annual rate."""
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, clock=clock)

        assert abs(calculator.future_value_at_month(12) - 10_600.00) < 0.01

    def test_monthly_rate_is_compounded_equivalent(self):
        """Test r_m = (1 + r)^(1/12) - 1."""
        calculator = ProjectionCalculator(principal=0, rate=0.06)

        assert abs((1 + calculator.monthly_rate) ** 12 - 1.06) < 1e-12

    def test_month_zero_is_principal(self):
        calculator = ProjectionCalculator(principal=1234.567, rate=0.08, contribution=500)

        assert calculator.future_value_at_month(0) == 1234.57

    def test_zero_rate_is_linear(self):
        """With a zero rate FV(n) = P + C * n."""
        calculator = ProjectionCalculator(principal=1_000, rate=0.0, contribution=100)

        assert calculator.future_value_at_month(12) == 2_200.00
        assert calculator.future_value_at_month(60) == 7_000.00

    def test_contributions_compound(self):
        """Contributions earn growth, so FV exceeds principal plus contributions."""
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, contribution=500)

        assert calculator.future_value_at_month(24) > 10_000 + 500 * 24

    def test_negative_months_rejected(self):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06)

        with pytest.raises(InvalidInputError):
            calculator.future_value_at_month(-1)

    def test_real_value_with_zero_inflation_is_nominal(self):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, contribution=100)

        assert calculator.real_future_value_at_month(36, 0.0) == calculator.future_value_at_month(36)

    def test_real_value_below_nominal_with_inflation(self):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06)

        assert calculator.real_future_value_at_month(120, 0.02) < calculator.future_value_at_month(120)


class TestInputValidation:
    """Test cases for constructor validation."""

    @pytest.mark.parametrize("rate", [float("nan"), float("inf"), "abc"])
    def test_non_finite_rate_rejected(self, rate):
        with pytest.raises(InvalidInputError):
            ProjectionCalculator(principal=10_000, rate=rate)

    def test_rate_at_or_below_minus_one_rejected(self):
        with pytest.raises(InvalidInputError):
            ProjectionCalculator(principal=10_000, rate=-1.0)

    def test_negative_volatility_rejected(self):
        with pytest.raises(InvalidInputError):
            ProjectionCalculator(principal=10_000, rate=0.05, volatility=-0.1)

    def test_invalid_input_is_a_value_error(self):
        """Callers catching ValueError also catch invalid input."""
        with pytest.raises(ValueError):
            ProjectionCalculator(principal=float("nan"), rate=0.05)


class TestProject:
    """Test cases for dated projections."""

    def test_dates_are_month_ends(self, clock):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, clock=clock)
        points = calculator.project(3)

        assert [p.date for p in points] == [date(2026, 2, 28), date(2026, 3, 31), date(2026, 4, 30)]
        assert [p.month for p in points] == [1, 2, 3]

    def test_values_match_future_value(self, clock):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, contribution=250, clock=clock)

        for point in calculator.project(24):
            assert abs(point.value - calculator.future_value_at_month(point.month)) < 0.01

    def test_growth_excludes_contributions(self, clock):
        calculator = ProjectionCalculator(principal=1_000, rate=0.0, contribution=100, clock=clock)
        point = calculator.project(6)[-1]

        assert point.cumulative_contribution == 600.0
        assert point.growth == 0.0

    def test_zero_months_is_empty(self, clock):
        assert ProjectionCalculator(principal=10_000, rate=0.06, clock=clock).project(0) == []


class TestBands:
    """Test cases for analytical and Monte Carlo bands."""

    def test_analytical_bands_ordered(self, clock):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, volatility=0.15, clock=clock)

        for band in calculator.project_with_analytical_bands(24):
            assert band.p10 < band.p25 < band.p50 < band.p75 < band.p90

    def test_small_balance_bands_stay_strictly_ordered(self, clock):
        """Bands around a one-dollar balance are not collapsed by cent rounding."""
        calculator = ProjectionCalculator(principal=1.0, rate=0.06, volatility=0.05, clock=clock)

        band = calculator.project_with_analytical_bands(1)[0]

        assert band.p10 < band.p25 < band.p50 < band.p75 < band.p90

    def test_analytical_mean_is_deterministic_value(self, clock):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, volatility=0.15, clock=clock)
        bands = calculator.project_with_analytical_bands(12)

        assert abs(bands[-1].mean - calculator.future_value_at_month(12)) < 0.01

    def test_bands_widen_with_horizon(self, clock):
        calculator = ProjectionCalculator(principal=10_000, rate=0.0, volatility=0.2, clock=clock)
        bands = calculator.project_with_analytical_bands(60)

        assert (bands[59].p90 - bands[59].p10) > (bands[11].p90 - bands[11].p10)

    def test_zero_volatility_collapses_bands(self, clock):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, volatility=0.0, clock=clock)
        band = calculator.project_with_analytical_bands(12)[-1]

        assert band.p10 == band.p50 == band.p90
        assert abs(band.p50 - band.mean) < 0.01

    def test_liability_bands_mirrored(self, clock):
        """For a debt p10 is the pessimistic band: more debt, never clamped to zero."""
        calculator = ProjectionCalculator(principal=-5_000, rate=0.05, volatility=0.3, clock=clock)
        band = calculator.project_with_analytical_bands(12)[-1]

        assert band.p10 < band.p50 < band.p90 < 0

    def test_monte_carlo_reproducible_with_seed(self, clock):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, contribution=100, clock=clock)

        first = calculator.project_with_percentiles(12, volatility=0.15, simulations=500, seed=42)
        second = calculator.project_with_percentiles(12, volatility=0.15, simulations=500, seed=42)

        assert [b.p50 for b in first] == [b.p50 for b in second]
        assert len(first) == 12
        assert all(b.p10 <= b.p50 <= b.p90 for b in first)

    def test_monte_carlo_requires_simulations(self, clock):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, clock=clock)

        with pytest.raises(InvalidInputError):
            calculator.project_with_percentiles(12, simulations=0)

    @pytest.mark.parametrize("volatility", [-0.1, float("nan"), float("inf")])
    def test_monte_carlo_rejects_invalid_volatility(self, clock, volatility):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, clock=clock)

        with pytest.raises(InvalidInputError):
            calculator.project_with_percentiles(12, volatility=volatility, seed=1)


class TestTargets:
    """Test cases for time-to-target and required contribution."""

    def test_months_to_target_linear(self):
        calculator = ProjectionCalculator(principal=0, rate=0.0, contribution=1_000)

        assert calculator.months_to_target(12_000) == 12
        assert calculator.years_to_target(12_000) == 1.0

    def test_months_to_target_already_reached(self):
        assert ProjectionCalculator(principal=50_000, rate=0.05).months_to_target(25_000) == 0

    def test_months_to_target_unreachable(self):
        calculator = ProjectionCalculator(principal=1_000, rate=0.0, contribution=0)

        assert calculator.months_to_target(5_000) is None
        assert calculator.years_to_target(5_000) is None

    def test_months_to_target_with_growth_is_first_month(self):
        calculator = ProjectionCalculator(principal=10_000, rate=0.06, contribution=500)
        months = calculator.months_to_target(50_000)

        assert calculator.future_value_at_month(months) >= 50_000
        assert calculator.future_value_at_month(months - 1) < 50_000

    def test_required_contribution_linear(self):
        calculator = ProjectionCalculator(principal=0, rate=0.0)

        assert calculator.required_contribution(12_000, 12) == 1_000.0

    def test_required_contribution_reaches_target(self):
        calculator = ProjectionCalculator(principal=5_000, rate=0.07)
        required = calculator.required_contribution(100_000, 120)

        funded = ProjectionCalculator(principal=5_000, rate=0.07, contribution=required)
        assert abs(funded.future_value_at_month(120) - 100_000) < 120 * 0.01
