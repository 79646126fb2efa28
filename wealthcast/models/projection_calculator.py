"""
Compound-growth projection calculator.

This module provides the deterministic balance projection used for persisted
forecasts and charts: compound growth with level monthly contributions, plus
analytical and Monte Carlo percentile bands.

The monthly rate is the monthly-compounded equivalent of the annual rate,
r_m = (1 + annual_rate)^(1/12) - 1, so twelve months of growth without
contributions equals exactly one year at the annual rate.
"""

import datetime as dt
import math
from typing import List, Optional

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, Field

from wealthcast.errors import InvalidInputError

from .clock import Clock, SystemClock, add_months, end_of_month
from .percentile_bands import horizon_sigma, percentile_bands

MAX_TARGET_SEARCH_MONTHS = 1200


class ProjectionPoint(BaseModel):
    """One projected month."""

    month: int = Field(..., ge=1, description="Months from today (1-based)")
    date: dt.date = Field(..., description="End of the projected calendar month")
    value: float = Field(..., description="Projected balance")
    cumulative_contribution: float = Field(
        ..., description="Contributions made up to this month"
    )
    growth: float = Field(..., description="Balance change not explained by contributions")


class BandPoint(BaseModel):
    """One projected month with percentile bands."""

    month: int = Field(..., ge=1, description="Months from today (1-based)")
    date: dt.date = Field(..., description="End of the projected calendar month")
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float
    mean: float = Field(..., description="Deterministic projected balance")


def _require_finite(name: str, value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be numeric, got {value!r}")
    if not math.isfinite(number):
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    return number


def _require_months(months: int) -> int:
    if months < 0:
        raise InvalidInputError(f"months cannot be negative: {months}")
    return int(months)


class ProjectionCalculator:
    """Projects a balance forward under compound growth and level contributions."""

    def __init__(
        self,
        principal: float,
        rate: float,
        contribution: float = 0.0,
        currency: str = "CAD",
        volatility: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the calculator.

        Args:
            principal: Current balance (negative for liabilities)
            rate: Expected annual return as a decimal (0.06 for 6%)
            contribution: Level monthly contribution
            currency: Currency tag carried through to results
            volatility: Annual volatility as a decimal, used for bands
            clock: Source of "today" for dated results
        """
        self.principal = _require_finite("principal", principal)
        self.rate = _require_finite("rate", rate)
        if self.rate <= -1:
            raise InvalidInputError(f"rate must be greater than -1, got {rate}")
        self.contribution = _require_finite("contribution", contribution)
        self.volatility = (
            None if volatility is None else _require_finite("volatility", volatility)
        )
        if self.volatility is not None and self.volatility < 0:
            raise InvalidInputError(f"volatility cannot be negative: {volatility}")
        self.currency = currency
        self.clock = clock or SystemClock()

    @property
    def monthly_rate(self) -> float:
        """Monthly-compounded equivalent of the annual rate."""
        return (1 + self.rate) ** (1.0 / 12) - 1

    def _future_value(self, month: float) -> float:
        monthly_rate = self.monthly_rate
        if monthly_rate == 0:
            return self.principal + self.contribution * month

        compound_factor = (1 + monthly_rate) ** month
        principal_growth = self.principal * compound_factor
        contribution_growth = self.contribution * ((compound_factor - 1) / monthly_rate)
        return principal_growth + contribution_growth

    def _future_values(self, months: int) -> NDArray[np.float64]:
        steps = np.arange(1, months + 1, dtype=np.float64)
        monthly_rate = self.monthly_rate
        if monthly_rate == 0:
            return self.principal + self.contribution * steps

        compound_factor = (1 + monthly_rate) ** steps
        return self.principal * compound_factor + self.contribution * (
            (compound_factor - 1) / monthly_rate
        )

    def _month_date(self, month: int) -> dt.date:
        return end_of_month(add_months(self.clock.today(), month))

    def future_value_at_month(self, month: int) -> float:
        """
        Projected balance after ``month`` months, rounded to cents.

        FV(n) = P(1 + r_m)^n + C((1 + r_m)^n - 1) / r_m, reducing to P + C*n
        when r_m is zero.

        Raises:
            InvalidInputError: If month is negative
        """
        month = _require_months(month)
        if month == 0:
            return round(self.principal, 2)
        return round(self._future_value(month), 2)

    def project(self, months: int) -> List[ProjectionPoint]:
        """Projected balance at the end of each of the next ``months`` months."""
        months = _require_months(months)
        values = self._future_values(months)

        points = []
        for index, value in enumerate(values):
            month = index + 1
            contributed = self.contribution * month
            points.append(
                ProjectionPoint(
                    month=month,
                    date=self._month_date(month),
                    value=round(float(value), 2),
                    cumulative_contribution=round(contributed, 2),
                    growth=round(float(value) - self.principal - contributed, 2),
                )
            )
        return points

    def project_with_analytical_bands(
        self, months: int, volatility: Optional[float] = None
    ) -> List[BandPoint]:
        """
        Deterministic projection with closed-form percentile bands.

        Dispersion grows with volatility * sqrt(months / 12).
        """
        months = _require_months(months)
        if volatility is None:
            volatility = self.volatility if self.volatility is not None else 0.0
        volatility = _require_finite("volatility", volatility)
        if volatility < 0:
            raise InvalidInputError(f"volatility cannot be negative: {volatility}")

        values = self._future_values(months)
        sigmas = horizon_sigma(volatility, np.arange(1, months + 1))
        bands = percentile_bands(values, sigmas)

        return [
            BandPoint(
                month=index + 1,
                date=self._month_date(index + 1),
                p10=float(bands["p10"][index]),
                p25=float(bands["p25"][index]),
                p50=float(bands["p50"][index]),
                p75=float(bands["p75"][index]),
                p90=float(bands["p90"][index]),
                mean=round(float(values[index]), 2),
            )
            for index in range(months)
        ]

    def project_with_percentiles(
        self,
        months: int,
        volatility: Optional[float] = None,
        simulations: int = 1000,
        seed: Optional[int] = None,
    ) -> List[BandPoint]:
        """
        Monte Carlo projection with empirical percentiles.

        Each path applies a normally distributed monthly return with mean r_m
        and standard deviation volatility / sqrt(12), then adds the contribution.
        """
        months = _require_months(months)
        if simulations <= 0:
            raise InvalidInputError("Number of simulations must be positive")
        if volatility is None:
            volatility = self.volatility if self.volatility is not None else 0.0
        volatility = _require_finite("volatility", volatility)
        if volatility < 0:
            raise InvalidInputError(f"volatility cannot be negative: {volatility}")

        rng = np.random.default_rng(seed)
        monthly_vol = volatility / np.sqrt(12)
        returns = rng.normal(self.monthly_rate, monthly_vol, (months, simulations))

        balances = np.full(simulations, self.principal, dtype=np.float64)
        results = []
        for index in range(months):
            balances = balances * (1 + returns[index]) + self.contribution
            p10, p25, p50, p75, p90 = np.percentile(balances, [10, 25, 50, 75, 90])
            results.append(
                BandPoint(
                    month=index + 1,
                    date=self._month_date(index + 1),
                    p10=round(float(p10), 2),
                    p25=round(float(p25), 2),
                    p50=round(float(p50), 2),
                    p75=round(float(p75), 2),
                    p90=round(float(p90), 2),
                    mean=round(float(balances.mean()), 2),
                )
            )
        return results

    def months_to_target(self, target: float) -> Optional[int]:
        """
        Months until the projected balance first reaches ``target``.

        Returns:
            0 if already reached, None if unreachable within 100 years
        """
        if self.principal >= target:
            return 0
        if self.rate <= 0 and self.contribution <= 0:
            return None

        if self.monthly_rate == 0:
            return math.ceil((target - self.principal) / self.contribution)

        low, high = 0, MAX_TARGET_SEARCH_MONTHS
        if self._future_value(high) < target:
            return None

        while high - low > 1:
            mid = (low + high) // 2
            if self._future_value(mid) >= target:
                high = mid
            else:
                low = mid
        return high

    def years_to_target(self, target: float) -> Optional[float]:
        """Years until ``target`` is reached (None if unreachable)."""
        months = self.months_to_target(target)
        if months is None:
            return None
        return round(months / 12.0, 2)

    def required_contribution(self, target: float, months: int) -> Optional[float]:
        """Level monthly contribution needed to reach ``target`` in ``months``."""
        if self.principal >= target:
            return 0.0
        if months <= 0:
            return None

        monthly_rate = self.monthly_rate
        if monthly_rate == 0:
            return round((target - self.principal) / months, 2)

        compound_factor = (1 + monthly_rate) ** months
        remaining = target - self.principal * compound_factor
        annuity_factor = (compound_factor - 1) / monthly_rate
        return round(remaining / annuity_factor, 2)

    def real_future_value_at_month(self, month: int, inflation_rate: float) -> float:
        """Future value deflated to today's money."""
        month = _require_months(month)
        inflation_rate = _require_finite("inflation_rate", inflation_rate)
        nominal = self._future_value(month) if month else self.principal
        monthly_inflation = (1 + inflation_rate) ** (1.0 / 12) - 1
        return round(nominal / ((1 + monthly_inflation) ** month), 2)
