"""
Forecast accuracy metrics.

Compares recorded actual balances against the balances that were projected
for the same dates: MAPE, RMSE, tracking signal, bias and an overall score.
An empty input yields None ("accuracy unknown"), never an error and never zero.
"""

import math
from typing import Iterable, List, Optional, Protocol

from pydantic import BaseModel, Field

ON_TRACK_THRESHOLD_PCT = -10.0
BIAS_TRACKING_SIGNAL_LIMIT = 4.0


class ProjectionObservation(Protocol):
    """Anything carrying a projected and (optionally) an actual balance."""

    projected_balance: Optional[float]
    actual_balance: Optional[float]


def variance(projected: Optional[float], actual: Optional[float]) -> Optional[float]:
    """Actual minus projected, or None when either side is missing."""
    if projected is None or actual is None:
        return None
    return round(float(actual) - float(projected), 2)


def variance_percentage(
    projected: Optional[float], actual: Optional[float]
) -> Optional[float]:
    """Variance relative to |projected| in percent; undefined when projected is zero."""
    if projected is None or actual is None or float(projected) == 0:
        return None
    projected = float(projected)
    return round((float(actual) - projected) / abs(projected) * 100, 2)


def is_on_track(projected: Optional[float], actual: Optional[float]) -> Optional[bool]:
    """True unless the actual fell more than 10% below the projection."""
    pct = variance_percentage(projected, actual)
    if pct is None:
        return None
    return pct >= ON_TRACK_THRESHOLD_PCT


class AccuracyStats(BaseModel):
    """Aggregate forecast accuracy statistics."""

    count: int = Field(..., ge=1, description="Projections with actuals")
    mape: Optional[float] = Field(None, description="Mean absolute percentage error")
    mean_variance: float = Field(..., description="Mean of actual - projected")
    on_track_count: int = Field(..., ge=0, description="Months within -10% of projection")
    rmse: float = Field(..., ge=0, description="Root mean square error")
    mean_absolute_deviation: float = Field(..., ge=0)
    tracking_signal: Optional[float] = Field(
        None, description="Cumulative error divided by MAD"
    )
    bias: float = Field(..., description="Mean of projected - actual")
    accuracy_score: Optional[int] = Field(None, ge=0, le=100)
    assessment: str
    bias_detected: bool
    recommendation: str


class ForecastAccuracyCalculator:
    """Calculates accuracy metrics for projections that have recorded actuals."""

    def __init__(self, projections: Iterable[ProjectionObservation]):
        self.projections = list(projections)
        self.valid_projections = [
            p
            for p in self.projections
            if p.actual_balance is not None and p.projected_balance is not None
        ]

    def calculate(self) -> Optional[AccuracyStats]:
        """All metrics, or None when no projection has an actual balance."""
        if not self.valid_projections:
            return None

        return AccuracyStats(
            count=len(self.valid_projections),
            mape=self.mean_absolute_percentage_error(),
            mean_variance=self.mean_variance(),
            on_track_count=self.on_track_count(),
            rmse=self.root_mean_square_error(),
            mean_absolute_deviation=self.mean_absolute_deviation(),
            tracking_signal=self.tracking_signal(),
            bias=self.forecast_bias(),
            accuracy_score=self.accuracy_score(),
            assessment=self.accuracy_assessment(),
            bias_detected=self.bias_detected(),
            recommendation=self.recommendation(),
        )

    def _errors(self) -> List[float]:
        return [
            float(p.actual_balance) - float(p.projected_balance)
            for p in self.valid_projections
        ]

    def mean_absolute_percentage_error(self) -> Optional[float]:
        """Mean |actual - projected| / |projected| in percent, skipping zero projections."""
        errors = [
            abs(float(p.actual_balance) - float(p.projected_balance))
            / abs(float(p.projected_balance))
            * 100
            for p in self.valid_projections
            if float(p.projected_balance) != 0
        ]
        if not errors:
            return None
        return round(sum(errors) / len(errors), 2)

    def mean_variance(self) -> Optional[float]:
        errors = self._errors()
        if not errors:
            return None
        return round(sum(errors) / len(errors), 2)

    def on_track_count(self) -> int:
        return sum(
            1
            for p in self.valid_projections
            if is_on_track(p.projected_balance, p.actual_balance)
        )

    def root_mean_square_error(self) -> Optional[float]:
        errors = self._errors()
        if not errors:
            return None
        return round(math.sqrt(sum(e**2 for e in errors) / len(errors)), 2)

    def mean_absolute_deviation(self) -> Optional[float]:
        errors = self._errors()
        if not errors:
            return None
        return round(sum(abs(e) for e in errors) / len(errors), 2)

    def tracking_signal(self) -> Optional[float]:
        """Cumulative error over MAD; outside [-4, 4] suggests systematic bias."""
        errors = self._errors()
        mad = self.mean_absolute_deviation()
        if not errors or not mad:
            return None
        return round(sum(errors) / mad, 2)

    def forecast_bias(self) -> Optional[float]:
        """Positive means over-forecasting, negative under-forecasting."""
        errors = self._errors()
        if not errors:
            return None
        return round(-sum(errors) / len(errors), 2)

    def accuracy_score(self) -> Optional[int]:
        """Score 0-100: up to 70 points from MAPE and 30 from the tracking signal."""
        mape = self.mean_absolute_percentage_error()
        if mape is None:
            return None

        if mape <= 5:
            mape_score = 70
        elif mape <= 10:
            mape_score = 60
        elif mape <= 20:
            mape_score = 40
        elif mape <= 50:
            mape_score = 20
        else:
            mape_score = 0

        signal = self.tracking_signal()
        if signal is None:
            ts_score = 15
        elif abs(signal) <= 2:
            ts_score = 30
        elif abs(signal) <= 4:
            ts_score = 20
        elif abs(signal) <= 6:
            ts_score = 10
        else:
            ts_score = 0

        return mape_score + ts_score

    def accuracy_assessment(self) -> str:
        score = self.accuracy_score()
        if score is None:
            return "Insufficient data"
        if score >= 80:
            return "Excellent"
        if score >= 60:
            return "Good"
        if score >= 40:
            return "Fair"
        if score >= 20:
            return "Poor"
        return "Very Poor"

    def bias_detected(self) -> bool:
        signal = self.tracking_signal()
        return signal is not None and abs(signal) > BIAS_TRACKING_SIGNAL_LIMIT

    def recommendation(self) -> str:
        if len(self.valid_projections) < 3:
            return "Add more actual balance data to improve accuracy measurement"

        if self.bias_detected():
            if self.tracking_signal() > 0:
                return (
                    "Forecasts consistently under-predict. "
                    "Consider increasing expected return assumptions."
                )
            return (
                "Forecasts consistently over-predict. "
                "Consider decreasing expected return assumptions."
            )

        score = self.accuracy_score()
        if score is None or score < 40:
            return "Consider reviewing and adjusting projection assumptions."
        return "Forecast accuracy is acceptable. Continue monitoring."
