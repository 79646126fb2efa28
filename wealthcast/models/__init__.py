"""Pure calculators and value models for projections and debt simulations."""

from .amortization import LoanPayoffCalculator, PaymentBreakdown, PayoffSummary
from .auto_stop import AutoStopRuleSpec, AutoStopRuleType, describe, first_triggered, triggered
from .clock import Clock, FixedClock, SystemClock
from .debt_simulation import (
    BaselineSimulator,
    LedgerRow,
    ModifiedSmithSimulator,
    MortgageTerms,
    PrepayOnlySimulator,
    SimulationInputs,
)
from .forecast_accuracy import AccuracyStats, ForecastAccuracyCalculator
from .loan_terms import LoanTermDefaults
from .milestone_calculator import MilestoneCalculator, TimeToTarget
from .projection_calculator import BandPoint, ProjectionCalculator, ProjectionPoint

__all__ = [
    "ProjectionCalculator",
    "ProjectionPoint",
    "BandPoint",
    "AccuracyStats",
    "ForecastAccuracyCalculator",
    "LoanPayoffCalculator",
    "PaymentBreakdown",
    "PayoffSummary",
    "MilestoneCalculator",
    "TimeToTarget",
    "AutoStopRuleSpec",
    "AutoStopRuleType",
    "triggered",
    "first_triggered",
    "describe",
    "BaselineSimulator",
    "PrepayOnlySimulator",
    "ModifiedSmithSimulator",
    "LedgerRow",
    "MortgageTerms",
    "SimulationInputs",
    "LoanTermDefaults",
    "Clock",
    "SystemClock",
    "FixedClock",
]
