"""
Milestone math: progress, status and time-to-target.

Growth milestones ("reach") are achieved when the balance rises to the target;
reduction milestones ("reduce_to") when the absolute debt falls to the target.
"""

import datetime as dt
import math
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, Field

from .clock import Clock, SystemClock, add_months
from .projection_calculator import MAX_TARGET_SEARCH_MONTHS, ProjectionCalculator

REACH = "reach"
REDUCE_TO = "reduce_to"
TARGET_TYPES = (REACH, REDUCE_TO)

PENDING = "pending"
IN_PROGRESS = "in_progress"
ACHIEVED = "achieved"
MILESTONE_STATUSES = (PENDING, IN_PROGRESS, ACHIEVED)

STANDARD_MILESTONES: List[Tuple[str, float]] = [
    ("$10K", 10_000),
    ("$25K", 25_000),
    ("$50K", 50_000),
    ("$100K", 100_000),
    ("$250K", 250_000),
    ("$500K", 500_000),
    ("$750K", 750_000),
    ("$1M", 1_000_000),
    ("$2M", 2_000_000),
    ("$5M", 5_000_000),
]

# Fraction of the current debt paid off
DEBT_MILESTONES: List[Tuple[str, float]] = [
    ("25% Paid Off", 0.25),
    ("50% Paid Off", 0.50),
    ("75% Paid Off", 0.75),
    ("90% Paid Off", 0.90),
    ("Paid Off!", 1.00),
]


def default_target_type(is_liability: bool) -> str:
    return REDUCE_TO if is_liability else REACH


def target_reached(target_type: str, target_amount: float, balance: float) -> bool:
    """Whether ``balance`` satisfies the milestone in its favorable direction."""
    if target_type == REDUCE_TO:
        return abs(balance) <= target_amount
    return balance >= target_amount


def debt_milestone_targets(current_balance: float) -> List[Tuple[str, float]]:
    """Reduction targets for the standard paid-off percentages of a debt."""
    debt = abs(current_balance)
    return [(name, round(debt * (1 - fraction), 2)) for name, fraction in DEBT_MILESTONES]


def milestone_progress(
    target_type: str,
    target_amount: float,
    current_balance: float,
    starting_balance: Optional[float] = None,
) -> float:
    """
    Progress toward a target as a percentage in [0, 100].

    Reduction progress is measured from ``starting_balance`` (defaults to the
    current absolute balance): (start - current) / (start - target).
    """
    if target_type == REDUCE_TO:
        start = abs(current_balance) if starting_balance is None else starting_balance
        current = abs(current_balance)
        if start <= target_amount or current <= target_amount:
            return 100.0
        needed = start - target_amount
        progress = (start - current) / needed * 100
        return round(min(max(progress, 0.0), 100.0), 2)

    if target_amount == 0:
        return 0.0
    return round(max(min(current_balance / target_amount * 100, 100.0), 0.0), 2)


def milestone_status(
    target_type: str, target_amount: float, current_balance: float, progress: float
) -> str:
    if target_reached(target_type, target_amount, current_balance):
        return ACHIEVED
    if progress > 0:
        return IN_PROGRESS
    return PENDING


class TimeToTarget(BaseModel):
    """Estimated time until a target is reached."""

    achieved: bool = False
    achievable: bool = True
    months: Optional[int] = Field(None, ge=0)
    years: Optional[float] = None
    projected_date: Optional[dt.date] = None
    reason: Optional[str] = None


class RequiredContribution(BaseModel):
    """Level monthly contribution needed to hit a target by a date."""

    achieved: bool = False
    achievable: bool = True
    required_monthly: Optional[float] = None
    required_annual: Optional[float] = None
    months: Optional[int] = None
    reason: Optional[str] = None


class MilestoneCalculator:
    """Time-to-goal estimates for hypothetical growth and debt milestones."""

    def __init__(
        self,
        current_balance: float,
        expected_return: float,
        monthly_contribution: float = 0.0,
        currency: str = "CAD",
        target_type: str = REACH,
        clock: Optional[Clock] = None,
    ):
        self.current_balance = float(current_balance)
        self.expected_return = float(expected_return)
        self.monthly_contribution = float(monthly_contribution)
        self.currency = currency
        self.target_type = target_type
        self.clock = clock or SystemClock()

    @property
    def is_reduction(self) -> bool:
        return self.target_type == REDUCE_TO

    def time_to_target(self, target: float) -> TimeToTarget:
        if self.is_reduction:
            return self._time_to_reduce_to(target)
        return self._time_to_grow_to(target)

    def _dated(self, months: int) -> TimeToTarget:
        return TimeToTarget(
            months=months,
            years=round(months / 12.0, 1),
            projected_date=add_months(self.clock.today(), months),
        )

    def _time_to_grow_to(self, target: float) -> TimeToTarget:
        if self.current_balance >= target:
            return TimeToTarget(achieved=True, months=0, years=0)

        calculator = ProjectionCalculator(
            principal=self.current_balance,
            rate=self.expected_return,
            contribution=self.monthly_contribution,
            currency=self.currency,
            clock=self.clock,
        )
        months = calculator.months_to_target(target)
        if months is None:
            return TimeToTarget(achievable=False)
        return self._dated(months)

    def _time_to_reduce_to(self, target: float) -> TimeToTarget:
        """
        Closed-form payoff time with the contribution as the payment.

        n = -log(1 - r * P / M) / log(1 + r), where P is the amount still to
        pay down, M the monthly payment and r the monthly rate.
        """
        current = abs(self.current_balance)
        if current <= target:
            return TimeToTarget(achieved=True, months=0, years=0)

        payment = abs(self.monthly_contribution)
        if payment == 0:
            return TimeToTarget(achievable=False, reason="No payment configured")

        monthly_rate = abs(self.expected_return) / 12.0
        remaining = current - target
        if payment <= remaining * monthly_rate:
            return TimeToTarget(
                achievable=False, reason="Cannot pay off with current payment"
            )

        if monthly_rate == 0:
            months = math.ceil(remaining / payment)
        else:
            months = math.ceil(
                -math.log(1 - monthly_rate * remaining / payment)
                / math.log(1 + monthly_rate)
            )

        if months > MAX_TARGET_SEARCH_MONTHS:
            return TimeToTarget(achievable=False)
        return self._dated(months)

    def required_contribution(
        self, target: float, target_date: dt.date
    ) -> RequiredContribution:
        if target_reached(self.target_type, target, self.current_balance):
            return RequiredContribution(achieved=True, required_monthly=0.0)

        delta = relativedelta(target_date, self.clock.today())
        months = delta.years * 12 + delta.months
        if months <= 0:
            return RequiredContribution(
                achievable=False, reason="Target date is in the past"
            )

        calculator = ProjectionCalculator(
            principal=self.current_balance,
            rate=self.expected_return,
            currency=self.currency,
            clock=self.clock,
        )
        required = calculator.required_contribution(target, months)
        return RequiredContribution(
            achievable=required is not None and required >= 0,
            required_monthly=required,
            required_annual=None if required is None else round(required * 12, 2),
            months=months,
        )

    def progress(self, target: float) -> float:
        return milestone_progress(self.target_type, target, self.current_balance)

    def standard_targets(self) -> List[Tuple[str, float]]:
        if self.is_reduction:
            return debt_milestone_targets(self.current_balance)
        return list(STANDARD_MILESTONES)
