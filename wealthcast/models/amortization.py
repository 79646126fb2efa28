"""
Loan amortization and payoff calculations.

This module walks a fixed-rate loan's amortization schedule month by month to
answer payoff questions: when the balance reaches a given threshold, how much
interest remains, and what an extra monthly payment saves.
"""

import datetime as dt
import math
from typing import List, Optional

from pydantic import BaseModel, Field

from wealthcast.errors import InvalidInputError

from .clock import Clock, SystemClock, add_months
from .loan_terms import level_payment, simple_monthly_rate

PAYOFF_TOLERANCE = 0.01


class PaymentBreakdown(BaseModel):
    """Breakdown of a single loan payment."""

    payment_number: int = Field(..., ge=1, description="Payment number (1-based)")
    date: dt.date = Field(..., description="Date of the payment")
    payment: float = Field(..., ge=0, description="Total payment amount")
    principal: float = Field(..., ge=0, description="Principal portion of payment")
    interest: float = Field(..., ge=0, description="Interest portion of payment")
    balance: float = Field(..., ge=0, description="Balance after the payment")
    cumulative_interest: float = Field(..., ge=0, description="Interest paid so far")


class PayoffSummary(BaseModel):
    """Payoff overview for a loan."""

    current_balance: float = Field(..., ge=0)
    monthly_payment: float = Field(..., ge=0, description="Payment including any extra")
    annual_rate: float = Field(..., ge=0)
    months_to_payoff: Optional[int] = Field(None, ge=0)
    payoff_date: Optional[dt.date] = None
    years_remaining: Optional[float] = None
    total_interest_remaining: float = Field(..., ge=0)
    total_amount_remaining: float = Field(..., ge=0)


class LoanPayoffCalculator:
    """Amortization schedule solver for a fixed-rate, fixed-term loan."""

    def __init__(
        self,
        balance: float,
        annual_rate: float,
        term_months: int = 300,
        monthly_payment: Optional[float] = None,
        extra_payment: float = 0.0,
        clock: Optional[Clock] = None,
    ):
        """Initialize the calculator.

        Args:
            balance: Outstanding balance (sign is ignored; liabilities are negative)
            annual_rate: Annual interest rate as a decimal (0.05 for 5%)
            term_months: Remaining amortization term in months
            monthly_payment: Scheduled payment; derived from the term when omitted
            extra_payment: Additional principal paid every month
            clock: Source of "today" for payment dates
        """
        if not math.isfinite(float(annual_rate)) or annual_rate < 0:
            raise InvalidInputError(f"annual_rate must be a finite non-negative number: {annual_rate}")
        if term_months <= 0:
            raise InvalidInputError(f"term_months must be positive: {term_months}")
        if extra_payment < 0:
            raise InvalidInputError(f"extra_payment cannot be negative: {extra_payment}")

        self.balance = abs(float(balance))
        self.annual_rate = float(annual_rate)
        self.term_months = int(term_months)
        self.extra_payment = float(extra_payment)
        self.clock = clock or SystemClock()
        self._monthly_payment = monthly_payment

    @staticmethod
    def calculate_monthly_payment(
        principal: float, annual_rate: float, term_months: int
    ) -> float:
        """
        Standard amortized monthly payment, rounded to the cent.

        Args:
            principal: Loan principal amount
            annual_rate: Annual interest rate (as decimal, e.g., 0.055 for 5.5%)
            term_months: Loan term in months

        Returns:
            Monthly payment amount
        """
        return round(
            level_payment(principal, simple_monthly_rate(annual_rate), term_months), 2
        )

    @property
    def monthly_rate(self) -> float:
        return simple_monthly_rate(self.annual_rate)

    @property
    def monthly_payment(self) -> float:
        """Scheduled payment, excluding the extra payment."""
        if self._monthly_payment is not None:
            return float(self._monthly_payment)
        return level_payment(self.balance, self.monthly_rate, self.term_months)

    @property
    def total_monthly_payment(self) -> float:
        return self.monthly_payment + self.extra_payment

    def is_payable(self) -> bool:
        return self.balance > 0 and self.monthly_payment > 0

    def amortization_schedule(self) -> List[PaymentBreakdown]:
        """
        Walk the schedule until the loan is paid off or the term runs out.

        Interest is balance * monthly_rate on the unrounded remaining balance;
        the principal portion is the payment minus that interest. A payment
        that does not cover interest ends the schedule.
        """
        if not self.is_payable():
            return []

        schedule = []
        balance = self.balance
        payment = self.total_monthly_payment
        monthly_rate = self.monthly_rate
        cumulative_interest = 0.0
        today = self.clock.today()

        month = 0
        while balance > PAYOFF_TOLERANCE and month < self.term_months:
            month += 1
            interest = balance * monthly_rate
            principal = min(payment - interest, balance)
            if principal <= 0:
                break

            balance -= principal
            cumulative_interest += interest
            schedule.append(
                PaymentBreakdown(
                    payment_number=month,
                    date=add_months(today, month),
                    payment=round(principal + interest, 2),
                    principal=round(principal, 2),
                    interest=round(interest, 2),
                    balance=round(max(balance, 0.0), 2),
                    cumulative_interest=round(cumulative_interest, 2),
                )
            )

        return schedule

    def projected_date_for_target(self, target_balance: float) -> Optional[dt.date]:
        """Date of the first payment leaving the balance at or below the target."""
        for entry in self.amortization_schedule():
            if entry.balance <= target_balance:
                return entry.date
        return None

    def summary(self) -> PayoffSummary:
        if not self.is_payable():
            return PayoffSummary(
                current_balance=self.balance,
                monthly_payment=0.0,
                annual_rate=self.annual_rate,
                total_interest_remaining=0.0,
                total_amount_remaining=self.balance,
            )

        schedule = self.amortization_schedule()
        months = len(schedule)
        return PayoffSummary(
            current_balance=self.balance,
            monthly_payment=round(self.total_monthly_payment, 2),
            annual_rate=self.annual_rate,
            months_to_payoff=months,
            payoff_date=add_months(self.clock.today(), months),
            years_remaining=round(months / 12.0, 1),
            total_interest_remaining=round(sum(e.interest for e in schedule), 2),
            total_amount_remaining=round(sum(e.payment for e in schedule), 2),
        )

    def _without_extra_payment(self) -> "LoanPayoffCalculator":
        return LoanPayoffCalculator(
            balance=self.balance,
            annual_rate=self.annual_rate,
            term_months=self.term_months,
            monthly_payment=self._monthly_payment,
            clock=self.clock,
        )

    def interest_saved_with_extra_payment(self) -> float:
        """Interest avoided by paying ``extra_payment`` every month."""
        if self.extra_payment <= 0:
            return 0.0
        baseline = sum(e.interest for e in self._without_extra_payment().amortization_schedule())
        accelerated = sum(e.interest for e in self.amortization_schedule())
        return round(baseline - accelerated, 2)

    def months_saved_with_extra_payment(self) -> int:
        if self.extra_payment <= 0:
            return 0
        baseline = len(self._without_extra_payment().amortization_schedule())
        return baseline - len(self.amortization_schedule())
