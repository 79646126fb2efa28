"""
Month-by-month debt optimization simulators.

Three strategies share one mortgage/HELOC state model:

- baseline: scheduled amortization only.
- prepay_only: scheduled amortization plus prepayments funded by the net rental
  cash flow, limited by the mortgage's annual prepayment privilege.
- modified_smith: the principal portion of each regular primary payment is
  re-borrowed from a readvanceable HELOC and invested; HELOC interest is
  tax-deductible; the net rental cash flow services HELOC interest, then
  repays HELOC principal, then prepays the primary mortgage.

Each simulator produces one LedgerRow per simulated month and evaluates the
configured auto-stop rules after every month.
"""

import datetime as dt
import logging
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from .auto_stop import StopRule, describe, first_triggered
from .clock import add_months
from .loan_terms import (
    LoanTermDefaults,
    mortgage_monthly_rate,
    mortgage_payment,
    simple_monthly_rate,
)

logger = logging.getLogger(__name__)

BASELINE = "baseline"
PREPAY_ONLY = "prepay_only"
MODIFIED_SMITH = "modified_smith"
SCENARIO_TYPES = (BASELINE, PREPAY_ONLY, MODIFIED_SMITH)

# Balances below half a cent count as repaid
PAID_OFF_TOLERANCE = 0.005


class MortgageTerms(BaseModel):
    """Configuration of one amortizing mortgage."""

    balance: float = Field(..., ge=0, description="Outstanding balance at simulation start")
    annual_rate: float = Field(..., ge=0, le=1, description="Annual rate as a decimal")
    term_months: int = Field(..., ge=1, le=600, description="Remaining amortization")
    renewal_term_months: int = Field(
        default=60, ge=0, description="Months between renewals (0 disables renewals)"
    )
    renewal_rate: Optional[float] = Field(
        None, ge=0, le=1, description="Rate applied at renewal; current rate if unset"
    )
    prepayment_privilege_percent: Optional[float] = Field(
        None, ge=0, le=100, description="Annual prepayment cap, % of starting balance"
    )
    annual_lump_sum_month: Optional[int] = Field(None, ge=1, le=12)
    annual_lump_sum_amount: Optional[float] = Field(None, ge=0)


class SimulationInputs(BaseModel):
    """Everything a simulator needs, already resolved against defaults."""

    primary: MortgageTerms
    rental: Optional[MortgageTerms] = None
    heloc_rate: float = Field(default=0.07, ge=0, le=1)
    heloc_credit_limit: float = Field(default=100_000.0, ge=0)
    heloc_starting_balance: float = Field(default=0.0, ge=0)
    rental_income: float = Field(default=0.0, ge=0, description="Monthly rental income")
    rental_expenses: float = Field(default=0.0, ge=0, description="Monthly rental expenses")
    marginal_tax_rate: float = Field(default=0.40, ge=0, le=1)
    simulation_months: int = Field(..., ge=1, le=600)
    start_date: dt.date = Field(..., description="First simulated calendar month")


class LedgerRow(BaseModel):
    """State of one simulated month."""

    scenario_type: str
    month_number: int = Field(..., ge=0)
    calendar_month: dt.date

    rental_income: float = 0.0
    rental_expenses: float = 0.0
    net_rental_cash_flow: float = 0.0

    heloc_draw: float = 0.0
    heloc_repayment: float = 0.0
    heloc_balance: float = 0.0
    heloc_interest: float = 0.0
    heloc_interest_from_rental: float = 0.0
    heloc_interest_from_pocket: float = 0.0
    heloc_credit_limit: float = 0.0
    invested_amount: float = 0.0

    primary_mortgage_rate: float = 0.0
    primary_mortgage_balance: float = 0.0
    primary_mortgage_payment: float = 0.0
    primary_mortgage_principal: float = 0.0
    primary_mortgage_interest: float = 0.0
    primary_mortgage_prepayment: float = 0.0

    rental_mortgage_balance: float = 0.0
    rental_mortgage_payment: float = 0.0
    rental_mortgage_principal: float = 0.0
    rental_mortgage_interest: float = 0.0

    deductible_interest: float = 0.0
    non_deductible_interest: float = 0.0
    tax_benefit: float = 0.0
    cumulative_tax_benefit: float = 0.0
    total_debt: float = 0.0

    strategy_stopped: bool = False
    stop_reason: Optional[str] = None

    def primary_mortgage_paid_off(self) -> bool:
        return self.primary_mortgage_balance <= 0

    def total_outstanding_debt(self) -> float:
        return self.primary_mortgage_balance + self.heloc_balance + self.rental_mortgage_balance

    def all_debt_paid_off(self) -> bool:
        return self.total_outstanding_debt() <= 0


class MortgagePosition:
    """Running balance, rate and payment of one mortgage."""

    def __init__(self, terms: MortgageTerms, compounding: str = "semi_annual"):
        self.terms = terms
        self.compounding = compounding
        self.balance = terms.balance
        self.rate = terms.annual_rate
        self.payment = mortgage_payment(
            self.balance, self.rate, terms.term_months, compounding
        )

    @property
    def paid_off(self) -> bool:
        return self.balance <= 0

    def renew_if_due(self, month: int) -> bool:
        """
        Reset the rate at each renewal and re-amortize over the remaining term.

        The balance is untouched; only the rate and payment change.
        """
        term = self.terms.renewal_term_months
        if term <= 0 or month <= 0 or month % term != 0:
            return False

        if self.terms.renewal_rate is not None:
            self.rate = self.terms.renewal_rate
        remaining = self.terms.term_months - month
        if remaining > 0:
            self.payment = mortgage_payment(self.balance, self.rate, remaining, self.compounding)
        logger.debug(f"Mortgage renewed at month {month}: rate={self.rate}, payment={self.payment:.2f}")
        return True

    def scheduled(self):
        """(interest, principal) of this month's regular payment."""
        if self.paid_off:
            return 0.0, 0.0
        interest = self.balance * mortgage_monthly_rate(self.rate, self.compounding)
        principal = max(min(self.payment - interest, self.balance), 0.0)
        return interest, principal

    def scheduled_payment(self) -> float:
        return 0.0 if self.paid_off else self.payment

    def reduce(self, amount: float) -> None:
        self.balance = self.balance - amount
        if self.balance < PAID_OFF_TOLERANCE:
            self.balance = 0.0


class DebtSimulator:
    """
    Shared month loop for all strategies.

    Subclasses implement ``_step`` to produce one month's row. The loop stops
    after the first month where an enabled rule triggers, or once the primary
    and rental mortgages are both paid off.
    """

    scenario_type: str = ""

    def __init__(
        self,
        inputs: SimulationInputs,
        defaults: Optional[LoanTermDefaults] = None,
        rules: Sequence[StopRule] = (),
    ):
        self.inputs = inputs
        self.defaults = defaults or LoanTermDefaults()
        self.rules = list(rules)

    def _reset(self) -> None:
        compounding = self.defaults.mortgage_compounding
        self.primary = MortgagePosition(self.inputs.primary, compounding)
        self.rental = (
            MortgagePosition(self.inputs.rental, compounding)
            if self.inputs.rental is not None
            else None
        )
        self.cumulative_tax_benefit = 0.0
        self._privilege_year: Optional[int] = None
        self._prepaid_this_year = 0.0

    @property
    def privilege_limit(self) -> float:
        """Annual prepayment cap, fixed from the balance at simulation start."""
        percent = self.inputs.primary.prepayment_privilege_percent
        if percent is None:
            return float("inf")
        return self.inputs.primary.balance * percent / 100.0

    def _remaining_privilege(self, calendar_month: dt.date) -> float:
        if self._privilege_year != calendar_month.year:
            self._privilege_year = calendar_month.year
            self._prepaid_this_year = 0.0
        return max(self.privilege_limit - self._prepaid_this_year, 0.0)

    def _record_prepayment(self, amount: float) -> None:
        self._prepaid_this_year += amount

    def _debt_retired(self) -> bool:
        return self.primary.paid_off and (self.rental is None or self.rental.paid_off)

    def simulate(self) -> List[LedgerRow]:
        self._reset()
        rows: List[LedgerRow] = []

        for month in range(self.inputs.simulation_months):
            calendar_month = add_months(self.inputs.start_date, month)
            row = self._step(month, calendar_month)
            rows.append(row)

            rule = first_triggered(self.rules, row)
            if rule is not None:
                row.strategy_stopped = True
                row.stop_reason = describe(rule)
                logger.info(
                    f"{self.scenario_type} simulation stopped at month {month}: {row.stop_reason}"
                )
                break

            if self._debt_retired():
                break

        return rows

    def _step(self, month: int, calendar_month: dt.date) -> LedgerRow:
        raise NotImplementedError


class AmortizingSimulator(DebtSimulator):
    """Baseline amortization with an optional prepayment hook."""

    def calculate_prepayment(
        self, net_rental_cash_flow: float, balance_after_payment: float, remaining_privilege: float
    ) -> float:
        return 0.0

    def _step(self, month: int, calendar_month: dt.date) -> LedgerRow:
        inputs = self.inputs
        self.primary.renew_if_due(month)
        if self.rental is not None:
            self.rental.renew_if_due(month)

        primary_rate = self.primary.rate
        primary_payment = self.primary.scheduled_payment()
        primary_interest, primary_principal = self.primary.scheduled()
        rental_payment = self.rental.scheduled_payment() if self.rental else 0.0
        rental_interest, rental_principal = self.rental.scheduled() if self.rental else (0.0, 0.0)

        net_rental = inputs.rental_income - inputs.rental_expenses - rental_interest

        remaining_privilege = self._remaining_privilege(calendar_month)
        prepayment = self.calculate_prepayment(
            net_rental, self.primary.balance - primary_principal, remaining_privilege
        )
        self._record_prepayment(prepayment)

        self.primary.reduce(primary_principal + prepayment)
        if self.rental is not None:
            self.rental.reduce(rental_principal)
        rental_balance = self.rental.balance if self.rental else 0.0

        return LedgerRow(
            scenario_type=self.scenario_type,
            month_number=month,
            calendar_month=calendar_month,
            rental_income=inputs.rental_income,
            rental_expenses=inputs.rental_expenses,
            net_rental_cash_flow=net_rental,
            primary_mortgage_rate=primary_rate,
            primary_mortgage_balance=self.primary.balance,
            primary_mortgage_payment=primary_payment,
            primary_mortgage_principal=primary_principal,
            primary_mortgage_interest=primary_interest,
            primary_mortgage_prepayment=prepayment,
            rental_mortgage_balance=rental_balance,
            rental_mortgage_payment=rental_payment,
            rental_mortgage_principal=rental_principal,
            rental_mortgage_interest=rental_interest,
            deductible_interest=rental_interest,
            non_deductible_interest=primary_interest,
            tax_benefit=0.0,
            cumulative_tax_benefit=0.0,
            total_debt=self.primary.balance + rental_balance,
        )


class BaselineSimulator(AmortizingSimulator):
    """Scheduled payments only."""

    scenario_type = BASELINE


class PrepayOnlySimulator(AmortizingSimulator):
    """Prepays the primary mortgage from rental surplus, within the privilege."""

    scenario_type = PREPAY_ONLY

    def calculate_prepayment(
        self, net_rental_cash_flow: float, balance_after_payment: float, remaining_privilege: float
    ) -> float:
        if balance_after_payment <= 0:
            return 0.0
        return min(max(net_rental_cash_flow, 0.0), balance_after_payment, remaining_privilege)


class ModifiedSmithSimulator(DebtSimulator):
    """Leveraged strategy using a readvanceable HELOC."""

    scenario_type = MODIFIED_SMITH

    def _reset(self) -> None:
        super()._reset()
        self.heloc_balance = self.inputs.heloc_starting_balance
        self.invested_amount = 0.0

    @property
    def heloc_cap(self) -> float:
        """
        Ceiling on the HELOC balance: the credit limit, further capped at a
        fixed share of the original primary balance. It never grows as the
        mortgage amortizes.
        """
        readvanceable = self.defaults.readvanceable_max_ratio * self.inputs.primary.balance
        return min(self.inputs.heloc_credit_limit, readvanceable)

    def _lump_sum(self, calendar_month: dt.date) -> float:
        terms = self.inputs.primary
        if not terms.annual_lump_sum_month or not terms.annual_lump_sum_amount:
            return 0.0
        if calendar_month.month != terms.annual_lump_sum_month:
            return 0.0
        return terms.annual_lump_sum_amount

    def _step(self, month: int, calendar_month: dt.date) -> LedgerRow:
        inputs = self.inputs
        self.primary.renew_if_due(month)
        if self.rental is not None:
            self.rental.renew_if_due(month)

        primary_rate = self.primary.rate
        primary_payment = self.primary.scheduled_payment()
        primary_interest, primary_principal = self.primary.scheduled()
        rental_payment = self.rental.scheduled_payment() if self.rental else 0.0
        rental_interest, rental_principal = self.rental.scheduled() if self.rental else (0.0, 0.0)

        net_rental = inputs.rental_income - inputs.rental_expenses - rental_interest
        surplus = max(net_rental, 0.0)

        # Waterfall: HELOC interest, then HELOC principal, then prepayment
        heloc_interest = self.heloc_balance * simple_monthly_rate(inputs.heloc_rate)
        interest_from_rental = min(heloc_interest, surplus)
        interest_from_pocket = heloc_interest - interest_from_rental
        surplus -= interest_from_rental

        heloc_repayment = min(surplus, self.heloc_balance)
        surplus -= heloc_repayment

        balance_after_payment = self.primary.balance - primary_principal
        remaining_privilege = self._remaining_privilege(calendar_month)
        prepayment = 0.0
        if balance_after_payment > 0:
            prepayment = min(
                surplus + self._lump_sum(calendar_month),
                balance_after_payment,
                remaining_privilege,
            )
        self._record_prepayment(prepayment)

        heloc_after_repayment = self.heloc_balance - heloc_repayment
        available_credit = max(self.heloc_cap - heloc_after_repayment, 0.0)
        heloc_draw = min(primary_principal, available_credit)
        self.heloc_balance = heloc_after_repayment + heloc_draw
        self.invested_amount += heloc_draw

        self.primary.reduce(primary_principal + prepayment)
        if self.rental is not None:
            self.rental.reduce(rental_principal)
        rental_balance = self.rental.balance if self.rental else 0.0

        tax_benefit = heloc_interest * inputs.marginal_tax_rate
        self.cumulative_tax_benefit += tax_benefit

        return LedgerRow(
            scenario_type=self.scenario_type,
            month_number=month,
            calendar_month=calendar_month,
            rental_income=inputs.rental_income,
            rental_expenses=inputs.rental_expenses,
            net_rental_cash_flow=net_rental,
            heloc_draw=heloc_draw,
            heloc_repayment=heloc_repayment,
            heloc_balance=self.heloc_balance,
            heloc_interest=heloc_interest,
            heloc_interest_from_rental=interest_from_rental,
            heloc_interest_from_pocket=interest_from_pocket,
            heloc_credit_limit=inputs.heloc_credit_limit,
            invested_amount=self.invested_amount,
            primary_mortgage_rate=primary_rate,
            primary_mortgage_balance=self.primary.balance,
            primary_mortgage_payment=primary_payment,
            primary_mortgage_principal=primary_principal,
            primary_mortgage_interest=primary_interest,
            primary_mortgage_prepayment=prepayment,
            rental_mortgage_balance=rental_balance,
            rental_mortgage_payment=rental_payment,
            rental_mortgage_principal=rental_principal,
            rental_mortgage_interest=rental_interest,
            deductible_interest=rental_interest + heloc_interest,
            non_deductible_interest=primary_interest,
            tax_benefit=tax_benefit,
            cumulative_tax_benefit=self.cumulative_tax_benefit,
            total_debt=self.primary.balance + rental_balance + self.heloc_balance,
        )


SIMULATORS = {
    BASELINE: BaselineSimulator,
    PREPAY_ONLY: PrepayOnlySimulator,
    MODIFIED_SMITH: ModifiedSmithSimulator,
}

# Scenarios recorded for each strategy type, comparison scenarios first
SCENARIOS_FOR_STRATEGY = {
    BASELINE: (BASELINE,),
    PREPAY_ONLY: (BASELINE, PREPAY_ONLY),
    MODIFIED_SMITH: (BASELINE, PREPAY_ONLY, MODIFIED_SMITH),
}
