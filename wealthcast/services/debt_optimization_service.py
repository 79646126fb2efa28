"""
Debt optimization service.

Runs the simulators for a strategy, atomically replaces the strategy's ledger
and caches summary metrics computed with SQL aggregates. Annual and
multi-year deductible-interest reports and a CSV export are built from the
stored ledger for tax filing.
"""

import csv
import io
import logging
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import delete, func, insert
from sqlalchemy.orm import Session

from wealthcast.config import Settings, get_global_settings
from wealthcast.database.models import (
    Account,
    AutoStopRule,
    DebtOptimizationLedgerEntry,
    DebtOptimizationStrategy,
)
from wealthcast.errors import InvalidInputError, SimulationConsistencyError
from wealthcast.models.clock import Clock, SystemClock, beginning_of_month
from wealthcast.models.debt_simulation import (
    BASELINE,
    SCENARIOS_FOR_STRATEGY,
    SIMULATORS,
    LedgerRow,
    MortgageTerms,
    SimulationInputs,
)
from wealthcast.models.loan_terms import LoanTermDefaults

logger = logging.getLogger(__name__)

LedgerEntry = DebtOptimizationLedgerEntry

AUDIT_CSV_COLUMNS = [
    ("Month", "month_number"),
    ("Calendar Month", "calendar_month"),
    ("Rental Income", "rental_income"),
    ("Rental Expenses", "rental_expenses"),
    ("Net Rental Cash Flow", "net_rental_cash_flow"),
    ("HELOC Draw", "heloc_draw"),
    ("HELOC Balance", "heloc_balance"),
    ("HELOC Interest", "heloc_interest"),
    ("Primary Mortgage Balance", "primary_mortgage_balance"),
    ("Primary Mortgage Interest", "primary_mortgage_interest"),
    ("Prepayment", "primary_mortgage_prepayment"),
    ("Rental Mortgage Balance", "rental_mortgage_balance"),
    ("Rental Mortgage Interest", "rental_mortgage_interest"),
    ("Deductible Interest", "deductible_interest"),
    ("Non-Deductible Interest", "non_deductible_interest"),
    ("Tax Benefit", "tax_benefit"),
    ("Cumulative Tax Benefit", "cumulative_tax_benefit"),
    ("Total Debt", "total_debt"),
]


class SimulationSummary(BaseModel):
    """Aggregates of a simulated strategy compared with its baseline."""

    strategy_type: str
    months_simulated: int = Field(..., ge=0)
    total_interest_saved: float
    total_tax_benefit: float
    total_heloc_interest: float
    net_benefit: float
    baseline_payoff_month: Optional[int] = None
    strategy_payoff_month: Optional[int] = None
    months_accelerated: Optional[int] = None
    stopped_at_month: Optional[int] = None
    stop_reason: Optional[str] = None


class RentalIncomeSummary(BaseModel):
    total_gross_income: float
    total_expenses: float
    net_rental_income: float


class InterestDeductions(BaseModel):
    heloc_interest: float
    rental_mortgage_interest: float
    total_deductible_interest: float
    non_deductible_interest: float


class HelocUsage(BaseModel):
    total_draws: float
    year_end_balance: float
    interest_paid: float


class AuditMonth(BaseModel):
    month: date
    heloc_draw: float
    heloc_balance: float
    deductible_interest: float
    tax_benefit: float


class AnnualAuditReport(BaseModel):
    """Deductible-interest report for one tax year of a strategy's own scenario."""

    year: int
    strategy_name: str
    strategy_type: str
    marginal_tax_rate: float
    rental_income: RentalIncomeSummary
    interest_deductions: InterestDeductions
    estimated_tax_savings: float
    heloc_usage: HelocUsage
    monthly_breakdown: List[AuditMonth]
    generated_on: date


class AnnualAuditSummary(BaseModel):
    year: int
    total_deductible_interest: float
    total_tax_benefit: float
    year_end_heloc_balance: float
    year_end_primary_mortgage: float


class AuditSummaryReport(BaseModel):
    """Multi-year totals with one summary per simulated calendar year."""

    strategy_name: str
    strategy_type: str
    first_year: int
    last_year: int
    total_tax_benefit: float
    total_interest_saved: float
    months_accelerated: int
    total_heloc_interest: float
    total_deductible_interest: float
    annual_summaries: List[AnnualAuditSummary]
    generated_on: date


class DebtOptimizationService:
    """Service for running debt optimization simulations."""

    def __init__(
        self,
        session: Session,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or get_global_settings()
        self.logger = logging.getLogger(__name__)

    @property
    def defaults(self) -> LoanTermDefaults:
        return self.settings.loan_term_defaults()

    def _mortgage_terms(self, account: Account, defaults: LoanTermDefaults) -> MortgageTerms:
        loan = account.loan
        if loan is None:
            return MortgageTerms(
                balance=abs(account.balance),
                annual_rate=defaults.mortgage_rate,
                term_months=defaults.term_months,
                renewal_term_months=defaults.renewal_term_months,
            )
        return MortgageTerms(
            balance=abs(account.balance),
            annual_rate=loan.interest_rate if loan.interest_rate is not None else defaults.mortgage_rate,
            term_months=loan.term_months or defaults.term_months,
            renewal_term_months=(
                loan.renewal_term_months
                if loan.renewal_term_months is not None
                else defaults.renewal_term_months
            ),
            renewal_rate=loan.renewal_rate,
            prepayment_privilege_percent=loan.prepayment_privilege_percent,
            annual_lump_sum_month=loan.annual_lump_sum_month,
            annual_lump_sum_amount=loan.annual_lump_sum_amount,
        )

    def build_inputs(self, strategy: DebtOptimizationStrategy) -> SimulationInputs:
        """Resolve the strategy's accounts and loans against the configured defaults."""
        if strategy.primary_mortgage is None:
            raise InvalidInputError(f"Strategy {strategy.id} has no primary mortgage account")
        if strategy.strategy_type == "modified_smith":
            missing = [
                name
                for name, account in (("HELOC", strategy.heloc), ("rental mortgage", strategy.rental_mortgage))
                if account is None
            ]
            if missing:
                raise InvalidInputError(
                    f"Modified Smith strategy {strategy.id} requires a {' and a '.join(missing)} account"
                )

        defaults = self.defaults
        heloc = strategy.heloc
        heloc_loan = heloc.loan if heloc is not None else None

        heloc_rate = strategy.heloc_interest_rate
        if heloc_rate is None:
            if heloc_loan is not None and heloc_loan.interest_rate is not None:
                heloc_rate = heloc_loan.interest_rate
            else:
                heloc_rate = defaults.heloc_rate

        credit_limit = defaults.heloc_limit
        if heloc_loan is not None and heloc_loan.credit_limit is not None:
            credit_limit = heloc_loan.credit_limit
        if strategy.heloc_max_limit:
            credit_limit = min(credit_limit, strategy.heloc_max_limit)

        return SimulationInputs(
            primary=self._mortgage_terms(strategy.primary_mortgage, defaults),
            rental=(
                self._mortgage_terms(strategy.rental_mortgage, defaults)
                if strategy.rental_mortgage is not None
                else None
            ),
            heloc_rate=heloc_rate,
            heloc_credit_limit=credit_limit,
            heloc_starting_balance=abs(heloc.balance) if heloc is not None else 0.0,
            rental_income=strategy.rental_income or 0.0,
            rental_expenses=strategy.rental_expenses or 0.0,
            marginal_tax_rate=(
                strategy.marginal_tax_rate
                if strategy.marginal_tax_rate is not None
                else defaults.marginal_tax_rate
            ),
            simulation_months=strategy.simulation_months,
            start_date=beginning_of_month(self.clock.today()),
        )

    def run_scenarios(self, strategy: DebtOptimizationStrategy) -> Dict[str, List[LedgerRow]]:
        """Simulate every scenario recorded for the strategy type, without persisting."""
        scenarios = SCENARIOS_FOR_STRATEGY.get(strategy.strategy_type)
        if scenarios is None:
            raise SimulationConsistencyError(f"Unsupported strategy type: {strategy.strategy_type}")

        inputs = self.build_inputs(strategy)
        defaults = self.defaults
        rules = list(strategy.auto_stop_rules)

        results = {}
        for scenario in scenarios:
            # Rules only govern the strategy's own scenario; comparisons run to completion
            scenario_rules = rules if scenario == strategy.strategy_type else ()
            simulator = SIMULATORS[scenario](inputs, defaults, scenario_rules)
            results[scenario] = simulator.simulate()
        return results

    def simulate(self, strategy: DebtOptimizationStrategy) -> SimulationSummary:
        """
        Run the strategy and replace its ledger atomically.

        Old entries are deleted and new ones inserted in one transaction; the
        status becomes "simulated", or "failed" (with the error message) when
        the run raises, in which case the previous ledger is kept.

        Raises:
            InvalidInputError: If the strategy configuration is incomplete
            SimulationConsistencyError: If the strategy type is unsupported
        """
        strategy_id = strategy.id
        try:
            self.logger.info(
                f"Simulating strategy {strategy_id} ({strategy.strategy_type}) "
                f"over {strategy.simulation_months} months"
            )
            results = self.run_scenarios(strategy)

            self.session.execute(delete(LedgerEntry).where(LedgerEntry.strategy_id == strategy_id))
            entries = [
                dict(row.model_dump(), strategy_id=strategy_id)
                for rows in results.values()
                for row in rows
            ]
            self.session.execute(insert(LedgerEntry), entries)

            summary = self.summarize(strategy)
            strategy.total_interest_saved = summary.total_interest_saved
            strategy.total_tax_benefit = summary.total_tax_benefit
            strategy.net_benefit = summary.net_benefit
            strategy.months_accelerated = summary.months_accelerated
            strategy.status = "simulated"
            strategy.error_message = None
            strategy.last_simulated_at = datetime.utcnow()
            self.session.commit()

            self.logger.info(
                f"Strategy {strategy_id} simulated: {len(entries)} ledger entries, "
                f"{summary.months_simulated} strategy months"
            )
            return summary

        except Exception as e:
            self.session.rollback()
            self.logger.error(f"Simulation of strategy {strategy_id} failed: {str(e)}")
            self._mark_failed(strategy, str(e))
            raise

    def _mark_failed(self, strategy: DebtOptimizationStrategy, message: str) -> None:
        strategy.status = "failed"
        strategy.error_message = message
        self.session.commit()

    def _scenario_query(self, strategy_id: int, scenario: str, *columns):
        return self.session.query(*columns).filter(
            LedgerEntry.strategy_id == strategy_id, LedgerEntry.scenario_type == scenario
        )

    def _payoff_month(self, strategy_id: int, scenario: str) -> Optional[int]:
        return (
            self._scenario_query(strategy_id, scenario, func.min(LedgerEntry.month_number))
            .filter(LedgerEntry.primary_mortgage_balance <= 0)
            .scalar()
        )

    def summarize(self, strategy: DebtOptimizationStrategy) -> SimulationSummary:
        """
        Summary metrics from the stored ledger using SUM/MIN/COUNT aggregates.

        Interest saved compares mortgage interest over the months the strategy
        actually ran (it may have stopped early) with the baseline over the
        same months.
        """
        strategy_id = strategy.id
        scenario = strategy.strategy_type
        mortgage_interest = func.coalesce(
            func.sum(LedgerEntry.primary_mortgage_interest + LedgerEntry.rental_mortgage_interest), 0
        )

        months, last_month, strategy_interest, heloc_interest, tax_benefit = self._scenario_query(
            strategy_id,
            scenario,
            func.count(LedgerEntry.id),
            func.max(LedgerEntry.month_number),
            mortgage_interest,
            func.coalesce(func.sum(LedgerEntry.heloc_interest), 0),
            func.coalesce(func.sum(LedgerEntry.tax_benefit), 0),
        ).one()

        baseline_interest = 0.0
        if last_month is not None:
            baseline_interest = (
                self._scenario_query(strategy_id, BASELINE, mortgage_interest)
                .filter(LedgerEntry.month_number <= last_month)
                .scalar()
            )

        stop = (
            self._scenario_query(
                strategy_id, scenario, LedgerEntry.month_number, LedgerEntry.stop_reason
            )
            .filter(LedgerEntry.strategy_stopped.is_(True))
            .first()
        )

        baseline_payoff = self._payoff_month(strategy_id, BASELINE)
        strategy_payoff = self._payoff_month(strategy_id, scenario)
        accelerated = None
        if baseline_payoff is not None and strategy_payoff is not None:
            accelerated = baseline_payoff - strategy_payoff

        interest_saved = round(float(baseline_interest) - float(strategy_interest), 2)
        tax_benefit = round(float(tax_benefit), 2)
        heloc_interest = round(float(heloc_interest), 2)
        return SimulationSummary(
            strategy_type=scenario,
            months_simulated=months,
            total_interest_saved=interest_saved,
            total_tax_benefit=tax_benefit,
            total_heloc_interest=heloc_interest,
            net_benefit=round(interest_saved + tax_benefit - heloc_interest, 2),
            baseline_payoff_month=baseline_payoff,
            strategy_payoff_month=strategy_payoff,
            months_accelerated=accelerated,
            stopped_at_month=stop[0] if stop else None,
            stop_reason=stop[1] if stop else None,
        )

    def ledger(self, strategy: DebtOptimizationStrategy, scenario: Optional[str] = None) -> List[LedgerEntry]:
        """Stored ledger entries of one scenario (the strategy's own by default)."""
        scenario = scenario or strategy.strategy_type
        return (
            self.session.query(LedgerEntry)
            .filter(LedgerEntry.strategy_id == strategy.id, LedgerEntry.scenario_type == scenario)
            .order_by(LedgerEntry.month_number)
            .all()
        )

    def add_rule(
        self,
        strategy: DebtOptimizationStrategy,
        rule_type: str,
        threshold_value: Optional[float] = None,
        threshold_unit: Optional[str] = None,
        enabled: bool = True,
    ) -> AutoStopRule:
        """Attach an auto-stop rule; unknown rule types are rejected here."""
        rule = AutoStopRule(
            rule_type=rule_type,
            threshold_value=threshold_value,
            threshold_unit=threshold_unit,
            enabled=enabled,
            position=len(strategy.auto_stop_rules),
        )
        strategy.auto_stop_rules.append(rule)
        self.session.commit()
        return rule

    def _strategy_entries(self, strategy: DebtOptimizationStrategy, year: Optional[int] = None):
        query = self.session.query(LedgerEntry).filter(
            LedgerEntry.strategy_id == strategy.id,
            LedgerEntry.scenario_type == strategy.strategy_type,
        )
        if year is not None:
            query = query.filter(
                LedgerEntry.calendar_month >= date(year, 1, 1),
                LedgerEntry.calendar_month < date(year + 1, 1, 1),
            )
        return query

    def _year_end(self, strategy: DebtOptimizationStrategy, year: int) -> Optional[LedgerEntry]:
        return (
            self._strategy_entries(strategy, year)
            .order_by(LedgerEntry.month_number.desc())
            .first()
        )

    def _sums(self, strategy: DebtOptimizationStrategy, year: Optional[int], *columns) -> List[float]:
        totals = (
            self._strategy_entries(strategy, year)
            .with_entities(*(func.coalesce(func.sum(column), 0) for column in columns))
            .one()
        )
        return [round(float(total), 2) for total in totals]

    def annual_report(self, strategy: DebtOptimizationStrategy, year: int) -> Optional[AnnualAuditReport]:
        """
        Rental income, deductible interest and HELOC usage for one calendar year.

        Returns:
            The report, or None when the strategy has no ledger entries that year
        """
        year_end = self._year_end(strategy, year)
        if year_end is None:
            return None

        (
            gross_income,
            expenses,
            net_income,
            heloc_interest,
            rental_interest,
            deductible,
            non_deductible,
            tax_benefit,
            draws,
        ) = self._sums(
            strategy,
            year,
            LedgerEntry.rental_income,
            LedgerEntry.rental_expenses,
            LedgerEntry.net_rental_cash_flow,
            LedgerEntry.heloc_interest,
            LedgerEntry.rental_mortgage_interest,
            LedgerEntry.deductible_interest,
            LedgerEntry.non_deductible_interest,
            LedgerEntry.tax_benefit,
            LedgerEntry.heloc_draw,
        )
        months = self._strategy_entries(strategy, year).order_by(LedgerEntry.month_number).all()

        return AnnualAuditReport(
            year=year,
            strategy_name=strategy.name,
            strategy_type=strategy.strategy_type,
            marginal_tax_rate=(
                strategy.marginal_tax_rate
                if strategy.marginal_tax_rate is not None
                else self.defaults.marginal_tax_rate
            ),
            rental_income=RentalIncomeSummary(
                total_gross_income=gross_income,
                total_expenses=expenses,
                net_rental_income=net_income,
            ),
            interest_deductions=InterestDeductions(
                heloc_interest=heloc_interest,
                rental_mortgage_interest=rental_interest,
                total_deductible_interest=deductible,
                non_deductible_interest=non_deductible,
            ),
            estimated_tax_savings=tax_benefit,
            heloc_usage=HelocUsage(
                total_draws=draws,
                year_end_balance=year_end.heloc_balance,
                interest_paid=heloc_interest,
            ),
            monthly_breakdown=[
                AuditMonth(
                    month=entry.calendar_month,
                    heloc_draw=entry.heloc_draw,
                    heloc_balance=entry.heloc_balance,
                    deductible_interest=entry.deductible_interest,
                    tax_benefit=entry.tax_benefit,
                )
                for entry in months
            ],
            generated_on=self.clock.today(),
        )

    def summary_report(self, strategy: DebtOptimizationStrategy) -> Optional[AuditSummaryReport]:
        """Totals across the whole simulation plus a summary for each calendar year."""
        first, last = (
            self._strategy_entries(strategy)
            .with_entities(func.min(LedgerEntry.calendar_month), func.max(LedgerEntry.calendar_month))
            .one()
        )
        if first is None:
            return None

        annual = []
        for year in range(first.year, last.year + 1):
            year_end = self._year_end(strategy, year)
            if year_end is None:
                continue
            deductible, tax_benefit = self._sums(
                strategy, year, LedgerEntry.deductible_interest, LedgerEntry.tax_benefit
            )
            annual.append(
                AnnualAuditSummary(
                    year=year,
                    total_deductible_interest=deductible,
                    total_tax_benefit=tax_benefit,
                    year_end_heloc_balance=year_end.heloc_balance,
                    year_end_primary_mortgage=year_end.primary_mortgage_balance,
                )
            )

        final = self._strategy_entries(strategy).order_by(LedgerEntry.month_number.desc()).first()
        heloc_interest, deductible = self._sums(
            strategy, None, LedgerEntry.heloc_interest, LedgerEntry.deductible_interest
        )
        return AuditSummaryReport(
            strategy_name=strategy.name,
            strategy_type=strategy.strategy_type,
            first_year=first.year,
            last_year=last.year,
            total_tax_benefit=final.cumulative_tax_benefit,
            total_interest_saved=strategy.total_interest_saved or 0.0,
            months_accelerated=strategy.months_accelerated or 0,
            total_heloc_interest=heloc_interest,
            total_deductible_interest=deductible,
            annual_summaries=annual,
            generated_on=self.clock.today(),
        )

    def export_csv(self, strategy: DebtOptimizationStrategy, year: Optional[int] = None) -> str:
        """The strategy's ledger as CSV for accounting software, optionally one year only."""
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow([header for header, _ in AUDIT_CSV_COLUMNS])
        for entry in self._strategy_entries(strategy, year).order_by(LedgerEntry.month_number):
            writer.writerow(
                [entry.month_number, entry.calendar_month.strftime("%Y-%m")]
                + [getattr(entry, column) for _, column in AUDIT_CSV_COLUMNS[2:]]
            )
        return output.getvalue()
