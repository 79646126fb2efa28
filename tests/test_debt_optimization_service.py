"""
Tests for running debt optimization strategies and persisting their ledgers.
"""

from datetime import date

import pytest

from wealthcast.database.models import AutoStopRule, DebtOptimizationLedgerEntry, DebtOptimizationStrategy
from wealthcast.errors import InvalidInputError, SimulationConsistencyError
from wealthcast.services.debt_optimization_service import DebtOptimizationService


@pytest.fixture
def service(db_session, clock, settings):
    return DebtOptimizationService(db_session, clock=clock, settings=settings)


@pytest.fixture
def primary_mortgage(make_account):
    return make_account(
        name="Home Mortgage",
        balance=-400_000.0,
        classification="liability",
        kind="mortgage",
        loan={"interest_rate": 0.05, "term_months": 300, "prepayment_privilege_percent": 15},
    )


@pytest.fixture
def heloc(make_account):
    return make_account(
        name="HELOC",
        balance=0.0,
        classification="liability",
        kind="heloc",
        loan={"interest_rate": 0.07, "credit_limit": 350_000},
    )


@pytest.fixture
def rental_mortgage(make_account):
    return make_account(
        name="Rental Mortgage",
        balance=-200_000.0,
        classification="liability",
        kind="mortgage",
        loan={"interest_rate": 0.055, "term_months": 300},
    )


@pytest.fixture
def make_strategy(db_session, family, primary_mortgage, heloc, rental_mortgage):
    """Factory creating committed strategies over the standard accounts."""

    def _make(strategy_type="modified_smith", simulation_months=120, with_rental=True, **kwargs):
        values = dict(
            family_id=family.id,
            name=f"{strategy_type} plan",
            strategy_type=strategy_type,
            primary_mortgage_id=primary_mortgage.id,
            heloc_id=heloc.id,
            rental_mortgage_id=rental_mortgage.id if with_rental else None,
            simulation_months=simulation_months,
            rental_income=2_500.0,
            rental_expenses=600.0,
        )
        values.update(kwargs)
        strategy = DebtOptimizationStrategy(**values)
        db_session.add(strategy)
        db_session.commit()
        return strategy

    return _make


def ledger_count(session, strategy, scenario=None):
    query = session.query(DebtOptimizationLedgerEntry).filter_by(strategy_id=strategy.id)
    if scenario is not None:
        query = query.filter_by(scenario_type=scenario)
    return query.count()


class TestBuildInputs:
    """Test cases for resolving strategy configuration."""

    def test_inputs_from_accounts_and_loans(self, service, make_strategy):
        inputs = service.build_inputs(make_strategy())

        assert inputs.primary.balance == 400_000
        assert inputs.primary.annual_rate == 0.05
        assert inputs.primary.prepayment_privilege_percent == 15
        assert inputs.primary.renewal_term_months == 60
        assert inputs.rental.balance == 200_000
        assert inputs.heloc_rate == 0.07
        assert inputs.heloc_credit_limit == 350_000
        assert inputs.heloc_starting_balance == 0
        assert inputs.marginal_tax_rate == 0.40
        assert inputs.start_date == date(2026, 1, 1)
        assert inputs.simulation_months == 120

    def test_strategy_overrides(self, service, make_strategy):
        strategy = make_strategy(heloc_interest_rate=0.065, heloc_max_limit=300_000, marginal_tax_rate=0.5)
        inputs = service.build_inputs(strategy)

        assert inputs.heloc_rate == 0.065
        assert inputs.heloc_credit_limit == 300_000
        assert inputs.marginal_tax_rate == 0.5

    def test_defaults_without_loan_terms(self, service, db_session, family, make_account):
        mortgage = make_account(name="Mortgage", balance=-150_000.0, classification="liability", kind="mortgage")
        strategy = DebtOptimizationStrategy(
            family_id=family.id, name="Plain", strategy_type="baseline", primary_mortgage_id=mortgage.id
        )
        db_session.add(strategy)
        db_session.commit()

        inputs = service.build_inputs(strategy)

        assert inputs.primary.annual_rate == 0.05
        assert inputs.primary.term_months == 300
        assert inputs.heloc_rate == 0.07
        assert inputs.heloc_credit_limit == 100_000
        assert inputs.rental is None

    def test_missing_primary_mortgage(self, service, make_strategy):
        with pytest.raises(InvalidInputError):
            service.build_inputs(make_strategy(primary_mortgage_id=None))

    def test_modified_smith_requires_heloc(self, service, make_strategy):
        with pytest.raises(InvalidInputError, match="HELOC"):
            service.build_inputs(make_strategy(heloc_id=None))

    def test_modified_smith_requires_rental_mortgage(self, service, make_strategy):
        with pytest.raises(InvalidInputError, match="rental mortgage"):
            service.build_inputs(make_strategy(with_rental=False))

    def test_prepay_only_runs_without_heloc_or_rental(self, service, make_strategy):
        inputs = service.build_inputs(make_strategy("prepay_only", with_rental=False, heloc_id=None))

        assert inputs.rental is None
        assert inputs.heloc_starting_balance == 0

    def test_incomplete_modified_smith_marks_strategy_failed(self, service, db_session, make_strategy):
        strategy = make_strategy(heloc_id=None, simulation_months=12)

        with pytest.raises(InvalidInputError):
            service.simulate(strategy)

        assert strategy.status == "failed"
        assert "HELOC" in strategy.error_message
        assert ledger_count(db_session, strategy) == 0


class TestSimulate:
    """Test cases for simulation and ledger persistence."""

    def test_modified_smith_records_all_scenarios(self, service, db_session, make_strategy):
        strategy = make_strategy()

        summary = service.simulate(strategy)

        assert ledger_count(db_session, strategy, "baseline") == 120
        assert ledger_count(db_session, strategy, "prepay_only") == 120
        assert ledger_count(db_session, strategy, "modified_smith") == 120
        assert summary.months_simulated == 120
        assert strategy.status == "simulated"
        assert strategy.last_simulated_at is not None
        assert strategy.error_message is None

    def test_heloc_never_exceeds_cap(self, service, make_strategy):
        strategy = make_strategy()
        service.simulate(strategy)

        entries = service.ledger(strategy)
        assert [e.month_number for e in entries] == list(range(120))
        assert all(e.heloc_balance <= 320_000 + 0.01 for e in entries)
        assert entries[-1].invested_amount > 0

    def test_resimulation_replaces_ledger(self, service, db_session, make_strategy):
        """Changing the horizon replaces every entry; none of the old ones survive."""
        strategy = make_strategy()
        service.simulate(strategy)

        strategy.simulation_months = 24
        db_session.commit()
        service.simulate(strategy)

        assert ledger_count(db_session, strategy) == 72
        assert max(e.month_number for e in service.ledger(strategy)) == 23

    def test_summary_values(self, service, make_strategy):
        strategy = make_strategy()
        summary = service.simulate(strategy)

        smith = service.ledger(strategy)
        assert summary.strategy_type == "modified_smith"
        assert summary.total_tax_benefit == pytest.approx(sum(e.tax_benefit for e in smith), abs=0.01)
        assert summary.total_heloc_interest == pytest.approx(sum(e.heloc_interest for e in smith), abs=0.01)
        assert summary.net_benefit == pytest.approx(
            summary.total_interest_saved + summary.total_tax_benefit - summary.total_heloc_interest, abs=0.01
        )
        assert strategy.total_tax_benefit == pytest.approx(summary.total_tax_benefit)
        assert summary.stopped_at_month is None

    def test_prepay_only_accelerates_payoff(self, service, db_session, make_strategy):
        strategy = make_strategy("prepay_only", simulation_months=300, with_rental=False, rental_income=1_500, rental_expenses=500)

        summary = service.simulate(strategy)

        assert ledger_count(db_session, strategy, "modified_smith") == 0
        assert summary.baseline_payoff_month is not None
        assert summary.strategy_payoff_month < summary.baseline_payoff_month
        assert summary.months_accelerated == summary.baseline_payoff_month - summary.strategy_payoff_month
        assert summary.total_interest_saved > 0
        assert summary.total_tax_benefit == 0
        assert strategy.months_accelerated == summary.months_accelerated

    def test_baseline_only(self, service, db_session, make_strategy):
        strategy = make_strategy("baseline", simulation_months=12)

        summary = service.simulate(strategy)

        assert ledger_count(db_session, strategy) == 12
        assert summary.total_interest_saved == 0

    def test_failure_marks_strategy_and_keeps_ledger(self, service, db_session, make_strategy):
        strategy = make_strategy(simulation_months=12)
        service.simulate(strategy)

        strategy.primary_mortgage_id = None
        db_session.commit()

        with pytest.raises(InvalidInputError):
            service.simulate(strategy)

        assert strategy.status == "failed"
        assert "no primary mortgage" in strategy.error_message
        assert ledger_count(db_session, strategy) == 36

    def test_unsupported_strategy_type(self, service, make_strategy):
        strategy = make_strategy()
        strategy.strategy_type = "snowball"

        with pytest.raises(SimulationConsistencyError):
            service.run_scenarios(strategy)


class TestAutoStopRules:
    """Test cases for strategy rules."""

    def test_rule_stops_only_strategy_scenario(self, service, db_session, make_strategy):
        strategy = make_strategy()
        service.add_rule(strategy, "max_months", threshold_value=10, threshold_unit="months")
        service.add_rule(strategy, "primary_paid_off")

        summary = service.simulate(strategy)

        assert ledger_count(db_session, strategy, "modified_smith") == 11
        assert ledger_count(db_session, strategy, "baseline") == 120
        assert ledger_count(db_session, strategy, "prepay_only") == 120
        assert summary.stopped_at_month == 10
        assert summary.stop_reason == "Stop after 10 months"
        assert service.ledger(strategy)[-1].strategy_stopped is True

    def test_interest_saved_compares_same_months(self, service, make_strategy):
        strategy = make_strategy()
        service.add_rule(strategy, "max_months", threshold_value=10)
        summary = service.simulate(strategy)

        def interest(entries):
            return sum(e.primary_mortgage_interest + e.rental_mortgage_interest for e in entries)

        baseline = [e for e in service.ledger(strategy, "baseline") if e.month_number <= 10]
        expected = interest(baseline) - interest(service.ledger(strategy))
        assert summary.total_interest_saved == pytest.approx(expected, abs=0.01)

    def test_disabled_rule_ignored(self, service, db_session, make_strategy):
        strategy = make_strategy(simulation_months=24)
        service.add_rule(strategy, "max_months", threshold_value=5, enabled=False)

        service.simulate(strategy)

        assert ledger_count(db_session, strategy, "modified_smith") == 24

    def test_rules_kept_in_order(self, service, make_strategy):
        strategy = make_strategy()
        service.add_rule(strategy, "negative_cash_flow")
        service.add_rule(strategy, "heloc_limit_percentage", threshold_value=90, threshold_unit="percentage")

        assert [r.rule_type for r in strategy.auto_stop_rules] == ["negative_cash_flow", "heloc_limit_percentage"]
        assert [r.position for r in strategy.auto_stop_rules] == [0, 1]

    def test_unknown_rule_type_rejected(self, service, db_session, make_strategy):
        strategy = make_strategy()

        with pytest.raises(InvalidInputError):
            service.add_rule(strategy, "interest_rate_spike")

        assert db_session.query(AutoStopRule).count() == 0

    def test_invalid_threshold_unit_rejected(self, service, make_strategy):
        with pytest.raises(InvalidInputError):
            service.add_rule(make_strategy(), "max_months", threshold_value=12, threshold_unit="years")


class TestAuditReports:
    """Test cases for tax-year reports and the ledger export."""

    def test_annual_report(self, service, make_strategy):
        strategy = make_strategy()
        service.simulate(strategy)
        entries_2026 = [e for e in service.ledger(strategy) if e.calendar_month.year == 2026]

        report = service.annual_report(strategy, 2026)

        assert report.year == 2026
        assert report.strategy_type == "modified_smith"
        assert report.marginal_tax_rate == 0.40
        assert len(report.monthly_breakdown) == 12
        assert report.monthly_breakdown[0].month == date(2026, 1, 1)
        assert report.rental_income.total_gross_income == pytest.approx(30_000, abs=0.01)
        assert report.rental_income.total_expenses == pytest.approx(7_200, abs=0.01)
        assert report.interest_deductions.total_deductible_interest == pytest.approx(
            sum(e.deductible_interest for e in entries_2026), abs=0.05
        )
        assert report.estimated_tax_savings == pytest.approx(sum(e.tax_benefit for e in entries_2026), abs=0.05)
        assert report.heloc_usage.year_end_balance == entries_2026[-1].heloc_balance
        assert report.heloc_usage.interest_paid == report.interest_deductions.heloc_interest
        assert report.generated_on == date(2026, 1, 15)

    def test_annual_report_outside_simulation(self, service, make_strategy):
        strategy = make_strategy(simulation_months=12)
        service.simulate(strategy)

        assert service.annual_report(strategy, 2030) is None

    def test_summary_report(self, service, make_strategy):
        strategy = make_strategy()
        service.simulate(strategy)

        report = service.summary_report(strategy)

        assert (report.first_year, report.last_year) == (2026, 2035)
        assert [s.year for s in report.annual_summaries] == list(range(2026, 2036))
        assert report.total_tax_benefit == pytest.approx(
            sum(s.total_tax_benefit for s in report.annual_summaries), abs=0.1
        )
        assert report.total_deductible_interest == pytest.approx(
            sum(s.total_deductible_interest for s in report.annual_summaries), abs=0.1
        )
        assert report.total_interest_saved == strategy.total_interest_saved
        assert report.annual_summaries[-1].year_end_primary_mortgage == service.ledger(strategy)[-1].primary_mortgage_balance

    def test_summary_report_before_simulation(self, service, make_strategy):
        assert service.summary_report(make_strategy()) is None

    def test_export_csv(self, service, make_strategy):
        strategy = make_strategy(simulation_months=24)
        service.simulate(strategy)

        lines = service.export_csv(strategy).strip().splitlines()
        rows_2027 = service.export_csv(strategy, year=2027).strip().splitlines()

        assert lines[0].startswith("Month,Calendar Month,Rental Income")
        assert lines[0].endswith("Cumulative Tax Benefit,Total Debt")
        assert len(lines) == 25
        assert lines[1].startswith("0,2026-01,")
        assert len(rows_2027) == 13
        assert rows_2027[1].startswith("12,2027-01,")

    def test_export_covers_only_strategy_scenario(self, service, make_strategy):
        strategy = make_strategy("prepay_only", simulation_months=6)
        service.simulate(strategy)

        assert len(service.export_csv(strategy).strip().splitlines()) == 7
