"""
Tests for SQLAlchemy database models.

This module tests the database models, constraints, validators and derived
properties used by the projection and debt-optimization services.
"""

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from wealthcast.config import Settings
from wealthcast.database.base import session_scope
from wealthcast.database.models import (
    PAG_2025_DEFAULTS,
    AccountBalance,
    AccountProjection,
    AutoStopRule,
    Family,
    Milestone,
    ProjectionAssumption,
    ProjectionStandard,
)
from wealthcast.errors import InvalidInputError
from wealthcast.services import assumptions


class TestAccount:
    """Test cases for accounts and loans."""

    def test_currency_normalized(self, make_account):
        account = make_account(currency="usd")

        assert account.currency == "USD"

    def test_invalid_currency_rejected(self, make_account):
        with pytest.raises(InvalidInputError):
            make_account(currency="DOLLARS")

    def test_loan_backed(self, make_account):
        mortgage = make_account(
            balance=-100_000.0, classification="liability", kind="mortgage", loan={"interest_rate": 0.05}
        )
        heloc = make_account(classification="liability", kind="heloc", loan={"credit_limit": 50_000})
        plain = make_account(balance=-5_000.0, classification="liability", kind="loan")

        assert mortgage.is_liability
        assert mortgage.is_loan_backed
        assert not heloc.is_loan_backed
        assert not plain.is_loan_backed

    def test_invalid_classification_rejected(self, make_account):
        with pytest.raises(IntegrityError):
            make_account(classification="equity")

    def test_one_balance_per_date(self, db_session, investment_account):
        db_session.add(AccountBalance(account_id=investment_account.id, date=date(2025, 12, 31), balance=1.0))
        db_session.add(AccountBalance(account_id=investment_account.id, date=date(2025, 12, 31), balance=2.0))

        with pytest.raises(IntegrityError):
            db_session.commit()


class TestAccountProjection:
    """Test cases for persisted projection points."""

    def make_projection(self, session, account, **kwargs):
        values = dict(
            account_id=account.id,
            projection_date=date(2026, 1, 31),
            projected_balance=13_608.25,
            currency="CAD",
        )
        values.update(kwargs)
        projection = AccountProjection(**values)
        session.add(projection)
        session.commit()
        return projection

    def test_one_projection_per_account_and_date(self, db_session, investment_account):
        self.make_projection(db_session, investment_account)

        with pytest.raises(IntegrityError):
            self.make_projection(db_session, investment_account)

    def test_variance_properties(self, db_session, investment_account):
        projection = self.make_projection(db_session, investment_account, actual_balance=13_500.0)

        assert projection.variance == -108.25
        assert projection.variance_percentage == -0.80
        assert projection.absolute_percentage_error == 0.80
        assert projection.is_on_track is True

    def test_variance_without_actual(self, db_session, investment_account):
        projection = self.make_projection(db_session, investment_account)

        assert projection.variance is None
        assert projection.is_on_track is None

    def test_record_actual(self, db_session, investment_account):
        projection = self.make_projection(db_session, investment_account)
        projection.record_actual(14_000.0)
        db_session.commit()

        assert projection.actual_balance == 14_000.0

    def test_percentiles(self, db_session, investment_account):
        bands = {"p10": 9_000.0, "p25": 9_500.0, "p50": 10_000.0, "p75": 10_500.0, "p90": 11_000.0}
        projection = self.make_projection(db_session, investment_account, percentiles=bands)

        assert projection.percentile(25) == 9_500.0
        assert projection.confidence_range() == {"lower": 9_000.0, "upper": 11_000.0, "median": 10_000.0}
        assert projection.confidence_range(50) == {"lower": 9_500.0, "upper": 10_500.0, "median": 10_000.0}

    def test_percentiles_missing(self, db_session, investment_account):
        projection = self.make_projection(db_session, investment_account)

        assert projection.percentile(50) is None

    def test_invalid_currency_rejected(self, investment_account):
        with pytest.raises(InvalidInputError):
            AccountProjection(account_id=investment_account.id, currency="", projected_balance=0)


class TestMilestone:
    """Test cases for milestone progress on the model."""

    def test_update_progress_sets_starting_balance_for_reduction(self, db_session, investment_account):
        milestone = Milestone(
            account_id=investment_account.id, name="Half", target_amount=100_000, target_type="reduce_to"
        )

        milestone.update_progress(-200_000, date(2026, 1, 15))

        assert milestone.starting_balance == 200_000
        assert milestone.status == "pending"
        assert milestone.progress_percentage == 0.0

    def test_achieved_stays_achieved(self, investment_account):
        milestone = Milestone(
            account_id=investment_account.id, name="$50K", target_amount=50_000, target_type="reach"
        )
        milestone.update_progress(55_000, date(2026, 1, 15))
        milestone.update_progress(45_000, date(2026, 2, 15))

        assert milestone.is_achieved
        assert milestone.achieved_date == date(2026, 1, 15)
        assert milestone.days_to_target(date(2026, 3, 1)) is None
        assert milestone.on_track is True

    def test_days_to_target(self, investment_account):
        milestone = Milestone(
            account_id=investment_account.id,
            name="$50K",
            target_amount=50_000,
            target_type="reach",
            status="pending",
            projected_date=date(2026, 2, 14),
            target_date=date(2026, 1, 31),
        )

        assert milestone.days_to_target(date(2026, 1, 15)) == 30
        assert milestone.on_track is False

    def test_negative_target_rejected(self, db_session, investment_account):
        db_session.add(
            Milestone(account_id=investment_account.id, name="Bad", target_amount=-1, target_type="reach")
        )

        with pytest.raises(IntegrityError):
            db_session.commit()


class TestProjectionStandards:
    """Test cases for projection standards and assumptions."""

    def test_blended_return(self):
        standard = ProjectionStandard(code="PAG_2025", name="PAG", effective_year=2025, **PAG_2025_DEFAULTS)

        assert abs(standard.blended_return() - 0.0529) < 1e-9
        assert standard.is_pag_compliant
        assert abs(standard.real_return() - (1.0529 / 1.021 - 1)) < 1e-9

    def test_assumption_uses_standard_when_flagged(self, db_session, family):
        standard = assumptions.seed_pag_2025(db_session)
        assumption = ProjectionAssumption(
            family_id=family.id,
            name="PAG",
            expected_return=0.10,
            volatility=0.30,
            projection_standard=standard,
            use_pag_defaults=True,
        )

        assert abs(assumption.effective_return - 0.0529) < 1e-9
        assert assumption.effective_volatility == 0.18
        assert assumption.effective_inflation == 0.021

        assumption.use_pag_defaults = False
        assert assumption.effective_return == 0.10
        assert assumption.effective_volatility == 0.30

    def test_family_default_created_once(self, db_session, family, settings):
        assumptions.seed_pag_2025(db_session)

        first = assumptions.default_for(db_session, family, settings)
        second = assumptions.default_for(db_session, family, settings)

        assert first.id == second.id
        assert first.use_pag_defaults is True
        assert abs(first.effective_return - 0.0529) < 1e-9

    def test_family_default_without_standard(self, db_session, family, settings):
        default = assumptions.default_for(db_session, family, settings)

        assert default.use_pag_defaults is False
        assert default.effective_return == 0.06
        assert default.effective_volatility == 0.15
        assert default.effective_inflation == 0.02

    def test_family_default_follows_configured_fallbacks(self, db_session, family):
        configured = Settings(
            _env_file=None,
            APP_ENV="testing",
            DEFAULT_EXPECTED_RETURN=0.10,
            DEFAULT_VOLATILITY=0.30,
            DEFAULT_INFLATION_RATE=0.03,
        )

        default = assumptions.default_for(db_session, family, configured)

        assert default.expected_return == 0.10
        assert default.volatility == 0.30
        assert default.inflation_rate == 0.03

    def test_account_assumption_inherits_family_default(self, db_session, family, settings, investment_account):
        assumption = assumptions.create_for_account(
            db_session, investment_account, settings, monthly_contribution=500
        )

        assert assumption.account_id == investment_account.id
        assert assumption.effective_contribution == 500
        assert assumption.expected_return == 0.06
        assert assumptions.for_account(db_session, investment_account).id == assumption.id


class TestAutoStopRuleModel:
    def test_unknown_rule_type_rejected(self):
        with pytest.raises(InvalidInputError):
            AutoStopRule(rule_type="interest_rate_spike")

    def test_known_rule_type_accepted(self):
        rule = AutoStopRule(rule_type="max_months", threshold_value=12, threshold_unit="months")

        assert rule.rule_type == "max_months"


class TestSessionScope:
    def test_commits_on_success(self, session_factory):
        with session_scope(session_factory) as session:
            session.add(Family(name="Scoped"))

        with session_scope(session_factory) as session:
            assert session.query(Family).filter_by(name="Scoped").count() == 1

    def test_rolls_back_on_error(self, session_factory):
        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                session.add(Family(name="Rolled Back"))
                session.flush()
                raise RuntimeError("boom")

        with session_scope(session_factory) as session:
            assert session.query(Family).filter_by(name="Rolled Back").count() == 0
