"""
SQLAlchemy database models for the projection and debt-optimization engine.

This module defines the tables for families, accounts and their loans,
projection assumptions and persisted projection points, milestones, and
debt-optimization strategies with their rules and simulated ledgers.
"""

from datetime import date, datetime
from typing import Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, validates

from wealthcast.errors import InvalidInputError
from wealthcast.models import forecast_accuracy
from wealthcast.models.auto_stop import validate_rule_type, validate_threshold_unit
from wealthcast.models.milestone_calculator import (
    ACHIEVED,
    REDUCE_TO,
    milestone_progress,
    milestone_status,
)

from .base import Base

Money = Numeric(19, 4, asdecimal=False)
Rate = Numeric(9, 6, asdecimal=False)
JSONType = JSON().with_variant(JSONB, "postgresql")

PAG_2025_DEFAULTS = {
    "equity_return": 0.0628,
    "fixed_income_return": 0.0409,
    "cash_return": 0.0295,
    "inflation_rate": 0.021,
    "volatility_equity": 0.18,
    "volatility_fixed_income": 0.05,
}


def _validate_currency(value: Optional[str]) -> str:
    if not value or len(value) != 3 or not value.isalpha():
        raise InvalidInputError(f"currency must be a 3-letter code, got {value!r}")
    return value.upper()


class Family(Base):
    """Household owning accounts, assumptions and strategies."""

    __tablename__ = "families"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    currency = Column(String(3), nullable=False, default="CAD")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    accounts = relationship("Account", back_populates="family", cascade="all, delete-orphan")
    projection_assumptions = relationship(
        "ProjectionAssumption", back_populates="family", cascade="all, delete-orphan"
    )
    strategies = relationship(
        "DebtOptimizationStrategy", back_populates="family", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Family(id={self.id}, name='{self.name}')>"


class Account(Base):
    """Financial account; liabilities carry negative or positive balances."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    family_id = Column(Integer, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    balance = Column(Money, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="CAD")
    classification = Column(String(20), nullable=False, default="asset")
    kind = Column(String(50), nullable=False, default="investment")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    family = relationship("Family", back_populates="accounts")
    loan = relationship("Loan", back_populates="account", uselist=False, cascade="all, delete-orphan")
    balances = relationship("AccountBalance", back_populates="account", cascade="all, delete-orphan")
    projections = relationship(
        "AccountProjection",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="AccountProjection.projection_date",
    )
    milestones = relationship(
        "Milestone",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="Milestone.target_amount",
    )
    projection_assumption = relationship(
        "ProjectionAssumption",
        uselist=False,
        primaryjoin="and_(Account.id == ProjectionAssumption.account_id, "
        "ProjectionAssumption.is_active == True)",
        viewonly=True,
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("classification IN ('asset', 'liability')", name="ck_account_classification"),
        CheckConstraint(
            "kind IN ('investment', 'depository', 'property', 'mortgage', 'heloc', 'loan', 'other')",
            name="ck_account_kind",
        ),
    )

    @validates("currency")
    def validate_currency(self, key, value):
        return _validate_currency(value)

    @property
    def is_liability(self) -> bool:
        return self.classification == "liability"

    @property
    def is_loan_backed(self) -> bool:
        return self.loan is not None and self.kind in ("mortgage", "loan")

    def __repr__(self):
        return f"<Account(id={self.id}, name='{self.name}', balance={self.balance})>"


class Loan(Base):
    """Loan terms of a mortgage, loan or HELOC account. Rates are decimals."""

    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True)
    interest_rate = Column(Rate)
    term_months = Column(Integer)
    monthly_payment = Column(Money)
    renewal_term_months = Column(Integer)
    renewal_rate = Column(Rate)
    prepayment_privilege_percent = Column(Numeric(5, 2, asdecimal=False))
    credit_limit = Column(Money)
    annual_lump_sum_month = Column(Integer)
    annual_lump_sum_amount = Column(Money)

    # Relationships
    account = relationship("Account", back_populates="loan")

    # Constraints
    __table_args__ = (
        CheckConstraint("interest_rate IS NULL OR (interest_rate >= 0 AND interest_rate <= 1)", name="ck_loan_rate"),
        CheckConstraint("term_months IS NULL OR term_months > 0", name="ck_loan_term_positive"),
        CheckConstraint(
            "annual_lump_sum_month IS NULL OR (annual_lump_sum_month >= 1 AND annual_lump_sum_month <= 12)",
            name="ck_loan_lump_sum_month",
        ),
    )

    def __repr__(self):
        return f"<Loan(id={self.id}, account_id={self.account_id}, rate={self.interest_rate})>"


class AccountBalance(Base):
    """Historical balance of an account on a date."""

    __tablename__ = "account_balances"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    balance = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="CAD")

    # Relationships
    account = relationship("Account", back_populates="balances")

    __table_args__ = (UniqueConstraint("account_id", "date", name="uq_account_balance_date"),)

    def __repr__(self):
        return f"<AccountBalance(account_id={self.account_id}, date={self.date}, balance={self.balance})>"


class ProjectionStandard(Base):
    """Published planning assumptions (FP Canada PAG and similar)."""

    __tablename__ = "projection_standards"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    effective_year = Column(Integer, nullable=False)
    equity_return = Column(Rate)
    fixed_income_return = Column(Rate)
    cash_return = Column(Rate)
    inflation_rate = Column(Rate)
    volatility_equity = Column(Rate)
    volatility_fixed_income = Column(Rate)

    __table_args__ = (CheckConstraint("effective_year > 2000", name="ck_standard_year"),)

    def blended_return(
        self,
        equity_weight: float = 0.6,
        fixed_income_weight: float = 0.3,
        cash_weight: float = 0.1,
    ) -> float:
        return (
            (self.equity_return or 0) * equity_weight
            + (self.fixed_income_return or 0) * fixed_income_weight
            + (self.cash_return or 0) * cash_weight
        )

    def real_return(self, nominal_return: Optional[float] = None) -> float:
        rate = self.blended_return() if nominal_return is None else nominal_return
        return (1 + rate) / (1 + (self.inflation_rate or 0)) - 1

    @property
    def is_pag_compliant(self) -> bool:
        return self.code == "PAG_2025"

    def __repr__(self):
        return f"<ProjectionStandard(code='{self.code}', year={self.effective_year})>"


class ProjectionAssumption(Base):
    """Return, contribution and volatility assumptions for a family or an account."""

    __tablename__ = "projection_assumptions"

    id = Column(Integer, primary_key=True, index=True)
    family_id = Column(Integer, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), index=True)
    projection_standard_id = Column(Integer, ForeignKey("projection_standards.id", ondelete="SET NULL"))
    name = Column(String(255), nullable=False)
    expected_return = Column(Rate)
    inflation_rate = Column(Rate)
    volatility = Column(Rate)
    monthly_contribution = Column(Money, default=0)
    use_pag_defaults = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    family = relationship("Family", back_populates="projection_assumptions")
    projection_standard = relationship("ProjectionStandard")

    __table_args__ = (
        CheckConstraint(
            "expected_return IS NULL OR (expected_return >= -0.5 AND expected_return <= 0.5)",
            name="ck_assumption_return",
        ),
        CheckConstraint("volatility IS NULL OR (volatility >= 0 AND volatility <= 1)", name="ck_assumption_volatility"),
        CheckConstraint("monthly_contribution IS NULL OR monthly_contribution >= 0", name="ck_assumption_contribution"),
    )

    def _uses_standard(self) -> bool:
        return bool(self.use_pag_defaults and self.projection_standard is not None)

    @property
    def effective_return(self) -> float:
        if self._uses_standard():
            return self.projection_standard.blended_return()
        return self.expected_return or 0.0

    @property
    def effective_volatility(self) -> float:
        if self._uses_standard():
            return self.projection_standard.volatility_equity or 0.0
        return self.volatility or 0.0

    @property
    def effective_inflation(self) -> float:
        if self._uses_standard():
            return self.projection_standard.inflation_rate or 0.0
        return self.inflation_rate or 0.0

    @property
    def effective_contribution(self) -> float:
        return self.monthly_contribution or 0.0

    @property
    def real_return(self) -> float:
        return (1 + self.effective_return) / (1 + self.effective_inflation) - 1

    def __repr__(self):
        return f"<ProjectionAssumption(id={self.id}, family_id={self.family_id}, account_id={self.account_id})>"


class AccountProjection(Base):
    """One forecast point per account and date."""

    __tablename__ = "account_projections"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    projection_assumption_id = Column(
        Integer, ForeignKey("projection_assumptions.id", ondelete="SET NULL")
    )
    projection_date = Column(Date, nullable=False)
    projected_balance = Column(Money, nullable=False)
    actual_balance = Column(Money)
    currency = Column(String(3), nullable=False)
    contribution = Column(Money)
    percentiles = Column(JSONType)  # {"p10": ..., "p90": ...}
    is_adaptive = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    account = relationship("Account", back_populates="projections")
    projection_assumption = relationship("ProjectionAssumption")

    # Constraints and indexes
    __table_args__ = (
        UniqueConstraint("account_id", "projection_date", name="uq_projection_account_date"),
        Index("idx_projections_account_date", "account_id", "projection_date"),
    )

    @validates("currency")
    def validate_currency(self, key, value):
        return _validate_currency(value)

    @property
    def variance(self) -> Optional[float]:
        return forecast_accuracy.variance(self.projected_balance, self.actual_balance)

    @property
    def variance_percentage(self) -> Optional[float]:
        return forecast_accuracy.variance_percentage(self.projected_balance, self.actual_balance)

    @property
    def absolute_percentage_error(self) -> Optional[float]:
        pct = self.variance_percentage
        return None if pct is None else abs(pct)

    @property
    def is_on_track(self) -> Optional[bool]:
        return forecast_accuracy.is_on_track(self.projected_balance, self.actual_balance)

    def percentile(self, level: int) -> Optional[float]:
        if not self.percentiles:
            return None
        return self.percentiles.get(f"p{level}")

    def confidence_range(self, level: int = 80) -> Dict[str, Optional[float]]:
        """Band covering ``level`` percent around the median (80 -> p10..p90)."""
        lower = (100 - level) // 2
        return {
            "lower": self.percentile(lower),
            "upper": self.percentile(100 - lower),
            "median": self.percentile(50),
        }

    def record_actual(self, balance: float) -> None:
        self.actual_balance = balance

    def __repr__(self):
        return (
            f"<AccountProjection(account_id={self.account_id}, date={self.projection_date}, "
            f"projected={self.projected_balance}, actual={self.actual_balance})>"
        )


class Milestone(Base):
    """Target balance for an account, growth ("reach") or debt reduction ("reduce_to")."""

    __tablename__ = "milestones"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    target_amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="CAD")
    status = Column(String(20), nullable=False, default="pending", index=True)
    target_type = Column(String(20), nullable=False, default="reach")
    progress_percentage = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    starting_balance = Column(Money)
    projected_date = Column(Date)
    achieved_date = Column(Date)
    target_date = Column(Date)
    is_custom = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    account = relationship("Account", back_populates="milestones")

    # Constraints
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'in_progress', 'achieved')", name="ck_milestone_status"),
        CheckConstraint("target_type IN ('reach', 'reduce_to')", name="ck_milestone_target_type"),
        CheckConstraint("target_amount >= 0", name="ck_milestone_target_non_negative"),
        CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100", name="ck_milestone_progress_range"
        ),
    )

    @property
    def is_reduction(self) -> bool:
        return self.target_type == REDUCE_TO

    @property
    def is_achieved(self) -> bool:
        return self.status == ACHIEVED

    def update_progress(self, current_balance: float, today: date) -> None:
        """Recompute progress and status; an achieved milestone stays achieved."""
        if self.is_reduction and self.starting_balance is None:
            self.starting_balance = abs(current_balance)
        if self.is_achieved:
            return

        progress = milestone_progress(
            self.target_type, self.target_amount, current_balance, self.starting_balance
        )
        self.progress_percentage = progress
        self.status = milestone_status(
            self.target_type, self.target_amount, current_balance, progress
        )
        if self.is_achieved:
            self.achieved_date = today

    def days_to_target(self, today: date) -> Optional[int]:
        if self.projected_date is None:
            return None
        if self.is_achieved:
            return 0
        return (self.projected_date - today).days

    @property
    def on_track(self) -> Optional[bool]:
        if self.is_achieved:
            return True
        if self.target_date is None or self.projected_date is None:
            return None
        return self.projected_date <= self.target_date

    def __repr__(self):
        return (
            f"<Milestone(id={self.id}, account_id={self.account_id}, target={self.target_amount}, "
            f"status='{self.status}')>"
        )


class DebtOptimizationStrategy(Base):
    """User-configured debt payoff scenario with cached simulation results."""

    __tablename__ = "debt_optimization_strategies"

    id = Column(Integer, primary_key=True, index=True)
    family_id = Column(Integer, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    strategy_type = Column(String(50), nullable=False, default="modified_smith")
    primary_mortgage_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"))
    heloc_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"))
    rental_mortgage_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"))
    simulation_months = Column(Integer, nullable=False, default=300)
    rental_income = Column(Money, nullable=False, default=0)
    rental_expenses = Column(Money, nullable=False, default=0)
    heloc_interest_rate = Column(Rate)
    heloc_max_limit = Column(Money)
    marginal_tax_rate = Column(Rate)

    # Results
    status = Column(String(20), nullable=False, default="draft", index=True)
    error_message = Column(Text)
    total_interest_saved = Column(Money)
    total_tax_benefit = Column(Money)
    net_benefit = Column(Money)
    months_accelerated = Column(Integer)
    last_simulated_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    family = relationship("Family", back_populates="strategies")
    primary_mortgage = relationship("Account", foreign_keys=[primary_mortgage_id])
    heloc = relationship("Account", foreign_keys=[heloc_id])
    rental_mortgage = relationship("Account", foreign_keys=[rental_mortgage_id])
    auto_stop_rules = relationship(
        "AutoStopRule",
        back_populates="strategy",
        cascade="all, delete-orphan",
        order_by="AutoStopRule.position, AutoStopRule.id",
    )
    ledger_entries = relationship(
        "DebtOptimizationLedgerEntry",
        back_populates="strategy",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DebtOptimizationLedgerEntry.scenario_type, DebtOptimizationLedgerEntry.month_number",
    )

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "strategy_type IN ('baseline', 'prepay_only', 'modified_smith')", name="ck_strategy_type"
        ),
        CheckConstraint(
            "status IN ('draft', 'simulated', 'active', 'completed', 'failed')", name="ck_strategy_status"
        ),
        CheckConstraint(
            "simulation_months > 0 AND simulation_months <= 600", name="ck_strategy_simulation_months"
        ),
    )

    def __repr__(self):
        return (
            f"<DebtOptimizationStrategy(id={self.id}, name='{self.name}', "
            f"type='{self.strategy_type}', status='{self.status}')>"
        )


class DebtOptimizationLedgerEntry(Base):
    """One simulated month of one scenario of a strategy."""

    __tablename__ = "debt_optimization_ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    strategy_id = Column(
        Integer, ForeignKey("debt_optimization_strategies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    scenario_type = Column(String(50), nullable=False)
    month_number = Column(Integer, nullable=False)
    calendar_month = Column(Date, nullable=False)

    rental_income = Column(Money, nullable=False, default=0)
    rental_expenses = Column(Money, nullable=False, default=0)
    net_rental_cash_flow = Column(Money, nullable=False, default=0)

    heloc_draw = Column(Money, nullable=False, default=0)
    heloc_repayment = Column(Money, nullable=False, default=0)
    heloc_balance = Column(Money, nullable=False, default=0)
    heloc_interest = Column(Money, nullable=False, default=0)
    heloc_interest_from_rental = Column(Money, nullable=False, default=0)
    heloc_interest_from_pocket = Column(Money, nullable=False, default=0)
    heloc_credit_limit = Column(Money, nullable=False, default=0)
    invested_amount = Column(Money, nullable=False, default=0)

    primary_mortgage_rate = Column(Rate, nullable=False, default=0)
    primary_mortgage_balance = Column(Money, nullable=False, default=0)
    primary_mortgage_payment = Column(Money, nullable=False, default=0)
    primary_mortgage_principal = Column(Money, nullable=False, default=0)
    primary_mortgage_interest = Column(Money, nullable=False, default=0)
    primary_mortgage_prepayment = Column(Money, nullable=False, default=0)

    rental_mortgage_balance = Column(Money, nullable=False, default=0)
    rental_mortgage_payment = Column(Money, nullable=False, default=0)
    rental_mortgage_principal = Column(Money, nullable=False, default=0)
    rental_mortgage_interest = Column(Money, nullable=False, default=0)

    deductible_interest = Column(Money, nullable=False, default=0)
    non_deductible_interest = Column(Money, nullable=False, default=0)
    tax_benefit = Column(Money, nullable=False, default=0)
    cumulative_tax_benefit = Column(Money, nullable=False, default=0)
    total_debt = Column(Money, nullable=False, default=0)

    strategy_stopped = Column(Boolean, nullable=False, default=False)
    stop_reason = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    strategy = relationship("DebtOptimizationStrategy", back_populates="ledger_entries")

    # Constraints and indexes
    __table_args__ = (
        UniqueConstraint("strategy_id", "scenario_type", "month_number", name="uq_ledger_strategy_scenario_month"),
        CheckConstraint(
            "scenario_type IN ('baseline', 'prepay_only', 'modified_smith')", name="ck_ledger_scenario_type"
        ),
        CheckConstraint("month_number >= 0", name="ck_ledger_month_non_negative"),
        Index("idx_ledger_strategy_scenario", "strategy_id", "scenario_type"),
    )

    def total_outstanding_debt(self) -> float:
        return self.primary_mortgage_balance + self.heloc_balance + self.rental_mortgage_balance

    def primary_mortgage_paid_off(self) -> bool:
        return self.primary_mortgage_balance <= 0

    def all_debt_paid_off(self) -> bool:
        return self.total_outstanding_debt() <= 0

    def __repr__(self):
        return (
            f"<DebtOptimizationLedgerEntry(strategy_id={self.strategy_id}, scenario='{self.scenario_type}', "
            f"month={self.month_number}, stopped={self.strategy_stopped})>"
        )


class AutoStopRule(Base):
    """Early-termination rule of a strategy."""

    __tablename__ = "debt_optimization_auto_stop_rules"

    id = Column(Integer, primary_key=True, index=True)
    strategy_id = Column(
        Integer, ForeignKey("debt_optimization_strategies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rule_type = Column(String(50), nullable=False)
    threshold_value = Column(Numeric(19, 4, asdecimal=False))
    threshold_unit = Column(String(20))
    enabled = Column(Boolean, nullable=False, default=True)
    position = Column(Integer, nullable=False, default=0)

    # Relationships
    strategy = relationship("DebtOptimizationStrategy", back_populates="auto_stop_rules")

    @validates("rule_type")
    def validate_rule_type(self, key, value):
        return validate_rule_type(value)

    @validates("threshold_unit")
    def validate_threshold_unit(self, key, value):
        return validate_threshold_unit(value)

    def __repr__(self):
        return f"<AutoStopRule(id={self.id}, type='{self.rule_type}', enabled={self.enabled})>"
