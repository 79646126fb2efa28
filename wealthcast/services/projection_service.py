"""
Projection service for generating and reading persisted account forecasts.

Regeneration deletes an account's projections dated today or later and
inserts one end-of-month point per future month. The whole sequence runs
under an account-scoped lock and a single transaction, so concurrent callers
for the same account never leave duplicate or partial batches behind.
"""

import logging
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import delete
from sqlalchemy.orm import Session

from wealthcast.config import Settings, get_global_settings
from wealthcast.database.models import (
    Account,
    AccountBalance,
    AccountProjection,
    ProjectionAssumption,
)
from wealthcast.errors import InvalidInputError
from wealthcast.models.clock import Clock, SystemClock, beginning_of_month, end_of_month
from wealthcast.models.forecast_accuracy import AccuracyStats, ForecastAccuracyCalculator
from wealthcast.models.projection_calculator import ProjectionCalculator, ProjectionPoint

from . import assumptions
from .locking import KeyedLock, account_locks, lock_account_row
from .milestone_service import MilestoneService

logger = logging.getLogger(__name__)

ACCURACY_PERIODS = {
    "all": None,
    "last_year": relativedelta(years=1),
    "last_6_months": relativedelta(months=6),
}


class ProjectionService:
    """Service for projection generation, charts, accuracy and reconciliation."""

    def __init__(
        self,
        session: Session,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        """Initialize the projection service.

        Args:
            session: Database session used for reads and writes
            clock: Source of "today" (defaults to the system date)
            settings: Application settings (defaults to global settings)
            locks: Account lock registry (defaults to the process-wide one)
        """
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or get_global_settings()
        self.locks = locks or account_locks
        self.logger = logging.getLogger(__name__)

    def resolve_assumption(
        self, account: Account, assumption: Optional[ProjectionAssumption] = None
    ) -> ProjectionAssumption:
        """Explicit assumption, else the account's own, else the family default."""
        if assumption is not None:
            return assumption
        return assumptions.for_account(self.session, account, self.settings)

    def _calculator(
        self,
        account: Account,
        assumption: ProjectionAssumption,
        contribution: Optional[float] = None,
    ) -> ProjectionCalculator:
        return ProjectionCalculator(
            principal=account.balance,
            rate=assumption.effective_return,
            contribution=assumption.effective_contribution if contribution is None else contribution,
            currency=account.currency,
            volatility=assumption.effective_volatility,
            clock=self.clock,
        )

    def generate_for_account(
        self,
        account: Account,
        months: int,
        assumption: Optional[ProjectionAssumption] = None,
    ) -> List[AccountProjection]:
        """
        Replace the account's future projections with ``months`` fresh points.

        Args:
            account: Account to project
            months: Number of future month-end points to create
            assumption: Assumption to use instead of the resolved one

        Returns:
            The inserted projections, in date order

        Raises:
            InvalidInputError: If months is negative or a point fails validation
        """
        if months < 0:
            raise InvalidInputError(f"months cannot be negative: {months}")

        account_id = account.id
        with self.locks.hold(account_id):
            try:
                self.logger.info(f"Regenerating {months} projections for account {account_id}")
                locked = lock_account_row(self.session, account_id)
                resolved = self.resolve_assumption(locked, assumption)
                calculator = self._calculator(locked, resolved)
                today = self.clock.today()

                self.session.execute(
                    delete(AccountProjection).where(
                        AccountProjection.account_id == account_id,
                        AccountProjection.projection_date >= today,
                    )
                )

                bands = calculator.project_with_analytical_bands(months)
                projections = [
                    AccountProjection(
                        account_id=account_id,
                        projection_assumption_id=resolved.id,
                        projection_date=band.date,
                        projected_balance=calculator.future_value_at_month(band.month),
                        currency=locked.currency,
                        contribution=calculator.contribution,
                        percentiles={
                            "p10": band.p10,
                            "p25": band.p25,
                            "p50": band.p50,
                            "p75": band.p75,
                            "p90": band.p90,
                        },
                        is_adaptive=False,
                    )
                    for band in bands
                ]
                self.session.add_all(projections)
                self.session.commit()

            except Exception as e:
                self.session.rollback()
                self.logger.error(f"Projection regeneration for account {account_id} failed: {str(e)}")
                raise

        self.logger.info(f"Stored {len(projections)} projections for account {account_id}")
        return projections

    def generate_projections(self, account: Account, months: Optional[int] = None) -> None:
        """Regenerate projections and refresh milestone dates that depend on them."""
        if months is None:
            months = self.settings.default_projection_months
        self.generate_for_account(account, months)
        milestones = MilestoneService(self.session, clock=self.clock, settings=self.settings)
        milestones.update_milestone_projections(account)

    def adaptive_projection(
        self,
        account: Account,
        years: int,
        contribution: Optional[float] = None,
        assumption: Optional[ProjectionAssumption] = None,
    ) -> List[ProjectionPoint]:
        """Projection recomputed from the current balance; nothing is stored."""
        resolved = self.resolve_assumption(account, assumption)
        return self._calculator(account, resolved, contribution).project(years * 12)

    def _historical_balance_data(self, account: Account) -> List[Dict[str, Any]]:
        start = self.clock.today() - relativedelta(months=12)
        balances = (
            self.session.query(AccountBalance)
            .filter(AccountBalance.account_id == account.id, AccountBalance.date >= start)
            .order_by(AccountBalance.date)
            .all()
        )
        return [{"date": b.date.isoformat(), "value": float(b.balance)} for b in balances]

    def projection_chart_data(
        self,
        account: Account,
        years: int = 10,
        assumption: Optional[ProjectionAssumption] = None,
    ) -> Dict[str, Any]:
        """
        Historical balances plus banded projections for charting.

        The projection series starts with an anchor point at today's balance.
        """
        resolved = self.resolve_assumption(account, assumption)
        calculator = self._calculator(account, resolved)
        today = self.clock.today()
        current = float(account.balance)

        anchor = {"date": today.isoformat()}
        anchor.update({name: current for name in ("p10", "p25", "p50", "p75", "p90")})
        bands = calculator.project_with_analytical_bands(years * 12)
        projections = [anchor] + [
            {
                "date": band.date.isoformat(),
                "p10": band.p10,
                "p25": band.p25,
                "p50": band.p50,
                "p75": band.p75,
                "p90": band.p90,
            }
            for band in bands
        ]

        return {
            "historical": self._historical_balance_data(account),
            "projections": projections,
            "currency": account.currency,
            "today": today.isoformat(),
        }

    def forecast_accuracy(self, account: Account, period: str = "all") -> Optional[AccuracyStats]:
        """
        Accuracy of past projections against recorded actuals.

        Args:
            account: Account whose projections are evaluated
            period: "all", "last_year" or "last_6_months"

        Returns:
            Accuracy statistics, or None when no projection has an actual
        """
        if period not in ACCURACY_PERIODS:
            raise InvalidInputError(
                f"Unknown accuracy period {period!r}; expected one of {', '.join(ACCURACY_PERIODS)}"
            )

        query = self.session.query(AccountProjection).filter(
            AccountProjection.account_id == account.id,
            AccountProjection.actual_balance.isnot(None),
        )
        window = ACCURACY_PERIODS[period]
        if window is not None:
            query = query.filter(AccountProjection.projection_date > self.clock.today() - window)

        return ForecastAccuracyCalculator(query.order_by(AccountProjection.projection_date).all()).calculate()

    def record_actuals(self, family_id: Optional[int] = None) -> int:
        """
        Record current balances against this month's projections.

        Each account's projection dated within the current calendar month gets
        the account balance as its actual, once; recorded actuals are never
        overwritten.

        Returns:
            Number of projections updated
        """
        today = self.clock.today()
        query = self.session.query(AccountProjection, Account).join(
            Account, AccountProjection.account_id == Account.id
        ).filter(
            AccountProjection.projection_date >= beginning_of_month(today),
            AccountProjection.projection_date <= end_of_month(today),
            AccountProjection.actual_balance.is_(None),
        )
        if family_id is not None:
            query = query.filter(Account.family_id == family_id)

        recorded = 0
        for projection, account in query.all():
            projection.record_actual(account.balance)
            recorded += 1

        self.session.commit()
        self.logger.info(f"Recorded actual balances on {recorded} projections")
        return recorded
