"""
Milestone service: progress tracking and projected achievement dates.

Projected dates come from the account's persisted future projections, or from
the amortization schedule for reduction milestones on loan-backed accounts.
Every update recomputes from current state, so it is safe to re-run at any time.
"""

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from wealthcast.config import Settings, get_global_settings
from wealthcast.database.models import Account, AccountProjection, Milestone
from wealthcast.models.amortization import LoanPayoffCalculator
from wealthcast.models.clock import Clock, SystemClock
from wealthcast.models.milestone_calculator import (
    ACHIEVED,
    IN_PROGRESS,
    PENDING,
    REDUCE_TO,
    STANDARD_MILESTONES,
    debt_milestone_targets,
    default_target_type,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (PENDING, IN_PROGRESS)


class MilestoneService:
    """Service for milestone progress and ETA estimation."""

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

    def _open_milestones(self, account: Account):
        return self.session.query(Milestone).filter(
            Milestone.account_id == account.id, Milestone.status.in_(OPEN_STATUSES)
        )

    def next_milestone(self, account: Account) -> Optional[Milestone]:
        """
        Nearest open milestone not yet reached.

        For liabilities: the highest target below the absolute balance.
        For assets: the lowest target above the balance.
        """
        query = self._open_milestones(account)
        if account.is_liability:
            query = query.filter(Milestone.target_amount < abs(account.balance)).order_by(
                Milestone.target_amount.desc()
            )
        else:
            query = query.filter(Milestone.target_amount > account.balance).order_by(
                Milestone.target_amount.asc()
            )
        return query.first()

    def achieved_milestones(self, account: Account) -> List[Milestone]:
        return (
            self.session.query(Milestone)
            .filter(Milestone.account_id == account.id, Milestone.status == ACHIEVED)
            .order_by(Milestone.target_amount)
            .all()
        )

    def update_milestone_progress(self, account: Account) -> List[Milestone]:
        """Recompute progress and status of every milestone from the current balance."""
        milestones = (
            self.session.query(Milestone).filter(Milestone.account_id == account.id).all()
        )
        today = self.clock.today()
        for milestone in milestones:
            milestone.update_progress(account.balance, today)
        self.session.commit()
        return milestones

    def _payoff_calculator(self, account: Account) -> LoanPayoffCalculator:
        defaults = self.settings.loan_term_defaults()
        loan = account.loan
        return LoanPayoffCalculator(
            balance=account.balance,
            annual_rate=loan.interest_rate if loan.interest_rate is not None else defaults.mortgage_rate,
            term_months=loan.term_months or defaults.term_months,
            monthly_payment=loan.monthly_payment,
            clock=self.clock,
        )

    def _first_projection_date(self, milestone: Milestone) -> Optional[date]:
        query = self.session.query(AccountProjection.projection_date).filter(
            AccountProjection.account_id == milestone.account_id,
            AccountProjection.projection_date > self.clock.today(),
        )
        if milestone.is_reduction:
            query = query.filter(
                func.abs(AccountProjection.projected_balance) <= milestone.target_amount
            )
        else:
            query = query.filter(AccountProjection.projected_balance >= milestone.target_amount)
        return query.order_by(AccountProjection.projection_date).limit(1).scalar()

    def update_milestone_projections(self, account: Account) -> List[Milestone]:
        """Estimate an achievement date for every open milestone; None when unreachable."""
        milestones = self._open_milestones(account).all()
        payoff = None
        for milestone in milestones:
            if milestone.is_reduction and account.is_loan_backed:
                if payoff is None:
                    payoff = self._payoff_calculator(account)
                milestone.projected_date = payoff.projected_date_for_target(milestone.target_amount)
            else:
                milestone.projected_date = self._first_projection_date(milestone)

        self.session.commit()
        self.logger.debug(f"Updated projected dates of {len(milestones)} milestones for account {account.id}")
        return milestones

    def create_standard_milestones(self, account: Account) -> List[Milestone]:
        """Create the standard milestones for the account unless they already exist."""
        target_type = default_target_type(account.is_liability)
        if target_type == REDUCE_TO:
            if not account.balance:
                return []
            targets = debt_milestone_targets(account.balance)
            starting_balance = abs(account.balance)
        else:
            targets = STANDARD_MILESTONES
            starting_balance = None

        milestones = []
        for name, target in targets:
            milestone = (
                self.session.query(Milestone)
                .filter_by(account_id=account.id, target_amount=target, is_custom=False)
                .first()
            )
            if milestone is None:
                milestone = Milestone(
                    account_id=account.id,
                    name=name,
                    target_amount=target,
                    currency=account.currency,
                    status=PENDING,
                    target_type=target_type,
                    starting_balance=starting_balance,
                    progress_percentage=0,
                    is_custom=False,
                )
                self.session.add(milestone)
            milestones.append(milestone)

        self.session.commit()
        self.logger.info(f"Standard {target_type} milestones ready for account {account.id}")
        return milestones

    def create_milestone(
        self,
        account: Account,
        name: str,
        target_amount: float,
        target_type: Optional[str] = None,
        target_date: Optional[date] = None,
    ) -> Milestone:
        """Create a custom milestone; the direction defaults from the account classification."""
        target_type = target_type or default_target_type(account.is_liability)
        milestone = Milestone(
            account_id=account.id,
            name=name,
            target_amount=target_amount,
            currency=account.currency,
            status=PENDING,
            target_type=target_type,
            starting_balance=abs(account.balance) if target_type == REDUCE_TO else None,
            progress_percentage=0,
            target_date=target_date,
            is_custom=True,
        )
        self.session.add(milestone)
        self.session.commit()
        return milestone
