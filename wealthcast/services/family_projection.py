"""
Family net-worth projection.

Combines every account of a family into one monthly net-worth path:
investments grow with their projection assumption, savings accrue a flat
interest rate, loan-backed liabilities follow their amortization schedule and
everything else stays at its current balance. Percentile bands use a single
volatility, the balance-weighted average of the asset accounts' volatilities.
"""

import datetime as dt
import logging
from typing import Dict, List, Optional

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from wealthcast.config import Settings, get_global_settings
from wealthcast.database.models import Account, AccountBalance, Family, ProjectionAssumption
from wealthcast.errors import InvalidInputError
from wealthcast.models.amortization import LoanPayoffCalculator
from wealthcast.models.clock import Clock, SystemClock, add_months, end_of_month
from wealthcast.models.percentile_bands import horizon_sigma, percentile_bands
from wealthcast.models.projection_calculator import ProjectionCalculator
from wealthcast.services import assumptions

logger = logging.getLogger(__name__)

SAVINGS_RATE = 0.02
HISTORY_DAYS = 365


class NetWorthPoint(BaseModel):
    """One projected month of family net worth with percentile bands."""

    month: int
    date: dt.date
    net_worth: float
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float
    assets: float
    liabilities: float


class HistoricalNetWorth(BaseModel):
    date: dt.date
    value: float


class NetWorthSummary(BaseModel):
    projected_net_worth: float
    projected_assets: float
    projected_liabilities: float
    projection_date: dt.date


class NetWorthSnapshot(BaseModel):
    current_net_worth: float
    total_assets: float
    total_liabilities: float
    currency: str


class FamilyProjection(BaseModel):
    currency: str
    today: dt.date
    historical: List[HistoricalNetWorth]
    projections: List[NetWorthPoint]
    summary: Optional[NetWorthSummary] = None
    currency_warnings: List[str] = []


class FamilyProjectionCalculator:
    """Projects a family's net worth across all of its accounts."""

    def __init__(
        self,
        session: Session,
        family: Family,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.family = family
        self.clock = clock or SystemClock()
        self.settings = settings or get_global_settings()
        self.logger = logging.getLogger(__name__)
        self._assumptions: Dict[int, ProjectionAssumption] = {}

    def _accounts(self, classification: str) -> List[Account]:
        return (
            self.session.query(Account)
            .filter(Account.family_id == self.family.id, Account.classification == classification)
            .order_by(Account.id)
            .all()
        )

    def _assumption_for(self, account: Account) -> ProjectionAssumption:
        if account.id not in self._assumptions:
            self._assumptions[account.id] = assumptions.for_account(
                self.session, account, self.settings
            )
        return self._assumptions[account.id]

    def summary_metrics(self) -> NetWorthSnapshot:
        """Current totals; liabilities are reported as positive amounts owed."""
        total_assets = sum(account.balance for account in self._accounts("asset"))
        total_liabilities = sum(abs(account.balance) for account in self._accounts("liability"))
        return NetWorthSnapshot(
            current_net_worth=round(total_assets - total_liabilities, 2),
            total_assets=round(total_assets, 2),
            total_liabilities=round(total_liabilities, 2),
            currency=self.family.currency,
        )

    def aggregate_volatility(self, asset_accounts: List[Account]) -> float:
        """Balance-weighted volatility of the asset accounts."""
        total = sum(account.balance for account in asset_accounts)
        if not asset_accounts or total == 0:
            return self.settings.default_volatility

        weights = np.array([account.balance / total for account in asset_accounts])
        volatilities = np.array(
            [self._assumption_for(account).effective_volatility for account in asset_accounts]
        )
        return float(np.dot(weights, volatilities))

    def _asset_path(self, account: Account, months: int) -> NDArray[np.float64]:
        steps = np.arange(1, months + 1, dtype=np.float64)
        if account.kind == "investment":
            assumption = self._assumption_for(account)
            calculator = ProjectionCalculator(
                principal=account.balance,
                rate=assumption.effective_return,
                contribution=assumption.effective_contribution,
                currency=account.currency,
                clock=self.clock,
            )
            return np.array([point.value for point in calculator.project(months)])
        if account.kind == "depository":
            return account.balance * (1 + SAVINGS_RATE / 12) ** steps
        return np.full(months, float(account.balance))

    def _liability_path(self, account: Account, months: int) -> NDArray[np.float64]:
        owed = abs(account.balance)
        if not account.is_loan_backed or owed == 0:
            return np.full(months, owed)

        defaults = self.settings.loan_term_defaults()
        loan = account.loan
        calculator = LoanPayoffCalculator(
            balance=owed,
            annual_rate=loan.interest_rate if loan.interest_rate is not None else defaults.mortgage_rate,
            term_months=loan.term_months or defaults.term_months,
            monthly_payment=loan.monthly_payment,
            clock=self.clock,
        )
        schedule = calculator.amortization_schedule()
        if not schedule:
            return np.full(months, owed)

        path = np.zeros(months)
        balances = [entry.balance for entry in schedule[:months]]
        path[: len(balances)] = balances
        return path

    def historical_net_worth(self) -> List[HistoricalNetWorth]:
        """Net worth on each recorded balance date of the past year."""
        signed = case(
            (Account.classification == "liability", -func.abs(AccountBalance.balance)),
            else_=AccountBalance.balance,
        )
        since = self.clock.today() - dt.timedelta(days=HISTORY_DAYS)
        rows = (
            self.session.query(AccountBalance.date, func.sum(signed))
            .join(Account, Account.id == AccountBalance.account_id)
            .filter(Account.family_id == self.family.id, AccountBalance.date >= since)
            .group_by(AccountBalance.date)
            .order_by(AccountBalance.date)
            .all()
        )
        return [HistoricalNetWorth(date=day, value=round(float(value), 2)) for day, value in rows]

    def project(self, years: int) -> FamilyProjection:
        """
        Monthly net-worth projection over ``years`` years.

        Net worth is projected assets minus projected amounts owed; p10..p90
        bands come from the aggregate asset volatility.
        """
        if years < 0:
            raise InvalidInputError(f"years cannot be negative: {years}")
        months = int(years) * 12
        today = self.clock.today()
        asset_accounts = self._accounts("asset")
        liability_accounts = self._accounts("liability")

        mismatched = [
            account
            for account in asset_accounts + liability_accounts
            if account.currency != self.family.currency
        ]
        warnings = []
        if mismatched:
            self.logger.warning(
                f"Family {self.family.id}: {len(mismatched)} accounts are not in "
                f"{self.family.currency}; net worth projection may be inaccurate"
            )
            warnings.append(
                f"Mixed currencies detected: {len(mismatched)} account(s) not in {self.family.currency}"
            )

        assets = np.zeros(months)
        for account in asset_accounts:
            assets += self._asset_path(account, months)
        liabilities = np.zeros(months)
        for account in liability_accounts:
            liabilities += self._liability_path(account, months)
        net_worth = assets - liabilities

        volatility = self.aggregate_volatility(asset_accounts)
        bands = percentile_bands(net_worth, horizon_sigma(volatility, np.arange(1, months + 1)))

        projections = [
            NetWorthPoint(
                month=index + 1,
                date=end_of_month(add_months(today, index + 1)),
                net_worth=round(float(net_worth[index]), 2),
                p10=float(bands["p10"][index]),
                p25=float(bands["p25"][index]),
                p50=float(bands["p50"][index]),
                p75=float(bands["p75"][index]),
                p90=float(bands["p90"][index]),
                assets=round(float(assets[index]), 2),
                liabilities=round(float(liabilities[index]), 2),
            )
            for index in range(months)
        ]

        summary = None
        if projections:
            final = projections[-1]
            summary = NetWorthSummary(
                projected_net_worth=round(final.p50, 2),
                projected_assets=final.assets,
                projected_liabilities=final.liabilities,
                projection_date=final.date,
            )

        self.logger.info(f"Projected net worth for family {self.family.id} over {months} months")
        return FamilyProjection(
            currency=self.family.currency,
            today=today,
            historical=self.historical_net_worth(),
            projections=projections,
            summary=summary,
            currency_warnings=warnings,
        )
