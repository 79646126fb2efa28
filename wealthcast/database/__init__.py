"""Database models and configuration for the projection engine."""

from .base import Base, create_tables, get_engine, get_session, session_scope
from .models import (
    Account,
    AccountBalance,
    AccountProjection,
    AutoStopRule,
    DebtOptimizationLedgerEntry,
    DebtOptimizationStrategy,
    Family,
    Loan,
    Milestone,
    ProjectionAssumption,
    ProjectionStandard,
)

__all__ = [
    "Base",
    "create_tables",
    "get_engine",
    "get_session",
    "session_scope",
    "Family",
    "Account",
    "Loan",
    "AccountBalance",
    "ProjectionStandard",
    "ProjectionAssumption",
    "AccountProjection",
    "Milestone",
    "DebtOptimizationStrategy",
    "DebtOptimizationLedgerEntry",
    "AutoStopRule",
]
