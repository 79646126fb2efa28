"""Persistence-aware services for projections, milestones and debt optimization."""

from .debt_optimization_service import DebtOptimizationService, SimulationSummary
from .family_projection import FamilyProjection, FamilyProjectionCalculator
from .locking import KeyedLock, account_locks
from .milestone_service import MilestoneService
from .projection_service import ProjectionService

__all__ = [
    "ProjectionService",
    "MilestoneService",
    "DebtOptimizationService",
    "SimulationSummary",
    "FamilyProjectionCalculator",
    "FamilyProjection",
    "KeyedLock",
    "account_locks",
]
