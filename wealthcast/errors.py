"""
Exceptions raised by the projection and debt-optimization engine.

Data-absence conditions (no actuals, no qualifying milestone, no payoff date)
are returned as None and never raised.
"""


class WealthcastError(Exception):
    """Base exception for engine errors."""


class InvalidInputError(WealthcastError, ValueError):
    """Raised when a caller passes invalid input (negative months, bad rates, etc.)."""


class SimulationConsistencyError(WealthcastError):
    """Raised when a simulation reaches an internally inconsistent state."""
