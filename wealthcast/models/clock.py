"""
Clock abstraction and calendar-month helpers.

Services and calculators ask a Clock for "today" so tests can pin the date.
"""

from datetime import date
from typing import Protocol

from dateutil.relativedelta import relativedelta


class Clock(Protocol):
    """Provides the current date."""

    def today(self) -> date:
        """Return the current date."""
        ...


class SystemClock:
    """Clock backed by the system date."""

    def today(self) -> date:
        return date.today()


class FixedClock:
    """Clock pinned to a given date."""

    def __init__(self, today: date):
        self._today = today

    def today(self) -> date:
        return self._today

    def advance(self, months: int = 0, days: int = 0) -> None:
        """Move the pinned date forward."""
        self._today = self._today + relativedelta(months=months, days=days)


def add_months(value: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    return value + relativedelta(months=months)


def end_of_month(value: date) -> date:
    """Last day of the month containing ``value``."""
    return value + relativedelta(day=31)


def beginning_of_month(value: date) -> date:
    """First day of the month containing ``value``."""
    return value.replace(day=1)
