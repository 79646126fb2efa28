"""
Auto-stop rules for debt optimization simulations.

A rule is evaluated against one simulated month and answers whether the
simulation should stop there. Rules combine with OR semantics: the first
month where any enabled rule triggers is the stop month.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from pydantic import BaseModel, Field, field_validator

from wealthcast.errors import InvalidInputError, SimulationConsistencyError

logger = logging.getLogger(__name__)

DEFAULT_HELOC_LIMIT_PERCENTAGE = 95.0
THRESHOLD_UNITS = ("percentage", "amount", "months")


class AutoStopRuleType(str, Enum):
    """Supported rule types."""

    HELOC_LIMIT_PERCENTAGE = "heloc_limit_percentage"
    HELOC_BALANCE_THRESHOLD = "heloc_balance_threshold"
    PRIMARY_PAID_OFF = "primary_paid_off"
    ALL_DEBT_PAID_OFF = "all_debt_paid_off"
    MAX_MONTHS = "max_months"
    NEGATIVE_CASH_FLOW = "negative_cash_flow"
    HELOC_INTEREST_EXCEEDS_BENEFIT = "heloc_interest_exceeds_benefit"


RULE_TYPES = tuple(rule_type.value for rule_type in AutoStopRuleType)


def validate_rule_type(value: str) -> str:
    """Reject unknown rule types when a rule is configured."""
    if value not in RULE_TYPES:
        raise InvalidInputError(
            f"Unknown auto-stop rule type {value!r}; expected one of {', '.join(RULE_TYPES)}"
        )
    return value


def validate_threshold_unit(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in THRESHOLD_UNITS:
        raise InvalidInputError(
            f"threshold_unit must be one of {', '.join(THRESHOLD_UNITS)}, got {value!r}"
        )
    return value


class StopRule(Protocol):
    rule_type: str
    threshold_value: Optional[float]
    enabled: bool


class AutoStopRuleSpec(BaseModel):
    """In-memory rule configuration."""

    rule_type: str = Field(..., description="One of RULE_TYPES")
    threshold_value: Optional[float] = Field(None, description="Rule threshold")
    threshold_unit: Optional[str] = Field(None, description="percentage, amount or months")
    enabled: bool = Field(default=True)

    @field_validator("rule_type")
    @classmethod
    def validate_rule_type(cls, v: str) -> str:
        if isinstance(v, AutoStopRuleType):
            v = v.value
        if v not in RULE_TYPES:
            raise ValueError(f"Unknown auto-stop rule type: {v}")
        return v

    @field_validator("threshold_unit")
    @classmethod
    def validate_threshold_unit(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in THRESHOLD_UNITS:
            raise ValueError(f"threshold_unit must be one of {', '.join(THRESHOLD_UNITS)}")
        return v


def _field(entry: Any, name: str) -> float:
    try:
        value = getattr(entry, name)
    except AttributeError:
        raise SimulationConsistencyError(
            f"Ledger entry {type(entry).__name__} has no field {name!r}"
        )
    return 0.0 if value is None else value


def _heloc_limit_percentage(rule: StopRule, entry: Any) -> bool:
    credit_limit = _field(entry, "heloc_credit_limit")
    if not credit_limit or credit_limit <= 0:
        return False
    threshold = (
        DEFAULT_HELOC_LIMIT_PERCENTAGE
        if rule.threshold_value is None
        else rule.threshold_value
    )
    return _field(entry, "heloc_balance") / credit_limit * 100 >= threshold


def _heloc_balance_threshold(rule: StopRule, entry: Any) -> bool:
    if rule.threshold_value is None:
        return False
    return _field(entry, "heloc_balance") >= rule.threshold_value


def _primary_paid_off(rule: StopRule, entry: Any) -> bool:
    return _field(entry, "primary_mortgage_balance") <= 0


def _all_debt_paid_off(rule: StopRule, entry: Any) -> bool:
    return (
        _field(entry, "primary_mortgage_balance") <= 0
        and _field(entry, "heloc_balance") <= 0
        and _field(entry, "rental_mortgage_balance") <= 0
    )


def _max_months(rule: StopRule, entry: Any) -> bool:
    if rule.threshold_value is None:
        return False
    return _field(entry, "month_number") >= int(rule.threshold_value)


def _negative_cash_flow(rule: StopRule, entry: Any) -> bool:
    return _field(entry, "net_rental_cash_flow") < 0


def _heloc_interest_exceeds_benefit(rule: StopRule, entry: Any) -> bool:
    return _field(entry, "heloc_interest") > _field(entry, "tax_benefit")


_EVALUATORS: Dict[str, Callable[[StopRule, Any], bool]] = {
    AutoStopRuleType.HELOC_LIMIT_PERCENTAGE.value: _heloc_limit_percentage,
    AutoStopRuleType.HELOC_BALANCE_THRESHOLD.value: _heloc_balance_threshold,
    AutoStopRuleType.PRIMARY_PAID_OFF.value: _primary_paid_off,
    AutoStopRuleType.ALL_DEBT_PAID_OFF.value: _all_debt_paid_off,
    AutoStopRuleType.MAX_MONTHS.value: _max_months,
    AutoStopRuleType.NEGATIVE_CASH_FLOW.value: _negative_cash_flow,
    AutoStopRuleType.HELOC_INTEREST_EXCEEDS_BENEFIT.value: _heloc_interest_exceeds_benefit,
}


def triggered(rule: StopRule, entry: Any) -> bool:
    """
    Whether ``rule`` triggers for a simulated month.

    Disabled rules never trigger. Unknown rule types are logged and treated
    as never triggering so one bad rule cannot halt a simulation.
    """
    if not rule.enabled:
        return False

    evaluator = _EVALUATORS.get(rule.rule_type)
    if evaluator is None:
        logger.warning(f"Ignoring auto-stop rule with unknown type {rule.rule_type!r}")
        return False
    return evaluator(rule, entry)


def first_triggered(rules: Iterable[StopRule], entry: Any) -> Optional[StopRule]:
    """The first rule that triggers for ``entry``, if any."""
    for rule in rules:
        if triggered(rule, entry):
            return rule
    return None


def describe(rule: StopRule) -> str:
    """Human-readable description, also used as the stop reason."""
    threshold = rule.threshold_value
    if rule.rule_type == AutoStopRuleType.HELOC_LIMIT_PERCENTAGE.value:
        percentage = DEFAULT_HELOC_LIMIT_PERCENTAGE if threshold is None else threshold
        return f"Stop when HELOC reaches {percentage:g}% of credit limit"
    if rule.rule_type == AutoStopRuleType.HELOC_BALANCE_THRESHOLD.value:
        return f"Stop when HELOC balance reaches ${int(threshold or 0):,}"
    if rule.rule_type == AutoStopRuleType.PRIMARY_PAID_OFF.value:
        return "Stop when primary mortgage is paid off"
    if rule.rule_type == AutoStopRuleType.ALL_DEBT_PAID_OFF.value:
        return "Stop when all debt is paid off"
    if rule.rule_type == AutoStopRuleType.MAX_MONTHS.value:
        return f"Stop after {int(threshold or 0)} months"
    if rule.rule_type == AutoStopRuleType.NEGATIVE_CASH_FLOW.value:
        return "Stop if net cash flow becomes negative"
    if rule.rule_type == AutoStopRuleType.HELOC_INTEREST_EXCEEDS_BENEFIT.value:
        return "Stop if HELOC interest exceeds tax benefit"
    return "Unknown rule type"
