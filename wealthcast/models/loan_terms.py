"""
Loan term defaults and canonical mortgage/HELOC rate math.

Canadian fixed-rate mortgages compound semi-annually: the quoted annual rate
is nominal, compounded twice per year, so the effective monthly rate is
(1 + r/2)^(1/6) - 1. HELOCs and variable products compound monthly (r / 12).
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class LoanTermDefaults(BaseModel):
    """Defaults applied when an account carries no loan configuration."""

    model_config = ConfigDict(frozen=True)

    mortgage_rate: float = Field(default=0.05, ge=0, le=1, description="Annual mortgage rate")
    heloc_rate: float = Field(default=0.07, ge=0, le=1, description="Annual HELOC rate")
    term_months: int = Field(default=300, ge=1, le=600, description="Amortization term")
    heloc_limit: float = Field(default=100_000.0, ge=0, description="HELOC credit limit")
    readvanceable_max_ratio: float = Field(
        default=0.8,
        gt=0,
        le=1,
        description="HELOC cap as a fraction of the original primary mortgage balance",
    )
    renewal_term_months: int = Field(
        default=60, ge=0, le=600, description="Months between mortgage renewals (0 disables)"
    )
    marginal_tax_rate: float = Field(
        default=0.40, ge=0, le=1, description="Effective marginal tax rate"
    )
    mortgage_compounding: Literal["semi_annual", "monthly"] = Field(
        default="semi_annual", description="Compounding convention for fixed mortgages"
    )


def mortgage_monthly_rate(annual_rate: float, compounding: str = "semi_annual") -> float:
    """Effective monthly rate for a fixed-rate mortgage."""
    if not annual_rate:
        return 0.0
    if compounding == "monthly":
        return annual_rate / 12
    return (1 + annual_rate / 2.0) ** (1.0 / 6) - 1


def simple_monthly_rate(annual_rate: float) -> float:
    """Monthly rate for HELOCs and other monthly-compounded products."""
    if not annual_rate:
        return 0.0
    return annual_rate / 12.0


def level_payment(principal: float, monthly_rate: float, term_months: int) -> float:
    """Level payment that amortizes ``principal`` over ``term_months``."""
    if principal <= 0 or term_months <= 0:
        return 0.0
    if monthly_rate == 0:
        return principal / term_months

    growth = (1 + monthly_rate) ** term_months
    return principal * monthly_rate * growth / (growth - 1)


def mortgage_payment(
    principal: float,
    annual_rate: float,
    term_months: int,
    compounding: str = "semi_annual",
) -> float:
    """Monthly payment for a fixed-rate mortgage."""
    return level_payment(
        principal, mortgage_monthly_rate(annual_rate, compounding), term_months
    )
