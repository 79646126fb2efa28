"""
Projection assumption resolution.

An account uses its own active assumption when it has one, otherwise its
family's default, which is created on first use and seeded from the most
recent projection standard when one is loaded.
"""

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from wealthcast.config import Settings, get_global_settings
from wealthcast.database.models import (
    PAG_2025_DEFAULTS,
    Account,
    Family,
    ProjectionAssumption,
    ProjectionStandard,
)

logger = logging.getLogger(__name__)


def current_standard(session: Session) -> Optional[ProjectionStandard]:
    """Most recent projection standard, if any is loaded."""
    return (
        session.query(ProjectionStandard)
        .order_by(ProjectionStandard.effective_year.desc())
        .first()
    )


def seed_pag_2025(session: Session) -> ProjectionStandard:
    """Create the FP Canada PAG 2025 standard unless it already exists."""
    standard = session.query(ProjectionStandard).filter_by(code="PAG_2025").first()
    if standard is None:
        standard = ProjectionStandard(
            code="PAG_2025",
            name="FP Canada Projection Assumption Guidelines 2025",
            effective_year=2025,
            **PAG_2025_DEFAULTS,
        )
        session.add(standard)
        session.flush()
    return standard


def default_for(
    session: Session, family: Family, settings: Optional[Settings] = None
) -> ProjectionAssumption:
    """The family's active default assumption, created on first use.

    Without a loaded projection standard the new default is seeded from the
    configured return, inflation and volatility defaults.
    """
    assumption = (
        session.query(ProjectionAssumption)
        .filter(
            ProjectionAssumption.family_id == family.id,
            ProjectionAssumption.account_id.is_(None),
            ProjectionAssumption.is_active.is_(True),
        )
        .order_by(ProjectionAssumption.id)
        .first()
    )
    if assumption is not None:
        return assumption

    settings = settings or get_global_settings()
    standard = current_standard(session)
    if standard is None:
        logger.warning(
            f"No projection standard loaded; family {family.id} defaults to fallback assumptions"
        )
    assumption = ProjectionAssumption(
        family_id=family.id,
        projection_standard=standard,
        name="Default Assumptions",
        expected_return=standard.blended_return() if standard else settings.default_expected_return,
        inflation_rate=standard.inflation_rate if standard else settings.default_inflation_rate,
        volatility=standard.volatility_equity if standard else settings.default_volatility,
        monthly_contribution=0,
        use_pag_defaults=standard is not None,
        is_active=True,
    )
    session.add(assumption)
    session.flush()
    return assumption


def account_assumption(session: Session, account: Account) -> Optional[ProjectionAssumption]:
    return (
        session.query(ProjectionAssumption)
        .filter(
            ProjectionAssumption.account_id == account.id,
            ProjectionAssumption.is_active.is_(True),
        )
        .order_by(ProjectionAssumption.id)
        .first()
    )


def for_account(
    session: Session, account: Account, settings: Optional[Settings] = None
) -> ProjectionAssumption:
    """Account-specific assumption, falling back to the family default."""
    return account_assumption(session, account) or default_for(session, account.family, settings)


def create_for_account(
    session: Session,
    account: Account,
    settings: Optional[Settings] = None,
    **overrides: Any,
) -> ProjectionAssumption:
    """Create (or update) the account's own assumption, inheriting the family default."""
    existing = account_assumption(session, account)
    if existing is not None:
        for key, value in overrides.items():
            setattr(existing, key, value)
        session.flush()
        return existing

    family_default = default_for(session, account.family, settings)
    assumption = ProjectionAssumption(
        family_id=account.family_id,
        account_id=account.id,
        projection_standard=family_default.projection_standard,
        name=f"{account.name} Settings",
        expected_return=overrides.get("expected_return", family_default.expected_return),
        inflation_rate=overrides.get("inflation_rate", family_default.inflation_rate),
        volatility=overrides.get("volatility", family_default.volatility),
        monthly_contribution=overrides.get(
            "monthly_contribution", family_default.monthly_contribution
        ),
        use_pag_defaults=overrides.get("use_pag_defaults", family_default.use_pag_defaults),
        is_active=True,
    )
    session.add(assumption)
    session.flush()
    return assumption
