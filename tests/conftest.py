"""
Pytest configuration and shared fixtures for the wealthcast tests.
"""

from datetime import date

import pytest
from sqlalchemy.orm import sessionmaker

from wealthcast.config import Settings
from wealthcast.database.base import Base, create_db_engine
from wealthcast.database.models import Account, Family, Loan, ProjectionAssumption
from wealthcast.models.clock import FixedClock

TODAY = date(2026, 1, 15)


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """Create a file-backed SQLite database for testing.

    A file (rather than an in-memory database) lets several sessions on
    different threads share the same data.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'wealthcast_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    """Clock pinned to 2026-01-15."""
    return FixedClock(TODAY)


@pytest.fixture
def settings():
    return Settings(_env_file=None, APP_ENV="testing", DB_URL="sqlite://")


@pytest.fixture
def family(db_session):
    """Create a test family."""
    family = Family(name="Test Family", currency="CAD")
    db_session.add(family)
    db_session.commit()
    db_session.refresh(family)
    return family


@pytest.fixture
def make_account(db_session, family):
    """Factory creating committed accounts, optionally with loan terms."""

    def _make(name="Account", balance=0.0, classification="asset", kind="investment", currency="CAD", loan=None):
        account = Account(
            family_id=family.id,
            name=name,
            balance=balance,
            classification=classification,
            kind=kind,
            currency=currency,
        )
        if loan is not None:
            account.loan = Loan(**loan)
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account

    return _make


@pytest.fixture
def investment_account(make_account):
    return make_account(name="TFSA", balance=10_000.0)


@pytest.fixture
def investment_assumption(db_session, family, investment_account):
    """Account-specific assumption: 6% return, 15% volatility, no contribution."""
    assumption = ProjectionAssumption(
        family_id=family.id,
        account_id=investment_account.id,
        name="TFSA Settings",
        expected_return=0.06,
        inflation_rate=0.02,
        volatility=0.15,
        monthly_contribution=0,
        use_pag_defaults=False,
        is_active=True,
    )
    db_session.add(assumption)
    db_session.commit()
    return assumption
