"""
Database base configuration and session management.

This module provides the SQLAlchemy base class, engine, and session management
for the projection and debt-optimization engine.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from wealthcast.config import get_global_settings

# Create the declarative base
Base = declarative_base()

# Global variables for engine and session factory
_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_db_engine(db_url: str, echo: bool = False) -> Engine:
    """Create an engine for ``db_url``.

    SQLite connections are shared across threads (each session still gets
    its own connection from the pool); other backends verify and recycle
    pooled connections.
    """
    if db_url.startswith("sqlite"):
        return create_engine(
            db_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        db_url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_global_settings()
        _engine = create_db_engine(
            settings.db_url,
            echo=settings.app_env == "development" and settings.log_level == "DEBUG",
        )
    return _engine


def get_session_factory() -> sessionmaker:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine())
    return _session_factory


def get_session() -> Session:
    """Get a new database session."""
    session_factory = get_session_factory()
    return session_factory()  # type: ignore[no-any-return]


@contextmanager
def session_scope(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """Session that commits on success, rolls back on error and always closes."""
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(engine: Optional[Engine] = None) -> None:
    """Create all tables in the database."""
    Base.metadata.create_all(bind=engine or get_engine())


def drop_tables(engine: Optional[Engine] = None) -> None:
    """Drop all tables in the database."""
    Base.metadata.drop_all(bind=engine or get_engine())


def reset_engine() -> None:
    """Dispose the global engine and session factory (useful for testing)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
