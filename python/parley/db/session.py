"""Database session management and transaction helpers.

Provides:
- Request-scoped database sessions via get_db() dependency
- Transaction context manager for mutations
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from parley.db.engine import get_engine
from parley.errors import ApiErrorCode, UnavailableError
from parley.logging import get_logger

logger = get_logger(__name__)


def create_session_factory(engine: Any = None) -> sessionmaker[Session]:
    """Create a session factory bound to an engine.

    Args:
        engine: SQLAlchemy engine. If None, uses the default engine.
    """
    if engine is None:
        engine = get_engine()

    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


# Default session factory - created lazily
_SessionLocal: sessionmaker[Session] | None = None


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the default session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = create_session_factory()
    return _SessionLocal


def set_session_factory(factory: sessionmaker[Session] | None) -> None:
    """Replace the default session factory (tests bind it to their own engine)."""
    global _SessionLocal
    _SessionLocal = factory


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that provides a database session.

    Yields:
        A database session that is automatically closed after use.
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Context manager for database transactions.

    Commits on success, rolls back on exception. Storage-level
    OperationalErrors (timeouts, lost connections) are re-raised as
    UnavailableError so callers see a typed failure, never a half-written row.

    Usage:
        with transaction(db):
            db.execute(...)
            db.execute(...)
        # Committed if no exception
    """
    try:
        yield
        db.commit()
    except OperationalError as exc:
        db.rollback()
        logger.warning("storage_operation_failed", error=str(exc.orig or exc))
        raise UnavailableError(
            ApiErrorCode.E_STORAGE_UNAVAILABLE, "Storage is temporarily unavailable"
        ) from exc
    except Exception:
        db.rollback()
        raise
