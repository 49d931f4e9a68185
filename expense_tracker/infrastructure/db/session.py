"""
Database session management (SQLAlchemy)
"""
from contextlib import contextmanager

import psycopg
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from expense_tracker.config import get_settings
from expense_tracker.domain.errors import ConcurrencyConflict


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base for all ORM models
    """
    pass


# Singleton engine and session factory
_engine = None
_SessionLocal = None


def get_engine():
    """Get or create SQLAlchemy engine (singleton)"""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = settings.get_sqlalchemy_url()
        _engine = create_engine(url, pool_pre_ping=True)
    return _engine


def get_session_factory():
    """Get or create session factory (singleton)"""
    global _SessionLocal
    if _SessionLocal is None:
        engine = get_engine()
        _SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return _SessionLocal


def get_db() -> Session:
    """
    FastAPI dependency: opens a session and always closes it

    Usage:
        @router.get("/budgets")
        def list_budgets(db: Session = Depends(get_db)):
            ...
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def versioned_write(db: Session, what: str):
    """
    Wrap the flush/commit of a versioned row (version_id_col).

    A version mismatch means another request changed the row after it was
    read; the transaction is rolled back and ConcurrencyConflict is raised.

    Usage:
        with versioned_write(db, f"expense {expense.id}"):
            expense.approval_status = "approved"
            db.commit()
    """
    try:
        yield
    except StaleDataError as e:
        db.rollback()
        raise ConcurrencyConflict(f"{what} was changed concurrently, reload and retry") from e


def check_db_connection() -> None:
    """
    Health check: PostgreSQL reachability (raw psycopg)

    Raises:
        psycopg.OperationalError: if the database is unavailable
    """
    settings = get_settings()
    dsn = settings.DATABASE_URL
    if dsn.startswith("postgresql+psycopg://"):
        dsn = dsn.replace("postgresql+psycopg://", "postgresql://", 1)
    with psycopg.connect(dsn, connect_timeout=3) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")
            cur.fetchone()
