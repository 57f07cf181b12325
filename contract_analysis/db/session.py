"""
Database Session Management
===========================

PostgreSQL connection handling with SQLAlchemy.
SQLite is used for development and tests.
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from .models import Base

_engine = None
_engine_url = None

# Session factory is configured lazily (important for tests that set DATABASE_URL at runtime).
# expire_on_commit=False so records returned from a committed session stay readable.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _current_database_url() -> str:
    # Default to SQLite for development/testing, use DATABASE_URL for production PostgreSQL
    return os.environ.get("DATABASE_URL", "sqlite:///./dev.db")


def _create_engine_for_url(database_url: str):
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={
            "connect_timeout": int(os.environ.get("DB_CONNECT_TIMEOUT", "5")),
        },
        echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
    )


def get_engine():
    """Get the SQLAlchemy engine"""
    global _engine, _engine_url
    database_url = _current_database_url()
    if _engine is None or _engine_url != database_url:
        _engine = _create_engine_for_url(database_url)
        _engine_url = database_url
        SessionLocal.configure(bind=_engine)
    return _engine


def reset_engine():
    """Reset engine/sessionmaker (primarily for tests)."""
    global _engine, _engine_url
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    SessionLocal.configure(bind=None)


def init_db():
    """Initialize database tables"""
    engine = get_engine()
    Base.metadata.create_all(bind=engine)


def drop_db():
    """Drop all database tables (use with caution!)"""
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)


def new_session() -> Session:
    """Open a session bound to the current engine. Caller closes it."""
    get_engine()
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI to get database session.

    Usage:
        @router.get("/contracts")
        def list_contracts(db: Session = Depends(get_db)):
            ...
    """
    db = new_session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database session.

    Usage:
        with get_db_session() as db:
            db.query(Contract).all()
    """
    db = new_session()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
