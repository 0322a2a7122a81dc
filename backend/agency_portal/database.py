"""
Agency Portal - Database Sessions
Engine and sessions for the enforcement tables. PostgreSQL in production;
any SQLAlchemy URL works, and SQLite is used for local runs and tests.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from . import config


def engine_options(url: str) -> dict:
    """Backend-specific create_engine arguments."""
    if make_url(url).get_backend_name() == "sqlite":
        # Sync route handlers run on threadpool workers
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, **engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    """Request-scoped session. Services commit; anything left over is discarded on close."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for scripts and jobs outside a request: commit on success, roll back on error."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create any missing tables."""
    from .models import db_models  # noqa: F401  registers every table on Base.metadata

    Base.metadata.create_all(bind=engine)
