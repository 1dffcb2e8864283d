"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides
small helpers used by the application, scripts and tests.
"""

import logging

from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, create_engine, Session, select

from .config import settings
from . import models
from .utils.airport_loader import DEFAULT_AIRPORTS

logger = logging.getLogger("flightdeck.database")


def build_engine(url: str = None, timeout_s: float = None):
    """Create an engine; SQLite connections get a busy timeout so no call blocks forever."""
    url = url or settings.DATABASE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": timeout_s if timeout_s is not None else settings.DB_TIMEOUT_SECONDS,
        }
    return create_engine(url, echo=False, connect_args=connect_args)


engine = build_engine()


def create_db_and_tables(bind=None):
    """Create database tables using SQLModel metadata.

    Intended for local development and tests; schema changes beyond
    the streak columns below are not migrated.
    """
    bind = bind or engine
    SQLModel.metadata.create_all(bind)
    _ensure_streak_columns(bind)


def _ensure_streak_columns(bind):
    """Add the streak columns to SQLite `userprogress` tables created before streaks existed."""
    if bind.dialect.name != "sqlite":
        return
    with bind.connect() as conn:
        for col in ("current_streak INTEGER NOT NULL DEFAULT 0", "best_streak INTEGER NOT NULL DEFAULT 0"):
            try:
                conn.exec_driver_sql(f"ALTER TABLE userprogress ADD COLUMN {col}")
                conn.commit()
            except OperationalError:
                # column already present
                conn.rollback()


def seed_airports(session: Session) -> int:
    """Insert the default airports when the catalog is empty; return how many were added."""
    if session.exec(select(models.Airport.code)).first() is not None:
        return 0
    for rec in DEFAULT_AIRPORTS:
        session.add(models.Airport(**rec._asdict()))
    session.commit()
    logger.info("seeded %d airports", len(DEFAULT_AIRPORTS))
    return len(DEFAULT_AIRPORTS)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
