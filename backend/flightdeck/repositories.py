"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (airports,
users, progress). Repositories return SQLModel objects and perform
commits where appropriate.

Database failures leave this module as `StorageError`. Reads are
retried once after an operational error (locked database, dropped
connection); writes never are. `IntegrityError` is re-raised untouched
so services can turn uniqueness violations into domain errors.
"""

import functools
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlmodel import Session, select

from . import models
from .errors import StorageError

logger = logging.getLogger("flightdeck.repositories")


def read_retry_once(fn):
    """Run an idempotent read, retrying a single time on an operational error."""
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except OperationalError as exc:
            logger.warning("%s failed, retrying once: %s", fn.__qualname__, exc)
            self.session.rollback()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"{fn.__qualname__} failed") from exc
        try:
            return fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"{fn.__qualname__} failed after retry") from exc
    return wrapper


@contextmanager
def writing(session: Session, what: str):
    """Roll back on failure and surface anything but integrity errors as `StorageError`."""
    try:
        yield
    except IntegrityError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("write failed: %s: %s", what, exc)
        raise StorageError(f"{what} failed") from exc


def _dialect_insert(session: Session):
    """Return the `insert` construct with ON CONFLICT support for the bound dialect."""
    if session.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert


class AirportRepository:
    """CRUD operations for `Airport` rows."""
    def __init__(self, session: Session):
        self.session = session

    @read_retry_once
    def list_all(self) -> List[models.Airport]:
        """Return every airport ordered by code."""
        return self.session.exec(select(models.Airport).order_by(models.Airport.code)).all()

    @read_retry_once
    def get(self, code: str) -> Optional[models.Airport]:
        return self.session.get(models.Airport, code)

    def create(self, airport: models.Airport) -> models.Airport:
        with writing(self.session, "airport insert"):
            self.session.add(airport)
            self.session.commit()
            self.session.refresh(airport)
        return airport

    def delete(self, airport: models.Airport) -> None:
        with writing(self.session, "airport delete"):
            self.session.delete(airport)
            self.session.commit()


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance.

        A duplicate email or username raises `IntegrityError`.
        """
        with writing(self.session, "user insert"):
            self.session.add(user)
            self.session.commit()
            self.session.refresh(user)
        return user

    def save(self, user: models.User) -> models.User:
        with writing(self.session, "user update"):
            self.session.add(user)
            self.session.commit()
            self.session.refresh(user)
        return user

    def delete(self, user: models.User) -> None:
        """Delete a user; progress rows go with it through the relationship cascade."""
        with writing(self.session, "user delete"):
            self.session.delete(user)
            self.session.commit()

    @read_retry_once
    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    @read_retry_once
    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    @read_retry_once
    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class ProgressRepository:
    """Atomic counter updates and queries for `UserProgress` rows."""
    def __init__(self, session: Session):
        self.session = session

    def apply_answer(self, user_id: int, airport_code: str, is_correct: bool, now: datetime) -> models.UserProgress:
        """Insert or update the (user, airport) row in a single statement.

        The new counters are computed by the database from the stored
        row, so two writers racing on the same key both land. Returns a
        detached snapshot of the row as written by this call.
        """
        table = models.UserProgress.__table__
        hit = 1 if is_correct else 0
        insert = _dialect_insert(self.session)
        stmt = insert(table).values(
            user_id=user_id,
            airport_code=airport_code,
            correct_answers=hit,
            total_attempts=1,
            current_streak=hit,
            best_streak=hit,
            last_studied_at=now,
        )
        if is_correct:
            streak = table.c.current_streak + 1
            set_ = {
                "total_attempts": table.c.total_attempts + 1,
                "correct_answers": table.c.correct_answers + 1,
                "current_streak": streak,
                "best_streak": case((streak > table.c.best_streak, streak), else_=table.c.best_streak),
                "last_studied_at": stmt.excluded.last_studied_at,
            }
        else:
            set_ = {
                "total_attempts": table.c.total_attempts + 1,
                "current_streak": 0,
                "last_studied_at": stmt.excluded.last_studied_at,
            }
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.airport_code],
            set_=set_,
        ).returning(*table.c)
        with writing(self.session, "progress upsert"):
            row = self.session.exec(stmt).one()
            self.session.commit()
        return models.UserProgress(**row._mapping)

    @read_retry_once
    def get(self, user_id: int, airport_code: str) -> Optional[models.UserProgress]:
        stmt = select(models.UserProgress).where(
            models.UserProgress.user_id == user_id,
            models.UserProgress.airport_code == airport_code,
        )
        return self.session.exec(stmt).first()

    @read_retry_once
    def list_for_user(self, user_id: int) -> List[models.UserProgress]:
        """Return all progress rows for `user_id` ordered by airport code."""
        stmt = (
            select(models.UserProgress)
            .where(models.UserProgress.user_id == user_id)
            .order_by(models.UserProgress.airport_code)
        )
        return self.session.exec(stmt).all()
