"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import UniqueConstraint
from datetime import datetime, timezone
from typing import List

WEAK_ACCURACY_THRESHOLD = 0.6


def _utcnow():
    return datetime.now(timezone.utc)


class Airport(SQLModel, table=True):
    """Airport reference data; `code` is the three letter IATA code."""
    code: str = Field(primary_key=True, min_length=3, max_length=3)
    name: str = Field(max_length=200)
    city: str = Field(max_length=100)
    country: str = Field(max_length=100)
    region: str = Field(max_length=50)


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique, stored lower-cased
    - `username`: unique display/login name
    - `password_hash`: hashed password string (never store plaintext)

    Ids are never handed out twice, so a token for a deleted account
    cannot resolve to a later one.
    """
    __table_args__ = {'sqlite_autoincrement': True}

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=_utcnow)
    last_login_at: datetime = Field(default_factory=_utcnow)
    progress_records: List['UserProgress'] = Relationship(
        back_populates='user',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan'},
    )


class UserProgress(SQLModel, table=True):
    """Per user, per airport answer statistics."""
    __table_args__ = (UniqueConstraint('user_id', 'airport_code', name='uq_userprogress_user_airport'),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    airport_code: str = Field(max_length=3)
    correct_answers: int = 0
    total_attempts: int = 0
    current_streak: int = 0
    best_streak: int = 0
    last_studied_at: datetime = Field(default_factory=_utcnow)
    user: Optional[User] = Relationship(back_populates='progress_records')

    @property
    def accuracy_rate(self) -> float:
        if not self.total_attempts:
            return 0.0
        return self.correct_answers / self.total_attempts

    @property
    def is_weak(self) -> bool:
        return self.accuracy_rate < WEAK_ACCURACY_THRESHOLD
