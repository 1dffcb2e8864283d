"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the pure quiz logic in `quiz.py`. Services are intentionally thin:
they validate input, execute domain logic and persist aggregates via
repositories. Each one takes the request's `Session`; the clock and
random source are injectable so tests can pin them.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import (
    DuplicateAirportError,
    DuplicateCredentialError,
    ExpiredTokenError,
    InvalidCredentialsError,
    InvalidTokenError,
    UnknownAirportError,
)
from .quiz import AirportRecord, AnswerEvaluator, QuestionGenerator, QuizQuestion
from .utils.airport_loader import normalize_code
from .utils.clock import Clock, as_utc, utcnow
from .utils.keyed_lock import KeyedLock

logger = logging.getLogger("flightdeck.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# shared by every tracker in the process; the upsert covers other processes
_progress_locks = KeyedLock()


class AirportCatalog:
    """Read and administer airport reference data as immutable records."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.AirportRepository(session)

    @staticmethod
    def _to_record(row: models.Airport) -> AirportRecord:
        return AirportRecord(row.code, row.name, row.city, row.country, row.region)

    def list_records(self) -> List[AirportRecord]:
        return [self._to_record(a) for a in self.repo.list_all()]

    def get(self, code: str) -> AirportRecord:
        """Return the airport for `code` (case-insensitive) or raise `UnknownAirportError`."""
        row = self.repo.get((code or '').strip().upper())
        if row is None:
            raise UnknownAirportError(f"Airport code '{code}' not found.")
        return self._to_record(row)

    def add(self, record: AirportRecord) -> AirportRecord:
        code = normalize_code(record.code)
        if self.repo.get(code) is not None:
            raise DuplicateAirportError(f"Airport with code '{code}' already exists.")
        row = models.Airport(code=code, name=record.name, city=record.city,
                             country=record.country, region=record.region)
        try:
            self.repo.create(row)
        except IntegrityError as exc:
            raise DuplicateAirportError(f"Airport with code '{code}' already exists.") from exc
        logger.info("airport added: %s", code)
        return self._to_record(row)

    def remove(self, code: str) -> None:
        row = self.repo.get((code or '').strip().upper())
        if row is None:
            raise UnknownAirportError(f"Airport code '{code}' not found.")
        self.repo.delete(row)
        logger.info("airport removed: %s", row.code)


@dataclass(frozen=True)
class ProgressSummary:
    """Aggregate statistics across all of a user's progress records."""
    total_attempts: int = 0
    total_correct: int = 0
    accuracy_rate: float = 0.0
    topics_studied: int = 0
    weak_topic_count: int = 0
    current_streak_sum: int = 0
    best_streak_max: int = 0


class ProgressTracker:
    """Apply answer outcomes to per (user, airport) progress records."""
    def __init__(self, session: Session, locks: Optional[KeyedLock] = None):
        self.session = session
        self.repo = repositories.ProgressRepository(session)
        self.locks = locks if locks is not None else _progress_locks

    def record_answer(self, user_id: int, topic_code: str, is_correct: bool, now: datetime) -> models.UserProgress:
        """Count one answer and return the record as it stands after this update.

        The first answer creates the record. A correct answer extends the
        current streak (raising the best streak if needed); a wrong one
        resets the current streak to zero.
        """
        code = topic_code.strip().upper()
        with self.locks.hold((user_id, code)):
            record = self.repo.apply_answer(user_id, code, bool(is_correct), now)
        logger.debug(
            "progress user=%s topic=%s correct=%s attempts=%d streak=%d/%d",
            user_id, code, is_correct, record.total_attempts, record.current_streak, record.best_streak,
        )
        return record

    def list_progress(self, user_id: int) -> List[models.UserProgress]:
        return self.repo.list_for_user(user_id)

    def weak_topics(self, user_id: int) -> List[models.UserProgress]:
        return [p for p in self.list_progress(user_id) if p.is_weak]

    def get_summary(self, user_id: int) -> ProgressSummary:
        records = self.list_progress(user_id)
        if not records:
            return ProgressSummary()
        total = sum(p.total_attempts for p in records)
        correct = sum(p.correct_answers for p in records)
        return ProgressSummary(
            total_attempts=total,
            total_correct=correct,
            accuracy_rate=correct / total if total > 0 else 0.0,
            topics_studied=len(records),
            weak_topic_count=sum(1 for p in records if p.is_weak),
            current_streak_sum=sum(p.current_streak for p in records),
            best_streak_max=max(p.best_streak for p in records),
        )


class IssuedToken(NamedTuple):
    token: str
    expires_at: datetime


class CredentialService:
    """Registration, password checks and signed session tokens."""
    def __init__(self, session: Session, clock: Clock = utcnow, secret: str = None,
                 algorithm: str = None, ttl: timedelta = None):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.clock = clock
        self.secret = settings.JWT_SECRET if secret is None else secret
        self.algorithm = settings.JWT_ALGORITHM if algorithm is None else algorithm
        self.ttl = timedelta(hours=settings.TOKEN_TTL_HOURS) if ttl is None else ttl

    def register(self, email: str, username: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Raises `DuplicateCredentialError` when the email or username is
        taken, whether the pre-check sees it or the unique constraint
        rejects the insert after a concurrent registration.
        """
        email = (email or '').strip().lower()
        username = (username or '').strip()
        if not email or not username or not password:
            raise ValueError("email, username and password are required")
        if self.user_repo.get_by_email(email) or self.user_repo.get_by_username(username):
            raise DuplicateCredentialError("User with this email or username already exists.")
        now = self.clock()
        user = models.User(
            email=email,
            username=username,
            password_hash=PWD_CTX.hash(password),
            created_at=now,
            last_login_at=now,
        )
        try:
            user = self.user_repo.create(user)
        except IntegrityError as exc:
            logger.info("registration race lost for %s", email)
            raise DuplicateCredentialError("User with this email or username already exists.") from exc
        logger.info("registered user id=%s username=%s", user.id, user.username)
        return user

    def authenticate(self, email: str, password: str) -> models.User:
        """Verify credentials and stamp `last_login_at`.

        Unknown email and wrong password raise the same error, and the
        unknown-email path still runs a hash so timing gives nothing away.
        """
        user = self.user_repo.get_by_email((email or '').strip().lower())
        if user is None:
            PWD_CTX.dummy_verify()
            logger.info("failed login for unknown email")
            raise InvalidCredentialsError("Invalid email or password.")
        if not PWD_CTX.verify(password or '', user.password_hash):
            logger.info("failed login for user id=%s", user.id)
            raise InvalidCredentialsError("Invalid email or password.")
        user.last_login_at = self.clock()
        return self.user_repo.save(user)

    def issue_token(self, user: models.User) -> IssuedToken:
        issued = as_utc(self.clock())
        expires = issued + self.ttl
        payload = {
            "sub": str(user.id),
            "user_id": user.id,
            "username": user.username,
            "iat": int(issued.timestamp()),
            "exp": int(expires.timestamp()),
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        return IssuedToken(token, expires.replace(microsecond=0))

    def validate_token(self, token: str) -> int:
        """Return the user id carried by `token`."""
        return self._decode(token)["user_id"]

    def _decode(self, token: str) -> dict:
        """Verify signature and expiry and return the claims.

        Expiry is checked against the injected clock rather than PyJWT's
        own wall-clock check, so `ExpiredTokenError` is deterministic.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": ["exp", "iat", "user_id"]},
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError("invalid token") from exc
        user_id = payload.get("user_id")
        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(user_id, int) or not all(isinstance(v, (int, float)) for v in (exp, iat)):
            raise InvalidTokenError("invalid token payload")
        if as_utc(self.clock()).timestamp() >= exp:
            raise ExpiredTokenError("token expired")
        return payload

    def authenticate_token(self, token: str) -> models.User:
        """Return the account a token was issued to.

        A token minted before the account existed belongs to an earlier
        holder of the same id and is rejected.
        """
        payload = self._decode(token)
        user = self.get_account(payload["user_id"])
        if payload["iat"] < int(as_utc(user.created_at).timestamp()):
            logger.info("token for user id=%s predates the account", user.id)
            raise InvalidTokenError("token predates account")
        return user

    def get_account(self, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if user is None:
            raise InvalidTokenError("user not found")
        return user

    def delete_account(self, user_id: int) -> None:
        """Delete the account and, by cascade, its progress records."""
        user = self.get_account(user_id)
        self.user_repo.delete(user)
        logger.info("deleted user id=%s", user_id)


@dataclass(frozen=True)
class AnswerOutcome:
    is_correct: bool
    correct_answer: str
    feedback: str
    progress: models.UserProgress


class LearningEngine:
    """Compose catalog, generator, evaluator and tracker into the quiz flow."""
    def __init__(self, session: Session, rng: Optional[random.Random] = None,
                 policy: str = None, clock: Clock = utcnow, locks: Optional[KeyedLock] = None):
        self.catalog = AirportCatalog(session)
        self.generator = QuestionGenerator(rng=rng, policy=policy or settings.QUESTION_TYPE_POLICY)
        self.evaluator = AnswerEvaluator()
        self.tracker = ProgressTracker(session, locks=locks)
        self.clock = clock

    def get_question(self) -> QuizQuestion:
        return self.generator.generate(self.catalog.list_records())

    def submit_answer(self, user_id: int, subject_code: str, question_type, submitted_answer: str) -> AnswerOutcome:
        """Score an answer for the echoed subject/type and update progress."""
        record = self.catalog.get(subject_code)
        key = self.evaluator.answer_key(record, question_type)
        is_correct = self.evaluator.evaluate(key, submitted_answer)
        progress = self.tracker.record_answer(user_id, record.code, is_correct, self.clock())
        return AnswerOutcome(
            is_correct=is_correct,
            correct_answer=key.correct_answer,
            feedback=build_feedback(is_correct, key.correct_answer, progress.current_streak),
            progress=progress,
        )

    def get_summary(self, user_id: int) -> ProgressSummary:
        return self.tracker.get_summary(user_id)


def build_feedback(is_correct: bool, correct_answer: str, streak: int) -> str:
    if not is_correct:
        return f"Incorrect. The correct answer is: {correct_answer}"
    feedback = "Correct! Great job!"
    if streak > 1:
        feedback += f" Streak: {streak}!"
    return feedback
