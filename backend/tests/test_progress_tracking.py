import random
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from flightdeck import models, services
from flightdeck.services import ProgressSummary, ProgressTracker
from flightdeck.errors import StorageError
from flightdeck.utils.keyed_lock import KeyedLock

T0 = datetime(2025, 8, 3, 12, 0, tzinfo=timezone.utc)


def _user(session, name="pilot"):
    u = models.User(email=f"{name}@example.com", username=name, password_hash="x")
    session.add(u)
    session.commit()
    session.refresh(u)
    return u


def test_first_answer_creates_record(session):
    u = _user(session)
    tracker = ProgressTracker(session)
    rec = tracker.record_answer(u.id, "atl", True, T0)
    assert rec.airport_code == "ATL"
    assert (rec.total_attempts, rec.correct_answers, rec.current_streak, rec.best_streak) == (1, 1, 1, 1)

    other = tracker.record_answer(u.id, "LAX", False, T0)
    assert (other.total_attempts, other.correct_answers, other.current_streak, other.best_streak) == (1, 0, 0, 0)
    assert other.accuracy_rate == 0.0


def test_three_correct_then_wrong(session):
    u = _user(session)
    tracker = ProgressTracker(session)
    for i in range(3):
        tracker.record_answer(u.id, "ATL", True, T0 + timedelta(minutes=i))
    rec = tracker.record_answer(u.id, "ATL", False, T0 + timedelta(minutes=3))
    assert rec.total_attempts == 4
    assert rec.correct_answers == 3
    assert rec.current_streak == 0
    assert rec.best_streak == 3
    assert rec.accuracy_rate == 0.75
    assert rec.last_studied_at.replace(tzinfo=timezone.utc) == T0 + timedelta(minutes=3)


def test_streak_never_exceeds_best_streak(session):
    u = _user(session)
    tracker = ProgressTracker(session)
    rng = random.Random(2024)
    best_seen = 0
    for i in range(60):
        rec = tracker.record_answer(u.id, "DEN", rng.random() < 0.7, T0 + timedelta(seconds=i))
        assert rec.current_streak <= rec.best_streak
        assert rec.best_streak >= best_seen
        best_seen = rec.best_streak
    assert rec.total_attempts == 60


def test_best_streak_survives_a_shorter_run(session):
    u = _user(session)
    tracker = ProgressTracker(session)
    for ok in [True, True, True, True, False, True, True]:
        rec = tracker.record_answer(u.id, "SEA", ok, T0)
    assert rec.current_streak == 2
    assert rec.best_streak == 4


def test_summary_for_user_without_records(session):
    u = _user(session)
    summary = ProgressTracker(session).get_summary(u.id)
    assert summary == ProgressSummary()
    assert summary.accuracy_rate == 0.0
    assert summary.best_streak_max == 0


def test_summary_aggregates_across_airports(session):
    u = _user(session)
    tracker = ProgressTracker(session)
    for ok in [True, True, True]:
        tracker.record_answer(u.id, "ATL", ok, T0)
    for ok in [True, False, False]:
        tracker.record_answer(u.id, "MIA", ok, T0)
    tracker.record_answer(u.id, "ORD", True, T0)

    s = tracker.get_summary(u.id)
    assert s.total_attempts == 7
    assert s.total_correct == 5
    assert s.accuracy_rate == 5 / 7
    assert s.topics_studied == 3
    assert s.weak_topic_count == 1
    assert s.current_streak_sum == 3 + 0 + 1
    assert s.best_streak_max == 3
    assert [p.airport_code for p in tracker.weak_topics(u.id)] == ["MIA"]


def test_progress_is_per_user(session):
    a = _user(session, "alpha")
    b = _user(session, "bravo")
    tracker = ProgressTracker(session)
    tracker.record_answer(a.id, "ATL", True, T0)
    tracker.record_answer(b.id, "ATL", False, T0)
    assert tracker.get_summary(a.id).total_correct == 1
    assert tracker.get_summary(b.id).total_correct == 0


def _concurrent_submissions(db_engine, user_id, locks, workers=2):
    barrier = threading.Barrier(workers)
    errors = []

    def submit():
        try:
            with Session(db_engine) as s:
                barrier.wait()
                ProgressTracker(s, locks=locks).record_answer(user_id, "ATL", True, T0)
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=submit) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


def test_concurrent_submissions_are_both_counted(db_engine, session):
    u = _user(session)
    errors = _concurrent_submissions(db_engine, u.id, KeyedLock())
    assert errors == []
    with Session(db_engine) as s:
        rec = services.ProgressTracker(s).list_progress(u.id)[0]
    assert rec.total_attempts == 2
    assert rec.correct_answers == 2
    assert rec.best_streak == 2


def test_upsert_alone_keeps_concurrent_updates(db_engine, session):
    # one lock table per writer mimics two processes sharing the database
    u = _user(session)
    barrier = threading.Barrier(4)
    errors = []

    def submit():
        try:
            with Session(db_engine) as s:
                barrier.wait()
                for _ in range(5):
                    ProgressTracker(s, locks=KeyedLock()).record_answer(u.id, "ATL", True, T0)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=submit) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    with Session(db_engine) as s:
        rec = services.ProgressTracker(s).list_progress(u.id)[0]
    assert rec.total_attempts == 20
    assert rec.current_streak == 20


def test_account_deletion_cascades_to_progress(session):
    u = _user(session)
    ProgressTracker(session).record_answer(u.id, "ATL", True, T0)
    services.CredentialService(session).delete_account(u.id)
    assert ProgressTracker(session).list_progress(u.id) == []


def test_keyed_lock_releases_keys():
    locks = KeyedLock()
    with locks.hold(("u", "ATL")):
        assert len(locks) == 1
    assert len(locks) == 0


def _locked_database(session, monkeypatch):
    calls = []

    def exec_(*args, **kwargs):
        calls.append(args)
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "exec", exec_)
    return calls


def test_reads_are_retried_once_then_fail(session, monkeypatch):
    calls = _locked_database(session, monkeypatch)
    with pytest.raises(StorageError):
        services.AirportCatalog(session).list_records()
    assert len(calls) == 2


def test_progress_write_is_never_retried(session, monkeypatch):
    u = _user(session)
    calls = _locked_database(session, monkeypatch)
    with pytest.raises(StorageError):
        ProgressTracker(session, locks=KeyedLock()).record_answer(u.id, "ATL", True, T0)
    assert len(calls) == 1
    monkeypatch.undo()
    assert ProgressTracker(session).list_progress(u.id) == []
