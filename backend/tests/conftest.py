from pathlib import Path
import os
import tempfile
import pytest

# Point the app at a throwaway database before anything imports it.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="flightdeck-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'app.db'}"
os.environ.setdefault("LOGIN_RATE_LIMIT_PER_MIN", "1000")

from sqlmodel import Session  # noqa: E402

from flightdeck.database import build_engine, create_db_and_tables, seed_airports  # noqa: E402


@pytest.fixture
def db_engine(tmp_path):
    """A fresh SQLite file database per test."""
    eng = build_engine(f"sqlite:///{tmp_path / 'unit.db'}")
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(db_engine):
    with Session(db_engine) as s:
        yield s


@pytest.fixture
def seeded_session(session):
    seed_airports(session)
    return session
