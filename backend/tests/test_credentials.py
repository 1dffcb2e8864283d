from datetime import datetime, timedelta, timezone

import jwt
import pytest

from flightdeck import services
from flightdeck.errors import (
    DuplicateCredentialError,
    ExpiredTokenError,
    InvalidCredentialsError,
    InvalidTokenError,
)

SECRET = "test-secret-please-ignore-0123456789"


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 7, 31, 23, 0, tzinfo=timezone.utc))


@pytest.fixture
def creds(session, clock):
    return services.CredentialService(session, clock=clock, secret=SECRET, ttl=timedelta(hours=24))


def test_register_hashes_password(creds):
    user = creds.register(" Pilot@Example.com ", "pilot", "hunter22")
    assert user.id is not None
    assert user.email == "pilot@example.com"
    assert user.password_hash != "hunter22"
    assert "hunter22" not in user.password_hash
    assert services.PWD_CTX.verify("hunter22", user.password_hash)


def test_register_duplicate_email_or_username(creds):
    creds.register("pilot@example.com", "pilot", "pw")
    with pytest.raises(DuplicateCredentialError):
        creds.register("pilot@example.com", "someone-else", "pw")
    with pytest.raises(DuplicateCredentialError):
        creds.register("PILOT@example.com", "another", "pw")
    with pytest.raises(DuplicateCredentialError):
        creds.register("other@example.com", "pilot", "pw")


def test_register_race_surfaces_as_duplicate(creds, monkeypatch):
    creds.register("pilot@example.com", "pilot", "pw")
    # simulate a concurrent insert the pre-check could not see
    monkeypatch.setattr(creds.user_repo, "get_by_email", lambda email: None)
    monkeypatch.setattr(creds.user_repo, "get_by_username", lambda username: None)
    with pytest.raises(DuplicateCredentialError):
        creds.register("pilot@example.com", "pilot2", "pw")
    # the session stays usable after the rollback
    assert creds.register("fresh@example.com", "fresh", "pw").id is not None


def test_register_requires_all_fields(creds):
    with pytest.raises(ValueError):
        creds.register("", "pilot", "pw")
    with pytest.raises(ValueError):
        creds.register("a@b.c", "pilot", "")


def test_authenticate_updates_last_login(creds, clock):
    creds.register("pilot@example.com", "pilot", "pw")
    clock.advance(hours=3)
    user = creds.authenticate("PILOT@example.com", "pw")
    assert user.last_login_at.replace(tzinfo=timezone.utc) == clock.now


def test_authenticate_does_not_say_which_part_was_wrong(creds):
    creds.register("pilot@example.com", "pilot", "pw")
    with pytest.raises(InvalidCredentialsError) as wrong_pw:
        creds.authenticate("pilot@example.com", "nope")
    with pytest.raises(InvalidCredentialsError) as no_user:
        creds.authenticate("ghost@example.com", "pw")
    assert str(wrong_pw.value) == str(no_user.value)


def test_token_round_trip_and_expiry(creds, clock):
    user = creds.register("pilot@example.com", "pilot", "pw")
    issued = creds.issue_token(user)
    assert issued.expires_at == (clock.now + timedelta(hours=24)).replace(microsecond=0)
    assert creds.validate_token(issued.token) == user.id

    clock.advance(hours=23, minutes=59)
    assert creds.validate_token(issued.token) == user.id
    clock.advance(minutes=1)
    with pytest.raises(ExpiredTokenError):
        creds.validate_token(issued.token)


def test_tampered_or_foreign_tokens_are_invalid(creds, clock):
    user = creds.register("pilot@example.com", "pilot", "pw")
    token = creds.issue_token(user).token
    with pytest.raises(InvalidTokenError):
        creds.validate_token(token[:-2] + ("AA" if token[-2:] != "AA" else "BB"))
    with pytest.raises(InvalidTokenError):
        creds.validate_token("not-a-token")
    forged = jwt.encode({"user_id": user.id, "exp": 4102444800}, "another-secret-0123456789abcdef-xyz", algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        creds.validate_token(forged)
    missing_exp = jwt.encode({"user_id": user.id}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        creds.validate_token(missing_exp)


def test_expired_and_invalid_are_distinct_but_both_authentication_errors():
    from flightdeck.errors import AuthenticationError
    assert issubclass(ExpiredTokenError, AuthenticationError)
    assert issubclass(InvalidTokenError, AuthenticationError)
    assert not issubclass(ExpiredTokenError, InvalidTokenError)


def test_token_of_deleted_account_does_not_resolve_to_newcomer(creds, clock):
    old = creds.register("old@example.com", "old", "pw")
    old_token = creds.issue_token(old).token
    old_id = old.id
    creds.delete_account(old_id)

    clock.advance(minutes=5)
    newcomer = creds.register("new@example.com", "newcomer", "pw")
    assert newcomer.id != old_id
    with pytest.raises(InvalidTokenError):
        creds.authenticate_token(old_token)
    assert creds.authenticate_token(creds.issue_token(newcomer).token).username == "newcomer"


def test_token_issued_before_account_creation_is_rejected(creds, clock):
    user = creds.register("pilot@example.com", "pilot", "pw")
    created = int(clock.now.timestamp())
    stale = jwt.encode(
        {"user_id": user.id, "iat": created - 3600, "exp": created + 3600},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(InvalidTokenError):
        creds.authenticate_token(stale)
    missing_iat = jwt.encode({"user_id": user.id, "exp": created + 3600}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        creds.validate_token(missing_iat)


def test_explicit_zero_ttl_is_honoured(session, clock):
    creds = services.CredentialService(session, clock=clock, secret=SECRET, ttl=timedelta(0))
    user = creds.register("pilot@example.com", "pilot", "pw")
    issued = creds.issue_token(user)
    assert issued.expires_at == clock.now
    with pytest.raises(ExpiredTokenError):
        creds.validate_token(issued.token)


def test_empty_secret_is_not_replaced_by_the_configured_one(session, clock):
    creds = services.CredentialService(session, clock=clock, secret="", ttl=timedelta(hours=1))
    assert creds.secret == ""
