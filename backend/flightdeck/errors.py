"""Exception types raised by the learning engine.

Services raise these and the HTTP controllers in `main.py` translate
them into status codes. Nothing in the engine depends on FastAPI.
"""


class FlightDeckError(Exception):
    """Base class for all domain errors."""


class InsufficientDataError(FlightDeckError):
    """Not enough distinct airports to build a four-option question."""


class UnknownQuestionTypeError(FlightDeckError):
    """A question type outside the closed `QuestionType` set."""


class UnknownAirportError(FlightDeckError):
    """No airport exists for the requested code."""


class DuplicateAirportError(FlightDeckError):
    """An airport with the same code already exists."""


class DuplicateCredentialError(FlightDeckError):
    """Email or username is already registered."""


class AuthenticationError(FlightDeckError):
    """Base for every "unauthenticated" outcome."""


class InvalidCredentialsError(AuthenticationError):
    """Unknown email or wrong password; deliberately not distinguished."""


class ExpiredTokenError(AuthenticationError):
    """The session token was valid but its expiry has passed."""


class InvalidTokenError(AuthenticationError):
    """The session token is malformed, tampered with or missing claims."""


class StorageError(FlightDeckError):
    """The record store failed or timed out."""
