"""Application settings and validation."""

import os
from pathlib import Path

QUESTION_TYPE_POLICIES = ("code_to_airport", "airport_to_code", "random")

_DEFAULT_DB = Path(__file__).resolve().parent.parent / "flightdeck.db"


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    TOKEN_TTL_HOURS: int
    DATABASE_URL: str
    DB_TIMEOUT_SECONDS: float
    QUESTION_TYPE_POLICY: str
    SEED_AIRPORTS: bool
    LOGIN_RATE_LIMIT_PER_MIN: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "24"))
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{_DEFAULT_DB}")
        self.DB_TIMEOUT_SECONDS = float(os.getenv("DB_TIMEOUT_SECONDS", "5"))
        self.QUESTION_TYPE_POLICY = os.getenv("QUESTION_TYPE_POLICY", "code_to_airport").lower()
        self.SEED_AIRPORTS = os.getenv("SEED_AIRPORTS", "true").lower() == "true"
        self.LOGIN_RATE_LIMIT_PER_MIN = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "20"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.TOKEN_TTL_HOURS <= 0:
            raise RuntimeError("TOKEN_TTL_HOURS must be a positive number of hours")
        if self.QUESTION_TYPE_POLICY not in QUESTION_TYPE_POLICIES:
            raise RuntimeError(
                f"QUESTION_TYPE_POLICY must be one of {', '.join(QUESTION_TYPE_POLICIES)}"
            )


settings = Settings()
