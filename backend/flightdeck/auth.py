"""FastAPI security dependency for bearer session tokens.

`get_current_user` validates the bearer token with `CredentialService`
and returns the corresponding `User` model instance from the database.
Every failure (missing header, bad signature, expired token, deleted
account) becomes an HTTP 401.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, services
from .database import get_session
from .errors import ExpiredTokenError, AuthenticationError

bearer_scheme = HTTPBearer(auto_error=False)

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail='not authenticated', headers=_UNAUTHORIZED_HEADERS)
    creds = services.CredentialService(db)
    try:
        return creds.authenticate_token(credentials.credentials)
    except ExpiredTokenError:
        raise HTTPException(status_code=401, detail='token expired', headers=_UNAUTHORIZED_HEADERS)
    except AuthenticationError:
        raise HTTPException(status_code=401, detail='invalid token', headers=_UNAUTHORIZED_HEADERS)
