"""Authentication helpers and FastAPI security dependencies.

This module decodes the bearer JWT issued by `/auth/login` and provides
`get_current_user`, which every session endpoint depends on, plus
`require_admin` for question management. Verification failures raise
HTTPExceptions so they can be used directly inside route dependencies.
"""

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import get_session
from . import models, repositories

bearer_scheme = HTTPBearer()


def decode_token(token: str) -> dict:
    """Verify a bearer JWT and return its claims; any failure is a 401.

    Tokens without an expiry or a `user_id` claim are rejected too.
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "user_id"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')
    if not isinstance(claims['user_id'], int):
        raise HTTPException(status_code=401, detail='invalid token payload')
    return claims


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """Resolve the session owner from the bearer token (401 if unknown)."""
    claims = decode_token(credentials.credentials)
    user = repositories.UserRepository(db).get(claims['user_id'])
    if user is None:
        raise HTTPException(status_code=401, detail='user not found')
    return user


def require_admin(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)) -> models.User:
    """Dependency allowing only users holding the `admin` role."""
    if not repositories.RoleRepository(db).has_role(user.id, 'admin'):
        raise HTTPException(status_code=403, detail='admin role required')
    return user
