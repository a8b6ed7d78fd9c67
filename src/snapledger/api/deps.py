from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from snapledger.core.db import db_session
from snapledger.core.logging import set_user_context
from snapledger.core.security import decode_access_token
from snapledger.modules.identity.models import User
from snapledger.modules.identity.service import get_active_user

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    session: Session = Depends(db_session),
) -> User:
    """Resolve the bearer token to an active user, or reject the request with 401."""
    if not token:
        raise _unauthorized("Not authenticated")

    subject = decode_access_token(token)
    try:
        user_id = uuid.UUID(subject or "")
    except ValueError as e:
        raise _unauthorized("Invalid token") from e

    user = get_active_user(session, user_id=user_id)
    if user is None:
        raise _unauthorized("Invalid user")
    set_user_context(str(user.id))
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return user
