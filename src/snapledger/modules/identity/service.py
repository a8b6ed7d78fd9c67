from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from snapledger.core.logging import get_logger, log_event
from snapledger.core.models import utcnow
from snapledger.core.security import hash_password, verify_password
from snapledger.modules.identity.models import User, UserRole

logger = get_logger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_by_email(session: Session, *, email: str) -> User | None:
    return session.scalar(select(User).where(User.email == _normalize_email(email)))


def get_active_user(session: Session, *, user_id: uuid.UUID) -> User | None:
    user = session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def create_user(
    session: Session,
    *,
    email: str,
    password: str,
    role: UserRole = UserRole.MEMBER,
    full_name: str | None = None,
) -> User:
    if get_user_by_email(session, email=email) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")

    user = User(
        email=_normalize_email(email),
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    log_event(logger, "identity.user.created", created_user_id=str(user.id), role=role.value)
    return user


def ensure_admin(session: Session, *, email: str, password: str) -> User:
    """Create the admin account, or promote an existing account to admin."""
    user = get_user_by_email(session, email=email)
    if user is None:
        return create_user(
            session, email=email, password=password, role=UserRole.ADMIN, full_name="Admin"
        )
    if not user.is_admin:
        user.role = UserRole.ADMIN
        session.commit()
    return user


def authenticate_user(session: Session, *, email: str, password: str) -> User:
    """Check credentials and stamp the login time. Any mismatch is a plain 401."""
    user = get_user_by_email(session, email=email)
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        log_event(logger, "identity.login.rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    user.last_login_at = utcnow()
    session.commit()
    session.refresh(user)
    return user
