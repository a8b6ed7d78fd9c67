from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from snapledger.api.deps import get_current_user, require_admin
from snapledger.core.config import settings
from snapledger.core.db import db_session
from snapledger.core.security import create_access_token
from snapledger.modules.identity.models import User
from snapledger.modules.identity.schemas import TokenOut, UserCreate, UserOut
from snapledger.modules.identity.service import authenticate_user, create_user

router = APIRouter(tags=["identity"])


@router.post("/auth/token", response_model=TokenOut)
def issue_token(
    form: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(db_session),
) -> TokenOut:
    user = authenticate_user(session, email=form.username, password=form.password)
    return TokenOut(
        access_token=create_access_token(subject=str(user.id)),
        expires_in=settings.access_token_exp_minutes * 60,
    )


@router.get("/auth/me", response_model=UserOut)
def read_me(user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(user, from_attributes=True)


@router.post("/users", response_model=UserOut, status_code=201)
def create_user_endpoint(
    payload: UserCreate,
    session: Session = Depends(db_session),
    _: User = Depends(require_admin),
) -> UserOut:
    user = create_user(
        session,
        email=str(payload.email),
        password=payload.password,
        role=payload.role,
        full_name=payload.full_name,
    )
    return UserOut.model_validate(user, from_attributes=True)
