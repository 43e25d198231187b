# forswags/routers/account.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from forswags import auth, models, schemas
from forswags.database import get_db
from forswags.dependencies import get_identity
from forswags.errors import AuthenticationError, AuthorizationError
from forswags.identity import IdentityProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=schemas.TokenOut)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    identity: IdentityProvider = Depends(get_identity),
):
    user = identity.find_by_email(form_data.username)
    if not user or not auth.verify_password(form_data.password, user.hashed_password):
        raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

    if not user.is_active:
        raise AuthorizationError("Account is inactive", code="INACTIVE_ACCOUNT")

    return schemas.TokenOut(access_token=auth.create_access_token(user.id), user_id=user.id)


@router.post("/password", response_model=schemas.TokenOut)
def set_password(
    payload: schemas.PasswordSetIn,
    identity: IdentityProvider = Depends(get_identity),
):
    """Consumes a recovery token (the password-setup link) and signs the user in."""
    user_id = auth.decode_token(payload.token, expected_type=auth.TOKEN_TYPE_RECOVERY)
    user = auth.load_active_user(identity.db, user_id)
    identity.update_user(user.id, {"password": payload.password})
    logger.info("Password set via recovery token user_id=%s", user.id)
    return schemas.TokenOut(access_token=auth.create_access_token(user.id), user_id=user.id)


@router.get("/me")
def me(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.profile.full_name if user.profile else None,
        "roles": sorted(auth.roles_of(db, user.id)),
    }
