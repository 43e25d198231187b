# forswags/auth.py
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session

from forswags import models
from forswags.config import env_int, env_str
from forswags.database import get_db
from forswags.errors import AuthenticationError, AuthorizationError

# -------------------------------------------------------------------
# Settings
# -------------------------------------------------------------------
SECRET_KEY = env_str("SECRET_KEY", "CHANGE_ME_TO_SOMETHING_RANDOM_AND_LONG")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 1440)
RECOVERY_TOKEN_EXPIRE_MINUTES = env_int("RECOVERY_TOKEN_EXPIRE_MINUTES", 60 * 24)

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_RECOVERY = "recovery"

# -------------------------------------------------------------------
# Password hashing
# -------------------------------------------------------------------
pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)

# Swagger will use this to send: Authorization: Bearer <token>
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

# -------------------------------------------------------------------
# Roles
# -------------------------------------------------------------------
ROLE_ATHLETE = "athlete"
ROLE_COACH = "coach"
ROLE_ADMIN = "admin"


def roles_of(db: Session, user_id: int) -> set[str]:
    rows = db.scalars(select(models.UserRole.role).where(models.UserRole.user_id == user_id)).all()
    return {r for r in rows if r}


def has_role(db: Session, user_id: int, role: str) -> bool:
    return role in roles_of(db, user_id)


def user_ids_with_role(db: Session, role: str) -> list[int]:
    return list(
        db.scalars(
            select(models.UserRole.user_id).where(models.UserRole.role == role).order_by(models.UserRole.user_id)
        ).all()
    )


# -------------------------------------------------------------------
# Password helpers
# -------------------------------------------------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def make_temp_password(length: int = 24) -> str:
    return secrets.token_urlsafe(length)[:length]


# -------------------------------------------------------------------
# JWT create/verify
# -------------------------------------------------------------------
def _create_token(user_id: int, token_type: str, expires_minutes: int) -> str:
    """
    Token claims:
      sub: user id (string, per JWT convention)
      typ: access | recovery
      exp: expiry datetime
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": str(int(user_id)), "typ": token_type, "exp": expire}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def create_access_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    return _create_token(user_id, TOKEN_TYPE_ACCESS, expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES)


def create_recovery_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    return _create_token(user_id, TOKEN_TYPE_RECOVERY, expires_minutes or RECOVERY_TOKEN_EXPIRE_MINUTES)


def decode_token(token: str, expected_type: str = TOKEN_TYPE_ACCESS) -> int:
    """Returns the user id; raises AuthenticationError on anything off."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        if payload.get("typ") != expected_type:
            raise ValueError("Wrong token type")
        return int(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError) as e:
        raise AuthenticationError("Invalid token") from e


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def load_active_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise AuthenticationError("Not authenticated")
    if not user.is_active:
        raise AuthorizationError("Inactive account", code="INACTIVE_ACCOUNT")
    return user


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    """Validates the Bearer token and loads the User from the identity provider."""
    if not token:
        raise AuthenticationError("Not authenticated")
    from forswags.identity import IdentityProvider  # identity.py imports this module

    return IdentityProvider(db).get_user(token)


def _require_any_role(db: Session, user: models.User, allowed: Iterable[str], code: str, message: str) -> models.User:
    if roles_of(db, user.id) & set(allowed):
        return user
    raise AuthorizationError(message, code=code)


def require_admin(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.User:
    return _require_any_role(db, user, {ROLE_ADMIN}, "ADMIN_REQUIRED", "Admin access required.")


def require_coach(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.User:
    return _require_any_role(db, user, {ROLE_COACH}, "COACH_REQUIRED", "Coach access required.")
