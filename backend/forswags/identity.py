# forswags/identity.py
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from forswags import auth, models
from forswags.errors import ConflictError, ExternalServiceError, NotFoundError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("email", "is_active", "user_metadata", "password")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class IdentityProvider:
    """
    Account store behind the auth endpoints.

    Workflows treat it as an external collaborator: it commits on its own,
    independent of any transaction the caller has open on another session.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, token: str) -> models.User:
        return auth.load_active_user(self.db, auth.decode_token(token))

    def find_by_email(self, email: str) -> Optional[models.User]:
        return self.db.scalar(
            select(models.User).where(func.lower(models.User.email) == normalize_email(email))
        )

    def create_user(self, email: str, metadata: Optional[dict[str, Any]] = None) -> int:
        """
        Creates an account with a random temporary password.
        The owner sets a real password through the recovery link.
        """
        email_n = normalize_email(email)
        if not email_n or "@" not in email_n:
            raise ExternalServiceError("Identity provider rejected email", code="INVALID_EMAIL")

        if self.find_by_email(email_n):
            raise ConflictError("An account with this email already exists", code="DUPLICATE_EMAIL")

        user = models.User(
            email=email_n,
            hashed_password=auth.hash_password(auth.make_temp_password()),
            user_metadata=dict(metadata or {}),
            is_active=True,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            # lost a race with another create for the same email
            self.db.rollback()
            raise ConflictError("An account with this email already exists", code="DUPLICATE_EMAIL") from e

        logger.info("Identity created user_id=%s email=%s", user.id, email_n)
        return user.id

    def update_user(self, user_id: int, fields: dict[str, Any]) -> models.User:
        user = self.db.get(models.User, user_id)
        if not user:
            raise NotFoundError("User not found", details={"user_id": user_id})

        for key, value in fields.items():
            if key not in UPDATABLE_FIELDS:
                continue
            if key == "password":
                user.hashed_password = auth.hash_password(value)
            elif key == "email":
                user.email = normalize_email(value)
            else:
                setattr(user, key, value)

        self.db.commit()
        return user

    def delete_user(self, user_id: int) -> None:
        """Compensating action only; normal accounts are deactivated, not deleted."""
        user = self.db.get(models.User, user_id)
        if not user:
            return
        self.db.delete(user)
        self.db.commit()
        logger.warning("Identity deleted user_id=%s (compensation)", user_id)
