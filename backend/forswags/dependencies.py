# forswags/dependencies.py
from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from .cache import TTLCache
from .config import env_str
from .database import get_db
from .errors import AuthenticationError, NotFoundError
from .identity import IdentityProvider


def get_tier_cache(request: Request) -> Optional[TTLCache]:
    """The app-scoped tier cache (None when the app was built without one)."""
    return getattr(request.app.state, "tier_cache", None)


def get_identity(db: Session = Depends(get_db)) -> IdentityProvider:
    return IdentityProvider(db)


def require_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """
    Scheduled-trigger guard. With CRON_SECRET unset the job routes act like
    they do not exist.
    """
    expected = env_str("CRON_SECRET")
    if not expected:
        raise NotFoundError("Not Found")
    if not x_cron_secret or not secrets.compare_digest(x_cron_secret, expected):
        raise AuthenticationError("Invalid cron secret", code="INVALID_CRON_SECRET")
