# forswags/feature_gate.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from forswags import auth, models
from forswags.cache import TTLCache
from forswags.database import get_db
from forswags.dependencies import get_tier_cache
from forswags.errors import AuthorizationError
from forswags.plans import FEATURES, required_tier, tier_at_least
from forswags.tiers import resolve_tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    feature_key: str
    tier: str
    required_tier: Optional[str] = None
    reason: str = ""          # e.g. "unknown_feature", "upgrade_required"


def check_feature(
    db: Session,
    user_id: Optional[int],
    feature_key: str,
    cache: Optional[TTLCache] = None,
) -> GateResult:
    """
    Central decision, shared by the UI endpoint and server-side guards:
      - unknown feature keys are denied
      - otherwise allowed iff resolved tier >= feature's minimum tier
    Tier resolution already fails closed to "free".
    """
    tier = resolve_tier(db, user_id, cache=cache)
    minimum = required_tier(feature_key)

    if minimum is None:
        logger.warning("Access check for unknown feature %r denied", feature_key)
        return GateResult(False, feature_key, tier, reason="unknown_feature")

    if tier_at_least(tier, minimum):
        return GateResult(True, feature_key, tier, required_tier=minimum)

    return GateResult(False, feature_key, tier, required_tier=minimum, reason="upgrade_required")


def has_access(
    db: Session,
    user_id: Optional[int],
    feature_key: str,
    cache: Optional[TTLCache] = None,
) -> bool:
    return check_feature(db, user_id, feature_key, cache=cache).allowed


def feature_matrix(db: Session, user_id: Optional[int], cache: Optional[TTLCache] = None) -> list[GateResult]:
    return [check_feature(db, user_id, key, cache=cache) for key in FEATURES]


# -------------------------------------------------
# Guards
# -------------------------------------------------
def require_feature(feature_key: str):
    """
    Dependency factory for mutating endpoints behind a tier.

        @router.post(..., dependencies=[Depends(require_feature("college_matching"))])
    """

    def _guard(
        db: Session = Depends(get_db),
        user: models.User = Depends(auth.get_current_user),
        cache: Optional[TTLCache] = Depends(get_tier_cache),
    ) -> models.User:
        result = check_feature(db, user.id, feature_key, cache=cache)
        if result.allowed:
            return user

        raise AuthorizationError(
            "This feature requires a paid membership. Upgrade to continue.",
            code="UPGRADE_REQUIRED",
            details={
                "feature": feature_key,
                "tier": result.tier,
                "required_tier": result.required_tier,
            },
        )

    return _guard
