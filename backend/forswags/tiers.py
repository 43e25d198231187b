# forswags/tiers.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from forswags import models
from forswags.cache import TTLCache
from forswags.plans import ENTITLED_STATUSES, TIER_FREE, normalize_tier

logger = logging.getLogger(__name__)


def tier_cache_key(user_id: int) -> str:
    return f"tier:{int(user_id)}"


def current_membership(db: Session, user_id: int) -> Optional[models.Membership]:
    """The user's entitling membership (active/trialing), newest first."""
    return db.scalar(
        select(models.Membership)
        .where(
            models.Membership.user_id == user_id,
            models.Membership.status.in_(ENTITLED_STATUSES),
        )
        .order_by(models.Membership.start_date.desc(), models.Membership.id.desc())
        .limit(1)
    )


def latest_membership(db: Session, user_id: int) -> Optional[models.Membership]:
    """Most recent membership in any status (history is never deleted)."""
    return db.scalar(
        select(models.Membership)
        .where(models.Membership.user_id == user_id)
        .order_by(models.Membership.start_date.desc(), models.Membership.id.desc())
        .limit(1)
    )


def resolve_tier(db: Session, user_id: Optional[int], cache: Optional[TTLCache] = None) -> str:
    """
    Current tier for a user.

    Fails closed: no user, no entitling membership, or any lookup error -> "free".
    Never raises, so UI gating and background checks can call it freely.
    """
    if not user_id:
        return TIER_FREE

    key = tier_cache_key(user_id)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return cached

    try:
        membership = current_membership(db, user_id)
    except Exception:
        logger.exception("Tier lookup failed for user_id=%s; treating as free", user_id)
        db.rollback()
        return TIER_FREE

    tier = normalize_tier(membership.tier) if membership else TIER_FREE

    if cache is not None:
        cache.set(key, tier)
    return tier


def invalidate_tier(cache: Optional[TTLCache], user_id: int) -> None:
    if cache is not None:
        cache.invalidate(tier_cache_key(user_id))
