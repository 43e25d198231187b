# forswags/routers/features.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from forswags import auth, models, schemas
from forswags.cache import TTLCache
from forswags.database import get_db
from forswags.dependencies import get_tier_cache
from forswags.feature_gate import check_feature, feature_matrix
from forswags.membership import membership_status
from forswags.tiers import resolve_tier

router = APIRouter(tags=["features"])


@router.get("/features", response_model=list[schemas.FeatureAccessOut])
def list_features(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
    cache: Optional[TTLCache] = Depends(get_tier_cache),
):
    return feature_matrix(db, user.id, cache=cache)


@router.get("/features/{feature_key}", response_model=schemas.FeatureAccessOut)
def get_feature(
    feature_key: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
    cache: Optional[TTLCache] = Depends(get_tier_cache),
):
    # same decision the server-side require_feature() guard makes
    return check_feature(db, user.id, feature_key, cache=cache)


@router.get("/membership/status", response_model=schemas.MembershipStatusOut)
def get_membership_status(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
    cache: Optional[TTLCache] = Depends(get_tier_cache),
):
    tier = resolve_tier(db, user.id, cache=cache)
    return membership_status(db, user.id, tier)
