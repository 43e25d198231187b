# forswags/routers/admin.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from forswags import auth, models, schemas
from forswags.cache import TTLCache
from forswags.coach_applications import (
    approve_application,
    find_orphaned_coach_identities,
    list_applications,
    reject_application,
)
from forswags.database import get_db
from forswags.dependencies import get_identity, get_tier_cache
from forswags.errors import NotFoundError
from forswags.evaluations import assign_evaluation, find_stale_evaluations
from forswags.identity import IdentityProvider
from forswags.membership import apply_subscription_event
from forswags.tiers import invalidate_tier

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(auth.require_admin)],  # admin required
)


# -------------------------------------------------
# MEMBERSHIPS
# -------------------------------------------------
@router.put("/memberships/{user_id}", response_model=Optional[schemas.MembershipOut])
def admin_set_membership(
    user_id: int,
    payload: schemas.AdminMembershipIn,
    db: Session = Depends(get_db),
    cache: Optional[TTLCache] = Depends(get_tier_cache),
):
    if not db.get(models.User, user_id):
        raise NotFoundError("User not found", details={"user_id": user_id})

    membership = apply_subscription_event(
        db,
        user_id,
        payload.event,
        tier=payload.tier,
        end_date=payload.end_date,
        clear_end_date=payload.clear_end_date,
    )
    invalidate_tier(cache, user_id)
    return membership


# -------------------------------------------------
# COACH APPLICATIONS
# -------------------------------------------------
@router.get("/coach-applications", response_model=list[schemas.CoachApplicationOut])
def admin_list_applications(
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    return list_applications(db, status=status)


@router.post("/coach-applications/{application_id}/approve", response_model=schemas.ApprovalOut)
def admin_approve_application(
    application_id: int,
    payload: schemas.ApplicationReviewIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
    identity: IdentityProvider = Depends(get_identity),
):
    app, user_id = approve_application(
        db,
        application_id,
        reviewer_id=admin.id,
        admin_notes=payload.admin_notes,
        identity=identity,
    )
    return {"application": app, "user_id": user_id}


@router.post("/coach-applications/{application_id}/reject", response_model=schemas.CoachApplicationOut)
def admin_reject_application(
    application_id: int,
    payload: schemas.ApplicationReviewIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    return reject_application(db, application_id, reviewer_id=admin.id, admin_notes=payload.admin_notes)


@router.get("/coach-applications/orphans")
def admin_orphaned_identities(db: Session = Depends(get_db)):
    """Identities left behind by a failed approval whose compensation also failed."""
    return {"user_ids": find_orphaned_coach_identities(db)}


# -------------------------------------------------
# EVALUATIONS
# -------------------------------------------------
@router.get("/evaluations/stale", response_model=list[schemas.StaleEvaluationOut])
def admin_stale_evaluations(
    hours: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
):
    return [
        {"evaluation": ev, "kind": kind, "since": since}
        for ev, kind, since in find_stale_evaluations(db, hours=hours)
    ]


@router.post("/evaluations/{evaluation_id}/assign", response_model=schemas.EvaluationOut)
def admin_assign_evaluation(
    evaluation_id: int,
    payload: schemas.EvaluationAssignIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    return assign_evaluation(db, evaluation_id, payload.coach_id, admin_id=admin.id)
