# forswags/routers/jobs.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from forswags.cache import TTLCache
from forswags.database import get_db
from forswags.dependencies import get_tier_cache, require_cron_secret
from forswags.evaluations import check_stale_evaluations
from forswags.membership import expire_lapsed_memberships, send_renewal_reminders
from forswags.notifications import retry_email_outbox
from forswags.tiers import invalidate_tier

# Scheduler entry points; every job is safe to re-run.
router = APIRouter(
    prefix="/jobs",
    tags=["jobs"],
    dependencies=[Depends(require_cron_secret)],
)


@router.post("/renewal-reminders")
def job_renewal_reminders(db: Session = Depends(get_db)):
    return {"ok": True, **send_renewal_reminders(db)}


@router.post("/stale-evaluations")
def job_stale_evaluations(db: Session = Depends(get_db)):
    return {"ok": True, **check_stale_evaluations(db)}


@router.post("/expire-memberships")
def job_expire_memberships(
    db: Session = Depends(get_db),
    cache: Optional[TTLCache] = Depends(get_tier_cache),
):
    user_ids = expire_lapsed_memberships(db)
    for uid in set(user_ids):
        invalidate_tier(cache, uid)
    return {"ok": True, "expired": len(user_ids)}


@router.post("/email-outbox")
def job_email_outbox(db: Session = Depends(get_db)):
    return {"ok": True, **retry_email_outbox(db)}
