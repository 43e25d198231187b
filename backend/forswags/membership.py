# forswags/membership.py
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from forswags import models
from forswags.config import app_base_url
from forswags.email_templates import EmailTemplate
from forswags.emailer import send_email_if_configured
from forswags.models import utcnow
from forswags.notifications import EmailSender, notify_email
from forswags.plans import ENTITLED_STATUSES, TIER_FREE, normalize_tier
from forswags.tiers import current_membership, latest_membership

logger = logging.getLogger(__name__)

URGENT_DAYS = 7
CRITICAL_DAYS = 3
REMINDER_WINDOW_DAYS = 30

# days_until_renewal -> reminder bucket
REMINDER_BUCKETS: dict[int, str] = {30: "30_days", 7: "7_days", 1: "1_day"}

EVENT_ACTIVATED = "activated"
EVENT_TRIAL_STARTED = "trial_started"
EVENT_RENEWED = "renewed"
EVENT_CANCELLED = "cancelled"
EVENT_EXPIRED = "expired"
EVENT_PAYMENT_FAILED = "payment_failed"
SUBSCRIPTION_EVENTS = (
    EVENT_ACTIVATED,
    EVENT_TRIAL_STARTED,
    EVENT_RENEWED,
    EVENT_CANCELLED,
    EVENT_EXPIRED,
    EVENT_PAYMENT_FAILED,
)


@dataclass(frozen=True)
class RenewalStatus:
    needs_renewal: bool = False
    is_urgent: bool = False
    is_critical: bool = False
    days_until_renewal: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def days_until(end_date: datetime, now: datetime) -> int:
    """Whole days remaining, rounded up (0 or negative once past)."""
    return math.ceil((end_date - now).total_seconds() / 86400)


def evaluate_status(membership, now: datetime) -> RenewalStatus:
    """
    Pure function of end_date - now.

      - no membership, free tier, or no end_date -> nothing to renew
      - critical: <= 3 days left (already past still counts; expiry is a separate job)
      - urgent:   <= 7 days left and not critical
    """
    if membership is None:
        return RenewalStatus()

    tier = normalize_tier(getattr(membership, "tier", None))
    end_date = getattr(membership, "end_date", None)
    if tier == TIER_FREE or end_date is None:
        return RenewalStatus()

    days = days_until(end_date, now)
    is_critical = days <= CRITICAL_DAYS
    is_urgent = days <= URGENT_DAYS and not is_critical
    return RenewalStatus(
        needs_renewal=is_urgent or is_critical,
        is_urgent=is_urgent,
        is_critical=is_critical,
        days_until_renewal=days,
    )


def reminder_bucket(days_until_renewal: Optional[int]) -> Optional[str]:
    if days_until_renewal is None:
        return None
    return REMINDER_BUCKETS.get(days_until_renewal)


def membership_status(db: Session, user_id: int, tier: str, now: Optional[datetime] = None) -> dict:
    """What the membership banner reads: tier + current row + renewal flags."""
    now = now or utcnow()
    current = current_membership(db, user_id)
    membership = current or latest_membership(db, user_id)
    flags = evaluate_status(current, now)
    return {
        "tier": tier,
        "status": membership.status if membership else None,
        "start_date": membership.start_date if membership else None,
        "end_date": membership.end_date if membership else None,
        **flags.to_dict(),
    }


# -------------------------------------------------
# Mutation path (payment webhooks / admin override)
# -------------------------------------------------
def _apply_activation(
    membership: models.Membership,
    event: str,
    status: str,
    tier: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    clear_end_date: bool,
    stripe_subscription_id: Optional[str],
) -> None:
    if tier is not None:
        membership.tier = normalize_tier(tier)
    membership.status = status
    if start_date is not None and event != EVENT_RENEWED:
        membership.start_date = start_date
    if end_date is not None or clear_end_date:
        membership.end_date = end_date
    if stripe_subscription_id:
        membership.stripe_subscription_id = stripe_subscription_id


def apply_subscription_event(
    db: Session,
    user_id: int,
    event: str,
    tier: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    stripe_subscription_id: Optional[str] = None,
    now: Optional[datetime] = None,
    clear_end_date: bool = False,
) -> Optional[models.Membership]:
    """
    Applies one subscription-lifecycle event and commits.

    Creates the membership on first activation, keeps at most one
    active/trialing row per user, and never deletes history. Returns the
    affected row, or None when a cancel/expire/payment-failed event finds
    nothing to act on.

    With a stripe_subscription_id, cancel/expire/payment-failed only touch the
    current row carrying that id; events for a superseded subscription are ignored.
    An existing end_date is only overwritten by a new one, or cleared when
    clear_end_date is set.
    """
    if event not in SUBSCRIPTION_EVENTS:
        raise ValueError(f"Unknown subscription event: {event}")

    now = now or utcnow()
    current = current_membership(db, user_id)

    if event in (EVENT_ACTIVATED, EVENT_TRIAL_STARTED, EVENT_RENEWED):
        status = "trialing" if event == EVENT_TRIAL_STARTED else "active"
        if current is None:
            current = models.Membership(
                user_id=user_id,
                tier=normalize_tier(tier),
                status=status,
                start_date=start_date or now,
                end_date=end_date,
                stripe_subscription_id=stripe_subscription_id,
                created_at=now,
            )
            db.add(current)
            try:
                db.flush()
            except IntegrityError:
                # a concurrent activation committed the user's entitled row first
                db.rollback()
                current = current_membership(db, user_id)
                if current is None:
                    raise
                logger.info("Membership %s for user_id=%s raced another writer; updating row %s",
                            event, user_id, current.id)
                _apply_activation(current, event, status, tier, start_date, end_date,
                                  clear_end_date, stripe_subscription_id)
        else:
            _apply_activation(current, event, status, tier, start_date, end_date,
                              clear_end_date, stripe_subscription_id)
        current.payment_failed_at = None
        current.updated_at = now
        db.flush()

        # rows written before the entitled-row index existed
        db.execute(
            update(models.Membership)
            .where(
                models.Membership.user_id == user_id,
                models.Membership.id != current.id,
                models.Membership.status.in_(ENTITLED_STATUSES),
            )
            .values(status="cancelled", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info("Membership %s user_id=%s tier=%s status=%s", event, user_id, current.tier, current.status)
        return current

    if current is None:
        logger.info("Membership event %s ignored for user_id=%s (no active membership)", event, user_id)
        return None

    if stripe_subscription_id and current.stripe_subscription_id != stripe_subscription_id:
        logger.info(
            "Membership event %s ignored for user_id=%s (subscription %s is not the current one)",
            event, user_id, stripe_subscription_id,
        )
        return None

    if event == EVENT_PAYMENT_FAILED:
        current.payment_failed_at = now
    elif event == EVENT_CANCELLED:
        current.status = "cancelled"
    elif event == EVENT_EXPIRED:
        current.status = "expired"

    current.updated_at = now
    db.commit()
    logger.info("Membership %s user_id=%s membership_id=%s", event, user_id, current.id)
    return current


# -------------------------------------------------
# Scheduled jobs
# -------------------------------------------------
def expire_lapsed_memberships(db: Session, now: Optional[datetime] = None) -> list[int]:
    """Moves active/trialing rows past their end_date to expired. Returns affected user ids."""
    now = now or utcnow()
    lapsed = db.scalars(
        select(models.Membership).where(
            models.Membership.status.in_(ENTITLED_STATUSES),
            models.Membership.end_date.is_not(None),
            models.Membership.end_date < now,
        )
    ).all()

    for m in lapsed:
        m.status = "expired"
        m.updated_at = now
    db.commit()

    if lapsed:
        logger.info("Expired %s lapsed memberships", len(lapsed))
    return [m.user_id for m in lapsed]


def _reminder_exists(db: Session, membership_id: int, reminder_type: str) -> bool:
    return (
        db.scalar(
            select(models.MembershipRenewalReminder.id).where(
                models.MembershipRenewalReminder.membership_id == membership_id,
                models.MembershipRenewalReminder.reminder_type == reminder_type,
            )
        )
        is not None
    )


def _record_reminder(db: Session, membership: models.Membership, reminder_type: str, now: datetime) -> bool:
    """Claims the (membership, bucket) slot. False if another run already holds it."""
    try:
        db.add(
            models.MembershipRenewalReminder(
                membership_id=membership.id,
                user_id=membership.user_id,
                reminder_type=reminder_type,
                sent_at=now,
            )
        )
        db.commit()
        return True
    except IntegrityError:
        db.rollback()
        return False


def send_renewal_reminders(
    db: Session,
    now: Optional[datetime] = None,
    send_email: EmailSender = send_email_if_configured,
) -> dict:
    """
    At most one reminder per (membership, bucket), however often this runs.

    The reminder row is written before the email goes out; a failed send lands
    in the email outbox for retry rather than re-opening the bucket.
    """
    now = now or utcnow()
    candidates = db.scalars(
        select(models.Membership)
        .where(
            models.Membership.status.in_(ENTITLED_STATUSES),
            models.Membership.end_date.is_not(None),
            models.Membership.end_date >= now,
            models.Membership.end_date <= now + timedelta(days=REMINDER_WINDOW_DAYS),
        )
        .order_by(models.Membership.id.asc())
    ).all()

    sent = 0
    for membership in candidates:
        status = evaluate_status(membership, now)
        bucket = reminder_bucket(status.days_until_renewal)
        if normalize_tier(membership.tier) == TIER_FREE or not bucket:
            continue

        if _reminder_exists(db, membership.id, bucket):
            continue
        if not _record_reminder(db, membership, bucket, now):
            continue

        user = db.get(models.User, membership.user_id)
        if not user:
            continue
        full_name = user.profile.full_name if user.profile else None

        notify_email(
            db,
            user.email,
            EmailTemplate.MEMBERSHIP_RENEWAL,
            {
                "full_name": full_name or "",
                "tier": membership.tier,
                "days_until_renewal": status.days_until_renewal,
                "end_date": membership.end_date.strftime("%m/%d/%Y"),
                "renew_url": f"{app_base_url()}/membership",
            },
            send_email=send_email,
        )
        sent += 1

    logger.info("Renewal reminders: %s candidates, %s sent", len(candidates), sent)
    return {"candidates": len(candidates), "reminders_sent": sent}
