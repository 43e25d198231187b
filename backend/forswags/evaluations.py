# forswags/evaluations.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from forswags import auth, models
from forswags.config import app_base_url, stale_evaluation_hours
from forswags.email_templates import EmailTemplate
from forswags.emailer import send_email_if_configured
from forswags.errors import AuthorizationError, ConflictError, NotFoundError
from forswags.models import utcnow
from forswags.notifications import (
    TYPE_ADMIN_ACTION,
    TYPE_EVALUATION_ASSIGNED,
    TYPE_EVALUATION_COMPLETE,
    TYPE_NEW_EVALUATION,
    EmailSender,
    notify,
    notify_email,
    notification_rows,
    notify_many,
)

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"

STALE_UNPICKED = "unpicked"
STALE_UNCOMPLETED = "uncompleted"


# ----------------------------
# Helpers
# ----------------------------
def get_evaluation_or_404(db: Session, evaluation_id: int) -> models.Evaluation:
    ev = db.get(models.Evaluation, evaluation_id)
    if not ev:
        raise NotFoundError("Evaluation not found", details={"evaluation_id": evaluation_id})
    return ev


def _display_name(db: Session, user_id: Optional[int], fallback: str) -> str:
    if not user_id:
        return fallback
    profile = db.get(models.Profile, user_id)
    if profile and profile.full_name:
        return profile.full_name
    return fallback


def _coach_name(db: Session, coach_id: Optional[int], fallback: str = "Your coach") -> str:
    if not coach_id:
        return fallback
    cp = db.scalar(select(models.CoachProfile).where(models.CoachProfile.user_id == coach_id))
    if cp and cp.full_name:
        return cp.full_name
    return _display_name(db, coach_id, fallback)


def _email_of(db: Session, user_id: int) -> Optional[str]:
    user = db.get(models.User, user_id)
    return user.email if user else None


# ----------------------------
# Creation (payment verified)
# ----------------------------
def create_evaluation(
    db: Session,
    athlete_user_id: int,
    payment_reference: Optional[str] = None,
    video_url: Optional[str] = None,
    is_reevaluation: bool = False,
    now: Optional[datetime] = None,
    send_email: EmailSender = send_email_if_configured,
) -> models.Evaluation:
    """
    Opens a pending evaluation once payment is verified and tells every active
    coach (in-app and email, best effort).
    Idempotent on payment_reference, so a replayed verification returns the same row
    and nobody is notified twice.
    """
    now = now or utcnow()

    if payment_reference:
        existing = db.scalar(
            select(models.Evaluation).where(models.Evaluation.payment_reference == payment_reference)
        )
        if existing:
            return existing

    if not db.get(models.User, athlete_user_id):
        raise NotFoundError("Athlete not found", details={"user_id": athlete_user_id})

    ev = models.Evaluation(
        athlete_user_id=athlete_user_id,
        status=STATUS_PENDING,
        payment_reference=payment_reference,
        video_url=video_url,
        is_reevaluation=is_reevaluation,
        purchased_at=now,
    )
    db.add(ev)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = db.scalar(
            select(models.Evaluation).where(models.Evaluation.payment_reference == payment_reference)
        )
        if existing:
            return existing
        raise

    logger.info("Evaluation created id=%s athlete=%s", ev.id, athlete_user_id)
    _fan_out_new_evaluation(db, ev, send_email)
    return ev


def active_coaches(db: Session) -> list[tuple[int, str, str]]:
    """(user_id, email, display name) for coaches whose profile is active."""
    rows = db.execute(
        select(models.User.id, models.User.email, models.CoachProfile.full_name)
        .join(models.CoachProfile, models.CoachProfile.user_id == models.User.id)
        .where(
            models.CoachProfile.is_active.is_(True),
            models.User.is_active.is_(True),
            models.User.id.in_(
                select(models.UserRole.user_id).where(models.UserRole.role == auth.ROLE_COACH)
            ),
        )
        .order_by(models.User.id)
    ).all()
    return [(uid, email, name) for uid, email, name in rows]


def _fan_out_new_evaluation(db: Session, ev: models.Evaluation, send_email: EmailSender) -> None:
    evaluations_url = f"{app_base_url()}/coach/available-evaluations"
    try:
        coaches = active_coaches(db)
    except Exception:
        db.rollback()
        logger.exception("Coach lookup failed for new evaluation id=%s", ev.id)
        return

    notify_many(
        db,
        [uid for uid, _, _ in coaches],
        TYPE_NEW_EVALUATION,
        "New Evaluation Available",
        "A new athlete evaluation is waiting to be claimed.",
        link="/coach/available-evaluations",
    )
    for _, email, name in coaches:
        notify_email(
            db,
            email,
            EmailTemplate.NEW_EVALUATION_AVAILABLE,
            {"coach_name": name, "evaluations_url": evaluations_url},
            send_email=send_email,
        )


def list_available(db: Session, limit: int = 100) -> list[models.Evaluation]:
    return list(
        db.scalars(
            select(models.Evaluation)
            .where(models.Evaluation.status == STATUS_PENDING, models.Evaluation.coach_id.is_(None))
            .order_by(models.Evaluation.purchased_at.asc())
            .limit(limit)
        ).all()
    )


# ----------------------------
# pending -> in_progress
# ----------------------------
def claim_evaluation(
    db: Session,
    evaluation_id: int,
    coach_id: int,
    now: Optional[datetime] = None,
    send_email: EmailSender = send_email_if_configured,
) -> models.Evaluation:
    """
    Coach takes ownership. Compare-and-set on "coach_id IS NULL": of any number
    of racing claims exactly one row update lands; the rest get ConflictError.
    """
    now = now or utcnow()
    ev = get_evaluation_or_404(db, evaluation_id)

    result = db.execute(
        update(models.Evaluation)
        .where(
            models.Evaluation.id == evaluation_id,
            models.Evaluation.coach_id.is_(None),
            models.Evaluation.status == STATUS_PENDING,
        )
        .values(coach_id=coach_id, status=STATUS_IN_PROGRESS, claimed_at=now)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        db.rollback()
        db.refresh(ev)
        if ev.status == STATUS_COMPLETED:
            raise ConflictError(
                "This evaluation is already completed.",
                code="INVALID_STATE",
                details={"evaluation_id": evaluation_id, "status": ev.status},
            )
        raise ConflictError(
            "Someone else already claimed this evaluation.",
            code="ALREADY_CLAIMED",
            details={"evaluation_id": evaluation_id},
        )

    db.commit()
    db.refresh(ev)
    logger.info("Evaluation claimed id=%s coach=%s", evaluation_id, coach_id)

    _fan_out_started(db, ev, send_email)
    return ev


def _fan_out_started(db: Session, ev: models.Evaluation, send_email: EmailSender) -> None:
    try:
        coach_name = _coach_name(db, ev.coach_id, "A coach")
        notify_email(
            db,
            _email_of(db, ev.athlete_user_id),
            EmailTemplate.EVAL_STARTED,
            {
                "athlete_name": _display_name(db, ev.athlete_user_id, "Athlete"),
                "coach_name": coach_name,
                "evaluation_url": f"{app_base_url()}/evaluations",
            },
            send_email=send_email,
        )
    except Exception:
        logger.exception("Evaluation start fan-out failed id=%s", ev.id)


# ----------------------------
# in_progress -> completed
# ----------------------------
def complete_evaluation(
    db: Session,
    evaluation_id: int,
    coach_id: int,
    feedback: Optional[str] = None,
    scores: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
    send_email: EmailSender = send_email_if_configured,
) -> models.Evaluation:
    """
    Assigned coach submits results. The state change is committed first;
    the athlete's in-app notification and email are best-effort afterwards.
    """
    now = now or utcnow()
    ev = get_evaluation_or_404(db, evaluation_id)

    result = db.execute(
        update(models.Evaluation)
        .where(
            models.Evaluation.id == evaluation_id,
            models.Evaluation.status == STATUS_IN_PROGRESS,
            models.Evaluation.coach_id == coach_id,
        )
        .values(status=STATUS_COMPLETED, completed_at=now, feedback=feedback, scores=scores)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        db.rollback()
        db.refresh(ev)
        if ev.status != STATUS_IN_PROGRESS:
            raise ConflictError(
                "Evaluation is not in progress.",
                code="INVALID_STATE",
                details={"evaluation_id": evaluation_id, "status": ev.status},
            )
        raise AuthorizationError(
            "Only the assigned coach can complete this evaluation.",
            code="NOT_ASSIGNED",
            details={"evaluation_id": evaluation_id},
        )

    db.commit()
    db.refresh(ev)
    logger.info("Evaluation completed id=%s coach=%s", evaluation_id, coach_id)

    _fan_out_completed(db, ev, send_email)
    return ev


def _fan_out_completed(db: Session, ev: models.Evaluation, send_email: EmailSender) -> None:
    try:
        coach_name = _coach_name(db, ev.coach_id)
        notify(
            db,
            ev.athlete_user_id,
            TYPE_EVALUATION_COMPLETE,
            "Evaluation Complete!",
            f"{coach_name} has completed your evaluation. View your feedback and scores now.",
            link="/evaluations",
        )
        notify_email(
            db,
            _email_of(db, ev.athlete_user_id),
            EmailTemplate.EVAL_COMPLETE,
            {
                "athlete_name": _display_name(db, ev.athlete_user_id, "Athlete"),
                "coach_name": coach_name,
                "evaluation_url": f"{app_base_url()}/evaluations",
            },
            send_email=send_email,
        )
    except Exception:
        logger.exception("Evaluation completion fan-out failed id=%s", ev.id)


# ----------------------------
# Admin reassignment
# ----------------------------
def assign_evaluation(
    db: Session,
    evaluation_id: int,
    coach_id: int,
    admin_id: int,
    now: Optional[datetime] = None,
) -> models.Evaluation:
    """Human follow-up to a staleness alert: hand the evaluation to a specific coach."""
    now = now or utcnow()
    ev = get_evaluation_or_404(db, evaluation_id)

    if not auth.has_role(db, coach_id, auth.ROLE_COACH):
        raise NotFoundError("Coach not found", details={"coach_id": coach_id})

    result = db.execute(
        update(models.Evaluation)
        .where(
            models.Evaluation.id == evaluation_id,
            models.Evaluation.status != STATUS_COMPLETED,
        )
        .values(coach_id=coach_id, status=STATUS_IN_PROGRESS, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError(
            "Completed evaluations cannot be reassigned.",
            code="INVALID_STATE",
            details={"evaluation_id": evaluation_id},
        )

    db.commit()
    db.refresh(ev)
    logger.info("Evaluation reassigned id=%s coach=%s by admin=%s", evaluation_id, coach_id, admin_id)

    notify(
        db,
        coach_id,
        TYPE_EVALUATION_ASSIGNED,
        "Evaluation Assigned",
        f"An admin assigned you {_display_name(db, ev.athlete_user_id, 'an athlete')}'s evaluation.",
        link=f"/coach/evaluation/{ev.id}",
    )
    return ev


# ----------------------------
# Staleness (advisory only)
# ----------------------------
def find_stale_evaluations(
    db: Session,
    now: Optional[datetime] = None,
    hours: Optional[int] = None,
) -> list[tuple[models.Evaluation, str, datetime]]:
    """(evaluation, kind, since) for pending/in-progress rows stalled past the threshold."""
    now = now or utcnow()
    cutoff = now - timedelta(hours=hours or stale_evaluation_hours())

    unpicked = db.scalars(
        select(models.Evaluation)
        .where(
            models.Evaluation.status == STATUS_PENDING,
            models.Evaluation.coach_id.is_(None),
            models.Evaluation.purchased_at < cutoff,
        )
        .order_by(models.Evaluation.id.asc())
    ).all()

    uncompleted = db.scalars(
        select(models.Evaluation)
        .where(
            models.Evaluation.status == STATUS_IN_PROGRESS,
            models.Evaluation.claimed_at.is_not(None),
            models.Evaluation.claimed_at < cutoff,
        )
        .order_by(models.Evaluation.id.asc())
    ).all()

    return [(e, STALE_UNPICKED, e.purchased_at) for e in unpicked] + [
        (e, STALE_UNCOMPLETED, e.claimed_at) for e in uncompleted
    ]


def _stale_message(db: Session, ev: models.Evaluation, kind: str, since: datetime, now: datetime) -> tuple[str, str]:
    athlete = _display_name(db, ev.athlete_user_id, "An athlete")
    hours_since = int((now - since).total_seconds() // 3600)
    if kind == STALE_UNPICKED:
        return (
            "Stale Evaluation - Not Picked Up",
            f"{athlete}'s evaluation has not been picked up by any coach for {hours_since} hours. "
            "Please assign a coach.",
        )
    coach = _coach_name(db, ev.coach_id, "a coach")
    return (
        "Stale Evaluation - Not Completed",
        f"{athlete}'s evaluation assigned to {coach} has not been completed for {hours_since} hours. "
        "Consider reassignment.",
    )


def check_stale_evaluations(
    db: Session,
    now: Optional[datetime] = None,
    hours: Optional[int] = None,
) -> dict:
    """
    Notifies every admin about stalled evaluations. Never transitions state.

    One alert per (evaluation, kind, since): re-running the check, or running two
    checks at once, does not repeat it. A reassignment resets `since`.
    """
    now = now or utcnow()
    stale = find_stale_evaluations(db, now=now, hours=hours)
    summary = {
        "unpicked": sum(1 for _, kind, _ in stale if kind == STALE_UNPICKED),
        "uncompleted": sum(1 for _, kind, _ in stale if kind == STALE_UNCOMPLETED),
        "notifications_created": 0,
    }

    admin_ids = auth.user_ids_with_role(db, auth.ROLE_ADMIN)
    if not admin_ids:
        logger.info("Stale evaluation check: no admins to notify")
        return summary

    for ev, kind, since in stale:
        # alert marker and admin notifications land in one commit
        try:
            title, message = _stale_message(db, ev, kind, since, now)
            rows = notification_rows(admin_ids, TYPE_ADMIN_ACTION, title, message, link="/admin/evaluations")
            db.add(models.StaleEvaluationAlert(evaluation_id=ev.id, kind=kind, since=since, created_at=now))
            db.add_all(rows)
            db.commit()
        except IntegrityError:
            db.rollback()
            continue
        except Exception:
            db.rollback()
            logger.exception("Stale alert failed evaluation_id=%s kind=%s; retried next run", ev.id, kind)
            continue
        summary["notifications_created"] += len(rows)

    logger.info(
        "Stale evaluation check: %s unpicked, %s uncompleted, %s notifications",
        summary["unpicked"], summary["uncompleted"], summary["notifications_created"],
    )
    return summary
