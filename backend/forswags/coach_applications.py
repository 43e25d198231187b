# forswags/coach_applications.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlencode

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from forswags import auth, models
from forswags.config import app_base_url
from forswags.email_templates import EmailTemplate
from forswags.emailer import send_email_if_configured
from forswags.errors import AlreadyApprovedError, ConflictError, NotFoundError
from forswags.identity import IdentityProvider, normalize_email
from forswags.models import utcnow
from forswags.notifications import EmailSender, notify_email

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

IDENTITY_SOURCE = "coach_application"

APPLICATION_FIELDS = (
    "email",
    "full_name",
    "phone",
    "coaching_background",
    "why_mentor",
    "experience_years",
    "certifications",
    "specializations",
    "twitter_handle",
    "instagram_handle",
    "facebook_handle",
    "tiktok_handle",
)


# ----------------------------
# Helpers
# ----------------------------
def get_application_or_404(db: Session, application_id: int) -> models.CoachApplication:
    app = db.get(models.CoachApplication, application_id)
    if not app:
        raise NotFoundError("Application not found", details={"application_id": application_id})
    return app


def _raise_for_terminal(app: models.CoachApplication) -> None:
    if app.status == STATUS_APPROVED:
        raise AlreadyApprovedError(app.id)
    if app.status != STATUS_PENDING:
        raise ConflictError(
            f"Application already {app.status}",
            code="INVALID_STATE",
            details={"application_id": app.id, "status": app.status},
        )


def password_setup_url(user_id: int) -> str:
    token = auth.create_recovery_token(user_id)
    return f"{app_base_url()}/auth/set-password?{urlencode({'token': token})}"


# ----------------------------
# Submission (public)
# ----------------------------
def submit_application(db: Session, fields: dict[str, Any]) -> models.CoachApplication:
    data = {k: fields.get(k) for k in APPLICATION_FIELDS if k in fields}
    data["email"] = normalize_email(data.get("email") or "")
    data["specializations"] = list(data.get("specializations") or [])

    app = models.CoachApplication(**data, status=STATUS_PENDING)
    db.add(app)
    db.commit()
    db.refresh(app)
    logger.info("Coach application submitted id=%s email=%s", app.id, app.email)
    return app


def list_applications(db: Session, status: Optional[str] = None, limit: int = 300) -> list[models.CoachApplication]:
    qry = select(models.CoachApplication)
    if status:
        qry = qry.where(models.CoachApplication.status == status)
    return list(db.scalars(qry.order_by(models.CoachApplication.id.desc()).limit(limit)).all())


# ----------------------------
# pending -> approved (compound)
# ----------------------------
def _compensate_identity(identity: IdentityProvider, user_id: int, application_id: int) -> None:
    try:
        identity.delete_user(user_id)
    except Exception:
        # left for find_orphaned_coach_identities()
        logger.exception(
            "Compensation failed: orphaned identity user_id=%s for application_id=%s",
            user_id, application_id,
        )


def approve_application(
    db: Session,
    application_id: int,
    reviewer_id: int,
    admin_notes: Optional[str] = None,
    identity: Optional[IdentityProvider] = None,
    now: Optional[datetime] = None,
    send_email: EmailSender = send_email_if_configured,
) -> tuple[models.CoachApplication, int]:
    """
    Approves an application and provisions the coach account.

    Order:
      1) identity account for the applicant email (abort here on failure)
      2) profile  3) coach role  4) coach profile  5) application -> approved
         (2-5 share one transaction; on any failure it is rolled back and the
         identity from step 1 is deleted)
      6) password-setup email (best-effort)

    Returns (application, new_user_id).
    """
    now = now or utcnow()
    identity = identity or IdentityProvider(db)

    app = get_application_or_404(db, application_id)
    _raise_for_terminal(app)

    # 1) identity
    user_id = identity.create_user(
        app.email,
        {"full_name": app.full_name, "source": IDENTITY_SOURCE, "application_id": app.id},
    )

    # 2-5) one transaction
    try:
        if db.get(models.Profile, user_id) is None:
            db.add(models.Profile(id=user_id, email=app.email, full_name=app.full_name))

        db.add(models.UserRole(user_id=user_id, role=auth.ROLE_COACH))

        db.add(
            models.CoachProfile(
                user_id=user_id,
                full_name=app.full_name,
                specializations=list(app.specializations or []),
                certifications=app.certifications,
                experience_years=app.experience_years,
                twitter_handle=app.twitter_handle,
                instagram_handle=app.instagram_handle,
                facebook_handle=app.facebook_handle,
                tiktok_handle=app.tiktok_handle,
            )
        )
        db.flush()

        result = db.execute(
            update(models.CoachApplication)
            .where(
                models.CoachApplication.id == application_id,
                models.CoachApplication.status == STATUS_PENDING,
            )
            .values(
                status=STATUS_APPROVED,
                reviewed_by=reviewer_id,
                reviewed_at=now,
                admin_notes=admin_notes,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # another reviewer decided first
            raise AlreadyApprovedError(application_id)

        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Coach approval failed after identity creation; compensating user_id=%s application_id=%s",
            user_id, application_id,
        )
        _compensate_identity(identity, user_id, application_id)
        raise

    db.refresh(app)
    logger.info("Coach application approved id=%s user_id=%s by=%s", application_id, user_id, reviewer_id)

    # 6) password setup
    try:
        notify_email(
            db,
            app.email,
            EmailTemplate.COACH_WELCOME,
            {"full_name": app.full_name, "password_setup_url": password_setup_url(user_id)},
            send_email=send_email,
        )
    except Exception:
        logger.exception("Password setup email failed for user_id=%s", user_id)

    return app, user_id


# ----------------------------
# pending -> rejected
# ----------------------------
def reject_application(
    db: Session,
    application_id: int,
    reviewer_id: int,
    admin_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.CoachApplication:
    now = now or utcnow()
    app = get_application_or_404(db, application_id)
    _raise_for_terminal(app)

    result = db.execute(
        update(models.CoachApplication)
        .where(
            models.CoachApplication.id == application_id,
            models.CoachApplication.status == STATUS_PENDING,
        )
        .values(
            status=STATUS_REJECTED,
            reviewed_by=reviewer_id,
            reviewed_at=now,
            admin_notes=admin_notes,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(app)
        _raise_for_terminal(app)

    db.commit()
    db.refresh(app)
    logger.info("Coach application rejected id=%s by=%s", application_id, reviewer_id)
    return app


# ----------------------------
# Reconciliation
# ----------------------------
def find_orphaned_coach_identities(db: Session) -> list[int]:
    """Accounts created from an application that never got a CoachProfile."""
    rows = db.execute(
        select(models.User.id, models.User.user_metadata)
        .outerjoin(models.CoachProfile, models.CoachProfile.user_id == models.User.id)
        .where(models.CoachProfile.id.is_(None))
        .order_by(models.User.id.asc())
    ).all()
    return [uid for uid, meta in rows if (meta or {}).get("source") == IDENTITY_SOURCE]
