# forswags/notifications.py
from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from forswags import models
from forswags.config import email_max_attempts
from forswags.email_templates import EmailTemplate, render
from forswags.emailer import send_email_if_configured
from forswags.models import utcnow

logger = logging.getLogger(__name__)

# (to_email, subject, body) -> sent?
EmailSender = Callable[[str, str, str], bool]

TYPE_EVALUATION_COMPLETE = "evaluation_complete"
TYPE_EVALUATION_ASSIGNED = "evaluation_assigned"
TYPE_NEW_EVALUATION = "new_evaluation"
TYPE_ADMIN_ACTION = "admin_action"


def notify(
    db: Session,
    user_id: int,
    type: str,
    title: str,
    message: str,
    link: Optional[str] = None,
) -> Optional[models.Notification]:
    """
    Creates one in-app notification. Fire-and-forget: never raises.
    Callers have already committed their own state change.
    """
    try:
        n = models.Notification(user_id=user_id, type=type, title=title, message=message, link=link)
        db.add(n)
        db.commit()
        return n
    except Exception:
        db.rollback()
        logger.exception("Notification insert failed user_id=%s type=%s", user_id, type)
        return None


def notification_rows(
    user_ids: Iterable[int],
    type: str,
    title: str,
    message: str,
    link: Optional[str] = None,
) -> list[models.Notification]:
    """Unsaved rows, for callers that commit them with their own state change."""
    return [
        models.Notification(user_id=uid, type=type, title=title, message=message, link=link)
        for uid in user_ids
    ]


def notify_many(
    db: Session,
    user_ids: Iterable[int],
    type: str,
    title: str,
    message: str,
    link: Optional[str] = None,
) -> int:
    """Fan-out helper; returns how many rows were created."""
    try:
        rows = notification_rows(user_ids, type, title, message, link)
        db.add_all(rows)
        db.commit()
        return len(rows)
    except Exception:
        db.rollback()
        logger.exception("Notification fan-out failed type=%s", type)
        return 0


def _queue_failed_email(
    db: Session,
    to_email: str,
    template: str,
    variables: Mapping[str, object],
    error: str,
) -> None:
    try:
        db.add(
            models.EmailOutbox(
                to_email=to_email,
                template=template,
                variables=dict(variables),
                status="pending",
                attempts=1,
                last_error=error,
            )
        )
        db.commit()
        logger.warning("Email queued for retry to=%s template=%s", to_email, template)
    except Exception:
        db.rollback()
        logger.exception("Could not queue failed email to=%s template=%s", to_email, template)


def notify_email(
    db: Session,
    to_email: Optional[str],
    template: EmailTemplate | str,
    variables: Optional[Mapping[str, object]] = None,
    send_email: EmailSender = send_email_if_configured,
) -> bool:
    """
    Renders a catalog template and sends it. Never raises.

    A failed send is queued in email_outbox for bounded retries instead of dropped.
    """
    to_email = (to_email or "").strip()
    if not to_email:
        return False

    variables = dict(variables or {})
    try:
        template_name = EmailTemplate(template).value
        parts = render(template_name, variables)
    except ValueError:
        logger.error("Unknown email template %r; not sent to %s", template, to_email)
        return False

    try:
        sent = bool(send_email(to_email, parts.subject, parts.body))
        error = "" if sent else "sender returned failure"
    except Exception as e:
        sent, error = False, str(e) or type(e).__name__
        logger.exception("Email sender raised for %s template=%s", to_email, template_name)

    if not sent:
        _queue_failed_email(db, to_email, template_name, variables, error)
    return sent


def retry_email_outbox(
    db: Session,
    max_attempts: Optional[int] = None,
    send_email: EmailSender = send_email_if_configured,
    limit: int = 200,
) -> dict:
    """
    Retries pending outbox rows. A row is marked failed once it has been tried
    max_attempts times in total (the first send counts as attempt 1).
    """
    max_attempts = max_attempts or email_max_attempts()
    rows = db.scalars(
        select(models.EmailOutbox)
        .where(models.EmailOutbox.status == "pending")
        .order_by(models.EmailOutbox.id.asc())
        .limit(limit)
    ).all()

    sent = failed = retried = 0
    for row in rows:
        if row.attempts >= max_attempts:
            row.status = "failed"
            row.updated_at = utcnow()
            failed += 1
            continue

        retried += 1
        try:
            parts = render(row.template, row.variables or {})
            ok = bool(send_email(row.to_email, parts.subject, parts.body))
            error = None if ok else "sender returned failure"
        except Exception as e:
            ok, error = False, str(e) or type(e).__name__

        row.attempts += 1
        row.updated_at = utcnow()
        if ok:
            row.status = "sent"
            row.last_error = None
            sent += 1
        else:
            row.last_error = error
            if row.attempts >= max_attempts:
                row.status = "failed"
                failed += 1
                logger.error(
                    "Email gave up after %s attempts outbox_id=%s to=%s template=%s",
                    row.attempts, row.id, row.to_email, row.template,
                )

    db.commit()
    return {"retried": retried, "sent": sent, "failed": failed}
