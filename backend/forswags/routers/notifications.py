# forswags/routers/notifications.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from forswags import auth, models, schemas
from forswags.database import get_db
from forswags.errors import NotFoundError

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[schemas.NotificationOut])
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    stmt = select(models.Notification).where(models.Notification.user_id == user.id)
    if unread_only:
        stmt = stmt.where(models.Notification.is_read.is_(False))
    stmt = stmt.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).limit(limit)
    return db.scalars(stmt).all()


@router.post("/{notification_id}/dismiss", response_model=schemas.NotificationOut)
def dismiss_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    n = db.get(models.Notification, notification_id)
    # other users' notifications look the same as missing ones
    if not n or n.user_id != user.id:
        raise NotFoundError("Notification not found", details={"notification_id": notification_id})

    n.is_read = True
    db.commit()
    db.refresh(n)
    return n
