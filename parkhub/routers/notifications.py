# parkhub/routers/notifications.py
"""Notification store: list + mark-as-read endpoints for the dashboard bell."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from parkhub.database import get_db
from parkhub.models.notification import Notification
from parkhub.schemas.notification import NotificationOut
from parkhub.utils.timeutil import utcnow
from typing import Optional

router = APIRouter()


@router.get("/notifications", response_model=list[NotificationOut], summary="List notifications, newest first")
def get_notifications(
    unread_only: bool = False,
    kind: Optional[str] = None,
    space_number: Optional[str] = None,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    q = db.query(Notification)
    if unread_only:
        q = q.filter(Notification.is_read == 0)
    if kind:
        q = q.filter(Notification.kind == kind)
    if space_number:
        q = q.filter(Notification.space_number == space_number)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


@router.get("/notifications/unread", response_model=list[NotificationOut], summary="Unread notifications")
def get_unread_notifications(limit: int = 50, db: Session = Depends(get_db)):
    return (
        db.query(Notification)
        .filter(Notification.is_read == 0)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


@router.put("/notifications/{notification_id}/read", summary="Mark a notification as read")
def mark_notification_read(notification_id: int, db: Session = Depends(get_db)):
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    if not notification.is_read:
        notification.is_read = 1
        notification.read_at = utcnow()
        db.commit()
    return {"id": notification_id, "status": "read"}
