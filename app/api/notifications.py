"""
Notifications API - in-app notices for the signed-in user.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User
from app.db.storage import Storage
from app.core.rbac import get_current_user
from app.api.schemas import NotificationOut

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("", response_model=List[NotificationOut])
async def list_notifications(
    type: Optional[str] = Query(None, description="Filter by notification type"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return Storage(db).list_notifications(user.id, type)


@router.get("/unread-count")
async def unread_count(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"unread_count": Storage(db).unread_notification_count(user.id)}


@router.post("/read-all")
async def mark_all_read(
    type: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    count = Storage(db).mark_all_notifications_read(user.id, type)
    db.commit()
    return {"marked_read": count}


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    notification = storage.get_notification(user.id, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    storage.mark_notification_read(notification)
    db.commit()
    db.refresh(notification)
    return notification
