"""
Notification inbox: bid, outbid, sale, chat and system notices for the current user
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from ..database import get_db
from ..models.user import User
from ..auth.dependencies import get_current_user
from ..services import notifications as inbox
from ..schemas.common import MessageResponse
from ..schemas.notification import NotificationResponse, UnreadCountResponse

router = APIRouter()


@router.get("/", response_model=List[NotificationResponse])
def get_notifications(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    unread_only: bool = Query(False, alias="unreadOnly"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Newest first"""
    return inbox.list_notifications(db, current_user.id, skip=skip, limit=limit, unread_only=unread_only)


@router.get("/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"unread_count": inbox.unread_count(db, current_user.id)}


@router.put("/read-all", response_model=MessageResponse)
def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    updated = inbox.mark_all_read(db, current_user.id)
    return {"message": f"Marked {updated} notifications as read"}


@router.put("/sale-chat/{chat_id}/read", response_model=MessageResponse)
def mark_sale_chat_notifications_read(
    chat_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Clear the unread badge for one buyer/seller conversation"""
    updated = inbox.mark_all_read(db, current_user.id, sale_chat_id=chat_id)
    return {"message": f"Marked {updated} notifications as read"}


@router.put("/{notification_id}/read", response_model=NotificationResponse)
def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return inbox.mark_read(db, notification_id, current_user.id)


@router.delete("/{notification_id}", response_model=MessageResponse)
def delete_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    inbox.delete_notification(db, notification_id, current_user.id)
    return {"message": "Notification deleted"}
