"""
Notification schemas for request/response validation
"""

from typing import Optional
from datetime import datetime
from ..models.notification import NotificationType
from .common import CamelModel


class NotificationResponse(CamelModel):
    id: int
    user_id: int
    type: NotificationType
    title: str
    message: str
    is_read: bool
    read_at: Optional[datetime] = None
    related_post_id: Optional[int] = None
    related_user_id: Optional[int] = None
    related_sale_chat_id: Optional[int] = None
    amount: Optional[float] = None
    created_at: datetime


class UnreadCountResponse(CamelModel):
    unread_count: int
