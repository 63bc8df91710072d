"""
Notification model for user notifications
"""

from sqlalchemy import Column, Integer, ForeignKey, String, Text, Boolean, DateTime, Float, Enum
from sqlalchemy.orm import relationship
from .base import BaseModel
from ..enums.auction import enum_values
import enum


class NotificationType(str, enum.Enum):
    BID = "bid"
    OUTBID = "outbid"
    SALE = "sale"
    CHAT = "chat"
    SYSTEM = "system"


class Notification(BaseModel):
    __tablename__ = "notifications"

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(
        Enum(NotificationType, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=NotificationType.BID,
    )
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)

    # Optional references
    related_post_id = Column(Integer, ForeignKey("posts.id", ondelete="SET NULL"), nullable=True)
    related_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    related_sale_chat_id = Column(Integer, ForeignKey("sale_chats.id"), nullable=True)
    amount = Column(Float, nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id], backref="notifications")
