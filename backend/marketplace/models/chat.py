"""
Auction chat models - one chat room per post, open while the auction is live
"""

from sqlalchemy import Column, Integer, ForeignKey, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from .base import BaseModel
from ..utils.clock import utcnow


class Chat(BaseModel):
    __tablename__ = "auction_chats"

    post_id = Column(Integer, ForeignKey("posts.id"), nullable=False, unique=True, index=True)

    # Deactivated when the auction is sold or expires; never re-activated
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    post = relationship("Post", back_populates="chat")
    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatMessage.timestamp, ChatMessage.id",
    )


class ChatMessage(BaseModel):
    __tablename__ = "auction_chat_messages"

    chat_id = Column(Integer, ForeignKey("auction_chats.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(String(500), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    chat = relationship("Chat", back_populates="messages")
    user = relationship("User", foreign_keys=[user_id])
