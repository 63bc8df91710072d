"""
Sale chat models for post-sale buyer/seller conversation
"""

from sqlalchemy import Column, Integer, ForeignKey, Float, DateTime, String, Boolean, Index
from sqlalchemy.orm import relationship, backref
from .base import BaseModel
from ..utils.clock import utcnow


class SaleChat(BaseModel):
    __tablename__ = "sale_chats"

    # Exactly one sale chat per sold post
    post_id = Column(Integer, ForeignKey("posts.id"), nullable=False, unique=True, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Sale details
    sale_amount = Column(Float, nullable=False)
    sale_date = Column(DateTime, default=utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    post = relationship("Post", backref=backref("sale_chat", uselist=False))
    buyer = relationship("User", foreign_keys=[buyer_id], backref="purchase_chats")
    seller = relationship("User", foreign_keys=[seller_id], backref="sale_chats")
    messages = relationship(
        "SaleChatMessage",
        back_populates="sale_chat",
        cascade="all, delete-orphan",
        order_by="SaleChatMessage.timestamp, SaleChatMessage.id",
    )

    __table_args__ = (
        Index("idx_sale_chat_parties", "buyer_id", "seller_id", "post_id"),
    )

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def other_party(self, user_id: int) -> int:
        return self.seller_id if user_id == self.buyer_id else self.buyer_id


class SaleChatMessage(BaseModel):
    __tablename__ = "sale_chat_messages"

    sale_chat_id = Column(Integer, ForeignKey("sale_chats.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(String(1000), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    is_read = Column(Boolean, default=False, nullable=False)

    # Relationships
    sale_chat = relationship("SaleChat", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id])
