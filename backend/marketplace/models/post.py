"""
Auction post model
"""

from sqlalchemy import Column, Integer, ForeignKey, String, Text, Float, DateTime, JSON, Enum
from sqlalchemy.orm import relationship
from .base import BaseModel
from ..enums.auction import PostStatus, SaleMethod, enum_values


class Post(BaseModel):
    __tablename__ = "posts"

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    images = Column(JSON, nullable=False, default=list)
    video = Column(String(500), nullable=True)

    # Auction fields
    starting_price = Column(Float, nullable=False)
    current_price = Column(Float, nullable=False)
    buy_now_price = Column(Float, nullable=True)
    auction_duration_hours = Column(Float, nullable=False)
    auction_end_time = Column(DateTime, nullable=False, index=True)
    status = Column(
        Enum(PostStatus, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=PostStatus.LIVE,
        index=True,
    )

    # Sale details - all set together when status is SOLD
    sold_to_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sold_at = Column(DateTime, nullable=True)
    sold_price = Column(Float, nullable=True)
    sold_via = Column(Enum(SaleMethod, values_callable=enum_values, native_enum=False, length=20), nullable=True)

    # Relationships
    owner = relationship("User", foreign_keys=[user_id], backref="posts")
    sold_to = relationship("User", foreign_keys=[sold_to_id])
    bids = relationship("Bid", back_populates="post", cascade="all, delete-orphan")
    chat = relationship("Chat", back_populates="post", uselist=False, cascade="all, delete-orphan")

    @property
    def is_live(self) -> bool:
        return self.status == PostStatus.LIVE

    def has_ended(self, now) -> bool:
        """Bidding and sales are closed once ``now`` is past the end time"""
        return now > self.auction_end_time
