"""
Bid ledger model
"""

from sqlalchemy import Column, Integer, ForeignKey, Float, Boolean, Index
from sqlalchemy.orm import relationship
from .base import BaseModel


class Bid(BaseModel):
    __tablename__ = "bids"

    post_id = Column(Integer, ForeignKey("posts.id"), nullable=False, index=True)
    bidder_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    # At most one winning bid per post; flipped only under the post's lock
    is_winning = Column(Boolean, default=False, nullable=False)

    # Relationships
    post = relationship("Post", back_populates="bids")
    bidder = relationship("User", foreign_keys=[bidder_id], backref="bids")

    __table_args__ = (
        Index("idx_bid_post_winning", "post_id", "is_winning"),
        Index("idx_bid_post_amount", "post_id", "amount"),
    )
