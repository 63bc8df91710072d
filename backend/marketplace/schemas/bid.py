"""
Bid schemas
"""

from typing import Optional
from datetime import datetime
from .common import CamelModel, UserSummary, PostSummary


class BidCreate(CamelModel):
    amount: Optional[float] = None


class SellToBidder(CamelModel):
    bidder_id: Optional[int] = None
    amount: Optional[float] = None


class BidResponse(CamelModel):
    id: int
    post_id: int
    bidder_id: int
    bidder: Optional[UserSummary] = None
    amount: float
    is_winning: bool
    created_at: datetime


class UserBidResponse(BidResponse):
    post: Optional[PostSummary] = None


class BidPlacedResponse(CamelModel):
    message: str
    bid: BidResponse
    current_price: float


class BidderSummary(CamelModel):
    """One row of the per-bidder view an owner uses to pick a buyer"""
    bidder: UserSummary
    highest_bid: float
    total_bids: int
    last_bid_time: datetime
