"""
Auction post schemas
"""

from pydantic import Field
from typing import Optional, List
from datetime import datetime
from ..enums.auction import PostStatus, SaleMethod
from .common import CamelModel, UserSummary


class PostCreate(CamelModel):
    # Required fields are checked by the lifecycle service so the caller gets a 400 with a reason
    title: Optional[str] = None
    description: Optional[str] = None
    starting_price: Optional[float] = None
    auction_duration: Optional[float] = None
    buy_now_price: Optional[float] = None
    images: List[str] = []
    video: Optional[str] = None


class PostUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    buy_now_price: Optional[float] = None
    images: Optional[List[str]] = None
    video: Optional[str] = None


class PostReactivate(CamelModel):
    auction_duration: Optional[float] = None


class PostResponse(CamelModel):
    id: int
    user_id: int
    owner: Optional[UserSummary] = None
    title: str
    description: str
    images: List[str] = []
    video: Optional[str] = None
    starting_price: float
    current_price: float
    buy_now_price: Optional[float] = None
    auction_duration_hours: float
    auction_end_time: datetime
    status: PostStatus
    sold_to_id: Optional[int] = None
    sold_to: Optional[UserSummary] = None
    sold_at: Optional[datetime] = None
    sold_price: Optional[float] = None
    sold_via: Optional[SaleMethod] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class AuctionDetailResponse(PostResponse):
    time_remaining: int = Field(0, description="Milliseconds until the auction ends, 0 once it has ended")
    is_live: bool
    is_expired: bool = Field(description="Still marked live but past its end time, waiting for the sweeper")


class PostActionResponse(CamelModel):
    message: str
    post: PostResponse


class SaleResponse(CamelModel):
    message: str
    sold_price: float
    winner: Optional[UserSummary] = None
    chat_id: Optional[int] = None
    post: PostResponse


class EndAuctionResponse(CamelModel):
    message: str
    status: PostStatus
    sold_price: Optional[float] = None
    winner: Optional[UserSummary] = None
    chat_id: Optional[int] = None
    post: PostResponse
