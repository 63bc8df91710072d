"""
Shared schema base and small nested models
"""

from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime
from ..enums.auction import PostStatus


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire (``current_price`` <-> ``currentPrice``)"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class UserSummary(CamelModel):
    id: int
    username: str
    profile_image: Optional[str] = None


class PostSummary(CamelModel):
    id: int
    title: str
    images: List[str] = []
    status: PostStatus
    current_price: float
    auction_end_time: datetime


class MessageResponse(CamelModel):
    message: str
