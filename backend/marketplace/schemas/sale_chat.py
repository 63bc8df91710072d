"""
Sale chat schemas for buyer/seller conversations after a sale
"""

from typing import Optional, List
from datetime import datetime
from .common import CamelModel, UserSummary, PostSummary


class SaleMessageCreate(CamelModel):
    message: Optional[str] = None


class SaleChatMessageResponse(CamelModel):
    id: int
    sender: UserSummary
    message: str
    timestamp: datetime
    is_read: bool


class SaleChatResponse(CamelModel):
    id: int
    post: PostSummary
    buyer: UserSummary
    seller: UserSummary
    sale_amount: float
    sale_date: datetime
    is_active: bool
    messages: List[SaleChatMessageResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


class SaleMessageSentResponse(CamelModel):
    message: str
    chat_message: SaleChatMessageResponse
