"""
Auction chat schemas
"""

from typing import Optional, List
from datetime import datetime
from ..enums.auction import PostStatus
from .common import CamelModel, UserSummary


class ChatMessageResponse(CamelModel):
    id: int
    user: UserSummary
    message: str
    timestamp: datetime


class ChatMessagesResponse(CamelModel):
    post_id: int
    messages: List[ChatMessageResponse] = []
    total_messages: int = 0
    is_active: bool
    post_status: Optional[PostStatus] = None
    message: Optional[str] = None  # why the chat is closed


class ChatParticipantsResponse(CamelModel):
    participants: List[UserSummary] = []


class ChatHistoryEntry(CamelModel):
    post_id: int
    post_title: str
    post_image: Optional[str] = None
    post_status: PostStatus
    last_message: Optional[ChatMessageResponse] = None
    total_messages: int
    last_activity: Optional[datetime] = None
