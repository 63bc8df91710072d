"""
Auction lifecycle enums
"""

import enum


class PostStatus(str, enum.Enum):
    LIVE = "live"
    SOLD = "sold"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SaleMethod(str, enum.Enum):
    AUCTION = "auction"
    BUY_NOW = "buyNow"


class AuctionEventType(str, enum.Enum):
    """Lifecycle events published by the auction state machine"""
    POST_CREATED = "post-created"
    POST_UPDATED = "post-updated"
    POST_DELETED = "post-deleted"
    NEW_BID = "new-bid"
    SOLD = "sold"
    AUCTION_ENDED = "auction-ended"
    CANCELLED = "cancelled"
    REACTIVATED = "reactivated"


def enum_values(enum_cls):
    """values_callable for SQLAlchemy Enum columns so the stored value is the wire value"""
    return [member.value for member in enum_cls]
