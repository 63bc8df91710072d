"""
Read-only queries over the bid ledger
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..models.bid import Bid
from ..models.user import User


@dataclass
class BidderAggregate:
    bidder: User
    highest_bid: float
    total_bids: int
    last_bid_time: datetime


def bid_history(db: Session, post_id: int) -> List[Bid]:
    """All bids for a post, highest first; equal amounts newest first"""
    return (
        db.query(Bid)
        .options(joinedload(Bid.bidder))
        .filter(Bid.post_id == post_id)
        .order_by(Bid.amount.desc(), Bid.created_at.desc(), Bid.id.desc())
        .all()
    )


def bidder_aggregates(db: Session, post_id: int) -> List[BidderAggregate]:
    """One row per bidder with their highest bid, bid count and latest bid time"""
    rows = (
        db.query(
            Bid.bidder_id,
            func.max(Bid.amount).label("highest_bid"),
            func.count(Bid.id).label("total_bids"),
            func.max(Bid.created_at).label("last_bid_time"),
        )
        .filter(Bid.post_id == post_id)
        .group_by(Bid.bidder_id)
        .order_by(func.max(Bid.amount).desc())
        .all()
    )
    if not rows:
        return []

    users = {user.id: user for user in db.query(User).filter(User.id.in_([row.bidder_id for row in rows]))}
    return [
        BidderAggregate(
            bidder=users[row.bidder_id],
            highest_bid=row.highest_bid,
            total_bids=row.total_bids,
            last_bid_time=row.last_bid_time,
        )
        for row in rows
        if row.bidder_id in users
    ]


def winning_bid(db: Session, post_id: int) -> Optional[Bid]:
    return (
        db.query(Bid)
        .options(joinedload(Bid.bidder))
        .filter(Bid.post_id == post_id, Bid.is_winning.is_(True))
        .first()
    )


def user_bid_history(db: Session, user_id: int) -> List[Bid]:
    return (
        db.query(Bid)
        .options(joinedload(Bid.post), joinedload(Bid.bidder))
        .filter(Bid.bidder_id == user_id)
        .order_by(Bid.created_at.desc(), Bid.id.desc())
        .all()
    )
