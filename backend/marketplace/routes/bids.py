"""
Bid routes: placing bids, bidding history and owner sales
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from ..database import get_db
from ..models.post import Post
from ..models.user import User
from ..auth.dependencies import get_current_user, get_current_active_user
from ..services.auction_lifecycle import auction_lifecycle
from ..services import bid_ledger
from ..schemas.common import UserSummary
from ..schemas.post import PostResponse, SaleResponse
from ..schemas.bid import (
    BidCreate,
    SellToBidder,
    BidResponse,
    UserBidResponse,
    BidPlacedResponse,
    BidderSummary,
)

router = APIRouter()


def _get_post(db: Session, post_id: int) -> Post:
    post = db.query(Post).filter(Post.id == post_id).first()
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return post


@router.post("/{post_id}", response_model=BidPlacedResponse, status_code=status.HTTP_201_CREATED)
def place_bid(
    post_id: int,
    bid_data: BidCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    outcome = auction_lifecycle.place_bid(db, post_id, current_user, bid_data.amount)
    return BidPlacedResponse(
        message="Bid placed successfully",
        bid=BidResponse.model_validate(outcome.bid),
        current_price=outcome.post.current_price,
    )


@router.get("/post/{post_id}", response_model=List[BidResponse])
def get_bids_for_post(post_id: int, db: Session = Depends(get_db)):
    """Bidding history, highest amount first"""
    _get_post(db, post_id)
    return bid_ledger.bid_history(db, post_id)


@router.get("/user/history", response_model=List[UserBidResponse])
def get_user_bids(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return bid_ledger.user_bid_history(db, current_user.id)


@router.get("/winning/{post_id}", response_model=Optional[BidResponse])
def get_winning_bid(post_id: int, db: Session = Depends(get_db)):
    _get_post(db, post_id)
    return bid_ledger.winning_bid(db, post_id)


@router.get("/bidders/{post_id}", response_model=List[BidderSummary])
def get_bidders_for_post(
    post_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Each bidder's highest bid, for the owner deciding whom to sell to"""
    post = _get_post(db, post_id)
    if post.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to view bidders")
    return [BidderSummary.model_validate(row) for row in bid_ledger.bidder_aggregates(db, post_id)]


@router.post("/sell/{post_id}", response_model=SaleResponse)
def sell_to_bidder(
    post_id: int,
    sale_data: SellToBidder,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    outcome = auction_lifecycle.sell_to_bidder(db, post_id, current_user, sale_data.bidder_id, sale_data.amount)
    return SaleResponse(
        message="Post sold successfully",
        sold_price=outcome.post.sold_price,
        winner=UserSummary.model_validate(outcome.post.sold_to),
        chat_id=outcome.sale_chat.id,
        post=PostResponse.model_validate(outcome.post),
    )


@router.post("/sell-highest/{post_id}", response_model=SaleResponse)
def sell_to_highest_bidder(
    post_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    outcome = auction_lifecycle.sell_to_highest_bidder(db, post_id, current_user)
    return SaleResponse(
        message="Post sold to highest bidder successfully",
        sold_price=outcome.post.sold_price,
        winner=UserSummary.model_validate(outcome.post.sold_to),
        chat_id=outcome.sale_chat.id,
        post=PostResponse.model_validate(outcome.post),
    )
