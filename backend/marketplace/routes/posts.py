"""
Auction post routes: listing management, buy-now and lifecycle controls
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional

from ..database import get_db
from ..models.post import Post
from ..models.user import User
from ..enums.auction import PostStatus
from ..auth.dependencies import get_current_active_user
from ..services.auction_lifecycle import auction_lifecycle
from ..schemas.common import MessageResponse, UserSummary
from ..schemas.post import (
    PostCreate,
    PostUpdate,
    PostReactivate,
    PostResponse,
    AuctionDetailResponse,
    PostActionResponse,
    SaleResponse,
    EndAuctionResponse,
)
from ..utils.clock import utcnow

router = APIRouter()


def _post_query(db: Session):
    return db.query(Post).options(joinedload(Post.owner), joinedload(Post.sold_to))


@router.post("/add/post", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
def create_post(
    post_data: PostCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    """Create a live auction; its chat room opens with it"""
    return auction_lifecycle.create_post(db, current_user, **post_data.model_dump())


@router.get("/get/post", response_model=List[PostResponse])
def get_posts(
    user_id: Optional[int] = Query(None, alias="userId"),
    exclude_user_id: Optional[int] = Query(None, alias="excludeUserId"),
    status_filter: Optional[PostStatus] = Query(None, alias="status"),
    live_only: bool = Query(False, alias="liveOnly"),
    db: Session = Depends(get_db)
):
    """List posts, newest first"""
    query = _post_query(db)

    if user_id is not None:
        query = query.filter(Post.user_id == user_id)
    if exclude_user_id is not None:
        query = query.filter(Post.user_id != exclude_user_id)
    if status_filter:
        query = query.filter(Post.status == status_filter)
    if live_only:
        query = query.filter(Post.status == PostStatus.LIVE, Post.auction_end_time > utcnow())

    return query.order_by(Post.created_at.desc(), Post.id.desc()).all()


@router.get("/live-auctions", response_model=List[PostResponse])
def get_live_auctions(db: Session = Depends(get_db)):
    """Live auctions that haven't ended, ending soonest first"""
    return (
        _post_query(db)
        .filter(Post.status == PostStatus.LIVE, Post.auction_end_time > utcnow())
        .order_by(Post.auction_end_time.asc())
        .all()
    )


@router.get("/auction/{post_id}", response_model=AuctionDetailResponse)
def get_auction_details(post_id: int, db: Session = Depends(get_db)):
    """
    Auction details with time remaining.

    Read-only: a live post past its end time is reported with ``isExpired``
    and left for the sweeper (or ``end-auction``) to close.
    """
    post = _post_query(db).filter(Post.id == post_id).first()
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    remaining_ms = int((post.auction_end_time - utcnow()).total_seconds() * 1000)
    is_live = post.status == PostStatus.LIVE and remaining_ms > 0

    return AuctionDetailResponse(
        **PostResponse.model_validate(post).model_dump(),
        time_remaining=remaining_ms if is_live else 0,
        is_live=is_live,
        is_expired=post.status == PostStatus.LIVE and remaining_ms <= 0,
    )


@router.put("/update/post/{post_id}", response_model=PostResponse)
def update_post(
    post_id: int,
    post_data: PostUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return auction_lifecycle.update_post(db, post_id, current_user, post_data.model_dump(exclude_unset=True))


@router.delete("/delete/post/{post_id}", response_model=MessageResponse)
def delete_post(
    post_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    auction_lifecycle.delete_post(db, post_id, current_user)
    return {"message": "Post deleted successfully"}


@router.post("/buy-now/{post_id}", response_model=SaleResponse)
def buy_now(
    post_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    outcome = auction_lifecycle.buy_now(db, post_id, current_user)
    return SaleResponse(
        message="Purchase successful",
        sold_price=outcome.post.sold_price,
        winner=UserSummary.model_validate(current_user),
        chat_id=outcome.sale_chat.id,
        post=PostResponse.model_validate(outcome.post),
    )


@router.post("/end-auction/{post_id}", response_model=EndAuctionResponse)
def end_auction(post_id: int, db: Session = Depends(get_db)):
    """Close an auction past its end time; the same transition the sweeper applies"""
    outcome = auction_lifecycle.end_auction(db, post_id)
    post = PostResponse.model_validate(outcome.post)

    if outcome.status == PostStatus.EXPIRED:
        return EndAuctionResponse(message="Auction expired with no bids", status=PostStatus.EXPIRED, post=post)

    return EndAuctionResponse(
        message="Auction ended successfully",
        status=PostStatus.SOLD,
        sold_price=outcome.post.sold_price,
        winner=UserSummary.model_validate(outcome.post.sold_to),
        chat_id=outcome.sale_chat.id,
        post=post,
    )


@router.patch("/cancel/post/{post_id}", response_model=PostActionResponse)
def cancel_post(
    post_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    post = auction_lifecycle.cancel_post(db, post_id, current_user)
    return PostActionResponse(message="Post cancelled successfully", post=PostResponse.model_validate(post))


@router.patch("/reactivate/post/{post_id}", response_model=PostActionResponse)
def reactivate_post(
    post_id: int,
    reactivate_data: PostReactivate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    post = auction_lifecycle.reactivate_post(db, post_id, current_user, reactivate_data.auction_duration)
    return PostActionResponse(message="Post reactivated successfully", post=PostResponse.model_validate(post))
