"""
Auction state machine

All transitions of a post (bids, sales, buy-now, expiry, cancel, reactivate)
go through ``AuctionLifecycle``. Each transition:

1. takes the post's lock from ``AuctionLockRegistry``
2. re-reads the post row with ``SELECT ... FOR UPDATE``
3. checks its guards against that fresh state and writes
4. commits, releases the lock, then publishes a ``LifecycleEvent``

A caller that loses a race (e.g. the sweeper and an owner selling at the same
time) sees the already-changed status and gets ``StateConflict("... not live")``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import math

from sqlalchemy.orm import Session

from ..core.logging import get_logger, event_log_level
from ..enums.auction import PostStatus, SaleMethod, AuctionEventType
from ..errors import ValidationFailed, NotAuthorized, StateConflict, NotFound
from ..models.bid import Bid
from ..models.chat import Chat
from ..models.post import Post
from ..models.sale_chat import SaleChat
from ..models.user import User
from ..utils.clock import utcnow, hours_from_now
from .events import EventBus, LifecycleEvent, event_bus
from .locks import AuctionLockRegistry, auction_locks

logger = get_logger(__name__)


@dataclass
class BidOutcome:
    bid: Bid
    post: Post
    previous_winner_id: Optional[int]


@dataclass
class SaleOutcome:
    post: Post
    sale_chat: SaleChat
    bid: Optional[Bid] = None


@dataclass
class AuctionOutcome:
    """Result of closing an auction past its end time"""
    post: Post
    status: PostStatus
    winning_bid: Optional[Bid] = None
    sale_chat: Optional[SaleChat] = None


class AuctionLifecycle:
    def __init__(self, bus: EventBus = event_bus, locks: AuctionLockRegistry = auction_locks):
        self._bus = bus
        self._locks = locks

    # ------------------------------------------------------------------
    # Listing management
    # ------------------------------------------------------------------

    def create_post(
        self,
        db: Session,
        owner: User,
        title: Optional[str],
        description: Optional[str],
        starting_price: Optional[float],
        auction_duration: Optional[float],
        buy_now_price: Optional[float] = None,
        images: Optional[List[str]] = None,
        video: Optional[str] = None,
    ) -> Post:
        if not images:
            raise ValidationFailed("At least one image is required")
        if not title or not description or not starting_price or not auction_duration:
            raise ValidationFailed("Title, description, starting price, and auction duration are required")
        if starting_price <= 0:
            raise ValidationFailed("Starting price must be greater than 0")
        if auction_duration <= 0:
            raise ValidationFailed("Auction duration must be greater than 0")
        if buy_now_price and buy_now_price <= starting_price:
            raise ValidationFailed("Buy now price must be higher than starting price")

        post = Post(
            user_id=owner.id,
            title=title,
            description=description,
            images=list(images),
            video=video,
            starting_price=starting_price,
            current_price=starting_price,
            buy_now_price=buy_now_price or None,
            auction_duration_hours=auction_duration,
            auction_end_time=hours_from_now(auction_duration),
            status=PostStatus.LIVE,
            created_by=owner.username,
        )
        post.chat = Chat(is_active=True, created_by=owner.username)
        try:
            db.add(post)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(post)

        self._publish(post, AuctionEventType.POST_CREATED, {"startingPrice": post.starting_price})
        return post

    def update_post(self, db: Session, post_id: int, owner: User, changes: Dict[str, Any]) -> Post:
        """Apply ``changes`` (title, description, buy_now_price, images, video) to a live post"""
        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                self._require_owner(post, owner, "update")
                if post.status != PostStatus.LIVE:
                    raise StateConflict("Cannot update post that is not live")

                if changes.get("title"):
                    post.title = changes["title"]
                if changes.get("description"):
                    post.description = changes["description"]
                if "buy_now_price" in changes:
                    buy_now_price = changes["buy_now_price"]
                    if buy_now_price and buy_now_price <= post.starting_price:
                        raise ValidationFailed("Buy now price must be higher than starting price")
                    post.buy_now_price = buy_now_price or None
                if changes.get("images"):
                    post.images = list(changes["images"])
                if changes.get("video"):
                    post.video = changes["video"]

                post.updated_by = owner.username
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(post)
        self._publish(post, AuctionEventType.POST_UPDATED)
        return post

    def delete_post(self, db: Session, post_id: int, owner: User) -> None:
        """Hard delete; only a live post without bids can be removed"""
        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                self._require_owner(post, owner, "delete")
                if post.status != PostStatus.LIVE:
                    raise StateConflict("Cannot delete post that is not live")
                if db.query(Bid).filter(Bid.post_id == post.id).count() > 0:
                    raise StateConflict("Cannot delete post that has bids")

                event = LifecycleEvent(
                    type=AuctionEventType.POST_DELETED,
                    post_id=post.id,
                    post_title=post.title,
                    owner_id=post.user_id,
                )
                db.delete(post)
                db.commit()
            except Exception:
                db.rollback()
                raise

        self._bus.publish(event)

    def cancel_post(self, db: Session, post_id: int, owner: User) -> Post:
        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                self._require_owner(post, owner, "cancel")
                if post.status != PostStatus.LIVE:
                    raise StateConflict("Cannot cancel post that is not live")

                # Chat stays as is; posting is gated on the post being live
                post.status = PostStatus.CANCELLED
                post.updated_by = owner.username
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(post)
        self._publish(post, AuctionEventType.CANCELLED, {"status": PostStatus.CANCELLED.value})
        return post

    def reactivate_post(
        self,
        db: Session,
        post_id: int,
        owner: User,
        auction_duration: Optional[float],
        now: Optional[datetime] = None,
    ) -> Post:
        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                self._require_owner(post, owner, "reactivate")
                if post.status != PostStatus.CANCELLED:
                    raise StateConflict("Can only reactivate cancelled posts")
                if not auction_duration or auction_duration <= 0:
                    raise ValidationFailed("Auction duration must be greater than 0")

                now = now or utcnow()
                post.status = PostStatus.LIVE
                post.auction_duration_hours = auction_duration
                post.auction_end_time = hours_from_now(auction_duration, now)
                post.current_price = post.starting_price
                # The new run starts without a leader; old bids stay in the history
                db.query(Bid).filter(Bid.post_id == post.id, Bid.is_winning.is_(True)).update(
                    {"is_winning": False}, synchronize_session=False
                )
                post.updated_by = owner.username
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(post)
        self._publish(
            post,
            AuctionEventType.REACTIVATED,
            {"auctionDuration": auction_duration, "auctionEndTime": post.auction_end_time.isoformat()},
        )
        return post

    # ------------------------------------------------------------------
    # Bidding
    # ------------------------------------------------------------------

    def place_bid(
        self,
        db: Session,
        post_id: int,
        bidder: User,
        amount: Optional[float],
        now: Optional[datetime] = None,
    ) -> BidOutcome:
        if amount is None or amount <= 0:
            raise ValidationFailed("Valid bid amount is required")

        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                now = now or utcnow()

                if post.status != PostStatus.LIVE:
                    raise StateConflict("This post is not available for bidding")
                if post.has_ended(now):
                    raise StateConflict("Bidding time has expired")
                if post.user_id == bidder.id:
                    raise ValidationFailed("You cannot bid on your own post")
                if amount <= post.current_price:
                    raise ValidationFailed(f"Bid must be higher than current price: ${post.current_price:.2f}")
                if amount < post.starting_price:
                    raise ValidationFailed(f"Bid must be at least ${post.starting_price:.2f}")

                bid = Bid(
                    post_id=post.id,
                    bidder_id=bidder.id,
                    amount=amount,
                    is_winning=False,
                    created_at=now,
                    created_by=bidder.username,
                )
                db.add(bid)
                db.flush()

                previous = (
                    db.query(Bid)
                    .filter(Bid.post_id == post.id, Bid.is_winning.is_(True), Bid.id != bid.id)
                    .all()
                )
                previous_winner_id = previous[0].bidder_id if previous else None
                for old in previous:
                    old.is_winning = False

                bid.is_winning = True
                post.current_price = amount
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(bid)
        logger.log(
            event_log_level(),
            f"Bid {bid.id} of ${amount:.2f} accepted on post {post_id} from user {bidder.id}",
            extra={"event": "bid_accepted", "post_id": post_id, "bid_id": bid.id, "user_id": bidder.id},
        )
        self._publish(
            post,
            AuctionEventType.NEW_BID,
            {
                "bidId": bid.id,
                "bidder": bidder.id,
                "bidderUsername": bidder.username,
                "amount": amount,
                "currentPrice": amount,
                "previousWinnerId": previous_winner_id,
            },
        )
        return BidOutcome(bid=bid, post=post, previous_winner_id=previous_winner_id)

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def sell_to_bidder(
        self,
        db: Session,
        post_id: int,
        owner: User,
        bidder_id: Optional[int],
        amount: Optional[float],
        now: Optional[datetime] = None,
    ) -> SaleOutcome:
        """Owner accepts a specific bidder's highest bid"""
        if not bidder_id or not amount:
            raise ValidationFailed("Bidder ID and amount are required")

        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                self._require_owner(post, owner, "sell")
                now = self._require_open_for_sale(post, now)

                bid = (
                    db.query(Bid)
                    .filter(Bid.post_id == post.id, Bid.bidder_id == bidder_id)
                    .order_by(Bid.amount.desc(), Bid.created_at.desc(), Bid.id.desc())
                    .first()
                )
                if not bid:
                    raise ValidationFailed("This user has not bid on this post")
                if not math.isclose(bid.amount, float(amount)):
                    raise ValidationFailed(f"Amount must match this bidder's highest bid of ${bid.amount:.2f}")

                sale_chat = self._finalize_sale(db, post, bid.bidder_id, bid.amount, SaleMethod.AUCTION, now, bid)
                db.commit()
            except Exception:
                db.rollback()
                raise

        return self._after_sale(db, post, sale_chat, bid, AuctionEventType.SOLD)

    def sell_to_highest_bidder(
        self,
        db: Session,
        post_id: int,
        owner: User,
        now: Optional[datetime] = None,
    ) -> SaleOutcome:
        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                self._require_owner(post, owner, "sell")
                now = self._require_open_for_sale(post, now)

                bid = self._winning_bid(db, post.id)
                if not bid:
                    raise StateConflict("No bids found for this post")

                sale_chat = self._finalize_sale(db, post, bid.bidder_id, bid.amount, SaleMethod.AUCTION, now, bid)
                db.commit()
            except Exception:
                db.rollback()
                raise

        return self._after_sale(db, post, sale_chat, bid, AuctionEventType.SOLD)

    def buy_now(self, db: Session, post_id: int, buyer: User, now: Optional[datetime] = None) -> SaleOutcome:
        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                if post.status != PostStatus.LIVE:
                    raise StateConflict("Auction is not live")
                if not post.buy_now_price:
                    raise StateConflict("Buy now option not available for this auction")
                if post.user_id == buyer.id:
                    raise ValidationFailed("You cannot buy your own auction")
                now = self._require_open_for_sale(post, now)

                # Existing bids are left untouched; the sold fields record the buyer
                sale_chat = self._finalize_sale(db, post, buyer.id, post.buy_now_price, SaleMethod.BUY_NOW, now)
                db.commit()
            except Exception:
                db.rollback()
                raise

        return self._after_sale(db, post, sale_chat, None, AuctionEventType.SOLD)

    def end_auction(self, db: Session, post_id: int, now: Optional[datetime] = None) -> AuctionOutcome:
        """
        Close a live auction whose end time has passed.

        Sold to the winning bid if there is one, otherwise expired. Used by the
        expiration sweeper and the out-of-band end-auction endpoint.
        """
        with self._locks.hold(post_id):
            try:
                post = self._load_for_update(db, post_id)
                if post.status != PostStatus.LIVE:
                    raise StateConflict("Auction is not live")
                now = now or utcnow()
                if now < post.auction_end_time:
                    raise StateConflict("Auction has not expired yet")

                bid = self._winning_bid(db, post.id)
                sale_chat = None
                if bid:
                    sale_chat = self._finalize_sale(db, post, bid.bidder_id, bid.amount, SaleMethod.AUCTION, now, bid)
                else:
                    post.status = PostStatus.EXPIRED
                    self._deactivate_chat(db, post)
                db.commit()
            except Exception:
                db.rollback()
                raise

        if bid:
            outcome = self._after_sale(db, post, sale_chat, bid, AuctionEventType.AUCTION_ENDED)
            return AuctionOutcome(post=outcome.post, status=PostStatus.SOLD, winning_bid=bid, sale_chat=sale_chat)

        db.refresh(post)
        logger.info(
            f"Auction {post.id} expired with no bids",
            extra={"event": "auction_expired", "post_id": post.id},
        )
        self._publish(post, AuctionEventType.AUCTION_ENDED, {"status": PostStatus.EXPIRED.value, "reason": "no-bids"})
        return AuctionOutcome(post=post, status=PostStatus.EXPIRED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_for_update(self, db: Session, post_id: int) -> Post:
        post = (
            db.query(Post)
            .filter(Post.id == post_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if not post:
            raise NotFound("Post not found")
        return post

    @staticmethod
    def _require_owner(post: Post, user: User, action: str) -> None:
        if post.user_id != user.id:
            raise NotAuthorized(f"Not authorized to {action} this post")

    @staticmethod
    def _require_open_for_sale(post: Post, now: Optional[datetime]) -> datetime:
        if post.status != PostStatus.LIVE:
            raise StateConflict("Post is not available for sale")
        now = now or utcnow()
        if post.has_ended(now):
            raise StateConflict("Auction has expired")
        return now

    @staticmethod
    def _winning_bid(db: Session, post_id: int) -> Optional[Bid]:
        return db.query(Bid).filter(Bid.post_id == post_id, Bid.is_winning.is_(True)).first()

    @staticmethod
    def _deactivate_chat(db: Session, post: Post) -> None:
        chat = db.query(Chat).filter(Chat.post_id == post.id).first()
        if chat is None:
            db.add(Chat(post_id=post.id, is_active=False, created_by="system"))
        else:
            chat.is_active = False

    def _finalize_sale(
        self,
        db: Session,
        post: Post,
        buyer_id: int,
        price: float,
        via: SaleMethod,
        now: datetime,
        bid: Optional[Bid] = None,
    ) -> SaleChat:
        post.status = PostStatus.SOLD
        post.sold_to_id = buyer_id
        post.sold_at = now
        post.sold_price = price
        post.sold_via = via

        if bid is not None:
            db.query(Bid).filter(
                Bid.post_id == post.id, Bid.is_winning.is_(True), Bid.id != bid.id
            ).update({"is_winning": False}, synchronize_session=False)
            bid.is_winning = True

        self._deactivate_chat(db, post)

        sale_chat = SaleChat(
            post_id=post.id,
            buyer_id=buyer_id,
            seller_id=post.user_id,
            sale_amount=price,
            sale_date=now,
            created_by="system",
        )
        db.add(sale_chat)
        return sale_chat

    def _after_sale(
        self,
        db: Session,
        post: Post,
        sale_chat: SaleChat,
        bid: Optional[Bid],
        event_type: AuctionEventType,
    ) -> SaleOutcome:
        db.refresh(post)
        db.refresh(sale_chat)
        buyer = db.get(User, post.sold_to_id)
        seller = db.get(User, post.user_id)

        logger.info(
            f"Auction {post.id} sold via {post.sold_via.value} to user {post.sold_to_id} for ${post.sold_price:.2f}",
            extra={"event": "auction_sold", "post_id": post.id, "sale_chat_id": sale_chat.id},
        )
        self._publish(
            post,
            event_type,
            {
                "status": PostStatus.SOLD.value,
                "soldVia": post.sold_via.value,
                "winnerId": post.sold_to_id,
                "winner": buyer.username if buyer else None,
                "seller": seller.username if seller else None,
                "amount": post.sold_price,
                "saleChatId": sale_chat.id,
            },
        )
        return SaleOutcome(post=post, sale_chat=sale_chat, bid=bid)

    def _publish(self, post: Post, event_type: AuctionEventType, data: Optional[Dict[str, Any]] = None) -> None:
        self._bus.publish(
            LifecycleEvent(
                type=event_type,
                post_id=post.id,
                post_title=post.title,
                owner_id=post.user_id,
                data=data or {},
            )
        )


auction_lifecycle = AuctionLifecycle()
