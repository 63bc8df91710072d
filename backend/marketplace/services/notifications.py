"""
Notification records for auction lifecycle events

``NotificationEventSubscriber`` turns lifecycle events into notification rows
in its own session, after the transition has been committed. Delivery is best
effort: a failure here is logged and the sale/bid stands.
"""

from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..core.logging import get_logger
from ..enums.auction import AuctionEventType, SaleMethod
from ..errors import NotFound
from ..models.notification import Notification, NotificationType
from ..utils.clock import utcnow
from .events import LifecycleEvent

logger = get_logger(__name__)


def create_notification(
    db: Session,
    user_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    related_post_id: int = None,
    related_user_id: int = None,
    related_sale_chat_id: int = None,
    amount: float = None,
    commit: bool = True,
) -> Notification:
    """Create a notification in the database"""
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        related_post_id=related_post_id,
        related_user_id=related_user_id,
        related_sale_chat_id=related_sale_chat_id,
        amount=amount,
        created_by="system",
    )
    db.add(notification)
    if commit:
        db.commit()
        db.refresh(notification)
    return notification


def _unread(db: Session, user_id: int):
    return db.query(Notification).filter(Notification.user_id == user_id, Notification.is_read.is_(False))


def list_notifications(db: Session, user_id: int, skip: int = 0, limit: int = 50, unread_only: bool = False) -> List[Notification]:
    query = _unread(db, user_id) if unread_only else db.query(Notification).filter(Notification.user_id == user_id)
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(skip).limit(limit).all()


def unread_count(db: Session, user_id: int) -> int:
    return _unread(db, user_id).count()


def get_user_notification(db: Session, notification_id: int, user_id: int) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise NotFound("Notification not found")
    return notification


def mark_read(db: Session, notification_id: int, user_id: int) -> Notification:
    notification = get_user_notification(db, notification_id, user_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: int, sale_chat_id: Optional[int] = None) -> int:
    """Mark unread notifications read, optionally only those about one sale chat"""
    query = _unread(db, user_id)
    if sale_chat_id is not None:
        query = query.filter(Notification.related_sale_chat_id == sale_chat_id)
    updated = query.update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
    db.commit()
    return updated


def delete_notification(db: Session, notification_id: int, user_id: int) -> None:
    db.delete(get_user_notification(db, notification_id, user_id))
    db.commit()


class NotificationEventSubscriber:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def __call__(self, event: LifecycleEvent) -> None:
        drafts = self.build(event)
        if not drafts:
            return

        with self._session_factory() as db:
            try:
                for draft in drafts:
                    db.add(draft)
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error(
                    f"Failed to store {len(drafts)} notification(s) for {event.type.value} on post {event.post_id}: {e}",
                    exc_info=True,
                    extra={"event": "notification_failed", "post_id": event.post_id},
                )

    def build(self, event: LifecycleEvent) -> List[Notification]:
        """Notification rows (not yet added to a session) for ``event``"""
        title = event.post_title
        data = event.data
        post_id = event.post_id
        drafts: List[Notification] = []

        def draft(user_id: int, kind: NotificationType, message: str, **refs) -> None:
            drafts.append(
                Notification(
                    user_id=user_id,
                    type=kind,
                    title=title,
                    message=message,
                    related_post_id=refs.get("post_id", post_id),
                    related_user_id=refs.get("user_id"),
                    related_sale_chat_id=refs.get("sale_chat_id"),
                    amount=refs.get("amount"),
                    created_by="system",
                )
            )

        if event.type == AuctionEventType.POST_CREATED:
            draft(event.owner_id, NotificationType.SYSTEM,
                  f"Auction post '{title}' created with starting price ${data.get('startingPrice', 0):.2f}")

        elif event.type == AuctionEventType.POST_UPDATED:
            draft(event.owner_id, NotificationType.SYSTEM, f"Auction post '{title}' updated")

        elif event.type == AuctionEventType.POST_DELETED:
            # The post row is gone, so no post reference
            draft(event.owner_id, NotificationType.SYSTEM, f"Auction post '{title}' deleted", post_id=None)

        elif event.type == AuctionEventType.CANCELLED:
            draft(event.owner_id, NotificationType.SYSTEM, f"Auction post '{title}' cancelled")

        elif event.type == AuctionEventType.REACTIVATED:
            draft(event.owner_id, NotificationType.SYSTEM,
                  f"Auction post '{title}' reactivated with {data.get('auctionDuration'):g} hours duration")

        elif event.type == AuctionEventType.NEW_BID:
            amount = data["amount"]
            previous_winner_id: Optional[int] = data.get("previousWinnerId")
            if previous_winner_id and previous_winner_id != data.get("bidder"):
                draft(previous_winner_id, NotificationType.OUTBID,
                      f"You've been outbid on \"{title}\" by ${amount:.2f}", amount=amount)
            draft(event.owner_id, NotificationType.BID,
                  f"New bid of ${amount:.2f} placed on \"{title}\"",
                  user_id=data.get("bidder"), amount=amount)

        elif event.type in (AuctionEventType.SOLD, AuctionEventType.AUCTION_ENDED):
            if data.get("status") == "expired":
                draft(event.owner_id, NotificationType.SYSTEM, f"Your auction \"{title}\" has expired with no bids")
            else:
                self._sale_drafts(event, draft)

        return drafts

    @staticmethod
    def _sale_drafts(event: LifecycleEvent, draft) -> None:
        data = event.data
        title = event.post_title
        amount = data["amount"]
        buyer_id = data["winnerId"]
        refs = {"amount": amount, "sale_chat_id": data.get("saleChatId")}

        if data.get("soldVia") == SaleMethod.BUY_NOW.value:
            draft(event.owner_id, NotificationType.SALE,
                  f"Your auction \"{title}\" was sold via Buy Now to {data.get('winner')} for ${amount:.2f}",
                  user_id=buyer_id, **refs)
            draft(buyer_id, NotificationType.SALE,
                  f"You successfully purchased \"{title}\" via Buy Now from {data.get('seller')} for ${amount:.2f}",
                  user_id=event.owner_id, **refs)
        elif event.type == AuctionEventType.AUCTION_ENDED:
            draft(buyer_id, NotificationType.SALE,
                  f"CONGRATULATIONS! You won the auction for \"{title}\" at ${amount:.2f}! "
                  f"The auction has ended. Seller: {data.get('seller')}",
                  user_id=event.owner_id, **refs)
            draft(event.owner_id, NotificationType.SALE,
                  f"Your auction \"{title}\" has ended and sold to {data.get('winner')} for ${amount:.2f}",
                  user_id=buyer_id, **refs)
        else:
            draft(buyer_id, NotificationType.SALE,
                  f"Congratulations! You won the auction for \"{title}\" at ${amount:.2f}. "
                  f"Chat with the seller about delivery details.",
                  user_id=event.owner_id, **refs)
            draft(event.owner_id, NotificationType.SALE,
                  f"You sold \"{title}\" to {data.get('winner')} for ${amount:.2f}. "
                  f"Chat with the buyer about delivery details.",
                  user_id=buyer_id, **refs)
