import pytest

from marketplace.database import SessionLocal
from marketplace.enums.auction import AuctionEventType
from marketplace.errors import NotFound
from marketplace.models.notification import Notification, NotificationType
from marketplace.models.post import Post
from marketplace.services import chat_service
from marketplace.services import notifications as inbox
from marketplace.services.auction_lifecycle import auction_lifecycle
from marketplace.services.events import LifecycleEvent, event_bus
from marketplace.services.notifications import NotificationEventSubscriber, create_notification


def notifications_for(db, user):
    db.expire_all()
    return (
        db.query(Notification)
        .filter(Notification.user_id == user.id)
        .order_by(Notification.id)
        .all()
    )


def test_new_bid_notifies_previous_winner_and_owner(db, make_post, seller, alice, bob):
    post = make_post(starting_price=10)
    auction_lifecycle.place_bid(db, post.id, alice, 20)
    event_bus.subscribe(NotificationEventSubscriber(SessionLocal))

    auction_lifecycle.place_bid(db, post.id, bob, 30)

    outbid = notifications_for(db, alice)
    assert [n.type for n in outbid] == [NotificationType.OUTBID]
    assert outbid[0].message == 'You\'ve been outbid on "Vintage camera" by $30.00'
    assert outbid[0].amount == 30

    owner_notices = notifications_for(db, seller)
    assert [n.type for n in owner_notices] == [NotificationType.BID]
    assert owner_notices[0].related_user_id == bob.id
    assert owner_notices[0].related_post_id == post.id


def test_rebid_by_current_winner_is_not_an_outbid(db, make_post, alice):
    post = make_post(starting_price=10)
    auction_lifecycle.place_bid(db, post.id, alice, 20)
    event_bus.subscribe(NotificationEventSubscriber(SessionLocal))

    auction_lifecycle.place_bid(db, post.id, alice, 25)

    assert notifications_for(db, alice) == []


def test_buy_now_notifies_both_parties(db, make_post, seller, bob):
    post = make_post(starting_price=10, buy_now_price=50)
    event_bus.subscribe(NotificationEventSubscriber(SessionLocal))

    outcome = auction_lifecycle.buy_now(db, post.id, bob)

    buyer_notice, = notifications_for(db, bob)
    seller_notice, = notifications_for(db, seller)
    assert buyer_notice.type == seller_notice.type == NotificationType.SALE
    assert "via Buy Now from seller for $50.00" in buyer_notice.message
    assert "sold via Buy Now to bob for $50.00" in seller_notice.message
    assert buyer_notice.related_sale_chat_id == outcome.sale_chat.id


def test_expiry_without_bids_notifies_owner(db, expired_post, seller):
    event_bus.subscribe(NotificationEventSubscriber(SessionLocal))

    auction_lifecycle.end_auction(db, expired_post.id)

    notice, = notifications_for(db, seller)
    assert notice.message == 'Your auction "Vintage camera" has expired with no bids'


def test_deleted_post_notice_has_no_post_reference():
    event = LifecycleEvent(
        type=AuctionEventType.POST_DELETED,
        post_id=7,
        post_title="Lamp",
        owner_id=3,
    )

    draft, = NotificationEventSubscriber(SessionLocal).build(event)

    assert draft.user_id == 3
    assert draft.related_post_id is None
    assert draft.message == "Auction post 'Lamp' deleted"


def test_failing_consumer_does_not_undo_the_sale(db, make_post, bob):
    post = make_post(starting_price=10, buy_now_price=50)

    def broken_consumer(event):
        raise RuntimeError("mail server down")

    event_bus.subscribe(broken_consumer)
    event_bus.subscribe(NotificationEventSubscriber(SessionLocal))

    auction_lifecycle.buy_now(db, post.id, bob)

    db.expire_all()
    assert db.get(Post, post.id).sold_to_id == bob.id
    assert len(notifications_for(db, bob)) == 1


def test_inbox_marks_one_sale_chat_read(db, make_post, seller, bob):
    post = make_post(starting_price=10, buy_now_price=50)
    event_bus.subscribe(NotificationEventSubscriber(SessionLocal))
    sale_chat = auction_lifecycle.buy_now(db, post.id, bob).sale_chat
    chat_service.post_sale_message(db, sale_chat.id, bob.id, "Is Friday fine?")
    create_notification(db, seller.id, NotificationType.SYSTEM, "Other", "Unrelated notice")

    assert inbox.unread_count(db, seller.id) == 3
    assert inbox.mark_all_read(db, seller.id, sale_chat_id=sale_chat.id) == 2

    unread = inbox.list_notifications(db, seller.id, unread_only=True)
    assert [n.message for n in unread] == ["Unrelated notice"]


def test_inbox_hides_other_users_notifications(db, seller, bob):
    notice = create_notification(db, seller.id, NotificationType.SYSTEM, "Hello", "For the seller only")

    with pytest.raises(NotFound, match="Notification not found"):
        inbox.mark_read(db, notice.id, bob.id)

    assert inbox.mark_read(db, notice.id, seller.id).read_at is not None
    inbox.delete_notification(db, notice.id, seller.id)
    assert inbox.list_notifications(db, seller.id) == []
