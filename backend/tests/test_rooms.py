import anyio
import pytest

from marketplace.enums.auction import AuctionEventType
from marketplace.errors import NotAuthorized, StateConflict
from marketplace.realtime.connection import WebSocketConnection
from marketplace.realtime.rooms import RoomManager, RealtimeEventSubscriber
from marketplace.services.events import LifecycleEvent
from marketplace.utils.clock import utcnow

pytestmark = pytest.mark.anyio

TYPING_TIMEOUT = 0.1


class FakeConnection(WebSocketConnection):
    def __init__(self, user_id, username):
        super().__init__(None, user_id, username)
        self.frames = []

    async def send(self, event, data):
        self.frames.append((event, data))

    def events(self, name):
        return [data for event, data in self.frames if event == name]


class FakeChatStore:
    def __init__(self):
        self.closed_posts = set()
        self.sale_members = {}
        self.saved = []

    def check_auction_chat(self, post_id):
        if post_id in self.closed_posts:
            raise StateConflict("Chat is disabled. Auction status: sold")

    def save_auction_message(self, post_id, user_id, message, username=None):
        self.check_auction_chat(post_id)
        self.saved.append((post_id, user_id, message))
        return {"id": len(self.saved), "message": message.strip(), "timestamp": utcnow()}

    def check_sale_chat_member(self, chat_id, user_id):
        if user_id not in self.sale_members.get(chat_id, ()):
            raise NotAuthorized("Not authorized to join this sale chat")

    def save_sale_message(self, chat_id, user_id, message, username=None):
        self.check_sale_chat_member(chat_id, user_id)
        return {"id": 1, "message": message, "timestamp": utcnow()}


@pytest.fixture
def store():
    return FakeChatStore()


@pytest.fixture
async def rooms(store):
    manager = RoomManager(store, typing_timeout=TYPING_TIMEOUT)
    manager.start()
    yield manager
    await manager.shutdown()


@pytest.fixture
def alice_conn():
    return FakeConnection(1, "alice")


@pytest.fixture
def bob_conn():
    return FakeConnection(2, "bob")


def typing_flags(conn):
    return [data["isTyping"] for data in conn.events("user-typing")]


def lifecycle_event(event_type, post_id=10, **data):
    return LifecycleEvent(type=event_type, post_id=post_id, post_title="Camera", owner_id=99, data=data)


async def test_join_announces_newcomer_and_lists_participants(rooms, alice_conn, bob_conn):
    await rooms.join_auction(alice_conn, 10)
    await rooms.join_auction(bob_conn, 10)

    assert [d["userId"] for d in alice_conn.events("user-joined")] == [2]
    assert bob_conn.events("user-joined") == []
    participants, = bob_conn.events("room-participants")
    assert participants["participants"] == [1, 2]
    assert participants["typingUsers"] == []


async def test_join_of_closed_auction_is_refused(rooms, store, alice_conn):
    store.closed_posts.add(10)

    await rooms.dispatch_frame(alice_conn, {"type": "join-auction", "data": {"postId": 10}})

    assert alice_conn.events("error") == [{"message": "Chat is disabled. Auction status: sold"}]
    assert rooms.members(10) == []


async def test_missing_post_id_is_an_error(rooms, alice_conn):
    await rooms.dispatch_frame(alice_conn, {"type": "join-auction", "data": {}})

    assert alice_conn.events("error") == [{"message": "Post ID is required"}]


async def test_unknown_event_is_an_error(rooms, alice_conn):
    await rooms.dispatch_frame(alice_conn, {"type": "self-destruct", "data": {}})

    assert alice_conn.events("error") == [{"message": "Unsupported event: self-destruct"}]


async def test_typing_expires_with_exactly_one_stop(rooms, alice_conn, bob_conn):
    await rooms.join_auction(alice_conn, 10)
    await rooms.join_auction(bob_conn, 10)

    await rooms.typing_start(alice_conn, 10)
    assert rooms.typing_users(10) == [1]
    await anyio.sleep(TYPING_TIMEOUT * 4)

    assert typing_flags(bob_conn) == [True, False]
    assert rooms.typing_users(10) == []

    await rooms.typing_stop(alice_conn, 10)
    assert typing_flags(bob_conn) == [True, False]


async def test_repeated_typing_start_rearms_a_single_timer(rooms, alice_conn, bob_conn):
    await rooms.join_auction(alice_conn, 10)
    await rooms.join_auction(bob_conn, 10)

    await rooms.typing_start(alice_conn, 10)
    await anyio.sleep(TYPING_TIMEOUT / 2)
    await rooms.typing_start(alice_conn, 10)
    await anyio.sleep(TYPING_TIMEOUT * 4)

    assert typing_flags(bob_conn).count(False) == 1


async def test_sending_stops_typing_immediately(rooms, alice_conn, bob_conn):
    await rooms.join_auction(alice_conn, 10)
    await rooms.join_auction(bob_conn, 10)
    await rooms.typing_start(alice_conn, 10)

    await rooms.send_message(alice_conn, 10, "Is it still available?")

    received = [event for event, _ in bob_conn.frames if event in ("user-typing", "new-message")]
    assert received == ["user-typing", "user-typing", "new-message"]
    assert typing_flags(bob_conn) == [True, False]
    message, = bob_conn.events("new-message")
    assert message["user"]["username"] == "alice"
    assert message["message"] == "Is it still available?"
    # The sender gets their own message back
    assert len(alice_conn.events("new-message")) == 1

    await anyio.sleep(TYPING_TIMEOUT * 3)
    assert typing_flags(bob_conn) == [True, False]


async def test_disconnect_leaves_every_room_once(rooms, alice_conn, bob_conn):
    for post_id in (10, 11):
        await rooms.join_auction(bob_conn, post_id)
        await rooms.join_auction(alice_conn, post_id)
    rooms.connect(alice_conn)

    await rooms.disconnect(alice_conn)

    departures = bob_conn.events("user-left")
    assert sorted(d["postId"] for d in departures) == [10, 11]
    assert rooms.members(10) == rooms.members(11) == [2]
    assert rooms.connection_count == 0


async def test_disconnect_clears_typing(rooms, alice_conn, bob_conn):
    await rooms.join_auction(alice_conn, 10)
    await rooms.join_auction(bob_conn, 10)
    await rooms.typing_start(alice_conn, 10)

    await rooms.disconnect(alice_conn)
    await anyio.sleep(TYPING_TIMEOUT * 3)

    assert typing_flags(bob_conn) == [True, False]
    assert rooms.typing_users(10) == []


async def test_sale_closes_room(rooms, alice_conn, bob_conn):
    await rooms.join_auction(alice_conn, 10)
    await rooms.join_auction(bob_conn, 10)
    await rooms.typing_start(bob_conn, 10)

    await rooms.handle_lifecycle_event(lifecycle_event(AuctionEventType.SOLD, status="sold"))

    event, = alice_conn.events("auction-event")
    assert event["type"] == "sold"
    assert alice_conn.events("chat-disabled")[0]["message"] == "Chat has been disabled for this auction"
    assert rooms.members(10) == []
    assert rooms.typing_users(10) == []

    await rooms.dispatch_frame(alice_conn, {"type": "join-auction", "data": {"postId": 10}})
    assert alice_conn.events("error") == [{"message": "Chat has been disabled for this auction"}]


async def test_auction_end_sends_system_message(rooms, alice_conn):
    await rooms.join_auction(alice_conn, 10)

    await rooms.handle_lifecycle_event(lifecycle_event(AuctionEventType.AUCTION_ENDED, status="expired"))

    assert alice_conn.events("system-message")[0]["message"] == "Auction has ended. Chat is now disabled."
    assert alice_conn.events("chat-disabled") == []
    assert rooms.members(10) == []


async def test_new_bid_keeps_room_open(rooms, alice_conn):
    await rooms.join_auction(alice_conn, 10)

    await rooms.handle_lifecycle_event(lifecycle_event(AuctionEventType.NEW_BID, amount=30))

    assert alice_conn.events("auction-event")[0]["data"] == {"amount": 30}
    assert rooms.members(10) == [1]


async def test_subscriber_hands_events_over_from_worker_threads(rooms, alice_conn):
    await rooms.join_auction(alice_conn, 10)
    subscriber = RealtimeEventSubscriber(rooms)

    await anyio.to_thread.run_sync(subscriber, lifecycle_event(AuctionEventType.CANCELLED, status="cancelled"))
    for _ in range(50):
        if alice_conn.events("auction-event"):
            break
        await anyio.sleep(0.01)

    assert alice_conn.events("auction-event")[0]["type"] == "cancelled"
    assert rooms.members(10) == [1]


async def test_sale_chat_room_is_limited_to_participants(rooms, store, alice_conn, bob_conn):
    store.sale_members[5] = {1, 2}
    outsider = FakeConnection(3, "carol")

    await rooms.join_sale_chat(alice_conn, 5)
    await rooms.join_sale_chat(bob_conn, 5)
    await rooms.dispatch_frame(outsider, {"type": "join-sale-chat", "data": {"chatId": 5}})
    await rooms.send_sale_message(bob_conn, 5, "Meet at the library?")

    assert outsider.events("error") == [{"message": "Not authorized to join this sale chat"}]
    assert [d["userId"] for d in alice_conn.events("user-joined-sale-chat")] == [2]
    assert alice_conn.events("new-sale-message")[0]["chatId"] == 5
    assert rooms.sale_chat_members(5) == [1, 2]

    await rooms.leave_sale_chat(bob_conn, 5)
    assert [d["userId"] for d in alice_conn.events("user-left-sale-chat")] == [2]


async def test_every_tab_of_a_user_gets_room_messages(rooms, bob_conn):
    first_tab = FakeConnection(1, "alice")
    second_tab = FakeConnection(1, "alice")
    await rooms.join_auction(bob_conn, 10)
    await rooms.join_auction(first_tab, 10)
    await rooms.join_auction(second_tab, 10)

    assert len(bob_conn.events("user-joined")) == 1
    assert second_tab.events("room-participants")[0]["participants"] == [2, 1]

    await rooms.send_message(bob_conn, 10, "hello")
    assert len(first_tab.events("new-message")) == len(second_tab.events("new-message")) == 1

    await rooms.disconnect(second_tab)
    await rooms.send_message(bob_conn, 10, "again")

    assert len(first_tab.events("new-message")) == 2
    assert bob_conn.events("user-left") == []
    assert rooms.members(10) == [2, 1]

    await rooms.disconnect(first_tab)
    assert [d["userId"] for d in bob_conn.events("user-left")] == [1]
    assert rooms.members(10) == [2]


async def test_sale_chat_tabs_leave_independently(rooms, store, bob_conn):
    store.sale_members[5] = {1, 2}
    first_tab = FakeConnection(1, "alice")
    second_tab = FakeConnection(1, "alice")
    await rooms.join_sale_chat(bob_conn, 5)
    await rooms.join_sale_chat(first_tab, 5)
    await rooms.join_sale_chat(second_tab, 5)

    await rooms.leave_sale_chat(second_tab, 5)
    await rooms.send_sale_message(bob_conn, 5, "Still there?")

    assert len(first_tab.events("new-sale-message")) == 1
    assert second_tab.events("new-sale-message") == []
    assert bob_conn.events("user-left-sale-chat") == []
    assert len(bob_conn.events("user-joined-sale-chat")) == 1


async def test_deleted_post_id_can_be_joined_again(rooms, alice_conn):
    await rooms.join_auction(alice_conn, 10)

    await rooms.handle_lifecycle_event(lifecycle_event(AuctionEventType.POST_DELETED))
    assert rooms.members(10) == []

    # A new post may be stored under the same id
    await rooms.handle_lifecycle_event(lifecycle_event(AuctionEventType.POST_CREATED))
    await rooms.dispatch_frame(alice_conn, {"type": "join-auction", "data": {"postId": 10}})

    assert alice_conn.events("error") == []
    assert len(alice_conn.events("room-participants")) == 2
    assert rooms.members(10) == [1]


async def test_closed_room_cache_is_bounded(store):
    manager = RoomManager(store, typing_timeout=TYPING_TIMEOUT, closed_room_cache_size=2)

    for post_id in (1, 2, 3):
        await manager.handle_lifecycle_event(lifecycle_event(AuctionEventType.SOLD, post_id=post_id, status="sold"))

    assert [manager.is_closed(post_id) for post_id in (1, 2, 3)] == [False, True, True]

    await manager.handle_lifecycle_event(lifecycle_event(AuctionEventType.POST_CREATED, post_id=3))
    assert not manager.is_closed(3)


async def test_refused_message_still_stops_typing(rooms, store, alice_conn, bob_conn):
    await rooms.join_auction(alice_conn, 10)
    await rooms.join_auction(bob_conn, 10)
    await rooms.typing_start(alice_conn, 10)
    store.closed_posts.add(10)

    await rooms.dispatch_frame(alice_conn, {"type": "send-message", "data": {"postId": 10, "message": "too late"}})

    assert alice_conn.events("error") == [{"message": "Chat is disabled. Auction status: sold"}]
    assert typing_flags(bob_conn) == [True, False]
    assert rooms.typing_users(10) == []
    assert bob_conn.events("new-message") == []
