"""
Realtime auction chat rooms, sale chat rooms, presence and typing indicators

``RoomManager`` owns all presence and typing state. Every method that touches
that state is a coroutine running on the application's event loop, so the
maps are only ever mutated from one thread. Synchronous code (request
handlers, the expiration sweeper) hands work to the loop through ``submit``.

A user may be in a room from several sockets (browser tabs). Broadcasts reach
every socket; ``user-joined``/``user-left`` are sent when the user's first
socket arrives and when the last one leaves.

Database checks and writes go through ``ChatStore`` in a worker thread.
"""

from collections import OrderedDict
from concurrent.futures import Future
from typing import Any, Coroutine, Dict, List, Optional, Set
import asyncio

from fastapi.concurrency import run_in_threadpool

from ..config import settings
from ..core.logging import get_logger, event_log_level
from ..enums.auction import AuctionEventType
from ..errors import MarketplaceError, ValidationFailed, StateConflict
from ..services.chat_service import ChatStore
from ..services.events import LifecycleEvent
from ..utils.clock import utcnow
from .connection import WebSocketConnection

logger = get_logger(__name__)

# user id -> that user's sockets in the room
Members = Dict[int, Set[WebSocketConnection]]

AUCTION_ENDED_MESSAGE = "Auction has ended. Chat is now disabled."
CHAT_DISABLED_MESSAGE = "Chat has been disabled for this auction"

# client event -> (handler, id field, missing id message, takes a message body)
_CLIENT_EVENTS = {
    "join-auction": ("join_auction", "postId", "Post ID is required", False),
    "leave-auction": ("leave_auction", "postId", "Post ID is required", False),
    "send-message": ("send_message", "postId", "Post ID and message are required", True),
    "typing-start": ("typing_start", "postId", "Post ID is required", False),
    "typing-stop": ("typing_stop", "postId", "Post ID is required", False),
    "get-typing-users": ("send_typing_users", "postId", "Post ID is required", False),
    "join-sale-chat": ("join_sale_chat", "chatId", "Chat ID is required", False),
    "leave-sale-chat": ("leave_sale_chat", "chatId", "Chat ID is required", False),
    "send-sale-message": ("send_sale_message", "chatId", "Chat ID and message are required", True),
}


def _require_id(data: Dict[str, Any], key: str, message: str) -> int:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        raise ValidationFailed(message)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(message)


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(f"Realtime update failed: {exc}", exc_info=exc, extra={"event": "realtime_update_failed"})


def _is_member(rooms: Dict[int, Members], room_id: int, conn: WebSocketConnection) -> bool:
    return conn in rooms.get(room_id, {}).get(conn.user_id, ())


def _add_member(rooms: Dict[int, Members], room_id: int, conn: WebSocketConnection) -> bool:
    """Add ``conn`` to the room; True if it is the user's first socket there"""
    sockets = rooms.setdefault(room_id, {}).setdefault(conn.user_id, set())
    first = not sockets
    sockets.add(conn)
    return first


def _remove_member(rooms: Dict[int, Members], room_id: int, conn: WebSocketConnection) -> bool:
    """Remove ``conn`` from the room; True if it was the user's last socket there"""
    members = rooms[room_id]
    sockets = members[conn.user_id]
    sockets.discard(conn)
    if sockets:
        return False
    del members[conn.user_id]
    if not members:
        del rooms[room_id]
    return True


class RoomManager:
    def __init__(
        self,
        chat_store: ChatStore,
        typing_timeout: Optional[float] = None,
        closed_room_cache_size: Optional[int] = None,
    ):
        self._store = chat_store
        self._typing_timeout = settings.typing_timeout_seconds if typing_timeout is None else typing_timeout
        self._closed_cache_size = (
            settings.closed_room_cache_size if closed_room_cache_size is None else closed_room_cache_size
        )
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._connections: Set[WebSocketConnection] = set()
        # post id -> user id -> sockets
        self._auction_rooms: Dict[int, Members] = {}
        # sale chat id -> user id -> sockets
        self._sale_rooms: Dict[int, Members] = {}
        # post id -> user id -> pending stop-typing task
        self._typing: Dict[int, Dict[int, asyncio.Task]] = {}
        # Recently sold or ended posts, oldest first. Joins are refused without a
        # database round trip, including joins whose check raced the close.
        self._closed_auctions: "OrderedDict[int, None]" = OrderedDict()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Bind to the running event loop; call from inside the loop"""
        self._loop = asyncio.get_running_loop()

    async def shutdown(self) -> None:
        for room_typing in self._typing.values():
            for task in room_typing.values():
                task.cancel()
        self._typing.clear()
        self._auction_rooms.clear()
        self._sale_rooms.clear()
        self._closed_auctions.clear()
        self._connections.clear()
        self._loop = None

    def submit(self, coro: Coroutine) -> Optional[Future]:
        """Schedule ``coro`` on the manager's loop from any thread"""
        loop = self._loop
        if loop is None or loop.is_closed():
            coro.close()
            logger.debug("Room manager is not running; dropping realtime update")
            return None
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        future.add_done_callback(_log_failure)
        return future

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connect(self, conn: WebSocketConnection) -> None:
        self._connections.add(conn)
        logger.log(
            event_log_level(),
            f"User connected: {conn.username} ({conn.user_id})",
            extra={"event": "ws_connected", "user_id": conn.user_id},
        )

    async def disconnect(self, conn: WebSocketConnection) -> None:
        """Take this socket out of every auction and sale chat room it joined"""
        self._connections.discard(conn)

        auction_ids = [post_id for post_id in self._auction_rooms if _is_member(self._auction_rooms, post_id, conn)]
        for post_id in auction_ids:
            await self.leave_auction(conn, post_id)

        sale_ids = [chat_id for chat_id in self._sale_rooms if _is_member(self._sale_rooms, chat_id, conn)]
        for chat_id in sale_ids:
            await self.leave_sale_chat(conn, chat_id)

        logger.log(
            event_log_level(),
            f"User disconnected: {conn.username} ({conn.user_id}), left {len(auction_ids)} auction "
            f"and {len(sale_ids)} sale chat room(s)",
            extra={"event": "ws_disconnected", "user_id": conn.user_id},
        )

    # ------------------------------------------------------------------
    # Client frames
    # ------------------------------------------------------------------

    async def dispatch_frame(self, conn: WebSocketConnection, frame: Any) -> None:
        """Route one ``{"type", "data"}`` frame; failures go back as ``error`` frames"""
        if not isinstance(frame, dict):
            await conn.send("error", {"message": "Invalid message format"})
            return

        event = frame.get("type")
        data = frame.get("data") or {}
        if event == "ping":
            await conn.send("pong", data)
            return

        route = _CLIENT_EVENTS.get(event)
        if route is None or not isinstance(data, dict):
            await conn.send("error", {"message": f"Unsupported event: {event}"})
            return

        method_name, id_field, missing_message, takes_message = route
        try:
            target_id = _require_id(data, id_field, missing_message)
            handler = getattr(self, method_name)
            if takes_message:
                await handler(conn, target_id, data.get("message"))
            else:
                await handler(conn, target_id)
        except MarketplaceError as e:
            await conn.send("error", {"message": e.detail})
        except Exception as e:
            logger.error(
                f"Error handling {event} from user {conn.user_id}: {e}",
                exc_info=True,
                extra={"event": "ws_handler_failed", "user_id": conn.user_id},
            )
            await conn.send("error", {"message": "Failed to process request"})

    # ------------------------------------------------------------------
    # Auction rooms
    # ------------------------------------------------------------------

    async def join_auction(self, conn: WebSocketConnection, post_id: int) -> None:
        if self.is_closed(post_id):
            raise StateConflict(CHAT_DISABLED_MESSAGE)
        await run_in_threadpool(self._store.check_auction_chat, post_id)
        # The room may have closed while the check was running
        if self.is_closed(post_id):
            raise StateConflict(CHAT_DISABLED_MESSAGE)

        if _add_member(self._auction_rooms, post_id, conn):
            await self._broadcast(
                self._auction_rooms[post_id],
                "user-joined",
                {**conn.identity(), "postId": post_id, "timestamp": utcnow()},
                exclude=conn.user_id,
            )
        await conn.send(
            "room-participants",
            {"postId": post_id, "participants": self.members(post_id), "typingUsers": self.typing_users(post_id)},
        )
        logger.log(
            event_log_level(),
            f"User {conn.username} joined auction {post_id}",
            extra={"event": "room_joined", "post_id": post_id, "user_id": conn.user_id},
        )

    async def leave_auction(self, conn: WebSocketConnection, post_id: int) -> bool:
        if not _is_member(self._auction_rooms, post_id, conn):
            return False
        if not _remove_member(self._auction_rooms, post_id, conn):
            # Still in the room from another socket
            return True

        await self._stop_typing(post_id, conn.user_id, conn.username)
        await self._broadcast(
            self._auction_rooms.get(post_id, {}),
            "user-left",
            {"postId": post_id, "userId": conn.user_id, "username": conn.username, "timestamp": utcnow()},
        )
        return True

    async def send_message(self, conn: WebSocketConnection, post_id: int, message: Optional[str]) -> None:
        try:
            saved = await run_in_threadpool(
                self._store.save_auction_message, post_id, conn.user_id, message, conn.username
            )
        finally:
            await self._stop_typing(post_id, conn.user_id, conn.username)
        await self._broadcast(
            self._auction_rooms.get(post_id, {}),
            "new-message",
            {
                "id": saved["id"],
                "postId": post_id,
                "user": conn.identity(),
                "message": saved["message"],
                "timestamp": saved["timestamp"],
            },
        )

    # ------------------------------------------------------------------
    # Typing indicators
    # ------------------------------------------------------------------

    async def typing_start(self, conn: WebSocketConnection, post_id: int) -> None:
        if not _is_member(self._auction_rooms, post_id, conn):
            return

        room_typing = self._typing.setdefault(post_id, {})
        previous = room_typing.pop(conn.user_id, None)
        if previous is not None:
            previous.cancel()
        room_typing[conn.user_id] = asyncio.create_task(
            self._expire_typing(post_id, conn.user_id, conn.username)
        )

        await self._broadcast(
            self._auction_rooms[post_id],
            "user-typing",
            {**conn.identity(), "postId": post_id, "isTyping": True, "timestamp": utcnow()},
            exclude=conn.user_id,
        )

    async def typing_stop(self, conn: WebSocketConnection, post_id: int) -> None:
        await self._stop_typing(post_id, conn.user_id, conn.username)

    def typing_users(self, post_id: int) -> List[int]:
        return list(self._typing.get(post_id, {}))

    async def send_typing_users(self, conn: WebSocketConnection, post_id: int) -> None:
        await conn.send("typing-users-list", {"postId": post_id, "typingUsers": self.typing_users(post_id)})

    async def _expire_typing(self, post_id: int, user_id: int, username: str) -> None:
        await asyncio.sleep(self._typing_timeout)
        await self._stop_typing(post_id, user_id, username)

    async def _stop_typing(self, post_id: int, user_id: int, username: str) -> bool:
        room_typing = self._typing.get(post_id)
        if not room_typing or user_id not in room_typing:
            return False

        task = room_typing.pop(user_id)
        if not room_typing:
            del self._typing[post_id]
        if task is not asyncio.current_task():
            task.cancel()

        await self._broadcast(
            self._auction_rooms.get(post_id, {}),
            "user-typing",
            {"postId": post_id, "userId": user_id, "username": username, "isTyping": False, "timestamp": utcnow()},
        )
        return True

    # ------------------------------------------------------------------
    # Sale chat rooms
    # ------------------------------------------------------------------

    async def join_sale_chat(self, conn: WebSocketConnection, chat_id: int) -> None:
        await run_in_threadpool(self._store.check_sale_chat_member, chat_id, conn.user_id)

        if _add_member(self._sale_rooms, chat_id, conn):
            await self._broadcast(
                self._sale_rooms[chat_id],
                "user-joined-sale-chat",
                {**conn.identity(), "chatId": chat_id, "timestamp": utcnow()},
                exclude=conn.user_id,
            )

    async def leave_sale_chat(self, conn: WebSocketConnection, chat_id: int) -> bool:
        if not _is_member(self._sale_rooms, chat_id, conn):
            return False
        if not _remove_member(self._sale_rooms, chat_id, conn):
            return True

        await self._broadcast(
            self._sale_rooms.get(chat_id, {}),
            "user-left-sale-chat",
            {"chatId": chat_id, "userId": conn.user_id, "username": conn.username, "timestamp": utcnow()},
        )
        return True

    async def send_sale_message(self, conn: WebSocketConnection, chat_id: int, message: Optional[str]) -> None:
        saved = await run_in_threadpool(
            self._store.save_sale_message, chat_id, conn.user_id, message, conn.username
        )
        await self.emit_sale_message(
            chat_id,
            {"id": saved["id"], "sender": conn.identity(), "message": saved["message"], "timestamp": saved["timestamp"]},
        )

    async def emit_sale_message(self, chat_id: int, payload: Dict[str, Any]) -> None:
        await self._broadcast(self._sale_rooms.get(chat_id, {}), "new-sale-message", {**payload, "chatId": chat_id})

    # ------------------------------------------------------------------
    # Auction lifecycle
    # ------------------------------------------------------------------

    async def handle_lifecycle_event(self, event: LifecycleEvent) -> None:
        members = self._auction_rooms.get(event.post_id, {})
        now = utcnow()

        await self._broadcast(
            members,
            "auction-event",
            {"type": event.type.value, "postId": event.post_id, "data": event.data, "timestamp": event.timestamp},
        )
        if event.type == AuctionEventType.AUCTION_ENDED:
            await self._broadcast(
                members,
                "system-message",
                {"postId": event.post_id, "message": AUCTION_ENDED_MESSAGE, "type": "system", "timestamp": now},
            )
        elif event.type == AuctionEventType.SOLD:
            await self._broadcast(
                members,
                "chat-disabled",
                {"postId": event.post_id, "message": CHAT_DISABLED_MESSAGE, "timestamp": now},
            )

        if event.closes_chat:
            self._remember_closed(event.post_id)
            self._close_auction_room(event.post_id)
        elif event.type == AuctionEventType.POST_DELETED:
            # The id may be reused by a later post, so it is not remembered as closed
            self._close_auction_room(event.post_id)
        elif event.type == AuctionEventType.POST_CREATED:
            self._closed_auctions.pop(event.post_id, None)

    def _remember_closed(self, post_id: int) -> None:
        self._closed_auctions[post_id] = None
        self._closed_auctions.move_to_end(post_id)
        while len(self._closed_auctions) > self._closed_cache_size:
            self._closed_auctions.popitem(last=False)

    def is_closed(self, post_id: int) -> bool:
        return post_id in self._closed_auctions

    def _close_auction_room(self, post_id: int) -> None:
        for task in self._typing.pop(post_id, {}).values():
            task.cancel()
        members = self._auction_rooms.pop(post_id, None)
        logger.log(
            event_log_level(),
            f"Closed chat room for auction {post_id} ({len(members or {})} member(s))",
            extra={"event": "room_closed", "post_id": post_id},
        )

    def members(self, post_id: int) -> List[int]:
        return list(self._auction_rooms.get(post_id, {}))

    def sale_chat_members(self, chat_id: int) -> List[int]:
        return list(self._sale_rooms.get(chat_id, {}))

    async def _broadcast(
        self,
        members: Members,
        event: str,
        data: Dict[str, Any],
        exclude: Optional[int] = None,
    ) -> None:
        for user_id, sockets in list(members.items()):
            if user_id == exclude:
                continue
            for conn in list(sockets):
                try:
                    await conn.send(event, data)
                except Exception as e:
                    logger.warning(
                        f"Failed to send {event} to user {user_id}: {e}",
                        extra={"event": "ws_send_failed", "user_id": user_id},
                    )


class RealtimeEventSubscriber:
    """Event bus consumer that forwards lifecycle events to the room manager's loop"""

    def __init__(self, rooms: RoomManager):
        self._rooms = rooms

    def __call__(self, event: LifecycleEvent) -> None:
        self._rooms.submit(self._rooms.handle_lifecycle_event(event))
