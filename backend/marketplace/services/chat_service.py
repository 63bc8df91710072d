"""
Auction chat and sale chat persistence

Auction chat messages are accepted only while the post is live and its chat
is active. The check and the insert run under the post's lock, the same one
the state machine holds while selling or expiring, so a message can never
land after the auction has closed.
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..enums.auction import PostStatus
from ..errors import ValidationFailed, NotAuthorized, StateConflict, NotFound
from ..models.chat import Chat, ChatMessage
from ..models.post import Post
from ..models.notification import NotificationType
from ..models.sale_chat import SaleChat, SaleChatMessage
from .locks import AuctionLockRegistry, auction_locks
from .notifications import create_notification


def clean_message(message: Optional[str], max_length: int, id_label: str) -> str:
    if not message or not message.strip():
        raise ValidationFailed(f"{id_label} and message are required")
    if len(message) > max_length:
        raise ValidationFailed(f"Message too long (max {max_length} characters)")
    return message.strip()


def get_post(db: Session, post_id: int) -> Post:
    post = db.query(Post).filter(Post.id == post_id).first()
    if not post:
        raise NotFound("Post not found")
    return post


def get_or_create_chat(db: Session, post: Post) -> Chat:
    chat = db.query(Chat).filter(Chat.post_id == post.id).first()
    if chat is None:
        chat = Chat(post_id=post.id, is_active=True, created_by="system")
        db.add(chat)
        db.flush()
    return chat


def ensure_auction_chat_open(db: Session, post_id: int) -> Post:
    """Raise unless the post is live and its chat is still active"""
    post = get_post(db, post_id)
    if post.status != PostStatus.LIVE:
        raise StateConflict(f"Chat is disabled. Auction status: {post.status.value}")

    chat = db.query(Chat).filter(Chat.post_id == post.id).first()
    if chat is not None and not chat.is_active:
        raise StateConflict("Chat has been disabled for this auction")
    return post


def post_auction_message(
    db: Session,
    post_id: int,
    user_id: int,
    message: Optional[str],
    username: str = None,
    locks: AuctionLockRegistry = auction_locks,
) -> ChatMessage:
    text = clean_message(message, settings.auction_chat_max_length, "Post ID")

    with locks.hold(post_id):
        try:
            db.expire_all()
            post = ensure_auction_chat_open(db, post_id)
            chat = get_or_create_chat(db, post)
            chat_message = ChatMessage(chat_id=chat.id, user_id=user_id, message=text, created_by=username)
            db.add(chat_message)
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(chat_message)
    return chat_message


def clear_auction_chat(db: Session, post_id: int, user_id: int) -> None:
    """Owner removes all messages; the chat row and its active flag stay"""
    post = get_post(db, post_id)
    if post.user_id != user_id:
        raise NotAuthorized("Not authorized to clear this chat")

    chat = db.query(Chat).filter(Chat.post_id == post.id).first()
    if not chat:
        raise NotFound("Chat not found")

    db.query(ChatMessage).filter(ChatMessage.chat_id == chat.id).delete(synchronize_session=False)
    db.commit()


def get_sale_chat_for_participant(db: Session, chat_id: int, user_id: int, action: str = "access") -> SaleChat:
    sale_chat = db.query(SaleChat).filter(SaleChat.id == chat_id).first()
    if not sale_chat:
        raise NotFound("Sale chat not found")
    if not sale_chat.has_participant(user_id):
        raise NotAuthorized(f"Not authorized to {action} this sale chat")
    return sale_chat


def post_sale_message(
    db: Session,
    chat_id: int,
    user_id: int,
    message: Optional[str],
    username: str = None,
) -> SaleChatMessage:
    text = clean_message(message, settings.sale_chat_max_length, "Chat ID")
    sale_chat = get_sale_chat_for_participant(db, chat_id, user_id, "send messages in")

    sale_message = SaleChatMessage(
        sale_chat_id=sale_chat.id,
        sender_id=user_id,
        message=text,
        created_by=username,
    )
    try:
        db.add(sale_message)
        sale_chat.updated_by = username
        create_notification(
            db,
            user_id=sale_chat.other_party(user_id),
            notification_type=NotificationType.CHAT,
            title=sale_chat.post.title,
            message=f"New message in sale chat for \"{sale_chat.post.title}\"",
            related_post_id=sale_chat.post_id,
            related_user_id=user_id,
            related_sale_chat_id=sale_chat.id,
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(sale_message)
    return sale_message


def mark_sale_chat_read(db: Session, chat_id: int, user_id: int) -> int:
    """Mark the other party's messages as read; returns how many changed"""
    sale_chat = get_sale_chat_for_participant(db, chat_id, user_id)
    updated = db.query(SaleChatMessage).filter(
        SaleChatMessage.sale_chat_id == sale_chat.id,
        SaleChatMessage.sender_id != user_id,
        SaleChatMessage.is_read.is_(False),
    ).update({"is_read": True}, synchronize_session=False)
    db.commit()
    return updated


class ChatStore:
    """
    Session-owning facade used by the realtime layer.

    Each call opens and closes its own session and is meant to run in a worker
    thread, off the event loop.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def check_auction_chat(self, post_id: int) -> None:
        with self._session_factory() as db:
            ensure_auction_chat_open(db, post_id)

    def save_auction_message(self, post_id: int, user_id: int, message: Optional[str], username: str = None) -> Dict[str, Any]:
        with self._session_factory() as db:
            saved = post_auction_message(db, post_id, user_id, message, username)
            return {"id": saved.id, "message": saved.message, "timestamp": saved.timestamp}

    def check_sale_chat_member(self, chat_id: int, user_id: int) -> None:
        with self._session_factory() as db:
            get_sale_chat_for_participant(db, chat_id, user_id, "join")

    def save_sale_message(self, chat_id: int, user_id: int, message: Optional[str], username: str = None) -> Dict[str, Any]:
        with self._session_factory() as db:
            saved = post_sale_message(db, chat_id, user_id, message, username)
            return {"id": saved.id, "message": saved.message, "timestamp": saved.timestamp}
