"""
Auction chat routes: history, participants and owner moderation

Messages are sent over the realtime channel; these routes only read and clear.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from typing import List

from ..database import get_db
from ..models.chat import Chat, ChatMessage
from ..models.user import User
from ..enums.auction import PostStatus
from ..auth.dependencies import get_current_user, get_current_active_user
from ..services.chat_service import get_post, get_or_create_chat, clear_auction_chat
from ..schemas.common import MessageResponse
from ..schemas.chat import ChatMessageResponse, ChatMessagesResponse, ChatParticipantsResponse, ChatHistoryEntry

router = APIRouter()


@router.get("/messages/{post_id}", response_model=ChatMessagesResponse)
def get_chat_messages(
    post_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    """The most recent messages, oldest first; empty once the auction has closed"""
    post = get_post(db, post_id)

    if post.status != PostStatus.LIVE:
        return ChatMessagesResponse(
            post_id=post_id,
            is_active=False,
            post_status=post.status,
            message=f"Chat is disabled. Auction status: {post.status.value}",
        )

    chat = get_or_create_chat(db, post)
    db.commit()
    if not chat.is_active:
        return ChatMessagesResponse(
            post_id=post_id,
            is_active=False,
            post_status=post.status,
            message="Chat has been disabled for this auction",
        )

    total = db.query(ChatMessage).filter(ChatMessage.chat_id == chat.id).count()
    recent = (
        db.query(ChatMessage)
        .options(joinedload(ChatMessage.user))
        .filter(ChatMessage.chat_id == chat.id)
        .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    return ChatMessagesResponse(
        post_id=post_id,
        messages=[ChatMessageResponse.model_validate(m) for m in reversed(recent)],
        total_messages=total,
        is_active=True,
        post_status=post.status,
    )


@router.get("/participants/{post_id}", response_model=ChatParticipantsResponse)
def get_chat_participants(post_id: int, db: Session = Depends(get_db)):
    """Everyone who has posted in the auction's chat, in order of first message"""
    first_message = (
        db.query(ChatMessage.user_id, func.min(ChatMessage.id).label("first_id"))
        .join(Chat, Chat.id == ChatMessage.chat_id)
        .filter(Chat.post_id == post_id)
        .group_by(ChatMessage.user_id)
        .subquery()
    )
    participants = (
        db.query(User)
        .join(first_message, first_message.c.user_id == User.id)
        .order_by(first_message.c.first_id.asc())
        .all()
    )
    return {"participants": participants}


@router.get("/history", response_model=List[ChatHistoryEntry])
def get_user_chat_history(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Auction chats the current user has posted in, most recently active first"""
    activity = (
        db.query(ChatMessage.chat_id, func.max(ChatMessage.timestamp).label("last_activity"))
        .filter(ChatMessage.user_id == current_user.id)
        .group_by(ChatMessage.chat_id)
        .order_by(func.max(ChatMessage.timestamp).desc())
        .limit(limit)
        .all()
    )

    history = []
    for row in activity:
        chat = db.query(Chat).options(joinedload(Chat.post)).filter(Chat.id == row.chat_id).first()
        if not chat:
            continue
        last_message = (
            db.query(ChatMessage)
            .options(joinedload(ChatMessage.user))
            .filter(ChatMessage.chat_id == chat.id, ChatMessage.user_id == current_user.id)
            .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
            .first()
        )
        history.append(ChatHistoryEntry(
            post_id=chat.post.id,
            post_title=chat.post.title,
            post_image=chat.post.images[0] if chat.post.images else None,
            post_status=chat.post.status,
            last_message=ChatMessageResponse.model_validate(last_message) if last_message else None,
            total_messages=db.query(ChatMessage).filter(ChatMessage.chat_id == chat.id).count(),
            last_activity=row.last_activity,
        ))

    return history


@router.delete("/clear/{post_id}", response_model=MessageResponse)
def clear_chat(
    post_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    clear_auction_chat(db, post_id, current_user.id)
    return {"message": "Chat cleared successfully"}
