"""
Sale chat routes for buyer/seller conversations after a completed sale
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload
from typing import List

from ..database import get_db
from ..models.sale_chat import SaleChat
from ..models.user import User
from ..auth.dependencies import get_current_user, get_current_active_user
from ..core.logging import get_logger
from ..services.chat_service import get_sale_chat_for_participant, post_sale_message, mark_sale_chat_read
from ..schemas.common import MessageResponse
from ..schemas.sale_chat import SaleMessageCreate, SaleChatResponse, SaleChatMessageResponse, SaleMessageSentResponse
from .realtime import get_room_manager

router = APIRouter()

logger = get_logger(__name__)


def _sale_chat_query(db: Session):
    return db.query(SaleChat).options(
        joinedload(SaleChat.post),
        joinedload(SaleChat.buyer),
        joinedload(SaleChat.seller),
    )


@router.get("/", response_model=List[SaleChatResponse])
def get_user_sale_chats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Sale chats where the current user is the buyer or the seller"""
    return (
        _sale_chat_query(db)
        .filter(or_(SaleChat.buyer_id == current_user.id, SaleChat.seller_id == current_user.id))
        .order_by(SaleChat.updated_at.desc(), SaleChat.id.desc())
        .all()
    )


@router.get("/post/{post_id}", response_model=SaleChatResponse)
def get_sale_chat_by_post(
    post_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    sale_chat = _sale_chat_query(db).filter(SaleChat.post_id == post_id).first()
    if not sale_chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale chat not found for this post")
    if not sale_chat.has_participant(current_user.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to access this chat")
    return sale_chat


@router.get("/{chat_id}", response_model=SaleChatResponse)
def get_sale_chat(
    chat_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return get_sale_chat_for_participant(db, chat_id, current_user.id)


@router.post("/{chat_id}/messages", response_model=SaleMessageSentResponse)
def send_sale_message(
    chat_id: int,
    message_data: SaleMessageCreate,
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    """Store a message, notify the other party and push it to the sale chat room"""
    sale_message = post_sale_message(db, chat_id, current_user.id, message_data.message, current_user.username)
    chat_message = SaleChatMessageResponse.model_validate(sale_message)

    rooms = get_room_manager(request)
    if rooms is not None:
        rooms.submit(rooms.emit_sale_message(chat_id, chat_message.model_dump(by_alias=True)))

    return SaleMessageSentResponse(message="Message sent successfully", chat_message=chat_message)


@router.patch("/{chat_id}/read", response_model=MessageResponse)
def mark_as_read(
    chat_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    updated = mark_sale_chat_read(db, chat_id, current_user.id)
    logger.debug(f"Marked {updated} sale chat message(s) read in chat {chat_id} for user {current_user.id}")
    return {"message": "Messages marked as read"}
