from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatnotes.api.auth.dependencies import get_current_active_user
from chatnotes.api.chats.schemas import (
    ConversationItem, MarkReadResponse, MessageCreate, MessageEdit, MessageItem,
    ReadReceiptItem, RecallRequest, RecallResponse, UnreadCountResponse
)
from chatnotes.api.chats.service import ChatService
from chatnotes.api.users.models import User
from chatnotes.database.database import get_db
from chatnotes.websocket.broadcaster import Broadcaster
from chatnotes.websocket.dependencies import get_broadcaster

router = APIRouter(prefix="/api/v1/chats", tags=["chats"])


def get_chat_service(
        db: Session = Depends(get_db),
        broadcaster: Broadcaster = Depends(get_broadcaster)
) -> ChatService:
    return ChatService(db, broadcaster)


@router.get("/", response_model=List[ConversationItem])
async def get_conversations(
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    return await service.get_conversations(current_user.id)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
        other_user_id: Optional[int] = None,
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    count = await service.unread_count(current_user.id, other_user_id)
    return UnreadCountResponse(unread_count=count)


@router.post("/messages/recall", response_model=RecallResponse)
async def recall_messages(
        data: RecallRequest,
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    return await service.recall_messages(current_user.id, data.message_ids, data.scope)


@router.put("/messages/{message_id}/read", response_model=ReadReceiptItem)
async def mark_message_read(
        message_id: int,
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    return await service.mark_message_read(current_user, message_id)


@router.put("/messages/{message_id}", response_model=MessageItem)
async def edit_message(
        message_id: int,
        data: MessageEdit,
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    return await service.edit_message(current_user.id, message_id, data.content)


@router.get("/{user_id}/messages", response_model=List[MessageItem])
async def get_messages(
        user_id: int,
        page: int = 1,
        limit: int = 20,
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    return await service.get_messages(current_user.id, user_id, page, limit)


@router.post("/{user_id}/messages", response_model=MessageItem)
async def send_message(
        user_id: int,
        data: MessageCreate,
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    return await service.send_message(current_user, user_id, data)


@router.put("/{user_id}/read", response_model=MarkReadResponse)
async def mark_conversation_read(
        user_id: int,
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    marked = await service.mark_conversation_read(current_user, user_id)
    return MarkReadResponse(marked_count=marked)


@router.delete("/{user_id}/messages")
async def delete_conversation(
        user_id: int,
        current_user: User = Depends(get_current_active_user),
        service: ChatService = Depends(get_chat_service)
):
    deleted = await service.delete_conversation(current_user.id, user_id)
    return {"success": True, "deleted_count": deleted}
