from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from chatnotes.api.auth.dependencies import get_current_active_user
from chatnotes.api.friends.schemas import UserShort
from chatnotes.api.users.models import User
from chatnotes.api.users.schemas import (
    BlockResponse, CanMessageResponse, ChatPreferencesUpdate, UnblockResponse, UserMe, UserOnlineResponse
)
from chatnotes.api.users.service import UserService
from chatnotes.database.database import get_db
from chatnotes.websocket.broadcaster import Broadcaster
from chatnotes.websocket.dependencies import get_broadcaster

router = APIRouter(prefix="/api/v1/users", tags=["users"])


def get_user_service(
        db: Session = Depends(get_db),
        broadcaster: Broadcaster = Depends(get_broadcaster)
) -> UserService:
    return UserService(db, broadcaster)


@router.get("/me", response_model=UserMe)
async def get_me(current_user: User = Depends(get_current_active_user)):
    return current_user


@router.put("/me/chat-preferences", response_model=UserMe)
async def update_chat_preferences(
        data: ChatPreferencesUpdate,
        current_user: User = Depends(get_current_active_user),
        user_service: UserService = Depends(get_user_service)
):
    return user_service.update_chat_preferences(current_user, data)


@router.get("/search", response_model=List[UserShort])
async def search_users_endpoint(
        query: str,
        limit: int = 20,
        current_user: User = Depends(get_current_active_user),
        user_service: UserService = Depends(get_user_service)
):
    return user_service.search_users(query, limit, current_user.id)


@router.get("/blocked", response_model=List[UserShort])
async def get_blocked_users(
        current_user: User = Depends(get_current_active_user),
        user_service: UserService = Depends(get_user_service)
):
    return user_service.get_blocked_users(current_user.id)


@router.get("/{user_id}/can-message", response_model=CanMessageResponse)
async def check_can_message_endpoint(
        user_id: int,
        current_user: User = Depends(get_current_active_user),
        user_service: UserService = Depends(get_user_service)
):
    can_send, reason = user_service.check_can_message(user_id, current_user.id)
    return CanMessageResponse(can_message=can_send, reason=reason if not can_send else None)


@router.get("/{user_id}/online", response_model=UserOnlineResponse)
async def check_user_online_endpoint(
        user_id: int,
        current_user: User = Depends(get_current_active_user),
        user_service: UserService = Depends(get_user_service)
):
    return user_service.check_user_online_status(user_id)


@router.post("/{user_id}/block", response_model=BlockResponse)
async def block_user_endpoint(
        user_id: int,
        response: Response,
        current_user: User = Depends(get_current_active_user),
        user_service: UserService = Depends(get_user_service)
):
    record, created = await user_service.block_user(current_user, user_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return record


@router.delete("/{user_id}/block", response_model=UnblockResponse)
async def unblock_user_endpoint(
        user_id: int,
        current_user: User = Depends(get_current_active_user),
        user_service: UserService = Depends(get_user_service)
):
    deleted = await user_service.unblock_user(current_user, user_id)
    return UnblockResponse(success=True, deleted=deleted)
