from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatnotes.api.auth.dependencies import get_current_active_user
from chatnotes.api.friends.schemas import FriendshipResponse, FriendshipCreate, OnlineFriendsResponse
from chatnotes.api.friends.service import FriendshipService
from chatnotes.api.users.models import User
from chatnotes.database.database import get_db
from chatnotes.websocket.broadcaster import Broadcaster
from chatnotes.websocket.dependencies import get_broadcaster

router = APIRouter(prefix="/api/v1/friends", tags=["friends"])


def get_friendship_service(
        db: Session = Depends(get_db),
        broadcaster: Broadcaster = Depends(get_broadcaster)
) -> FriendshipService:
    return FriendshipService(db, broadcaster)


@router.get("/", response_model=List[FriendshipResponse])
async def get_friends(
        current_user: User = Depends(get_current_active_user),
        friendship_service: FriendshipService = Depends(get_friendship_service)
):
    return friendship_service.get_friends(current_user.id)


@router.get("/requests", response_model=List[FriendshipResponse])
async def get_requests(
        current_user: User = Depends(get_current_active_user),
        friendship_service: FriendshipService = Depends(get_friendship_service)
):
    return friendship_service.get_friend_requests(current_user.id)


@router.get("/online", response_model=OnlineFriendsResponse)
async def online_friends(
        current_user: User = Depends(get_current_active_user),
        friendship_service: FriendshipService = Depends(get_friendship_service)
):
    return friendship_service.get_online_friends(current_user.id)


@router.post("/add", response_model=FriendshipResponse, status_code=status.HTTP_201_CREATED)
async def add_friend(
        data: FriendshipCreate,
        current_user: User = Depends(get_current_active_user),
        friendship_service: FriendshipService = Depends(get_friendship_service)
):
    return await friendship_service.add_friend(data, current_user)


@router.put("/accept/{friendship_id}", response_model=FriendshipResponse)
async def accept_request(
        friendship_id: int,
        current_user: User = Depends(get_current_active_user),
        friendship_service: FriendshipService = Depends(get_friendship_service)
):
    return await friendship_service.accept_friend_request(friendship_id, current_user)


@router.put("/reject/{friendship_id}", status_code=status.HTTP_204_NO_CONTENT)
async def reject_request(
        friendship_id: int,
        current_user: User = Depends(get_current_active_user),
        friendship_service: FriendshipService = Depends(get_friendship_service)
):
    await friendship_service.reject_friend_request(friendship_id, current_user)


@router.delete("/{friendship_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_friend(
        friendship_id: int,
        current_user: User = Depends(get_current_active_user),
        friendship_service: FriendshipService = Depends(get_friendship_service)
):
    friendship_service.remove_friend(friendship_id, current_user.id)
