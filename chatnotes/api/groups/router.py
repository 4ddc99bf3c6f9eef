from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatnotes.api.auth.dependencies import get_current_active_user
from chatnotes.api.chats.schemas import ReadReceiptItem, RecallRequest
from chatnotes.api.groups.schemas import (
    GroupCreate, GroupInvite, GroupInviteDeclineResponse, GroupItem, GroupLeaveResponse, GroupMemberRemoval,
    GroupMembersRemovedResponse, GroupMessageCreate, GroupMessageEdit, GroupMessageItem, GroupReadResponse,
    GroupRecallResponse, GroupUnreadResponse
)
from chatnotes.api.groups.service import GroupService
from chatnotes.api.users.models import User
from chatnotes.database.database import get_db
from chatnotes.websocket.broadcaster import Broadcaster
from chatnotes.websocket.dependencies import get_broadcaster

router = APIRouter(prefix="/api/v1/groups", tags=["groups"])


def get_group_service(
        db: Session = Depends(get_db),
        broadcaster: Broadcaster = Depends(get_broadcaster)
) -> GroupService:
    return GroupService(db, broadcaster)


@router.post("/", response_model=GroupItem, status_code=status.HTTP_201_CREATED)
async def create_group(
        data: GroupCreate,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.create_group(current_user, data)


@router.put("/messages/{message_id}/read", response_model=ReadReceiptItem)
async def mark_group_message_read(
        message_id: int,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.mark_message_read(current_user, message_id)


@router.post("/{group_id}/invite")
async def invite_member(
        group_id: int,
        data: GroupInvite,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    invitation = await service.invite(current_user, group_id, data.user_id)
    return {"success": True, "notification_id": invitation.id}


@router.post("/{group_id}/accept", response_model=GroupItem)
async def accept_invite(
        group_id: int,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.accept_invite(current_user, group_id)


@router.post("/{group_id}/decline", response_model=GroupInviteDeclineResponse)
async def decline_invite(
        group_id: int,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    declined = await service.decline_invite(current_user, group_id)
    return GroupInviteDeclineResponse(group_id=group_id, declined=declined)


@router.post("/{group_id}/members/remove", response_model=GroupMembersRemovedResponse)
async def remove_members(
        group_id: int,
        data: GroupMemberRemoval,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    removed = await service.remove_members(current_user, group_id, data.member_ids)
    return GroupMembersRemovedResponse(group_id=group_id, removed=removed)


@router.post("/{group_id}/leave", response_model=GroupLeaveResponse)
async def leave_group(
        group_id: int,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.leave_group(current_user, group_id)


@router.get("/{group_id}/messages", response_model=List[GroupMessageItem])
async def get_group_messages(
        group_id: int,
        page: int = 1,
        limit: int = 20,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.get_group_messages(current_user.id, group_id, page, limit)


@router.post("/{group_id}/messages", response_model=GroupMessageItem)
async def send_group_message(
        group_id: int,
        data: GroupMessageCreate,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.send_group_message(current_user, group_id, data)


@router.post("/{group_id}/messages/recall", response_model=GroupRecallResponse)
async def recall_group_messages(
        group_id: int,
        data: RecallRequest,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.recall_group_messages(current_user.id, group_id, data.message_ids, data.scope)


@router.put("/{group_id}/messages/{message_id}", response_model=GroupMessageItem)
async def edit_group_message(
        group_id: int,
        message_id: int,
        data: GroupMessageEdit,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.edit_group_message(current_user.id, group_id, message_id, data.content)


@router.put("/{group_id}/read", response_model=GroupReadResponse)
async def mark_group_read(
        group_id: int,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    return await service.mark_group_read(current_user, group_id)


@router.get("/{group_id}/unread-count", response_model=GroupUnreadResponse)
async def get_group_unread_count(
        group_id: int,
        current_user: User = Depends(get_current_active_user),
        service: GroupService = Depends(get_group_service)
):
    count = await service.unread_count(current_user.id, group_id)
    return GroupUnreadResponse(group_id=group_id, unread_count=count)
