from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict

from chatnotes.api.chats.schemas import MessageCreate, MessageEdit, RecallScope


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Group name")
    avatar_url: Optional[str] = Field(None, max_length=255)
    admins_only: bool = False


class GroupInvite(BaseModel):
    user_id: int = Field(..., gt=0, description="User to invite")


class GroupItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    avatar_url: Optional[str] = None
    owner_id: int
    admins_only: bool = False
    created_at: datetime


class GroupMessageCreate(MessageCreate):
    content: str = Field(..., min_length=1, max_length=2000, description="Message text")


class GroupMessageEdit(MessageEdit):
    content: str = Field(..., min_length=1, max_length=2000)


class GroupMessageItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    sender_id: int
    content: str
    message_type: str
    status: str
    is_deleted_for_all: bool = False
    read_by: List[int] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


class GroupReadResponse(BaseModel):
    group_id: int
    marked_count: int
    read_receipts_count: int


class GroupRecallResponse(BaseModel):
    group_id: int
    scope: RecallScope
    message_ids: List[int]


class GroupUnreadResponse(BaseModel):
    group_id: int
    unread_count: int


class GroupMemberRemoval(BaseModel):
    member_ids: List[int] = Field(..., min_length=1)


class GroupMembersRemovedResponse(BaseModel):
    group_id: int
    removed: List[int]


class GroupLeaveResponse(BaseModel):
    group_id: int
    user_id: int
    owner_id: Optional[int] = None
    group_deleted: bool = False


class GroupInviteDeclineResponse(BaseModel):
    group_id: int
    declined: int
