from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class MessagePrivacy(str, Enum):
    ALL = "all"
    FRIENDS_ONLY = "friends_only"
    NOBODY = "nobody"


class ChatPreferencesUpdate(BaseModel):
    read_status_enabled: Optional[bool] = None
    message_privacy: Optional[MessagePrivacy] = None


class UserMe(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    name: str
    avatar_url: Optional[str] = None
    role: str
    read_status_enabled: bool
    message_privacy: MessagePrivacy


class CanMessageResponse(BaseModel):
    can_message: bool
    reason: str | None = None


class UserOnlineResponse(BaseModel):
    user_id: int
    is_online: bool


class BlockResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    blocked_user_id: int
    created_at: datetime


class UnblockResponse(BaseModel):
    success: bool
    deleted: int
