from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    FRIEND_REQUEST = "friend_request"
    GROUP_INVITE = "group_invite"
    MESSAGE = "message"
    GROUP_MESSAGE = "group_message"
    SYSTEM = "system"
    BELL_DISMISS = "bell_dismiss"


class BellScope(str, Enum):
    FRIEND_REQUESTS = "fr"
    INVITES = "inv"
    DIRECT = "dm"
    GROUP = "group"


class NotificationItem(BaseModel):
    id: int = Field(..., description="Notification id", examples=[1])
    type: NotificationType = Field(..., description="Notification kind", examples=["friend_request"])
    from_user_id: Optional[int] = Field(None, description="Who triggered it", examples=[42])
    group_id: Optional[int] = None
    meta: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")
    is_read: bool = Field(default=False, description="Read flag")
    created_at: datetime = Field(..., description="Creation time")
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UnreadNotificationsResponse(BaseModel):
    count: int


class BellItem(BaseModel):
    id: int = Field(..., description="Counterpart id, or a sentinel for aggregate items")
    scope: BellScope
    target_id: Optional[int] = None
    name: str
    avatar: Optional[str] = None
    count: int = 0
    time: datetime


class BellPagination(BaseModel):
    currentPage: int
    totalPages: int
    totalItems: int
    itemsPerPage: int
    hasNextPage: bool
    hasPrevPage: bool


class BellFeedResponse(BaseModel):
    items: List[BellItem]
    pagination: BellPagination


class BellDismissRequest(BaseModel):
    scope: str = Field(..., description="fr, inv, dm or group")
    id: Optional[int] = Field(None, description="otherUserId for dm, groupId for group")


class BellDismissResponse(BaseModel):
    success: bool = True
    id: int


class BellBadgeResponse(BaseModel):
    total: int
    dm: int
    group: int
    fr: int
    inv: int
