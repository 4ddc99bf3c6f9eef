from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict


class FriendshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class FriendshipCreate(BaseModel):
    friend_id: int = Field(..., gt=0, description="User to send the request to")


class UserShort(BaseModel):
    """Public card of a user."""
    id: int = Field(gt=0)
    username: str = Field(min_length=1)
    name: str = Field(min_length=1)
    avatar_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class FriendshipResponse(BaseModel):
    id: int = Field(gt=0)
    status: FriendshipStatus
    user: UserShort
    friend: UserShort
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OnlineFriendsResponse(BaseModel):
    online_friend_ids: List[int]
    total_friends: int
    online_count: int
