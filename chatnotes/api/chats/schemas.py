from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, ConfigDict


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class RecallScope(str, Enum):
    SELF = "self"
    ALL = "all"


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000, description="Message text")
    message_type: MessageType = Field(MessageType.TEXT, description="Message type")

    @field_validator('content')
    @classmethod
    def validate_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Message can not be empty')
        return v


class MessageEdit(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)

    @field_validator('content')
    @classmethod
    def validate_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Message can not be empty')
        return v


class RecallRequest(BaseModel):
    message_ids: List[int] = Field(..., min_length=1, description="Messages to recall")
    scope: RecallScope


class MessageItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_id: int
    receiver_id: int
    content: str
    message_type: str
    status: str
    is_deleted_for_all: bool = False
    is_read: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None


class ConversationItem(BaseModel):
    other_user_id: int
    other_user_name: Optional[str] = None
    other_user_username: Optional[str] = None
    other_user_avatar: Optional[str] = None
    unread_count: int = 0

    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    last_message_sender_id: Optional[int] = None


class ReadReceiptItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message_id: int
    user_id: int
    read_at: datetime


class MarkReadResponse(BaseModel):
    marked_count: int


class RecallResponse(BaseModel):
    scope: RecallScope
    message_ids: List[int]


class UnreadCountResponse(BaseModel):
    unread_count: int
