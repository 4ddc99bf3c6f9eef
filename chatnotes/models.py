"""All ORM models, imported together so relationship names resolve."""
from chatnotes.api.chats.models import Message, MessageRead
from chatnotes.api.friends.models import Friendship
from chatnotes.api.groups.models import Group, GroupMember, GroupMessage, GroupMessageRead
from chatnotes.api.notifications.models import Notification
from chatnotes.api.users.models import BlockedUser, User
from chatnotes.database.database import Base

__all__ = [
    "Base",
    "BlockedUser",
    "Friendship",
    "Group",
    "GroupMember",
    "GroupMessage",
    "GroupMessageRead",
    "Message",
    "MessageRead",
    "Notification",
    "User",
]
