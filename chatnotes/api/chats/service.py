import logging
from typing import Dict, List, Optional

from sqlalchemy import or_, and_
from sqlalchemy.orm import Session

from chatnotes.api.chats.models import Message, MessageRead
from chatnotes.api.chats.read_state import ReadStateTracker
from chatnotes.api.chats.schemas import (
    ConversationItem, MessageCreate, MessageItem, RecallScope, RecallResponse
)
from chatnotes.api.chats.visibility import is_visible, hide_for
from chatnotes.api.friends.models import Friendship
from chatnotes.api.notifications.models import Notification
from chatnotes.api.users.models import BlockedUser, User
from chatnotes.core.exceptions import NotFoundError, ForbiddenError, BadRequestError, commit_or_raise
from chatnotes.websocket.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(self, db: Session, broadcaster: Broadcaster, read_state: Optional[ReadStateTracker] = None):
        self.db = db
        self.broadcaster = broadcaster
        self.read_state = read_state or ReadStateTracker(db)

    async def get_conversations(self, user_id: int) -> List[ConversationItem]:
        messages = self.db.query(Message).filter(
            or_(Message.sender_id == user_id, Message.receiver_id == user_id)
        ).order_by(Message.created_at.desc()).all()

        # newest visible message per counterpart
        latest: Dict[int, Message] = {}
        for msg in messages:
            other_id = msg.receiver_id if msg.sender_id == user_id else msg.sender_id
            if other_id in latest or not is_visible(msg, user_id):
                continue
            latest[other_id] = msg

        users = {
            u.id: u for u in
            self.db.query(User).filter(User.id.in_(list(latest.keys()))).all()
        } if latest else {}

        items = []
        for other_id, msg in latest.items():
            other = users.get(other_id)
            items.append(ConversationItem(
                other_user_id=other_id,
                other_user_name=other.name if other else None,
                other_user_username=other.username if other else None,
                other_user_avatar=other.avatar_url if other else None,
                unread_count=self.read_state.count_unread_direct(user_id, other_id),
                last_message=msg.content,
                last_message_time=msg.created_at,
                last_message_sender_id=msg.sender_id
            ))

        items.sort(key=lambda x: x.last_message_time, reverse=True)
        return items

    async def get_messages(
            self,
            user_id: int,
            other_id: int,
            page: int = 1,
            limit: int = 20
    ) -> List[MessageItem]:
        page = max(1, page)
        limit = max(1, min(100, limit))

        messages = self.db.query(Message).filter(
            or_(
                and_(Message.sender_id == user_id, Message.receiver_id == other_id),
                and_(Message.sender_id == other_id, Message.receiver_id == user_id)
            )
        ).order_by(Message.created_at.desc(), Message.id.desc()).offset((page - 1) * limit).limit(limit).all()

        visible = [m for m in messages if is_visible(m, user_id)]
        visible.reverse()

        read_pairs = set()
        if visible:
            rows = self.db.query(MessageRead.message_id, MessageRead.user_id).filter(
                MessageRead.message_id.in_([m.id for m in visible])
            ).all()
            read_pairs = {(r.message_id, r.user_id) for r in rows}

        result = []
        for msg in visible:
            item = MessageItem.model_validate(msg)
            item.is_read = (msg.id, msg.receiver_id) in read_pairs
            result.append(item)
        return result

    async def send_message(self, sender: User, receiver_id: int, data: MessageCreate) -> MessageItem:
        if receiver_id == sender.id:
            raise BadRequestError("Cannot send message to yourself")

        receiver = self.db.query(User).filter(User.id == receiver_id).first()
        if not receiver:
            raise NotFoundError("Receiver not found")
        if not receiver.is_active:
            raise ForbiddenError("Cannot send message to deactivated account")

        can_send, reason = self.can_send_message_to_user(sender.id, receiver)
        if not can_send:
            raise ForbiddenError(reason)

        is_receiver_online = self.broadcaster.is_user_online(receiver_id)
        message = Message(
            sender_id=sender.id,
            receiver_id=receiver_id,
            content=data.content,
            message_type=data.message_type.value,
            status="delivered" if is_receiver_online else "sent"
        )
        self.db.add(message)
        self.db.flush()

        # Only the receiver gets a bell notification
        notification = Notification(
            user_id=receiver_id,
            type="message",
            from_user_id=sender.id,
            meta={"messageId": message.id, "otherUserId": sender.id},
            is_read=False
        )
        self.db.add(notification)
        commit_or_raise(self.db)
        self.db.refresh(message)

        payload = message_payload(message, sender, receiver)
        await self.broadcaster.emit_to_user(receiver_id, "new_message", payload)
        await self.broadcaster.emit_to_user(sender.id, "new_message", payload)
        await self.broadcaster.emit_to_user(sender.id, "message_sent", payload)
        if is_receiver_online:
            await self.broadcaster.emit_to_user(sender.id, "message_delivered", {
                "message_id": message.id,
                "status": "delivered"
            })

        await self.broadcaster.emit_to_admins("admin_dm_created", payload)
        await self.broadcaster.emit_to_admins("admin_notification_created", {
            "user_id": receiver_id,
            "type": notification.type
        })

        return MessageItem.model_validate(message)

    async def mark_conversation_read(self, reader: User, other_id: int) -> int:
        other = self.db.query(User).filter(User.id == other_id).first()
        if not other:
            raise NotFoundError("User not found")

        receipts = self.read_state.mark_conversation_read(reader.id, other_id)
        if receipts and receipts_enabled(reader, other):
            for receipt in receipts:
                await self.broadcaster.emit_to_user(other_id, "message_read", receipt_payload(receipt, reader))
        return len(receipts)

    async def mark_message_read(self, reader: User, message_id: int) -> MessageRead:
        receipt = self.read_state.mark_read(message_id, reader.id)
        message = self.db.query(Message).filter(Message.id == receipt.message_id).first()
        sender = message.sender if message else None
        if sender and receipts_enabled(reader, sender):
            await self.broadcaster.emit_to_user(sender.id, "message_read", receipt_payload(receipt, reader))
        return receipt

    async def unread_count(self, user_id: int, other_id: Optional[int] = None) -> int:
        return self.read_state.count_unread_direct(user_id, other_id)

    async def edit_message(self, user_id: int, message_id: int, content: str) -> MessageItem:
        message = self.db.query(Message).filter(Message.id == message_id).first()
        if not message:
            raise NotFoundError("Message not found")
        if message.sender_id != user_id:
            raise ForbiddenError("You can only edit your own messages")
        if message.message_type != "text":
            raise BadRequestError("Only text messages can be edited")
        if message.is_deleted_for_all:
            raise BadRequestError("Message was recalled")

        message.content = content
        commit_or_raise(self.db)
        self.db.refresh(message)

        payload = {
            "id": message.id,
            "content": message.content,
            "updated_at": iso_time(message.updated_at)
        }
        await self.broadcaster.emit_to_users([message.sender_id, message.receiver_id], "message_edited", payload)
        return MessageItem.model_validate(message)

    async def recall_messages(self, user_id: int, message_ids: List[int], scope: RecallScope) -> RecallResponse:
        ids = list(dict.fromkeys(message_ids))
        messages = self.db.query(Message).filter(
            Message.id.in_(ids),
            or_(Message.sender_id == user_id, Message.receiver_id == user_id)
        ).all()
        if len(messages) != len(ids):
            raise NotFoundError("Some messages not found")

        if scope == RecallScope.ALL:
            if any(m.sender_id != user_id for m in messages):
                raise ForbiddenError("Only the sender can recall for everyone")
            for m in messages:
                m.is_deleted_for_all = True
                m.content = ""
        else:
            for m in messages:
                hide_for(m, user_id)
        commit_or_raise(self.db)

        payload = {"scope": scope.value, "message_ids": ids, "user_id": user_id}
        if scope == RecallScope.SELF:
            await self.broadcaster.emit_to_user(user_id, "messages_recalled", payload)
        else:
            participants = []
            for m in messages:
                participants.extend([m.sender_id, m.receiver_id])
            await self.broadcaster.emit_to_users(participants, "messages_recalled", payload)

        await self.broadcaster.emit_to_admins("admin_messages_recalled", {
            **payload,
            "sender_id": user_id,
            "receiver_id": messages[0].receiver_id
        })
        return RecallResponse(scope=scope, message_ids=ids)

    async def delete_conversation(self, user_id: int, other_id: int) -> int:
        messages = self.db.query(Message).filter(
            or_(
                and_(Message.sender_id == user_id, Message.receiver_id == other_id),
                and_(Message.sender_id == other_id, Message.receiver_id == user_id)
            )
        ).all()

        updated = sum(1 for m in messages if hide_for(m, user_id))
        commit_or_raise(self.db)

        payload = {
            "deleted_with": other_id,
            "deleted_by": user_id,
            "count": updated,
            "scope": "self"
        }
        await self.broadcaster.emit_to_user(user_id, "messages_deleted", payload)
        await self.broadcaster.emit_to_admins("admin_messages_deleted", {
            **payload,
            "sender_id": user_id,
            "receiver_id": other_id
        })
        return updated

    def can_send_message_to_user(self, sender_id: int, receiver: User):
        if self.is_blocked_between(sender_id, receiver.id):
            return False, "Messaging is blocked between you and this user"
        receiver_privacy = receiver.message_privacy or "all"
        if receiver_privacy == "nobody":
            return False, "Recipient does not accept messages"
        if receiver_privacy == "friends_only":
            friendship = self.db.query(Friendship).filter(
                or_(
                    and_(Friendship.user_id == sender_id, Friendship.friend_id == receiver.id),
                    and_(Friendship.user_id == receiver.id, Friendship.friend_id == sender_id)
                ),
                Friendship.status == "accepted"
            ).first()
            if not friendship:
                return False, "Recipient does not allow messages from non-friends"
        return True, ""

    def is_blocked_between(self, user_id: int, other_id: int) -> bool:
        return self.db.query(BlockedUser).filter(
            or_(
                and_(BlockedUser.user_id == user_id, BlockedUser.blocked_user_id == other_id),
                and_(BlockedUser.user_id == other_id, BlockedUser.blocked_user_id == user_id)
            )
        ).first() is not None


def receipts_enabled(reader: User, other: User) -> bool:
    """Read receipts are only broadcast when both sides opted in."""
    return bool(reader.read_status_enabled) and bool(other.read_status_enabled)


def user_payload(user: User) -> dict:
    return {"id": user.id, "name": user.name, "avatar": user.avatar_url}


def receipt_payload(receipt, reader: User, **extra) -> dict:
    return {
        "message_id": receipt.message_id,
        "user_id": reader.id,
        "read_at": iso_time(receipt.read_at),
        "user": user_payload(reader),
        **extra
    }


def message_payload(message: Message, sender: User, receiver: User) -> dict:
    return {
        "id": message.id,
        "sender_id": message.sender_id,
        "receiver_id": message.receiver_id,
        "content": message.content,
        "message_type": message.message_type,
        "status": message.status,
        "created_at": iso_time(message.created_at),
        "sender_name": sender.name,
        "sender_avatar": sender.avatar_url,
        "receiver_name": receiver.name,
        "receiver_avatar": receiver.avatar_url,
    }


def iso_time(value) -> Optional[str]:
    return value.isoformat() if value else None
