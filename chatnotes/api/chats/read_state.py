import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chatnotes.api.chats.models import Message, MessageRead
from chatnotes.api.chats.visibility import is_visible
from chatnotes.api.groups.models import GroupMember, GroupMessage, GroupMessageRead
from chatnotes.api.notifications.models import Notification
from chatnotes.core.config import settings
from chatnotes.core.exceptions import (
    NotFoundError, ForbiddenError, BadRequestError, TransientStoreError, commit_or_raise
)

logger = logging.getLogger(__name__)


class ReadStateTracker:
    """
    Per-user read receipts for direct and group messages.

    A receipt is inserted once per (message, user) and never updated, so the
    first read wins. Duplicate inserts racing from several devices are
    absorbed by the unique constraint on the receipt tables.
    """

    def __init__(self, db: Session):
        self.db = db

    # ─── direct messages ───

    def mark_read(self, message_id: int, user_id: int) -> MessageRead:
        message = self.db.query(Message).filter(Message.id == message_id).first()
        if not message:
            raise NotFoundError("Message not found")
        if message.receiver_id != user_id:
            raise ForbiddenError("Only the receiver can mark a message read")

        receipt, _ = self._insert_receipt(MessageRead, message, user_id)
        return receipt

    def mark_conversation_read(self, reader_id: int, other_user_id: int) -> List[MessageRead]:
        unread = self._unread_direct_query(reader_id, other_user_id).order_by(Message.created_at.asc()).all()

        created = []
        for message in unread:
            if not is_visible(message, reader_id):
                continue
            receipt, is_new = self._insert_receipt(MessageRead, message, reader_id)
            if is_new:
                created.append(receipt)

        self.db.query(Notification).filter(
            Notification.user_id == reader_id,
            Notification.type == "message",
            Notification.from_user_id == other_user_id,
            Notification.is_read == False
        ).update({"is_read": True}, synchronize_session=False)
        commit_or_raise(self.db)

        logger.debug(f"User {reader_id} read {len(created)} messages from {other_user_id}")
        return created

    def count_unread_direct(self, user_id: int, other_user_id: Optional[int] = None) -> int:
        rows = self._unread_direct_query(user_id, other_user_id).all()
        return sum(1 for m in rows if is_visible(m, user_id))

    # ─── group messages ───

    def mark_group_message_read(self, message_id: int, user_id: int) -> GroupMessageRead:
        message = self.db.query(GroupMessage).filter(GroupMessage.id == message_id).first()
        if not message:
            raise NotFoundError("Message not found")
        if not self._is_member(message.group_id, user_id):
            raise ForbiddenError("Not a group member")

        receipt, _ = self._insert_receipt(GroupMessageRead, message, user_id)
        return receipt

    def mark_group_read(self, group_id: int, user_id: int) -> List[GroupMessageRead]:
        if not self._is_member(group_id, user_id):
            raise ForbiddenError("Not a group member")

        candidates = self._unread_group_query(group_id, user_id).order_by(GroupMessage.created_at.asc()).all()

        created = []
        for message in candidates:
            if not is_visible(message, user_id):
                continue
            receipt, is_new = self._insert_receipt(GroupMessageRead, message, user_id)
            if is_new:
                created.append(receipt)
        return created

    def unread_group_messages(
            self,
            group_id: int,
            user_id: int,
            since: Optional[datetime] = None,
            limit: Optional[int] = None
    ) -> List[GroupMessage]:
        """Visible unread messages, newest first. ``since`` drops anything at or before it."""
        limit = limit or settings.GROUP_UNREAD_SCAN_LIMIT
        query = self._unread_group_query(group_id, user_id)
        if since is not None:
            query = query.filter(GroupMessage.created_at > since)
        rows = query.order_by(GroupMessage.created_at.desc(), GroupMessage.id.desc()).limit(limit).all()
        return [m for m in rows if is_visible(m, user_id)]

    def count_unread_group(
            self,
            group_id: int,
            user_id: int,
            limit: Optional[int] = None,
            since: Optional[datetime] = None
    ) -> int:
        return len(self.unread_group_messages(group_id, user_id, since=since, limit=limit))

    def count_unread(self, user_id: int, scope: str, target_id: Optional[int] = None) -> int:
        if scope == "dm":
            return self.count_unread_direct(user_id, target_id)
        if scope == "group":
            if target_id is None:
                raise BadRequestError("group scope needs a group id")
            return self.count_unread_group(target_id, user_id)
        raise BadRequestError(f"Unknown unread scope: {scope}")

    # ─── helpers ───

    def _unread_direct_query(self, user_id: int, other_user_id: Optional[int]):
        query = self.db.query(Message).outerjoin(
            MessageRead,
            and_(MessageRead.message_id == Message.id, MessageRead.user_id == user_id)
        ).filter(
            Message.receiver_id == user_id,
            Message.is_deleted_for_all.is_not(True),
            MessageRead.id.is_(None)
        )
        if other_user_id is not None:
            query = query.filter(Message.sender_id == other_user_id)
        return query

    def _unread_group_query(self, group_id: int, user_id: int):
        return self.db.query(GroupMessage).outerjoin(
            GroupMessageRead,
            and_(GroupMessageRead.message_id == GroupMessage.id, GroupMessageRead.user_id == user_id)
        ).filter(
            GroupMessage.group_id == group_id,
            GroupMessage.sender_id != user_id,
            GroupMessage.message_type != "system",
            GroupMessage.is_deleted_for_all.is_not(True),
            GroupMessageRead.id.is_(None)
        )

    def _is_member(self, group_id: int, user_id: int) -> bool:
        return self.db.query(GroupMember).filter(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id
        ).first() is not None

    def _insert_receipt(self, model, message, user_id: int):
        """Insert-or-ignore. Returns (receipt, created)."""
        existing = self._find_receipt(model, message.id, user_id)
        if existing:
            return existing, False

        receipt = model(message_id=message.id, user_id=user_id, read_at=datetime.utcnow())
        self.db.add(receipt)
        # group status is per message, not per reader
        if model is MessageRead and message.status != "read":
            message.status = "read"
        try:
            self.db.commit()
        except IntegrityError:
            # another device won the race
            self.db.rollback()
            return self._find_receipt(model, message.id, user_id), False
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store read receipt for message {message.id}: {e}")
            raise TransientStoreError("Storage is temporarily unavailable") from e

        self.db.refresh(receipt)
        return receipt, True

    def _find_receipt(self, model, message_id: int, user_id: int):
        return self.db.query(model).filter(
            model.message_id == message_id,
            model.user_id == user_id
        ).first()
