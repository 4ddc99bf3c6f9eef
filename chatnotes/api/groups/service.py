import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from chatnotes.api.chats.read_state import ReadStateTracker
from chatnotes.api.chats.schemas import RecallScope
from chatnotes.api.chats.service import receipts_enabled, receipt_payload, iso_time
from chatnotes.api.chats.visibility import is_visible, hide_for
from chatnotes.api.groups.models import Group, GroupMember, GroupMessage, GroupMessageRead
from chatnotes.api.groups.schemas import (
    GroupCreate, GroupItem, GroupLeaveResponse, GroupMessageCreate, GroupMessageItem, GroupReadResponse,
    GroupRecallResponse
)
from chatnotes.api.notifications.models import Notification
from chatnotes.api.users.models import User
from chatnotes.core.exceptions import NotFoundError, ForbiddenError, BadRequestError, commit_or_raise
from chatnotes.websocket.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


class GroupService:
    def __init__(self, db: Session, broadcaster: Broadcaster, read_state: Optional[ReadStateTracker] = None):
        self.db = db
        self.broadcaster = broadcaster
        self.read_state = read_state or ReadStateTracker(db)

    # ─── groups and invitations ───

    async def create_group(self, owner: User, data: GroupCreate) -> GroupItem:
        group = Group(
            name=data.name,
            avatar_url=data.avatar_url,
            owner_id=owner.id,
            admins_only=data.admins_only
        )
        self.db.add(group)
        self.db.flush()
        self.db.add(GroupMember(group_id=group.id, user_id=owner.id, role="owner"))
        commit_or_raise(self.db)
        self.db.refresh(group)
        logger.info(f"Group {group.id} created by user {owner.id}")
        return GroupItem.model_validate(group)

    async def invite(self, inviter: User, group_id: int, user_id: int) -> Notification:
        group = self._get_group(group_id)
        self._require_membership(group_id, inviter.id)

        invitee = self.db.query(User).filter(User.id == user_id).first()
        if not invitee:
            raise NotFoundError("User not found")
        if self._get_membership(group_id, user_id):
            raise BadRequestError("User is already a member")

        invitation = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == "group_invite",
            Notification.group_id == group_id,
            Notification.is_read == False
        ).first()
        if invitation:
            # re-invite bumps the pending invitation
            invitation.from_user_id = inviter.id
            invitation.updated_at = datetime.utcnow()
        else:
            invitation = Notification(
                user_id=user_id,
                type="group_invite",
                from_user_id=inviter.id,
                group_id=group_id,
                meta={"groupId": group_id},
                is_read=False
            )
            self.db.add(invitation)
        commit_or_raise(self.db)
        self.db.refresh(invitation)

        await self.broadcaster.emit_to_user(user_id, "group_invite", {
            "group_id": group.id,
            "group_name": group.name,
            "inviter_id": inviter.id,
            "inviter_name": inviter.name
        })
        await self.broadcaster.emit_to_admins("admin_notification_created", {
            "user_id": user_id,
            "type": invitation.type
        })
        return invitation

    async def accept_invite(self, user: User, group_id: int) -> GroupItem:
        group = self._get_group(group_id)

        # a dismissed (read) invitation can still be accepted, a declined one cannot
        invitations = [
            i for i in self._invitations_for(user.id, group_id)
            if _meta(i).get("status") != "declined"
        ]
        if not invitations:
            raise NotFoundError("Invitation not found")

        if not self._get_membership(group_id, user.id):
            self.db.add(GroupMember(group_id=group_id, user_id=user.id, role="member"))
        for invitation in invitations:
            invitation.is_read = True
        commit_or_raise(self.db)

        # existing members and the newcomer all hear about it
        await self.broadcaster.emit_to_group(group_id, "group_member_joined", {
            "group_id": group_id,
            "user": {"id": user.id, "name": user.name, "avatar": user.avatar_url}
        })
        return GroupItem.model_validate(group)

    async def decline_invite(self, user: User, group_id: int) -> int:
        self._get_group(group_id)

        invitations = [
            i for i in self._invitations_for(user.id, group_id)
            if _meta(i).get("status") != "declined"
        ]
        if not invitations:
            raise NotFoundError("Invitation not found or already processed")

        for invitation in invitations:
            invitation.is_read = True
            invitation.meta = {**_meta(invitation), "status": "declined"}
        commit_or_raise(self.db)

        payload = {"group_id": group_id, "user_id": user.id}
        await self.broadcaster.emit_to_user(user.id, "group_invite_declined", payload)
        await self.broadcaster.emit_to_group(group_id, "group_invite_declined", payload)
        return len(invitations)

    async def remove_members(self, actor: User, group_id: int, member_ids: List[int]) -> List[int]:
        self._get_group(group_id)
        membership = self._require_membership(group_id, actor.id)
        if membership.role != "owner":
            raise ForbiddenError("Only the group owner can remove members")

        current = set(self.broadcaster.group_member_ids(group_id))
        removed = [uid for uid in dict.fromkeys(member_ids) if uid in current and uid != actor.id]
        if not removed:
            return []

        self.db.query(GroupMember).filter(
            GroupMember.group_id == group_id,
            GroupMember.user_id.in_(removed)
        ).delete(synchronize_session=False)
        commit_or_raise(self.db)
        logger.info(f"User {actor.id} removed {removed} from group {group_id}")

        payload = {"group_id": group_id, "removed": removed}
        await self.broadcaster.emit_to_users(removed, "group_member_removed", payload)
        await self.broadcaster.emit_to_group(group_id, "group_members_removed", payload)
        return removed

    async def leave_group(self, user: User, group_id: int) -> GroupLeaveResponse:
        group = self._get_group(group_id)
        membership = self._get_membership(group_id, user.id)
        if not membership:
            raise NotFoundError("Not in group")

        self.db.delete(membership)
        self.db.flush()

        remaining = self.db.query(GroupMember).filter(
            GroupMember.group_id == group_id
        ).order_by(GroupMember.joined_at.asc(), GroupMember.id.asc()).all()

        notice = None
        if not remaining:
            self.db.query(Notification).filter(
                Notification.group_id == group_id
            ).delete(synchronize_session=False)
            self.db.delete(group)
            owner_id = None
        else:
            if group.owner_id == user.id:
                successor = remaining[0]
                successor.role = "owner"
                group.owner_id = successor.user_id
            owner_id = group.owner_id
            notice = GroupMessage(
                group_id=group_id,
                sender_id=user.id,
                content=f"{user.name or 'A member'} left the group",
                message_type="system",
                status="sent"
            )
            self.db.add(notice)
        commit_or_raise(self.db)

        payload = {"group_id": group_id, "user_id": user.id}
        await self.broadcaster.emit_to_user(user.id, "group_left", payload)
        if notice is not None:
            self.db.refresh(notice)
            await self.broadcaster.emit_to_group(group_id, "group_member_left", {**payload, "owner_id": owner_id})
            await self.broadcaster.emit_to_group(group_id, "group_message", group_message_payload(notice, user))

        return GroupLeaveResponse(
            group_id=group_id,
            user_id=user.id,
            owner_id=owner_id,
            group_deleted=not remaining
        )

    # ─── messages ───

    async def get_group_messages(
            self,
            user_id: int,
            group_id: int,
            page: int = 1,
            limit: int = 20
    ) -> List[GroupMessageItem]:
        self._require_membership(group_id, user_id)
        page = max(1, page)
        limit = max(1, min(100, limit))

        messages = self.db.query(GroupMessage).filter(
            GroupMessage.group_id == group_id
        ).order_by(
            GroupMessage.created_at.desc(), GroupMessage.id.desc()
        ).offset((page - 1) * limit).limit(limit).all()

        visible = [m for m in messages if is_visible(m, user_id)]
        visible.reverse()

        readers = {}
        if visible:
            rows = self.db.query(GroupMessageRead.message_id, GroupMessageRead.user_id).filter(
                GroupMessageRead.message_id.in_([m.id for m in visible])
            ).order_by(GroupMessageRead.read_at).all()
            for row in rows:
                readers.setdefault(row.message_id, []).append(row.user_id)

        result = []
        for msg in visible:
            item = GroupMessageItem.model_validate(msg)
            item.read_by = readers.get(msg.id, [])
            result.append(item)
        return result

    async def send_group_message(self, sender: User, group_id: int, data: GroupMessageCreate) -> GroupMessageItem:
        group = self._get_group(group_id)
        membership = self._require_membership(group_id, sender.id)
        if group.admins_only and (membership.role or "member") not in ("owner", "admin"):
            raise ForbiddenError("Only admins can send messages in this group")

        message = GroupMessage(
            group_id=group_id,
            sender_id=sender.id,
            content=data.content,
            message_type=data.message_type.value,
            status="sent"
        )
        self.db.add(message)
        commit_or_raise(self.db)
        self.db.refresh(message)

        payload = group_message_payload(message, sender)
        member_ids = self.broadcaster.group_member_ids(group_id)
        await self.broadcaster.emit_to_users(member_ids, "group_message", payload)

        if any(uid != sender.id and self.broadcaster.is_user_online(uid) for uid in member_ids):
            message.status = "delivered"
            commit_or_raise(self.db)
            await self.broadcaster.emit_to_user(sender.id, "group_message_delivered", {
                "message_id": message.id,
                "group_id": group_id,
                "status": "delivered"
            })

        await self.broadcaster.emit_to_admins("admin_group_message_created", payload)
        return GroupMessageItem.model_validate(message)

    async def edit_group_message(self, user_id: int, group_id: int, message_id: int, content: str) -> GroupMessageItem:
        self._require_membership(group_id, user_id)

        message = self.db.query(GroupMessage).filter(
            GroupMessage.id == message_id,
            GroupMessage.group_id == group_id
        ).first()
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

        await self.broadcaster.emit_to_group(group_id, "group_message_edited", {
            "id": message.id,
            "group_id": group_id,
            "content": message.content,
            "updated_at": iso_time(message.updated_at)
        })
        return GroupMessageItem.model_validate(message)

    async def recall_group_messages(
            self,
            user_id: int,
            group_id: int,
            message_ids: List[int],
            scope: RecallScope
    ) -> GroupRecallResponse:
        self._require_membership(group_id, user_id)

        ids = list(dict.fromkeys(message_ids))
        messages = self.db.query(GroupMessage).filter(
            GroupMessage.id.in_(ids),
            GroupMessage.group_id == group_id
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

        payload = {"group_id": group_id, "scope": scope.value, "message_ids": ids}
        if scope == RecallScope.SELF:
            await self.broadcaster.emit_to_user(user_id, "group_messages_recalled", payload)
        else:
            await self.broadcaster.emit_to_group(group_id, "group_messages_recalled", payload)
        await self.broadcaster.emit_to_admins("admin_group_messages_recalled", {**payload, "user_id": user_id})

        return GroupRecallResponse(group_id=group_id, scope=scope, message_ids=ids)

    # ─── read state ───

    async def mark_group_read(self, reader: User, group_id: int) -> GroupReadResponse:
        self._get_group(group_id)
        receipts = self.read_state.mark_group_read(group_id, reader.id)

        emitted = 0
        if receipts:
            senders = self._senders_for(receipts)
            member_ids = self.broadcaster.group_member_ids(group_id)
            for receipt in receipts:
                sender = senders.get(receipt.message.sender_id)
                if not sender or not receipts_enabled(reader, sender):
                    continue
                emitted += 1
                await self.broadcaster.emit_to_users(
                    [uid for uid in member_ids if uid != reader.id],
                    "group_message_read",
                    receipt_payload(receipt, reader, group_id=group_id)
                )

        return GroupReadResponse(group_id=group_id, marked_count=len(receipts), read_receipts_count=emitted)

    async def mark_message_read(self, reader: User, message_id: int) -> GroupMessageRead:
        receipt = self.read_state.mark_group_message_read(message_id, reader.id)
        message = receipt.message
        sender = message.sender
        if sender and receipts_enabled(reader, sender):
            await self.broadcaster.emit_to_group(
                message.group_id,
                "group_message_read",
                receipt_payload(receipt, reader, group_id=message.group_id),
                exclude=reader.id
            )
        return receipt

    async def unread_count(self, user_id: int, group_id: int) -> int:
        self._require_membership(group_id, user_id)
        return self.read_state.count_unread_group(group_id, user_id)

    # ─── helpers ───

    def _get_group(self, group_id: int) -> Group:
        group = self.db.query(Group).filter(Group.id == group_id).first()
        if not group:
            raise NotFoundError("Group not found")
        return group

    def _get_membership(self, group_id: int, user_id: int) -> Optional[GroupMember]:
        return self.db.query(GroupMember).filter(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id
        ).first()

    def _require_membership(self, group_id: int, user_id: int) -> GroupMember:
        membership = self._get_membership(group_id, user_id)
        if not membership:
            raise ForbiddenError("Not a group member")
        return membership

    def _invitations_for(self, user_id: int, group_id: int) -> List[Notification]:
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == "group_invite",
            Notification.group_id == group_id
        ).all()

    def _senders_for(self, receipts) -> dict:
        sender_ids = {r.message.sender_id for r in receipts}
        return {u.id: u for u in self.db.query(User).filter(User.id.in_(sender_ids)).all()}


def group_message_payload(message: GroupMessage, sender: User) -> dict:
    return {
        "id": message.id,
        "group_id": message.group_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "message_type": message.message_type,
        "status": "delivered",
        "created_at": iso_time(message.created_at),
        "sender_name": sender.name,
        "sender_avatar": sender.avatar_url,
    }


def _meta(notification: Notification) -> dict:
    return notification.meta if isinstance(notification.meta, dict) else {}
