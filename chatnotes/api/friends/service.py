import logging
from typing import List

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from chatnotes.api.friends.models import Friendship
from chatnotes.api.friends.schemas import FriendshipResponse, FriendshipCreate, OnlineFriendsResponse
from chatnotes.api.notifications.models import Notification
from chatnotes.api.users.models import User
from chatnotes.core.exceptions import NotFoundError, BadRequestError, commit_or_raise
from chatnotes.websocket.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


class FriendshipService:
    def __init__(self, db: Session, broadcaster: Broadcaster):
        self.db = db
        self.broadcaster = broadcaster

    def get_friends(self, user_id: int) -> List[FriendshipResponse]:
        friendships = self.db.query(Friendship).filter(
            or_(Friendship.user_id == user_id, Friendship.friend_id == user_id),
            Friendship.status == "accepted"
        ).all()
        return [FriendshipResponse.model_validate(fs) for fs in friendships]

    def get_friend_requests(self, user_id: int) -> List[FriendshipResponse]:
        requests = self.db.query(Friendship).filter(
            Friendship.friend_id == user_id, Friendship.status == "pending"
        ).order_by(Friendship.created_at.desc()).all()
        return [FriendshipResponse.model_validate(r) for r in requests]

    async def add_friend(self, data: FriendshipCreate, current_user: User) -> FriendshipResponse:
        if data.friend_id == current_user.id:
            raise BadRequestError("Cannot add yourself as a friend")
        friend = self.db.query(User).filter(User.id == data.friend_id).first()
        if not friend:
            raise NotFoundError("User not found")

        existing = self._find_between(current_user.id, data.friend_id)
        if existing:
            if existing.status == "accepted":
                raise BadRequestError("Already friends")
            raise BadRequestError("Friend request already sent")

        friendship = Friendship(user_id=current_user.id, friend_id=data.friend_id, status="pending")
        self.db.add(friendship)
        self.db.flush()

        notification = Notification(
            user_id=data.friend_id,
            type="friend_request",
            from_user_id=current_user.id,
            meta={"friendshipId": friendship.id},
            is_read=False
        )
        self.db.add(notification)
        commit_or_raise(self.db)
        self.db.refresh(friendship)

        await self.broadcaster.emit_to_user(data.friend_id, "new_friend_request", {
            "friendship_id": friendship.id,
            "sender_id": current_user.id,
            "sender_name": current_user.name,
            "sender_avatar": current_user.avatar_url
        })
        await self.broadcaster.emit_to_admins("admin_notification_created", {
            "user_id": data.friend_id,
            "type": notification.type
        })
        return FriendshipResponse.model_validate(friendship)

    async def accept_friend_request(self, friendship_id: int, current_user: User) -> FriendshipResponse:
        friendship = self._pending_request(friendship_id, current_user.id)
        friendship.status = "accepted"
        self._mark_request_notifications_read(friendship)
        commit_or_raise(self.db)
        self.db.refresh(friendship)

        await self.broadcaster.emit_to_user(friendship.user_id, "friend_request_accepted", {
            "friendship_id": friendship.id,
            "accepter_id": current_user.id,
            "accepter_name": current_user.name
        })
        return FriendshipResponse.model_validate(friendship)

    async def reject_friend_request(self, friendship_id: int, current_user: User):
        friendship = self._pending_request(friendship_id, current_user.id)
        requester_id = friendship.user_id
        self._mark_request_notifications_read(friendship)
        self.db.delete(friendship)
        commit_or_raise(self.db)

        await self.broadcaster.emit_to_user(requester_id, "friend_request_rejected", {
            "friendship_id": friendship_id,
            "rejecter_id": current_user.id,
            "rejecter_name": current_user.name
        })

    def remove_friend(self, friendship_id: int, current_user_id: int):
        friendship = self.db.query(Friendship).filter(
            Friendship.id == friendship_id,
            or_(Friendship.user_id == current_user_id, Friendship.friend_id == current_user_id)
        ).first()
        if not friendship:
            raise NotFoundError("Friendship not found")
        self.db.delete(friendship)
        commit_or_raise(self.db)

    def get_online_friends(self, current_user_id: int) -> OnlineFriendsResponse:
        rows = self.db.query(Friendship.user_id, Friendship.friend_id).filter(
            or_(Friendship.user_id == current_user_id, Friendship.friend_id == current_user_id),
            Friendship.status == "accepted"
        ).all()
        friend_ids = [r.friend_id if r.user_id == current_user_id else r.user_id for r in rows]
        online_ids = [fid for fid in friend_ids if self.broadcaster.is_user_online(fid)]
        return OnlineFriendsResponse(
            online_friend_ids=online_ids,
            total_friends=len(friend_ids),
            online_count=len(online_ids)
        )

    def _find_between(self, user_id: int, other_id: int):
        return self.db.query(Friendship).filter(
            or_(
                and_(Friendship.user_id == user_id, Friendship.friend_id == other_id),
                and_(Friendship.user_id == other_id, Friendship.friend_id == user_id)
            )
        ).first()

    def _pending_request(self, friendship_id: int, addressee_id: int) -> Friendship:
        friendship = self.db.query(Friendship).filter(
            Friendship.id == friendship_id,
            Friendship.friend_id == addressee_id,
            Friendship.status == "pending"
        ).first()
        if not friendship:
            raise NotFoundError("Friend request not found")
        return friendship

    def _mark_request_notifications_read(self, friendship: Friendship):
        self.db.query(Notification).filter(
            Notification.user_id == friendship.friend_id,
            Notification.type == "friend_request",
            Notification.from_user_id == friendship.user_id,
            Notification.is_read == False
        ).update({"is_read": True}, synchronize_session=False)
