import logging
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from chatnotes.api.chats.service import ChatService
from chatnotes.api.users.models import BlockedUser, User
from chatnotes.api.users.schemas import ChatPreferencesUpdate
from chatnotes.core.exceptions import NotFoundError, BadRequestError, commit_or_raise
from chatnotes.websocket.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db: Session, broadcaster: Broadcaster):
        self.chat_service = ChatService(db, broadcaster)
        self.broadcaster = broadcaster
        self.db = db

    def search_users(self, query: str, limit: int, exclude_user_id: int) -> List[User]:
        if not query or len(query) < 2:
            raise BadRequestError("Query must be at least 2 characters")
        search_pattern = f"%{query.lower()}%"
        return self.db.query(User).filter(
            (func.lower(User.name).like(search_pattern)) | (func.lower(User.username).like(search_pattern)),
            User.id != exclude_user_id,
            User.is_active == True
        ).limit(limit).all()

    def update_chat_preferences(self, user: User, data: ChatPreferencesUpdate) -> User:
        if data.read_status_enabled is not None:
            user.read_status_enabled = data.read_status_enabled
        if data.message_privacy is not None:
            user.message_privacy = data.message_privacy.value
        commit_or_raise(self.db)
        self.db.refresh(user)
        return user

    def check_can_message(self, user_id: int, current_user_id: int):
        receiver = self.db.query(User).filter(User.id == user_id).first()
        if not receiver:
            raise NotFoundError("User not found")
        if not receiver.is_active:
            return False, "Cannot send message to deactivated account"
        return self.chat_service.can_send_message_to_user(current_user_id, receiver)

    def check_user_online_status(self, user_id: int) -> dict:
        return {
            "user_id": user_id,
            "is_online": self.broadcaster.is_user_online(user_id)
        }

    # ─── blocking ───

    async def block_user(self, current_user: User, target_id: int):
        if target_id == current_user.id:
            raise BadRequestError("You cannot block yourself")
        target = self.db.query(User).filter(User.id == target_id).first()
        if not target:
            raise NotFoundError("User not found")

        record = self._find_block(current_user.id, target_id)
        created = record is None
        if created:
            record = BlockedUser(user_id=current_user.id, blocked_user_id=target_id)
            self.db.add(record)
            commit_or_raise(self.db)
            self.db.refresh(record)
            logger.info(f"User {current_user.id} blocked user {target_id}")

        payload = {"user_id": current_user.id, "target_id": target_id}
        await self.broadcaster.emit_to_users([current_user.id, target_id], "user_blocked", payload)
        return record, created

    async def unblock_user(self, current_user: User, target_id: int) -> int:
        deleted = self.db.query(BlockedUser).filter(
            BlockedUser.user_id == current_user.id,
            BlockedUser.blocked_user_id == target_id
        ).delete(synchronize_session=False)
        commit_or_raise(self.db)

        if deleted:
            payload = {"user_id": current_user.id, "target_id": target_id}
            await self.broadcaster.emit_to_users([current_user.id, target_id], "user_unblocked", payload)
        return deleted

    def get_blocked_users(self, user_id: int) -> List[User]:
        return self.db.query(User).join(
            BlockedUser, BlockedUser.blocked_user_id == User.id
        ).filter(BlockedUser.user_id == user_id).order_by(BlockedUser.created_at.desc()).all()

    def _find_block(self, user_id: int, target_id: int):
        return self.db.query(BlockedUser).filter(
            BlockedUser.user_id == user_id,
            BlockedUser.blocked_user_id == target_id
        ).first()
