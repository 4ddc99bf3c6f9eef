from typing import List, Optional

from sqlalchemy import func, desc
from sqlalchemy.orm import Session

from chatnotes.api.notifications.models import Notification
from chatnotes.core.exceptions import NotFoundError, BadRequestError, commit_or_raise
from chatnotes.websocket.broadcaster import Broadcaster

COLLAPSE_MESSAGE_BY_OTHER = "message_by_other"


class NotificationService:
    def __init__(self, db: Session, broadcaster: Broadcaster):
        self.db = db
        self.broadcaster = broadcaster

    def get_notifications(
            self,
            user_id: int,
            limit: int = 50,
            unread_only: bool = False,
            collapse: Optional[str] = None
    ) -> List[Notification]:
        limit = max(1, min(200, limit))
        query = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type != "bell_dismiss"
        )
        if unread_only:
            query = query.filter(Notification.is_read == False)

        rows = query.order_by(
            desc(Notification.updated_at), desc(Notification.created_at)
        ).limit(limit).all()

        if collapse is None:
            return rows
        if collapse != COLLAPSE_MESSAGE_BY_OTHER:
            raise BadRequestError(f"Unknown collapse mode: {collapse}")
        return _collapse_messages_by_other(rows)

    def get_unread_count(self, user_id: int) -> int:
        count = (
            self.db.query(func.count(Notification.id))
            .filter(
                Notification.user_id == user_id,
                Notification.is_read == False,
                Notification.type != "bell_dismiss"
            )
            .scalar()
        )
        return count or 0

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        notification = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .first()
        )
        if not notification:
            raise NotFoundError("Notification not found")
        notification.is_read = True
        commit_or_raise(self.db)
        return notification

    async def mark_all_read(self, user_id: int) -> int:
        updated = self.db.query(Notification).filter(
            Notification.user_id == user_id, Notification.is_read == False
        ).update({"is_read": True}, synchronize_session=False)
        commit_or_raise(self.db)

        await self.broadcaster.emit_to_admins("admin_notifications_marked_all_read", {"user_id": user_id})
        return updated


def _collapse_messages_by_other(rows: List[Notification]) -> List[Notification]:
    """Keep the newest ``message`` notification per counterpart, others untouched."""
    newest = {}
    others = []
    for row in rows:
        if row.type != "message":
            others.append(row)
            continue
        meta = row.meta if isinstance(row.meta, dict) else {}
        other_id = meta.get("otherUserId")
        if not isinstance(other_id, int) or isinstance(other_id, bool):
            other_id = row.from_user_id
        if other_id is None:
            continue
        prev = newest.get(other_id)
        if prev is None or _activity(row) > _activity(prev):
            newest[other_id] = row

    combined = list(newest.values()) + others
    combined.sort(key=_activity, reverse=True)
    return combined


def _activity(row: Notification):
    return row.updated_at or row.created_at
