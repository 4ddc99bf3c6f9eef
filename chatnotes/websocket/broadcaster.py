import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from chatnotes.api.groups.models import GroupMember
from chatnotes.api.users.models import User

logger = logging.getLogger(__name__)


def user_room(user_id: int) -> str:
    return f"user_{user_id}"


class Broadcaster:
    """
    Maps domain events to socket rooms and emits them.

    ``transport`` is anything with ``async emit(event, data, room)`` and
    ``is_user_online(user_id)``; in production it is the RealtimeGateway.
    Delivery is best effort: a room with no connections is a no-op and a
    failed emit is logged, never raised.
    """

    def __init__(self, transport, db: Session):
        self.transport = transport
        self.db = db

    async def emit(self, event: str, payload: dict, targets: Iterable[str]):
        for room in _unique(targets):
            try:
                await self.transport.emit(event, payload, room=room)
            except Exception as e:
                logger.warning(f"Failed to emit {event} to {room}: {e}")

    async def emit_to_user(self, user_id: int, event: str, payload: dict):
        await self.emit(event, payload, [user_room(user_id)])

    async def emit_to_users(self, user_ids: Iterable[int], event: str, payload: dict):
        await self.emit(event, payload, [user_room(uid) for uid in user_ids])

    async def emit_to_group(
            self,
            group_id: int,
            event: str,
            payload: dict,
            exclude: Optional[int] = None
    ):
        """Emit to every member's personal room, membership snapshotted now."""
        member_ids = self.group_member_ids(group_id)
        targets = [user_room(uid) for uid in member_ids if uid != exclude]
        await self.emit(event, payload, targets)

    async def emit_to_admins(self, event: str, payload: dict):
        try:
            admins = self.db.query(User.id).filter(
                User.role == "admin",
                User.is_active == True
            ).all()
        except Exception as e:
            logger.warning(f"Could not load admins for {event}: {e}")
            return
        await self.emit(event, payload, [user_room(a.id) for a in admins])

    def group_member_ids(self, group_id: int) -> List[int]:
        rows = self.db.query(GroupMember.user_id).filter(
            GroupMember.group_id == group_id
        ).order_by(GroupMember.id).all()
        return [r.user_id for r in rows]

    def is_user_online(self, user_id: int) -> bool:
        try:
            return bool(self.transport.is_user_online(user_id))
        except Exception as e:
            logger.warning(f"Presence lookup for user {user_id} failed: {e}")
            return False


def _unique(rooms: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    ordered = []
    for room in rooms:
        if room not in seen:
            seen.add(room)
            ordered.append(room)
    return ordered
