import logging
from typing import Dict, Optional, Set

import socketio
from sqlalchemy import or_

from chatnotes.api.auth.utils import decode_access_token
from chatnotes.api.chats.service import ChatService
from chatnotes.api.friends.models import Friendship
from chatnotes.api.groups.service import GroupService
from chatnotes.api.users.models import User
from chatnotes.core.exceptions import ServiceError
from chatnotes.websocket.broadcaster import Broadcaster, user_room

logger = logging.getLogger(__name__)


class RealtimeGateway:
    """
    Socket.IO server plus the presence registry.

    This object is the transport handle handed to every Broadcaster: it
    provides ``emit(event, data, room)`` and ``is_user_online(user_id)``.
    Each connection joins its user room ``user_<id>``; group events reach
    members through their user rooms, so membership changes need no rejoin.
    """

    def __init__(self, session_factory, cors_origins=None):
        self.session_factory = session_factory
        self.sio = socketio.AsyncServer(
            async_mode='asgi',
            cors_allowed_origins=cors_origins or [],
            logger=False,
            engineio_logger=False,
            allow_upgrades=True,
        )
        # user_id -> set of session ids
        self.user_connections: Dict[int, Set[str]] = {}
        # session id -> user_id
        self.session_users: Dict[str, int] = {}

        self.sio.on('connect', self.connect)
        self.sio.on('disconnect', self.disconnect)
        self.sio.on('message_read', self.on_message_read)
        self.sio.on('group_message_read', self.on_group_message_read)
        self.sio.on('join_chat', self.on_join_chat)

    # ═══════════════════════════════════════════
    # TRANSPORT
    # ═══════════════════════════════════════════

    async def emit(self, event: str, data: dict, room: str):
        await self.sio.emit(event, data, room=room)

    def is_user_online(self, user_id: int) -> bool:
        return user_id in self.user_connections

    def get_connection_stats(self) -> dict:
        return {
            "total_connections": sum(len(sessions) for sessions in self.user_connections.values()),
            "unique_users": len(self.user_connections),
            "connections_per_user": {
                user_id: len(sessions)
                for user_id, sessions in self.user_connections.items()
            }
        }

    # ═══════════════════════════════════════════
    # CONNECTION LIFECYCLE
    # ═══════════════════════════════════════════

    async def connect(self, sid, environ, auth=None):
        token = auth.get('token') if isinstance(auth, dict) else None
        username = decode_access_token(token) if token else None
        if not username:
            logger.info(f"Rejected socket {sid}: missing or invalid token")
            return False

        db = self.session_factory()
        try:
            user = db.query(User).filter(User.username == username).first()
            if not user or not user.is_active:
                logger.info(f"Rejected socket {sid}: unknown or inactive user {username}")
                return False

            user_id = user.id

            first_connection = user_id not in self.user_connections
            self.user_connections.setdefault(user_id, set()).add(sid)
            self.session_users[sid] = user_id

            await self.sio.enter_room(sid, user_room(user_id))

            logger.info(f"User {user_id} connected (session {sid}, {len(self.user_connections[user_id])} active)")

            if first_connection:
                await self._broadcast_online_status(db, user_id, True)
        finally:
            db.close()

        return True

    async def disconnect(self, sid, reason=None):
        user_id = self.session_users.pop(sid, None)
        if user_id is None:
            logger.debug(f"Disconnect of unknown session {sid}")
            return

        sessions = self.user_connections.get(user_id, set())
        sessions.discard(sid)
        logger.info(f"User {user_id} disconnected (session {sid})")

        if not sessions:
            self.user_connections.pop(user_id, None)
            db = self.session_factory()
            try:
                await self._broadcast_online_status(db, user_id, False)
            finally:
                db.close()

    async def _broadcast_online_status(self, db, user_id: int, is_online: bool):
        friendships = db.query(Friendship).filter(
            or_(Friendship.user_id == user_id, Friendship.friend_id == user_id),
            Friendship.status == "accepted"
        ).all()
        friend_ids = {
            fs.friend_id if fs.user_id == user_id else fs.user_id
            for fs in friendships
        }
        online_friends = [fid for fid in friend_ids if self.is_user_online(fid)]
        await Broadcaster(self, db).emit_to_users(online_friends, 'user_online_status', {
            'user_id': user_id,
            'is_online': is_online
        })

    # ═══════════════════════════════════════════
    # READ RECEIPTS
    # ═══════════════════════════════════════════

    async def on_message_read(self, sid, data):
        """Client acknowledged a single direct message: {"message_id": int}"""
        message_id = _int_field(data, 'message_id')
        return await self._with_user(sid, message_id, self._mark_message_read)

    async def on_group_message_read(self, sid, data):
        """Client acknowledged a single group message: {"message_id": int}"""
        message_id = _int_field(data, 'message_id')
        return await self._with_user(sid, message_id, self._mark_group_message_read)

    async def on_join_chat(self, sid, data):
        """Opening a conversation marks everything from the partner read: {"user_id": int}"""
        other_id = _int_field(data, 'user_id')
        return await self._with_user(sid, other_id, self._mark_conversation_read)

    async def _mark_message_read(self, db, user, message_id):
        receipt = await ChatService(db, Broadcaster(self, db)).mark_message_read(user, message_id)
        return {"success": True, "message_id": receipt.message_id, "read_at": receipt.read_at.isoformat()}

    async def _mark_group_message_read(self, db, user, message_id):
        receipt = await GroupService(db, Broadcaster(self, db)).mark_message_read(user, message_id)
        return {"success": True, "message_id": receipt.message_id, "read_at": receipt.read_at.isoformat()}

    async def _mark_conversation_read(self, db, user, other_id):
        marked = await ChatService(db, Broadcaster(self, db)).mark_conversation_read(user, other_id)
        return {"success": True, "marked_count": marked}

    async def _with_user(self, sid, target_id: Optional[int], action):
        user_id = self.session_users.get(sid)
        if user_id is None:
            return {"success": False, "error": "unauthorized"}
        if target_id is None:
            return {"success": False, "error": "bad_request"}

        db = self.session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                return {"success": False, "error": "unauthorized"}
            return await action(db, user, target_id)
        except ServiceError as e:
            logger.info(f"Socket action for user {user_id} failed: {e.detail}")
            return {"success": False, "error": e.kind, "message": e.detail}
        finally:
            db.close()


def _int_field(data, key: str) -> Optional[int]:
    if not isinstance(data, dict):
        return None
    try:
        return int(data.get(key))
    except (TypeError, ValueError):
        return None
