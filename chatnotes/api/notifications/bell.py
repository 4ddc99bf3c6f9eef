import logging
import math
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, desc
from sqlalchemy.orm import Session

from chatnotes.api.chats.read_state import ReadStateTracker
from chatnotes.api.chats.visibility import is_visible
from chatnotes.api.groups.models import Group, GroupMember, GroupMessage
from chatnotes.api.notifications.models import Notification
from chatnotes.core.config import Settings, settings
from chatnotes.core.exceptions import BadRequestError, commit_or_raise

logger = logging.getLogger(__name__)

FRIEND_REQUESTS_ITEM_ID = -1001
GROUP_INVITES_ITEM_ID = -1002
GROUP_ITEM_OFFSET = -300000

DISMISS_SCOPES = ("fr", "inv", "dm", "group")


class Watermarks:
    """Latest bell_dismiss timestamp per scope (and per counterpart/group)."""

    def __init__(self):
        self.fr: Optional[datetime] = None
        self.inv: Optional[datetime] = None
        self.dm: Dict[int, datetime] = {}
        self.group: Dict[int, datetime] = {}

    def add(self, meta: dict, at: datetime):
        scope = meta.get("scope")
        if scope == "fr":
            self.fr = _latest(self.fr, at)
        elif scope == "inv":
            self.inv = _latest(self.inv, at)
        elif scope == "dm" and _is_int(meta.get("otherUserId")):
            key = meta["otherUserId"]
            self.dm[key] = _latest(self.dm.get(key), at)
        elif scope == "group" and _is_int(meta.get("groupId")):
            key = meta["groupId"]
            self.group[key] = _latest(self.group.get(key), at)

    @staticmethod
    def suppresses(mark: Optional[datetime], ts: Optional[datetime]) -> bool:
        return mark is not None and ts is not None and ts <= mark


class BellAggregator:
    """
    Builds the bell feed: one item per friend-request batch, invitation batch,
    DM counterpart and active group. Dismissal is a ``bell_dismiss`` tombstone
    row; everything in its scope up to its ``created_at`` is suppressed and
    reappears with newer activity. Nothing is cached, the feed is recomputed
    on every call.
    """

    def __init__(self, db: Session, config: Settings = settings, read_state: Optional[ReadStateTracker] = None):
        self.db = db
        self.config = config
        self.read_state = read_state or ReadStateTracker(db)

    # ─── feed ───

    def build_bell_feed(
            self,
            user_id: int,
            page: int = 1,
            limit: Optional[int] = None,
            base_url: Optional[str] = None
    ) -> dict:
        page = max(1, page or 1)
        if limit is None:
            limit = self.config.BELL_FEED_DEFAULT_LIMIT
        limit = max(1, min(self.config.BELL_FEED_MAX_LIMIT, limit))

        marks = self.load_watermarks(user_id)

        items = []
        items.extend(self._friend_request_items(user_id, marks, base_url))
        items.extend(self._invite_items(user_id, marks, base_url))
        items.extend(self._direct_message_items(user_id, marks, base_url))
        items.extend(self._group_items(user_id, marks, base_url))

        items.sort(key=lambda item: item["time"], reverse=True)

        total_items = len(items)
        total_pages = math.ceil(total_items / limit)
        offset = (page - 1) * limit

        return {
            "items": items[offset:offset + limit],
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages,
                "totalItems": total_items,
                "itemsPerPage": limit,
                "hasNextPage": page < total_pages,
                "hasPrevPage": page > 1,
            }
        }

    def load_watermarks(self, user_id: int) -> Watermarks:
        rows = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == "bell_dismiss"
        ).order_by(desc(Notification.created_at)).limit(self.config.BELL_DISMISS_SCAN_LIMIT).all()

        marks = Watermarks()
        for row in rows:
            marks.add(_meta(row), row.created_at)
        return marks

    # an item only exists while something in it is still pending after its watermark

    def _friend_request_items(self, user_id: int, marks: Watermarks, base_url: Optional[str]) -> List[dict]:
        rows = self._notifications_of_type(user_id, "friend_request")
        pending = _pending_after(rows, marks.fr)
        if not pending:
            return []

        latest = rows[0]
        sender = latest.from_user
        return [_item(
            FRIEND_REQUESTS_ITEM_ID, "fr", None, "Friend requests",
            _absolutize(sender.avatar_url if sender else None, base_url),
            len(pending), _activity_time(latest)
        )]

    def _invite_items(self, user_id: int, marks: Watermarks, base_url: Optional[str]) -> List[dict]:
        rows = self._notifications_of_type(user_id, "group_invite")
        pending = _pending_after(rows, marks.inv)
        if not pending:
            return []

        group = pending[0].group
        name = "Group invitations"
        if len(pending) == 1 and group is not None:
            name = group.name or name
        return [_item(
            GROUP_INVITES_ITEM_ID, "inv", None, name,
            _absolutize(group.avatar_url if group else None, base_url),
            len(pending), _activity_time(rows[0])
        )]

    def _direct_message_items(self, user_id: int, marks: Watermarks, base_url: Optional[str]) -> List[dict]:
        unread = self._unread_direct_notifications(user_id)
        counts = _pending_by_counterpart(unread, marks)
        if not counts:
            return []

        recent = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == "message"
        ).order_by(
            desc(Notification.updated_at), desc(Notification.created_at)
        ).limit(self.config.BELL_DISMISS_SCAN_LIMIT).all()

        latest: Dict[int, Notification] = {}
        for row in recent + unread:
            other_id = _counterpart(row)
            if other_id not in counts:
                continue
            prev = latest.get(other_id)
            if prev is None or _activity_time(row) > _activity_time(prev):
                latest[other_id] = row

        items = []
        for other_id, row in latest.items():
            sender = row.from_user
            items.append(_item(
                other_id, "dm", other_id,
                sender.name if sender and sender.name else f"User {other_id}",
                _absolutize(sender.avatar_url if sender else None, base_url),
                counts[other_id], _activity_time(row)
            ))
        return items

    def _group_items(self, user_id: int, marks: Watermarks, base_url: Optional[str]) -> List[dict]:
        groups = self.db.query(Group).join(
            GroupMember, GroupMember.group_id == Group.id
        ).filter(GroupMember.user_id == user_id).all()

        items = []
        for group in groups:
            unread = self.read_state.unread_group_messages(group.id, user_id, since=marks.group.get(group.id))
            if not unread:
                continue

            recent = self.db.query(GroupMessage).filter(
                GroupMessage.group_id == group.id
            ).order_by(
                desc(GroupMessage.created_at), desc(GroupMessage.id)
            ).limit(self.config.GROUP_ACTIVITY_WINDOW).all()
            last_activity = next((m.created_at for m in recent if is_visible(m, user_id)), None)

            items.append(_item(
                GROUP_ITEM_OFFSET - group.id, "group", group.id,
                group.name or f"Group {group.id}",
                _absolutize(group.avatar_url, base_url),
                len(unread),
                last_activity or unread[0].created_at
            ))
        return items

    def _notifications_of_type(self, user_id: int, kind: str) -> List[Notification]:
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == kind
        ).order_by(desc(Notification.updated_at), desc(Notification.created_at)).all()

    def _unread_direct_notifications(self, user_id: int) -> List[Notification]:
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == "message",
            Notification.is_read == False
        ).order_by(
            desc(Notification.updated_at), desc(Notification.created_at)
        ).limit(self.config.BELL_DISMISS_SCAN_LIMIT).all()

    # ─── dismiss ───

    def dismiss(self, user_id: int, scope: str, target_id: Optional[int] = None) -> Notification:
        scope = (scope or "").strip()
        if scope not in DISMISS_SCOPES:
            raise BadRequestError("Invalid scope")

        meta = {"scope": scope}
        in_scope = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False
        )
        if scope == "dm":
            if target_id is None:
                raise BadRequestError("Missing otherUserId")
            meta["otherUserId"] = int(target_id)
            in_scope = in_scope.filter(
                Notification.type == "message",
                Notification.from_user_id == meta["otherUserId"]
            )
        elif scope == "group":
            if target_id is None:
                raise BadRequestError("Missing groupId")
            meta["groupId"] = int(target_id)
            in_scope = in_scope.filter(
                Notification.type == "group_message",
                Notification.group_id == meta["groupId"]
            )
        elif scope == "fr":
            in_scope = in_scope.filter(Notification.type == "friend_request")
        else:
            in_scope = in_scope.filter(Notification.type == "group_invite")

        # history stays intact, rows only flip to read
        cleared = in_scope.update({"is_read": True}, synchronize_session=False)

        tombstone = Notification(
            user_id=user_id,
            type="bell_dismiss",
            meta=meta,
            is_read=True,
            created_at=datetime.utcnow()
        )
        self.db.add(tombstone)
        commit_or_raise(self.db)
        self.db.refresh(tombstone)

        logger.info(f"User {user_id} dismissed bell scope {scope} ({cleared} notifications read)")
        return tombstone

    # ─── badge ───

    def badge_count(self, user_id: int) -> dict:
        """
        Count-based twin of the feed. Same pending rule (unread and newer than
        the scope watermark), so a scope is zero here exactly when the feed
        has no item for it.
        """
        marks = self.load_watermarks(user_id)

        fr = self._count_pending(user_id, "friend_request", marks.fr)
        inv = self._count_pending(user_id, "group_invite", marks.inv)
        dm = sum(_pending_by_counterpart(self._unread_direct_notifications(user_id), marks).values())

        group_ids = [
            row.group_id for row in
            self.db.query(GroupMember.group_id).filter(GroupMember.user_id == user_id).all()
        ]
        group = sum(
            self.read_state.count_unread_group(gid, user_id, since=marks.group.get(gid))
            for gid in group_ids
        )

        return {"total": dm + group + fr + inv, "dm": dm, "group": group, "fr": fr, "inv": inv}

    def _count_pending(self, user_id: int, kind: str, mark: Optional[datetime]) -> int:
        query = self.db.query(func.count(Notification.id)).filter(
            Notification.user_id == user_id,
            Notification.type == kind,
            Notification.is_read == False
        )
        if mark is not None:
            query = query.filter(func.coalesce(Notification.updated_at, Notification.created_at) > mark)
        return query.scalar() or 0


def _item(item_id: int, scope: str, target_id: Optional[int], name: str,
          avatar: Optional[str], count: int, time: datetime) -> dict:
    return {
        "id": item_id,
        "scope": scope,
        "target_id": target_id,
        "name": name,
        "avatar": avatar,
        "count": count,
        "time": time,
    }


def _pending_after(rows: List[Notification], mark: Optional[datetime]) -> List[Notification]:
    return [r for r in rows if not r.is_read and not Watermarks.suppresses(mark, _activity_time(r))]


def _pending_by_counterpart(rows: List[Notification], marks: Watermarks) -> Dict[int, int]:
    counts: Dict[int, int] = {}
    for row in rows:
        other_id = _counterpart(row)
        if other_id is None or row.is_read:
            continue
        if Watermarks.suppresses(marks.dm.get(other_id), _activity_time(row)):
            continue
        counts[other_id] = counts.get(other_id, 0) + 1
    return counts


def _counterpart(row: Notification) -> Optional[int]:
    other_id = _meta(row).get("otherUserId")
    return other_id if _is_int(other_id) else row.from_user_id


def _activity_time(row: Notification) -> datetime:
    return row.updated_at or row.created_at


def _latest(current: Optional[datetime], candidate: datetime) -> datetime:
    if current is None or candidate > current:
        return candidate
    return current


def _meta(row: Notification) -> dict:
    return row.meta if isinstance(row.meta, dict) else {}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _absolutize(avatar: Optional[str], base_url: Optional[str]) -> Optional[str]:
    if not avatar or not base_url:
        return avatar
    lower = avatar.lower()
    if lower.startswith(("http://", "https://", "data:")):
        return avatar
    base = base_url.rstrip("/")
    return f"{base}{avatar}" if avatar.startswith("/") else f"{base}/{avatar}"
