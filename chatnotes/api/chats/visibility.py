"""
Per-viewer visibility of direct and group messages.

Both ``Message`` and ``GroupMessage`` carry ``is_deleted_for_all`` and a
``deleted_for_user_ids`` column holding a JSON list of user ids. The list is
decoded here and nowhere else. An unreadable list is treated as empty so a
broken marker never hides messages.
"""
import json
import logging
from typing import Any, Iterable, List

logger = logging.getLogger(__name__)


def decode_deleted_for(raw: Any) -> List[int]:
    if raw is None or raw == "":
        return []

    value = raw
    if isinstance(raw, (str, bytes)):
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning(f"Malformed deleted_for_user_ids {raw!r}, treating as empty")
            return []

    if not isinstance(value, list):
        logger.warning(f"deleted_for_user_ids is not a list: {raw!r}, treating as empty")
        return []

    ids: List[int] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            continue
        if item not in ids:
            ids.append(item)
    return ids


def encode_deleted_for(ids: Iterable[int]) -> str:
    unique: List[int] = []
    for user_id in ids:
        if user_id not in unique:
            unique.append(int(user_id))
    return json.dumps(unique)


def is_visible(message, viewer_id: int) -> bool:
    if message.is_deleted_for_all:
        return False
    return viewer_id not in decode_deleted_for(message.deleted_for_user_ids)


def hide_for(message, user_id: int) -> bool:
    """Hide the message for one user. Returns False if it was already hidden."""
    ids = decode_deleted_for(message.deleted_for_user_ids)
    if user_id in ids:
        return False
    ids.append(user_id)
    message.deleted_for_user_ids = encode_deleted_for(ids)
    return True


def filter_visible(messages, viewer_id: int) -> list:
    return [m for m in messages if is_visible(m, viewer_id)]
