from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from chatnotes.api.auth.dependencies import get_current_active_user
from chatnotes.api.notifications.bell import BellAggregator
from chatnotes.api.notifications.schemas import (
    BellBadgeResponse, BellDismissRequest, BellDismissResponse, BellFeedResponse,
    NotificationItem, UnreadNotificationsResponse
)
from chatnotes.api.notifications.service import NotificationService
from chatnotes.api.users.models import User
from chatnotes.database.database import get_db
from chatnotes.websocket.broadcaster import Broadcaster
from chatnotes.websocket.dependencies import get_broadcaster

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


def get_notification_service(
        db: Session = Depends(get_db),
        broadcaster: Broadcaster = Depends(get_broadcaster)
) -> NotificationService:
    return NotificationService(db, broadcaster)


def get_bell_aggregator(db: Session = Depends(get_db)) -> BellAggregator:
    return BellAggregator(db)


@router.get("/", response_model=List[NotificationItem])
async def get_notifications(
        limit: int = 50,
        unread_only: bool = False,
        collapse: Optional[str] = None,
        current_user: User = Depends(get_current_active_user),
        service: NotificationService = Depends(get_notification_service)
):
    return service.get_notifications(current_user.id, limit, unread_only, collapse)


@router.get("/unread-count", response_model=UnreadNotificationsResponse)
async def get_unread_count(
        current_user: User = Depends(get_current_active_user),
        service: NotificationService = Depends(get_notification_service)
):
    return UnreadNotificationsResponse(count=service.get_unread_count(current_user.id))


@router.put("/read-all")
async def mark_all_read(
        current_user: User = Depends(get_current_active_user),
        service: NotificationService = Depends(get_notification_service)
):
    updated = await service.mark_all_read(current_user.id)
    return {"success": True, "updated": updated}


@router.get("/bell", response_model=BellFeedResponse)
async def get_bell_feed(
        request: Request,
        page: int = 1,
        limit: Optional[int] = None,
        current_user: User = Depends(get_current_active_user),
        bell: BellAggregator = Depends(get_bell_aggregator)
):
    return bell.build_bell_feed(current_user.id, page, limit, base_url=str(request.base_url))


@router.post("/bell/dismiss", response_model=BellDismissResponse)
async def dismiss_bell_item(
        data: BellDismissRequest,
        current_user: User = Depends(get_current_active_user),
        bell: BellAggregator = Depends(get_bell_aggregator)
):
    tombstone = bell.dismiss(current_user.id, data.scope, data.id)
    return BellDismissResponse(id=tombstone.id)


@router.get("/bell/badge", response_model=BellBadgeResponse)
async def get_bell_badge(
        current_user: User = Depends(get_current_active_user),
        bell: BellAggregator = Depends(get_bell_aggregator)
):
    return bell.badge_count(current_user.id)


@router.put("/{notification_id}/read")
async def mark_notification_read(
        notification_id: int,
        current_user: User = Depends(get_current_active_user),
        service: NotificationService = Depends(get_notification_service)
):
    service.mark_read(current_user.id, notification_id)
    return {"success": True}
