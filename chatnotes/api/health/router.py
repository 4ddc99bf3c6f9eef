import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatnotes.api.auth.dependencies import get_current_active_user
from chatnotes.api.users.models import User
from chatnotes.core.config import settings
from chatnotes.database.database import get_db
from chatnotes.websocket.dependencies import get_transport

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    return {
        "status": "ok",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "features": ["chats", "groups", "friends", "notifications", "websocket"]
    }


@router.get("/api/health")
async def health(db: Session = Depends(get_db)):
    """Database liveness check"""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except SQLAlchemyError as e:
        logger.warning(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e)
        }


@router.get("/api/websocket/stats")
async def websocket_stats(
        current_user: User = Depends(get_current_active_user),
        transport=Depends(get_transport)
):
    """Socket.IO connection statistics"""
    return transport.get_connection_stats()
