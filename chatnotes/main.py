import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from chatnotes import models
from chatnotes.api.chats.router import router as chats_router
from chatnotes.api.friends.router import router as friends_router
from chatnotes.api.groups.router import router as groups_router
from chatnotes.api.health.router import router as health_router
from chatnotes.api.notifications.router import router as notifications_router
from chatnotes.api.users.router import router as users_router
from chatnotes.core.config import settings
from chatnotes.core.exceptions import ServiceError
from chatnotes.database.database import SessionLocal, engine
from chatnotes.websocket.websocket_manager import RealtimeGateway

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        models.Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")
    yield


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Chat, groups and notifications API",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(chats_router)
app.include_router(friends_router)
app.include_router(groups_router)
app.include_router(notifications_router)
app.include_router(users_router)

gateway = RealtimeGateway(SessionLocal, settings.CORS_ORIGINS)
app.state.gateway = gateway

socket_app = socketio.ASGIApp(gateway.sio, app)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.kind,
            "message": exc.detail,
            "status_code": exc.status_code
        }
    )


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Store error on {request.url.path}: {str(exc)}")

    return JSONResponse(
        status_code=503,
        content={
            "error": "store_error",
            "message": "Storage is temporarily unavailable",
            "status_code": 503
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "Internal server error",
            "status_code": 500
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        socket_app,
        host="127.0.0.1",
        port=8000,
        log_level="info",
    )
