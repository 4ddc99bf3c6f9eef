import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class ServiceError(HTTPException):
    """Structured failure surfaced to the client as ``{error, message}``."""
    kind = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str = ""):
        super().__init__(status_code=self.status_code, detail=detail or self.kind)


class NotFoundError(ServiceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(ServiceError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class BadRequestError(ServiceError):
    kind = "bad_request"
    status_code = status.HTTP_400_BAD_REQUEST


class TransientStoreError(ServiceError):
    kind = "store_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def commit_or_raise(db: Session):
    """Commit the session; on failure roll back and raise TransientStoreError (no retry)."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Store commit failed: {e}")
        raise TransientStoreError("Storage is temporarily unavailable") from e
