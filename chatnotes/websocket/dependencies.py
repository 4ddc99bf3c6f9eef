from fastapi import Depends, Request
from sqlalchemy.orm import Session

from chatnotes.database.database import get_db
from chatnotes.websocket.broadcaster import Broadcaster


def get_transport(request: Request):
    """The realtime gateway attached to the application at startup."""
    return request.app.state.gateway


def get_broadcaster(
        db: Session = Depends(get_db),
        transport=Depends(get_transport)
) -> Broadcaster:
    return Broadcaster(transport, db)
