# parkhub/dependencies.py
"""FastAPI dependencies wiring request-scoped sessions to the long-lived app.state handles."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from parkhub.database import get_db
from parkhub.services.lifecycle_service import SpaceLifecycleService
from parkhub.services.space_store import SpaceStore


def get_store(db: Session = Depends(get_db)) -> SpaceStore:
    return SpaceStore(db)


def get_lifecycle_service(request: Request, store: SpaceStore = Depends(get_store)) -> SpaceLifecycleService:
    state = request.app.state
    return SpaceLifecycleService(
        store,
        emitter=state.emitter,
        change_feed=state.change_feed,
        max_ttl_seconds=state.settings.MAX_RESERVATION_TTL_SECONDS,
    )
