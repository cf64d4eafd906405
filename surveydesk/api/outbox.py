from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from surveydesk.api.deps import get_admin_user, get_db
from surveydesk.schemas.outbox import OutboxEventRead, OutboxStatusRead
from surveydesk.services import outbox as outbox_service

router = APIRouter(prefix="/admin/outbox", tags=["admin"], dependencies=[Depends(get_admin_user)])


@router.get("/status", response_model=OutboxStatusRead)
def get_status(db: Session = Depends(get_db)):
    return outbox_service.outbox_status_counts(db)


@router.get("/failed", response_model=list[OutboxEventRead])
def list_failed(limit: int = Query(default=50, ge=1, le=500), db: Session = Depends(get_db)):
    """Dead-lettered events that exhausted their delivery attempts."""
    return outbox_service.list_failed_events(db, limit=limit)


@router.post("/{outbox_id}/requeue", response_model=OutboxEventRead)
def requeue(outbox_id: str, db: Session = Depends(get_db)):
    return outbox_service.requeue_failed_event(db, outbox_id)
