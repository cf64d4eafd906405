from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from surveydesk.api.deps import get_db, get_identity
from surveydesk.schemas.user import AppUserRead
from surveydesk.services import users as user_service
from surveydesk.services.auth import Identity

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/me", response_model=AppUserRead)
def upsert_me(identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """Create or refresh the caller's user record."""
    return user_service.upsert_current_user(db, identity)


@router.get("/me", response_model=AppUserRead | None)
def get_me(identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    return user_service.get_current_user(db, identity)


@router.post("/me/promote", response_model=AppUserRead)
def promote_me(identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    return user_service.self_promote_to_admin(db, identity)
