from fastapi import Depends, Header
from sqlalchemy.orm import Session

from surveydesk.db import get_db
from surveydesk.models.user import AppUser
from surveydesk.services import users as user_service
from surveydesk.services.auth import Identity, decode_identity

__all__ = ["get_db", "get_identity", "get_app_user", "get_admin_user"]


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def get_identity(authorization: str | None = Header(default=None)) -> Identity:
    """Resolve the caller from the ``Authorization: Bearer <jwt>`` header."""
    return decode_identity(_extract_bearer_token(authorization))


def get_app_user(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> AppUser:
    return user_service.require_app_user(db, identity)


def get_admin_user(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> AppUser:
    return user_service.require_admin(db, identity)
