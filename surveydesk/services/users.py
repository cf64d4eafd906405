import logging
from datetime import datetime

from sqlalchemy.orm import Session

from surveydesk.config import settings
from surveydesk.models.survey import Survey
from surveydesk.models.user import AppUser, UserRole
from surveydesk.services.auth import DEFAULT_EMAIL, Identity
from surveydesk.services.common import now_utc
from surveydesk.services.errors import SurveyForbiddenError

logger = logging.getLogger(__name__)


def _admin_allowlist() -> set[str]:
    return {entry.strip().lower() for entry in settings.admin_emails.split(",") if entry.strip()}


def _admin_exists(db: Session) -> bool:
    return db.query(AppUser.id).filter(AppUser.role == UserRole.admin).first() is not None


def is_admin_eligible(db: Session, email: str) -> bool:
    """The first admin is whoever asks; afterwards only allowlisted emails qualify."""
    if not _admin_exists(db):
        return True
    return email.strip().lower() in _admin_allowlist()


def get_current_user(db: Session, identity: Identity) -> AppUser | None:
    return db.query(AppUser).filter(AppUser.subject == identity.subject).first()


def upsert_current_user(db: Session, identity: Identity, now: datetime | None = None) -> AppUser:
    moment = now or now_utc()
    email = identity.email or DEFAULT_EMAIL
    user = get_current_user(db, identity)
    eligible = is_admin_eligible(db, email)
    if user is None:
        user = AppUser(
            subject=identity.subject,
            email=email,
            role=UserRole.admin if eligible else UserRole.member,
            last_login_at=moment,
            created_at=moment,
        )
        db.add(user)
        logger.info("app_user_created subject=%s role=%s", identity.subject, user.role.value)
    else:
        user.email = email
        user.last_login_at = moment
        if user.role != UserRole.admin and eligible:
            user.role = UserRole.admin
    db.commit()
    db.refresh(user)
    return user


def self_promote_to_admin(db: Session, identity: Identity) -> AppUser:
    user = get_current_user(db, identity)
    if user is None:
        raise SurveyForbiddenError(
            code="USER_NOT_INITIALIZED", detail="User profile missing. Refresh once and try again."
        )
    if user.role == UserRole.admin:
        return user
    email = identity.email or DEFAULT_EMAIL
    if not is_admin_eligible(db, email):
        raise SurveyForbiddenError(detail="Admin promotion is restricted to ADMIN_EMAILS.")
    user.role = UserRole.admin
    user.email = email
    user.last_login_at = now_utc()
    db.commit()
    db.refresh(user)
    logger.info("app_user_promoted subject=%s", identity.subject)
    return user


def require_app_user(db: Session, identity: Identity) -> AppUser:
    user = get_current_user(db, identity)
    if user is None:
        raise SurveyForbiddenError(detail="User record not initialized.")
    return user


def require_admin(db: Session, identity: Identity) -> AppUser:
    user = require_app_user(db, identity)
    if user.role != UserRole.admin:
        raise SurveyForbiddenError(detail="Admin role required.")
    return user


def can_access_survey(user: AppUser, survey: Survey) -> bool:
    return user.role == UserRole.admin or survey.created_by_user_id == user.id


def require_survey_access(user: AppUser, survey: Survey) -> None:
    if not can_access_survey(user, survey):
        raise SurveyForbiddenError()
