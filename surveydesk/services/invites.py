"""Invite issuance, revocation and token resolution.

Plaintext tokens are shown to the admin exactly once; only their SHA-256 hex
digest is stored, and lookups hash the presented token before matching.
"""

import hashlib
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from surveydesk.config import settings
from surveydesk.models.audit import AuditActorType
from surveydesk.models.invite import InviteStatus, SurveyInvite
from surveydesk.models.survey import Survey, SurveyVersion
from surveydesk.models.user import AppUser
from surveydesk.services.audit import write_audit_log
from surveydesk.services.common import as_utc, coerce_uuid, now_utc
from surveydesk.services.errors import SurveyNotFoundError
from surveydesk.services.outbox import enqueue_event
from surveydesk.services.surveys import get_survey_for_user
from surveydesk.services.users import require_survey_access

logger = logging.getLogger(__name__)

STATE_INVALID = "invalid"


def generate_token() -> str:
    return f"inv_{uuid.uuid4().hex}"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def invite_link(token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/s/{token}"


def get_invite_by_token(db: Session, token: str, for_update: bool = False) -> SurveyInvite | None:
    query = db.query(SurveyInvite).filter(SurveyInvite.token_hash == hash_token(token))
    if for_update:
        query = query.with_for_update()
    return query.first()


def is_expired(invite: SurveyInvite, now: datetime) -> bool:
    expires_at = as_utc(invite.expires_at)
    return expires_at is not None and expires_at < as_utc(now)


def is_full(invite: SurveyInvite) -> bool:
    return (invite.completion_count or 0) >= invite.max_completions


def compute_usable_state(invite: SurveyInvite, now: datetime) -> str:
    """Classify an invite from stored state and the clock without mutating it.

    Revoked and expired are sticky; an active invite past its expiry reads
    as expired before a full one reads as exhausted.
    """
    if invite.status == InviteStatus.revoked:
        return InviteStatus.revoked.value
    if invite.status == InviteStatus.expired or is_expired(invite, now):
        return InviteStatus.expired.value
    if invite.status == InviteStatus.exhausted or is_full(invite):
        return InviteStatus.exhausted.value
    return InviteStatus.active.value


def is_usable(invite: SurveyInvite, now: datetime) -> bool:
    return compute_usable_state(invite, now) == InviteStatus.active.value


def resolve_invite(db: Session, token: str, now: datetime | None = None) -> dict:
    moment = now or now_utc()
    empty = {"state": STATE_INVALID, "survey": None, "version": None, "invite": None}
    invite = get_invite_by_token(db, token)
    if invite is None:
        return empty
    survey = db.get(Survey, invite.survey_id)
    version = db.get(SurveyVersion, invite.survey_version_id)
    if survey is None or version is None:
        return empty
    return {
        "state": compute_usable_state(invite, moment),
        "survey": survey,
        "version": version,
        "invite": invite,
    }


class InviteManager:
    @staticmethod
    def create(
        db: Session,
        user: AppUser,
        survey_id,
        survey_version_id,
        max_completions: int | None = None,
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> tuple[SurveyInvite, str]:
        """Issue an invite and return it with the plaintext token."""
        moment = now or now_utc()
        survey = get_survey_for_user(db, user, survey_id)
        version = db.get(SurveyVersion, coerce_uuid(survey_version_id, "Survey version"))
        if version is None or version.survey_id != survey.id:
            raise SurveyNotFoundError(detail="Survey version not found.")

        token = generate_token()
        invite = SurveyInvite(
            survey_id=survey.id,
            survey_version_id=version.id,
            token_hash=hash_token(token),
            status=InviteStatus.active,
            max_completions=max(1, max_completions or 1),
            completion_count=0,
            expires_at=expires_at or moment + timedelta(days=settings.default_invite_ttl_days),
            created_by_user_id=user.id,
            created_at=moment,
        )
        db.add(invite)
        db.flush()

        write_audit_log(
            db,
            entity_type="surveyInvite",
            entity_id=invite.id,
            action="survey_invite_created",
            actor_type=AuditActorType.admin,
            actor_id=str(user.id),
            metadata={
                "survey_id": str(survey.id),
                "survey_version_id": str(version.id),
                "max_completions": invite.max_completions,
                "expires_at": as_utc(invite.expires_at).isoformat(),
            },
            now=moment,
        )
        enqueue_event(
            db,
            "survey_invite_created",
            user.subject,
            {"survey_id": str(survey.id), "survey_version_id": str(version.id), "invite_id": str(invite.id)},
            now=moment,
        )
        db.commit()
        db.refresh(invite)
        logger.info("survey_invite_created survey_id=%s invite_id=%s", survey.id, invite.id)
        return invite, token

    @staticmethod
    def revoke(db: Session, user: AppUser, invite_id, now: datetime | None = None) -> SurveyInvite:
        moment = now or now_utc()
        invite = db.get(SurveyInvite, coerce_uuid(invite_id, "Invite"))
        if invite is None:
            raise SurveyNotFoundError(detail="Invite not found.")
        survey = db.get(Survey, invite.survey_id)
        if survey is None:
            raise SurveyNotFoundError(detail="Survey not found.")
        require_survey_access(user, survey)

        invite.status = InviteStatus.revoked
        invite.revoked_at = moment
        write_audit_log(
            db,
            entity_type="surveyInvite",
            entity_id=invite.id,
            action="survey_invite_revoked",
            actor_type=AuditActorType.admin,
            actor_id=str(user.id),
            metadata={"survey_id": str(invite.survey_id)},
            now=moment,
        )
        enqueue_event(
            db,
            "survey_invite_revoked",
            user.subject,
            {"survey_id": str(invite.survey_id), "invite_id": str(invite.id)},
            now=moment,
        )
        db.commit()
        db.refresh(invite)
        logger.info("survey_invite_revoked invite_id=%s", invite.id)
        return invite

    @staticmethod
    def list_for_survey(db: Session, user: AppUser, survey_id) -> list[SurveyInvite]:
        survey = db.get(Survey, coerce_uuid(survey_id, "Survey"))
        if survey is None:
            return []
        require_survey_access(user, survey)
        return (
            db.query(SurveyInvite)
            .filter(SurveyInvite.survey_id == survey.id)
            .order_by(SurveyInvite.created_at.desc())
            .all()
        )


# Singleton instance
invite_manager = InviteManager()
