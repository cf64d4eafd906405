import logging
import re
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from surveydesk.models.audit import AuditActorType
from surveydesk.models.survey import Survey, SurveyStatus, SurveyVersion
from surveydesk.models.user import AppUser, UserRole
from surveydesk.schemas.survey import SurveyCreate, SurveySettings, SurveyUpdate
from surveydesk.services.audit import write_audit_log
from surveydesk.services.common import coerce_uuid, now_utc
from surveydesk.services.errors import SurveyConflictError, SurveyNotFoundError, SurveyValidationError
from surveydesk.services.outbox import enqueue_event
from surveydesk.services.users import require_survey_access
from surveydesk.services.validation import parse_survey_fields

logger = logging.getLogger(__name__)

_SLUG_SEPARATOR = re.compile(r"[^a-z0-9]+")


def normalize_slug(value: str) -> str:
    return _SLUG_SEPARATOR.sub("-", value.strip().lower()).strip("-")


def get_survey_for_user(db: Session, user: AppUser, survey_id) -> Survey:
    survey = db.get(Survey, coerce_uuid(survey_id, "Survey"))
    if survey is None:
        raise SurveyNotFoundError(detail="Survey not found.")
    require_survey_access(user, survey)
    return survey


class SurveyManager:
    @staticmethod
    def create(db: Session, user: AppUser, payload: SurveyCreate, now: datetime | None = None) -> Survey:
        moment = now or now_utc()
        slug = normalize_slug(payload.slug)
        if not slug:
            raise SurveyValidationError("INVALID_SLUG", "Slug is required.")
        if db.query(Survey.id).filter(Survey.slug == slug).first() is not None:
            raise SurveyConflictError("SLUG_TAKEN", "Slug already exists.")

        survey = Survey(
            slug=slug,
            title=payload.title,
            description=payload.description,
            status=SurveyStatus.draft,
            created_by_user_id=user.id,
            updated_by_user_id=user.id,
            created_at=moment,
            updated_at=moment,
        )
        db.add(survey)
        db.flush()
        write_audit_log(
            db,
            entity_type="survey",
            entity_id=survey.id,
            action="survey_created",
            actor_type=AuditActorType.admin,
            actor_id=str(user.id),
            metadata={"slug": slug, "title": payload.title},
            now=moment,
        )
        enqueue_event(db, "survey_created", user.subject, {"survey_id": str(survey.id), "slug": slug}, now=moment)
        db.commit()
        db.refresh(survey)
        logger.info("survey_created survey_id=%s slug=%s", survey.id, slug)
        return survey

    @staticmethod
    def update(
        db: Session, user: AppUser, survey_id, payload: SurveyUpdate, now: datetime | None = None
    ) -> Survey:
        moment = now or now_utc()
        survey = get_survey_for_user(db, user, survey_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        for key, value in changes.items():
            setattr(survey, key, value)
        survey.updated_by_user_id = user.id
        survey.updated_at = moment

        status = changes.get("status")
        write_audit_log(
            db,
            entity_type="survey",
            entity_id=survey.id,
            action="survey_updated",
            actor_type=AuditActorType.admin,
            actor_id=str(user.id),
            metadata={"title": changes.get("title"), "status": status.value if status else None},
            now=moment,
        )
        enqueue_event(db, "survey_updated", user.subject, {"survey_id": str(survey.id)}, now=moment)
        db.commit()
        db.refresh(survey)
        return survey

    @staticmethod
    def create_version_draft(
        db: Session,
        user: AppUser,
        survey_id,
        fields: list,
        settings: SurveySettings | None = None,
        now: datetime | None = None,
    ) -> SurveyVersion:
        """Store a new, unpublished version and return the survey to draft.

        Published versions are never edited; every save produces the next
        version number.
        """
        moment = now or now_utc()
        survey = get_survey_for_user(db, user, survey_id)
        ordered = parse_survey_fields(fields)

        latest = db.query(func.max(SurveyVersion.version)).filter(SurveyVersion.survey_id == survey.id).scalar()
        version = SurveyVersion(
            survey_id=survey.id,
            version=(latest or 0) + 1,
            fields=[field.model_dump(mode="json", exclude_none=True) for field in ordered],
            settings=(settings or SurveySettings()).model_dump(mode="json", exclude_none=True),
            created_by_user_id=user.id,
            created_at=moment,
        )
        db.add(version)
        survey.status = SurveyStatus.draft
        survey.updated_by_user_id = user.id
        survey.updated_at = moment
        db.flush()

        write_audit_log(
            db,
            entity_type="surveyVersion",
            entity_id=version.id,
            action="survey_version_created",
            actor_type=AuditActorType.admin,
            actor_id=str(user.id),
            metadata={"survey_id": str(survey.id), "version": version.version},
            now=moment,
        )
        db.commit()
        db.refresh(version)
        logger.info("survey_version_created survey_id=%s version=%d", survey.id, version.version)
        return version

    @staticmethod
    def publish_version(db: Session, user: AppUser, survey_id, version_id, now: datetime | None = None) -> Survey:
        moment = now or now_utc()
        survey = get_survey_for_user(db, user, survey_id)
        version = db.get(SurveyVersion, coerce_uuid(version_id, "Survey version"))
        if version is None or version.survey_id != survey.id:
            raise SurveyNotFoundError(detail="Survey version not found.")

        if version.published_at is None:
            version.published_at = moment
        survey.current_version_id = version.id
        survey.status = SurveyStatus.published
        survey.updated_by_user_id = user.id
        survey.updated_at = moment

        write_audit_log(
            db,
            entity_type="surveyVersion",
            entity_id=version.id,
            action="survey_published",
            actor_type=AuditActorType.admin,
            actor_id=str(user.id),
            metadata={"survey_id": str(survey.id)},
            now=moment,
        )
        enqueue_event(
            db,
            "survey_published",
            user.subject,
            {"survey_id": str(survey.id), "survey_version_id": str(version.id)},
            now=moment,
        )
        db.commit()
        db.refresh(survey)
        logger.info("survey_published survey_id=%s version=%d", survey.id, version.version)
        return survey

    @staticmethod
    def list(
        db: Session,
        user: AppUser,
        status: SurveyStatus | None = None,
        search: str | None = None,
    ) -> list[Survey]:
        query = db.query(Survey)
        if status is not None:
            query = query.filter(Survey.status == status)
        if user.role != UserRole.admin:
            query = query.filter(Survey.created_by_user_id == user.id)
        term = (search or "").strip().lower()
        if term:
            like = f"%{term}%"
            query = query.filter(or_(func.lower(Survey.title).like(like), func.lower(Survey.slug).like(like)))
        return query.order_by(Survey.updated_at.desc()).all()

    @staticmethod
    def detail(db: Session, user: AppUser, survey_id) -> dict | None:
        """Return the survey with version summaries and the current version, or ``None``."""
        survey = db.get(Survey, coerce_uuid(survey_id, "Survey"))
        if survey is None:
            return None
        require_survey_access(user, survey)

        versions = (
            db.query(SurveyVersion)
            .filter(SurveyVersion.survey_id == survey.id)
            .order_by(SurveyVersion.version.desc())
            .all()
        )
        current = next((version for version in versions if version.id == survey.current_version_id), None)
        return {
            "survey": survey,
            "versions": [
                {
                    "id": version.id,
                    "version": version.version,
                    "published_at": version.published_at,
                    "created_at": version.created_at,
                    "field_count": len(version.fields or []),
                }
                for version in versions
            ],
            "current_version": current,
        }


# Singleton instance
survey_manager = SurveyManager()
