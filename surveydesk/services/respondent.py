"""Anonymous respondent flow: start or resume, save answers, submit."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from surveydesk.models.audit import AuditActorType
from surveydesk.models.invite import InviteStatus, SurveyInvite
from surveydesk.models.session import SessionStatus, SurveyResponse, SurveySession
from surveydesk.models.survey import SurveyVersion
from surveydesk.services import product_metrics
from surveydesk.services.analytics.materialization import rebuild_daily_materialized_analytics
from surveydesk.services.audit import write_audit_log, write_transition
from surveydesk.services.common import as_utc, date_key_for, now_utc
from surveydesk.services.errors import (
    SurveyConflictError,
    SurveyNotFoundError,
    SurveyValidationError,
)
from surveydesk.services.invites import get_invite_by_token, is_expired, is_full, is_usable
from surveydesk.services.metrics import bump_daily_metric
from surveydesk.services.outbox import enqueue_event
from surveydesk.services.scoring import grade_submission
from surveydesk.services.sessions import (
    REASON_ANSWER_SAVED,
    REASON_RESUMED,
    REASON_STARTED,
    REASON_SUBMITTED,
    apply_transition,
)
from surveydesk.services.validation import (
    calculate_progress,
    is_answer_present,
    load_fields,
    require_valid_answer,
)

logger = logging.getLogger(__name__)

RESPONDENT_KEY_MIN = 12
RESPONDENT_KEY_MAX = 256


def _get_session(db: Session, public_id: str) -> SurveySession | None:
    return db.query(SurveySession).filter(SurveySession.public_id == public_id).first()


def _require_open_session(db: Session, public_id: str) -> SurveySession:
    session = _get_session(db, public_id)
    if session is None:
        raise SurveyNotFoundError(detail="Session not found.")
    if session.status == SessionStatus.completed:
        raise SurveyConflictError("SESSION_COMPLETED", "Session already completed.")
    return session


def _require_version(db: Session, version_id, code: str = "NOT_FOUND") -> SurveyVersion:
    version = db.get(SurveyVersion, version_id)
    if version is None:
        if code == "NOT_FOUND":
            raise SurveyNotFoundError(detail="Survey version not found.")
        raise SurveyValidationError(code, "Invite version missing.")
    return version


def _enqueue_invite_exhausted(db: Session, invite: SurveyInvite, distinct_id: str, now: datetime) -> None:
    enqueue_event(
        db,
        "survey_invite_exhausted",
        distinct_id,
        {"invite_id": str(invite.id), "survey_id": str(invite.survey_id)},
        now=now,
    )


def _find_open_session(
    db: Session, invite: SurveyInvite, respondent_key: str, prior_session_id: str | None
) -> SurveySession | None:
    if prior_session_id:
        prior = _get_session(db, prior_session_id)
        if (
            prior is not None
            and prior.invite_id == invite.id
            and prior.respondent_key == respondent_key
            and prior.status != SessionStatus.completed
        ):
            return prior
    return (
        db.query(SurveySession)
        .filter(SurveySession.invite_id == invite.id)
        .filter(SurveySession.respondent_key == respondent_key)
        .filter(SurveySession.status != SessionStatus.completed)
        .order_by(SurveySession.started_at.asc())
        .first()
    )


def start_or_resume_session(
    db: Session,
    invite_token: str,
    respondent_key: str,
    prior_session_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Return the respondent's open session for an invite, creating one if needed.

    At most one non-completed session exists per invite and respondent key.
    The invite row is locked so the lookup and the insert see the same state.
    """
    moment = now or now_utc()
    if not respondent_key or not RESPONDENT_KEY_MIN <= len(respondent_key) <= RESPONDENT_KEY_MAX:
        raise SurveyValidationError("INVALID_RESPONDENT_KEY", "Invalid respondent key.")

    invite = get_invite_by_token(db, invite_token, for_update=True)
    if invite is None:
        raise SurveyValidationError("INVALID_INVITE", "Invite token not found.")

    if invite.status == InviteStatus.active and is_expired(invite, moment):
        invite.status = InviteStatus.expired
        db.commit()
        raise SurveyConflictError("INVITE_EXPIRED", "Invite has expired.")

    if invite.status == InviteStatus.active and is_full(invite):
        invite.status = InviteStatus.exhausted
        _enqueue_invite_exhausted(db, invite, f"invite:{invite.id}", moment)
        db.commit()

    if not is_usable(invite, moment):
        raise SurveyConflictError("INVITE_UNAVAILABLE", "Invite is not available.")

    version = _require_version(db, invite.survey_version_id, code="INVALID_INVITE")
    fields = load_fields(version.fields)

    candidate = _find_open_session(db, invite, respondent_key, prior_session_id)
    if candidate is not None:
        from_status = candidate.status
        if from_status in {SessionStatus.idle, SessionStatus.abandoned}:
            apply_transition(db, candidate, SessionStatus.in_progress, REASON_RESUMED, moment)
        else:
            candidate.last_activity_at = moment
        enqueue_event(
            db,
            "survey_session_resumed" if from_status == SessionStatus.in_progress else "survey_session_reactivated",
            candidate.public_id,
            {
                "survey_id": str(candidate.survey_id),
                "session_public_id": candidate.public_id,
                "invite_id": str(invite.id),
                "status_from": from_status.value,
                "status_to": candidate.status.value,
            },
            now=moment,
        )
        db.commit()
        return {
            "session_public_id": candidate.public_id,
            "status": candidate.status,
            "progress": calculate_progress(fields, candidate.answers_draft or {}),
        }

    session = SurveySession(
        public_id=str(uuid.uuid4()),
        survey_id=invite.survey_id,
        survey_version_id=invite.survey_version_id,
        invite_id=invite.id,
        respondent_key=respondent_key,
        status=SessionStatus.in_progress,
        started_at=moment,
        last_activity_at=moment,
        answers_draft={},
    )
    db.add(session)
    db.flush()

    write_transition(db, session, None, SessionStatus.in_progress, REASON_STARTED, moment)
    bump_daily_metric(db, session.survey_id, "started", at=moment)
    product_metrics.record_session_event("started")
    enqueue_event(
        db,
        "survey_session_started",
        session.public_id,
        {
            "survey_id": str(session.survey_id),
            "survey_version_id": str(session.survey_version_id),
            "invite_id": str(invite.id),
            "session_public_id": session.public_id,
        },
        now=moment,
    )
    write_audit_log(
        db,
        entity_type="surveySession",
        entity_id=session.id,
        action="survey_session_started",
        actor_type=AuditActorType.respondent,
        actor_id=respondent_key,
        metadata={"survey_id": str(session.survey_id), "invite_id": str(invite.id)},
        now=moment,
    )
    db.commit()
    logger.info("survey_session_started survey_id=%s session=%s", session.survey_id, session.public_id)
    return {
        "session_public_id": session.public_id,
        "status": session.status,
        "progress": calculate_progress(fields, {}),
    }


def save_answer(
    db: Session,
    public_id: str,
    field_id: str,
    value,
    now: datetime | None = None,
) -> dict:
    moment = now or now_utc()
    session = _require_open_session(db, public_id)
    version = _require_version(db, session.survey_version_id)
    fields = load_fields(version.fields)
    field = next((candidate for candidate in fields if candidate.id == field_id), None)
    if field is None:
        raise SurveyValidationError("INVALID_FIELD", f"Field {field_id} does not exist.")
    require_valid_answer(field, value)

    # Reassign so the JSON column registers the change.
    answers = dict(session.answers_draft or {})
    answers[field_id] = value
    session.answers_draft = answers

    if session.status in {SessionStatus.idle, SessionStatus.abandoned}:
        apply_transition(db, session, SessionStatus.in_progress, REASON_ANSWER_SAVED, moment)
    session.last_activity_at = moment

    progress = calculate_progress(fields, answers)
    enqueue_event(
        db,
        "survey_answer_saved",
        session.public_id,
        {
            "survey_id": str(session.survey_id),
            "invite_id": str(session.invite_id),
            "session_public_id": session.public_id,
            "field_id": field_id,
            "status": session.status.value,
            "progress_percent": progress.progress_percent,
            "answered_count": progress.answered_count,
            "question_count": len(fields),
        },
        now=moment,
    )
    db.commit()
    return {"progress_percent": progress.progress_percent, "status": session.status}


def submit_session(db: Session, public_id: str, now: datetime | None = None) -> dict:
    """Freeze the draft into a graded response and complete the session.

    The invite is re-checked under a row lock; an active invite found expired or full is
    reclassified and committed before the error is raised.
    """
    moment = now or now_utc()
    session = _require_open_session(db, public_id)

    invite = db.query(SurveyInvite).filter(SurveyInvite.id == session.invite_id).with_for_update().first()
    if invite is None:
        raise SurveyNotFoundError(detail="Invite not found.")
    if invite.status == InviteStatus.active and is_expired(invite, moment):
        invite.status = InviteStatus.expired
        db.commit()
        raise SurveyConflictError("INVITE_EXPIRED", "Invite expired.")
    if is_full(invite):
        if invite.status == InviteStatus.active:
            invite.status = InviteStatus.exhausted
            db.commit()
        raise SurveyConflictError("INVITE_EXHAUSTED", "Invite has no completions remaining.")
    if invite.status != InviteStatus.active:
        raise SurveyConflictError("INVITE_UNAVAILABLE", "Invite is not active.")

    version = _require_version(db, session.survey_version_id)
    fields = load_fields(version.fields)
    answers = dict(session.answers_draft or {})
    for field in fields:
        value = answers.get(field.id)
        if not is_answer_present(value):
            if field.required:
                raise SurveyValidationError(
                    "MISSING_REQUIRED_FIELD", f"Field {field.id} is required.", field_id=field.id
                )
            continue
        require_valid_answer(field, value)

    grading = grade_submission(fields, answers)
    duration_ms = max(0, int((as_utc(moment) - as_utc(session.started_at)).total_seconds() * 1000))
    response = SurveyResponse(
        session_id=session.id,
        session_public_id=session.public_id,
        survey_id=session.survey_id,
        survey_version_id=session.survey_version_id,
        invite_id=session.invite_id,
        submitted_at=moment,
        answers=answers,
        duration_ms=duration_ms,
        grading=grading,
    )
    db.add(response)
    db.flush()

    from_status = session.status
    apply_transition(db, session, SessionStatus.completed, REASON_SUBMITTED, moment)

    invite.completion_count = (invite.completion_count or 0) + 1
    if invite.completion_count >= invite.max_completions:
        invite.status = InviteStatus.exhausted
        _enqueue_invite_exhausted(db, invite, session.public_id, moment)

    enqueue_event(
        db,
        "survey_submitted",
        session.public_id,
        {
            "survey_id": str(session.survey_id),
            "survey_version_id": str(session.survey_version_id),
            "invite_id": str(session.invite_id),
            "session_public_id": session.public_id,
            "duration_ms": duration_ms,
            "is_late_completion": from_status in {SessionStatus.idle, SessionStatus.abandoned},
        },
        now=moment,
    )
    enqueue_event(
        db,
        "survey_submission_graded",
        session.public_id,
        {
            "survey_id": str(session.survey_id),
            "survey_version_id": str(session.survey_version_id),
            "session_public_id": session.public_id,
            "gradable_count": grading["gradable_count"],
            "correct_count": grading["correct_count"],
            "score_percent": grading["score_percent"],
        },
        now=moment,
    )
    write_audit_log(
        db,
        entity_type="surveyResponse",
        entity_id=response.id,
        action="survey_submitted",
        actor_type=AuditActorType.respondent,
        actor_id=session.respondent_key,
        metadata={"survey_id": str(session.survey_id), "invite_id": str(session.invite_id)},
        now=moment,
    )
    rebuild_daily_materialized_analytics(
        db, session.survey_id, date_key_for(moment), include_text_insights=False, now=moment
    )
    db.commit()
    product_metrics.record_submission(graded=grading["gradable_count"] > 0)
    logger.info(
        "survey_submitted survey_id=%s session=%s score=%s",
        session.survey_id,
        session.public_id,
        grading["score_percent"],
    )
    return {"response_id": response.id, "completed_at": moment}


def get_session_snapshot(db: Session, public_id: str) -> SurveySession | None:
    return _get_session(db, public_id)
