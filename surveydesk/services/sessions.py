"""Respondent session state machine and the scheduled liveness sweeps.

Sessions move ``in_progress -> idle -> abandoned`` through sweeps and back to
``in_progress`` only through respondent activity. ``completed`` is terminal.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from surveydesk.config import settings
from surveydesk.models.session import SessionStatus, SurveySession
from surveydesk.models.survey import Survey
from surveydesk.models.user import AppUser
from surveydesk.services import product_metrics
from surveydesk.services.audit import write_transition
from surveydesk.services.common import as_utc, clamp, coerce_uuid, now_utc
from surveydesk.services.metrics import bump_daily_metric
from surveydesk.services.outbox import enqueue_event
from surveydesk.services.users import require_survey_access

logger = logging.getLogger(__name__)

REASON_STARTED = "started"
REASON_RESUMED = "resumed"
REASON_ANSWER_SAVED = "answer_saved_reactivated"
REASON_SUBMITTED = "submitted"
REASON_IDLE_TIMEOUT = "idle_timeout"
REASON_ABANDONED_TIMEOUT = "abandoned_timeout"

_DORMANT = {SessionStatus.idle, SessionStatus.abandoned}

_EVENT_FOR_STATUS = {
    SessionStatus.idle: "survey_session_idle",
    SessionStatus.abandoned: "survey_session_abandoned",
    SessionStatus.in_progress: "survey_session_reactivated",
    SessionStatus.completed: "survey_submitted",
}


def _metric_for(from_status: SessionStatus | None, to_status: SessionStatus) -> str | None:
    if to_status == SessionStatus.idle:
        return "idle"
    if to_status == SessionStatus.abandoned:
        return "abandoned"
    if to_status == SessionStatus.completed:
        return "completed"
    if to_status == SessionStatus.in_progress and from_status in _DORMANT:
        return "reactivated"
    return None


def minutes_between(earlier: datetime, later: datetime) -> int:
    return math.floor((as_utc(later) - as_utc(earlier)).total_seconds() / 60)


def apply_transition(
    db: Session,
    session: SurveySession,
    to_status: SessionStatus,
    reason: str,
    now: datetime,
) -> bool:
    """Move ``session`` to ``to_status`` and record the transition and metric.

    Returns ``False`` without touching anything when the session is already
    in the target state.
    """
    from_status = session.status
    if from_status == to_status:
        return False

    session.status = to_status
    session.last_activity_at = now
    if to_status == SessionStatus.completed:
        session.completed_at = now
    write_transition(db, session, from_status, to_status, reason, now)

    metric = _metric_for(from_status, to_status)
    if metric:
        bump_daily_metric(db, session.survey_id, metric, at=now)
        product_metrics.record_session_event(metric)
    return True


def transition_session(
    db: Session,
    session: SurveySession,
    to_status: SessionStatus,
    reason: str,
    now: datetime | None = None,
) -> bool:
    moment = now or now_utc()
    from_status = session.status
    previous_activity = session.last_activity_at
    if not apply_transition(db, session, to_status, reason, moment):
        return False

    enqueue_event(
        db,
        _EVENT_FOR_STATUS[to_status],
        session.public_id,
        {
            "survey_id": str(session.survey_id),
            "invite_id": str(session.invite_id),
            "session_public_id": session.public_id,
            "status_from": from_status.value,
            "status_to": to_status.value,
            "reason": reason,
            "idle_minutes": minutes_between(previous_activity, moment) if previous_activity else 0,
        },
        now=moment,
    )
    return True


def _sweep_limit(limit: int | None) -> int:
    return clamp(limit or settings.sweep_batch_default, 1, settings.sweep_batch_max)


def _stale_sessions(db: Session, status: SessionStatus, cutoff: datetime, limit: int) -> list[SurveySession]:
    if limit <= 0:
        return []
    return (
        db.query(SurveySession)
        .filter(SurveySession.status == status)
        .filter(SurveySession.last_activity_at < cutoff)
        .order_by(SurveySession.last_activity_at.asc())
        .limit(limit)
        .all()
    )


def mark_idle_batch(db: Session, limit: int | None = None, now: datetime | None = None) -> dict:
    moment = now or now_utc()
    cutoff = moment - timedelta(minutes=settings.idle_threshold_minutes)
    processed = 0
    for session in _stale_sessions(db, SessionStatus.in_progress, cutoff, _sweep_limit(limit)):
        if transition_session(db, session, SessionStatus.idle, REASON_IDLE_TIMEOUT, moment):
            processed += 1
    db.commit()
    return {"processed": processed}


def mark_abandoned_batch(db: Session, limit: int | None = None, now: datetime | None = None) -> dict:
    """Abandon stale sessions, draining idle ones before in-progress ones."""
    moment = now or now_utc()
    cutoff = moment - timedelta(minutes=settings.abandon_threshold_minutes)
    batch_limit = _sweep_limit(limit)
    idle_sessions = _stale_sessions(db, SessionStatus.idle, cutoff, batch_limit)
    active_sessions = _stale_sessions(db, SessionStatus.in_progress, cutoff, batch_limit - len(idle_sessions))

    processed = 0
    for session in [*idle_sessions, *active_sessions]:
        if transition_session(db, session, SessionStatus.abandoned, REASON_ABANDONED_TIMEOUT, moment):
            processed += 1
    db.commit()
    return {"processed": processed}


def list_idle_sessions(
    db: Session,
    user: AppUser,
    survey_id,
    page: int = 0,
    limit: int = 50,
    now: datetime | None = None,
) -> list[dict]:
    moment = now or now_utc()
    survey = db.get(Survey, coerce_uuid(survey_id, "Survey"))
    if survey is None:
        return []
    require_survey_access(user, survey)

    page = max(0, int(page))
    limit = clamp(int(limit), 1, 200)
    rows = (
        db.query(SurveySession)
        .filter(SurveySession.survey_id == survey.id)
        .filter(SurveySession.status == SessionStatus.idle)
        .order_by(SurveySession.last_activity_at.desc())
        .offset(page * limit)
        .limit(limit)
        .all()
    )
    return [
        {
            "session_id": row.id,
            "session_public_id": row.public_id,
            "status": row.status,
            "invite_id": row.invite_id,
            "started_at": row.started_at,
            "last_activity_at": row.last_activity_at,
            "idle_minutes": max(0, minutes_between(row.last_activity_at, moment)),
        }
        for row in rows
    ]
