"""Append-only audit and session transition records.

Both writers only add rows to the current session; the surrounding
mutation owns the commit.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from surveydesk.models.audit import AuditActorType, AuditLog
from surveydesk.models.session import SessionStatus, SessionTransition, SurveySession
from surveydesk.services.common import now_utc


def write_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_type: AuditActorType,
    actor_id: str,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> AuditLog:
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_type=actor_type,
        actor_id=actor_id,
        metadata_=metadata or None,
        created_at=now or now_utc(),
    )
    db.add(entry)
    return entry


def write_transition(
    db: Session,
    session: SurveySession,
    from_status: SessionStatus | None,
    to_status: SessionStatus,
    reason: str,
    now: datetime | None = None,
) -> SessionTransition:
    transition = SessionTransition(
        session_id=session.id,
        survey_id=session.survey_id,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        at=now or now_utc(),
    )
    db.add(transition)
    return transition


def list_audit_entries(db: Session, entity_type: str, entity_id) -> list[AuditLog]:
    return (
        db.query(AuditLog)
        .filter(AuditLog.entity_type == entity_type)
        .filter(AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.created_at.asc())
        .all()
    )
