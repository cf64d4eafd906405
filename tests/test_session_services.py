from datetime import timedelta

from surveydesk.models.analytics import SurveyMetricsDaily
from surveydesk.models.outbox import AnalyticsOutboxEvent
from surveydesk.models.session import SessionStatus, SessionTransition, SurveySession
from surveydesk.services.respondent import save_answer, start_or_resume_session
from surveydesk.services.sessions import (
    list_idle_sessions,
    mark_abandoned_batch,
    mark_idle_batch,
    minutes_between,
    transition_session,
)

from helpers import NOW, RESPONDENT_KEY, TODAY, issue_invite


def _start(db_session, token, key=RESPONDENT_KEY, now=NOW) -> SurveySession:
    public_id = start_or_resume_session(db_session, token, key, now=now)["session_public_id"]
    return db_session.query(SurveySession).filter(SurveySession.public_id == public_id).one()


def _metrics(db_session, survey_id, date_key=TODAY) -> SurveyMetricsDaily:
    return (
        db_session.query(SurveyMetricsDaily)
        .filter(SurveyMetricsDaily.survey_id == survey_id)
        .filter(SurveyMetricsDaily.date_key == date_key)
        .one()
    )


def test_minutes_between_floors():
    assert minutes_between(NOW, NOW + timedelta(seconds=119)) == 1


def test_transition_to_same_status_is_noop(db_session, invite):
    _, token = invite
    session = _start(db_session, token)
    assert transition_session(db_session, session, SessionStatus.in_progress, "noop", now=NOW) is False
    transitions = db_session.query(SessionTransition).filter(SessionTransition.session_id == session.id).all()
    assert len(transitions) == 1
    assert transitions[0].from_status is None
    assert transitions[0].to_status == SessionStatus.in_progress


def test_idle_sweep_respects_threshold(db_session, invite):
    _, token = invite
    session = _start(db_session, token)

    assert mark_idle_batch(db_session, now=NOW + timedelta(minutes=10)) == {"processed": 0}
    assert mark_idle_batch(db_session, now=NOW + timedelta(minutes=16)) == {"processed": 1}
    db_session.refresh(session)
    assert session.status == SessionStatus.idle
    assert _metrics(db_session, session.survey_id).idle == 1

    event = (
        db_session.query(AnalyticsOutboxEvent)
        .filter(AnalyticsOutboxEvent.event_name == "survey_session_idle")
        .one()
    )
    assert event.distinct_id == session.public_id
    assert event.properties["reason"] == "idle_timeout"
    assert event.properties["idle_minutes"] == 16


def test_saving_after_idle_reactivates_once(db_session, invite):
    _, token = invite
    session = _start(db_session, token)
    mark_idle_batch(db_session, now=NOW + timedelta(minutes=20))

    result = save_answer(db_session, session.public_id, "name", "Ada", now=NOW + timedelta(minutes=25))
    assert result["status"] == SessionStatus.in_progress
    save_answer(db_session, session.public_id, "rating", 4, now=NOW + timedelta(minutes=26))

    metrics = _metrics(db_session, session.survey_id)
    assert metrics.reactivated == 1
    reasons = [
        row.reason
        for row in db_session.query(SessionTransition)
        .filter(SessionTransition.session_id == session.id)
        .order_by(SessionTransition.at.asc())
    ]
    assert reasons == ["started", "idle_timeout", "answer_saved_reactivated"]


def test_abandon_sweep_drains_idle_first(db_session, admin_user, published_survey, override_settings):
    override_settings(abandon_threshold_minutes=60)
    survey, version = published_survey
    _, token_a = issue_invite(db_session, admin_user, survey, version)
    _, token_b = issue_invite(db_session, admin_user, survey, version)

    active = _start(db_session, token_a, now=NOW - timedelta(hours=5))
    idle = _start(db_session, token_b, now=NOW - timedelta(hours=3))
    mark_idle_batch(db_session, now=NOW - timedelta(hours=2))
    db_session.refresh(active)
    db_session.refresh(idle)
    assert active.status == idle.status == SessionStatus.idle

    # Put one back in progress so both queues are populated.
    save_answer(db_session, active.public_id, "name", "Ada", now=NOW - timedelta(hours=2))

    assert mark_abandoned_batch(db_session, limit=1, now=NOW) == {"processed": 1}
    db_session.refresh(active)
    db_session.refresh(idle)
    assert idle.status == SessionStatus.abandoned
    assert active.status == SessionStatus.in_progress

    assert mark_abandoned_batch(db_session, limit=1, now=NOW) == {"processed": 1}
    db_session.refresh(active)
    assert active.status == SessionStatus.abandoned


def test_list_idle_sessions(db_session, admin_user, published_survey):
    survey, version = published_survey
    _, token = issue_invite(db_session, admin_user, survey, version)
    session = _start(db_session, token)
    mark_idle_batch(db_session, now=NOW + timedelta(minutes=30))

    rows = list_idle_sessions(db_session, admin_user, survey.id, now=NOW + timedelta(minutes=90))
    assert len(rows) == 1
    assert rows[0]["session_public_id"] == session.public_id
    assert rows[0]["idle_minutes"] == 60
    assert list_idle_sessions(db_session, admin_user, survey.id, page=1, limit=1) == []
