from datetime import timedelta

import pytest

from surveydesk.models.analytics import SurveyAnalyticsDaily
from surveydesk.models.audit import AuditActorType, AuditLog
from surveydesk.models.outbox import AnalyticsOutboxEvent
from surveydesk.models.session import SessionStatus, SurveyResponse
from surveydesk.services.errors import SurveyConflictError, SurveyNotFoundError, SurveyValidationError
from surveydesk.services.respondent import (
    get_session_snapshot,
    save_answer,
    start_or_resume_session,
    submit_session,
)

from helpers import NOW, RESPONDENT_KEY, TODAY, issue_invite


def _event_names(db_session) -> list[str]:
    return [
        row.event_name
        for row in db_session.query(AnalyticsOutboxEvent).order_by(AnalyticsOutboxEvent.created_at.asc())
    ]


def test_start_creates_session_and_records_audit(db_session, invite):
    _, token = invite
    started = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW)
    assert started["status"] == SessionStatus.in_progress
    assert started["progress"].progress_percent == 0

    session = get_session_snapshot(db_session, started["session_public_id"])
    assert session.respondent_key == RESPONDENT_KEY
    audit = db_session.query(AuditLog).filter(AuditLog.action == "survey_session_started").one()
    assert audit.actor_type == AuditActorType.respondent
    assert audit.actor_id == RESPONDENT_KEY
    assert "survey_session_started" in _event_names(db_session)


@pytest.mark.parametrize("key", ["", "short", "x" * 257])
def test_start_rejects_bad_respondent_key(db_session, invite, key):
    _, token = invite
    with pytest.raises(SurveyValidationError) as exc:
        start_or_resume_session(db_session, token, key, now=NOW)
    assert exc.value.code == "INVALID_RESPONDENT_KEY"


def test_start_rejects_unknown_token(db_session, invite):
    with pytest.raises(SurveyValidationError) as exc:
        start_or_resume_session(db_session, "inv_missing", RESPONDENT_KEY, now=NOW)
    assert exc.value.code == "INVALID_INVITE"


def test_start_resumes_existing_session(db_session, invite):
    _, token = invite
    first = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW)
    save_answer(db_session, first["session_public_id"], "name", "Ada", now=NOW)

    again = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW + timedelta(minutes=2))
    assert again["session_public_id"] == first["session_public_id"]
    assert again["progress"].answered_count == 1
    assert again["progress"].progress_percent == 50
    assert "survey_session_resumed" in _event_names(db_session)


def test_other_key_gets_its_own_session(db_session, admin_user, published_survey):
    survey, version = published_survey
    _, token = issue_invite(db_session, admin_user, survey, version, max_completions=5)
    first = start_or_resume_session(db_session, token, "respondent-key-a001", now=NOW)
    second = start_or_resume_session(db_session, token, "respondent-key-b002", now=NOW)
    assert first["session_public_id"] != second["session_public_id"]


def test_save_answer_validates_value(db_session, invite):
    _, token = invite
    public_id = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW)["session_public_id"]

    with pytest.raises(SurveyValidationError) as exc:
        save_answer(db_session, public_id, "rating", 9, now=NOW)
    assert exc.value.code == "INVALID_ANSWER"
    assert exc.value.field_id == "rating"

    with pytest.raises(SurveyValidationError) as exc:
        save_answer(db_session, public_id, "unknown", "x", now=NOW)
    assert exc.value.code == "INVALID_FIELD"

    with pytest.raises(SurveyNotFoundError):
        save_answer(db_session, "no-such-session", "name", "Ada", now=NOW)


def test_save_answer_overwrites_previous_value(db_session, invite):
    _, token = invite
    public_id = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW)["session_public_id"]
    save_answer(db_session, public_id, "color", "red", now=NOW)
    save_answer(db_session, public_id, "color", "blue", now=NOW + timedelta(seconds=5))
    assert get_session_snapshot(db_session, public_id).answers_draft == {"color": "blue"}


def test_submit_requires_required_fields(db_session, invite):
    _, token = invite
    public_id = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW)["session_public_id"]
    save_answer(db_session, public_id, "color", "blue", now=NOW)

    with pytest.raises(SurveyValidationError) as exc:
        submit_session(db_session, public_id, now=NOW)
    assert exc.value.code == "MISSING_REQUIRED_FIELD"
    assert exc.value.field_id == "name"
    assert db_session.query(SurveyResponse).count() == 0


def test_submit_reports_first_missing_required_field(db_session, invite):
    _, token = invite
    public_id = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW)["session_public_id"]
    save_answer(db_session, public_id, "comments", "Fast delivery", now=NOW)

    with pytest.raises(SurveyValidationError) as exc:
        submit_session(db_session, public_id, now=NOW)
    assert exc.value.code == "MISSING_REQUIRED_FIELD"
    assert exc.value.field_id == "name"


def test_submit_accepts_blank_optional_answers(db_session, invite):
    _, token = invite
    public_id = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW)["session_public_id"]
    save_answer(db_session, public_id, "name", "Ada", now=NOW)
    save_answer(db_session, public_id, "color", "blue", now=NOW)
    save_answer(db_session, public_id, "comments", "   ", now=NOW)

    result = submit_session(db_session, public_id, now=NOW)
    response = db_session.get(SurveyResponse, result["response_id"])
    assert response.answers["comments"] == "   "


def test_submit_freezes_graded_response(db_session, invite):
    record, token = invite
    public_id = start_or_resume_session(db_session, token, RESPONDENT_KEY, now=NOW)["session_public_id"]
    save_answer(db_session, public_id, "name", "Ada", now=NOW)
    save_answer(db_session, public_id, "color", "red", now=NOW)

    result = submit_session(db_session, public_id, now=NOW + timedelta(seconds=90))
    response = db_session.get(SurveyResponse, result["response_id"])
    assert response.answers == {"name": "Ada", "color": "red"}
    assert response.duration_ms == 90_000
    assert response.invite_id == record.id
    assert response.grading["gradable_count"] == 1
    assert response.grading["score_percent"] == 0.0

    session = get_session_snapshot(db_session, public_id)
    assert session.status == SessionStatus.completed
    assert session.completed_at is not None

    names = _event_names(db_session)
    assert "survey_submitted" in names
    assert "survey_submission_graded" in names

    daily = (
        db_session.query(SurveyAnalyticsDaily)
        .filter(SurveyAnalyticsDaily.survey_id == record.survey_id)
        .filter(SurveyAnalyticsDaily.date_key == TODAY)
        .one()
    )
    assert daily.completed == 1
    assert daily.started == 1
    assert daily.total_graded == 1

    with pytest.raises(SurveyConflictError) as exc:
        submit_session(db_session, public_id, now=NOW)
    assert exc.value.code == "SESSION_COMPLETED"
    with pytest.raises(SurveyConflictError):
        save_answer(db_session, public_id, "name", "Bob", now=NOW)
