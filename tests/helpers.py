"""Builders shared by the service and API tests."""

import uuid
from datetime import UTC, datetime, timedelta

from surveydesk.models.invite import SurveyInvite
from surveydesk.models.survey import Survey, SurveyVersion
from surveydesk.models.user import AppUser, UserRole
from surveydesk.schemas.survey import SurveyCreate
from surveydesk.services.invites import invite_manager
from surveydesk.services.respondent import save_answer, start_or_resume_session, submit_session
from surveydesk.services.surveys import survey_manager

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
TODAY = "2026-03-10"
RESPONDENT_KEY = "respondent-key-0001"


def make_user(db_session, role: UserRole = UserRole.member) -> AppUser:
    user = AppUser(
        subject=f"sub-{uuid.uuid4().hex}",
        email=f"test-{uuid.uuid4().hex}@example.com",
        role=role,
        last_login_at=NOW,
        created_at=NOW,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def field(field_id: str, kind: str, order: int, **extra) -> dict:
    return {"id": field_id, "kind": kind, "label": field_id.replace("_", " ").title(), "order": order, **extra}


SAMPLE_FIELDS = [
    field("name", "short_text", 0, required=True),
    field(
        "color",
        "single_select",
        1,
        required=True,
        options=[{"label": "Red", "value": "red"}, {"label": "Blue", "value": "blue"}],
        correctness={"mode": "single_select_exact", "expected_option_value": "blue"},
    ),
    field("rating", "rating_1_5", 2),
    field("comments", "long_text", 3),
]


def publish_survey(db_session, user, fields=None, slug=None) -> tuple[Survey, SurveyVersion]:
    survey = survey_manager.create(
        db_session,
        user,
        SurveyCreate(title="Customer feedback", slug=slug or f"feedback-{uuid.uuid4().hex[:8]}"),
        now=NOW,
    )
    version = survey_manager.create_version_draft(
        db_session, user, survey.id, fields or SAMPLE_FIELDS, now=NOW
    )
    survey = survey_manager.publish_version(db_session, user, survey.id, version.id, now=NOW)
    return survey, version


def issue_invite(
    db_session, user, survey, version, max_completions=1, expires_at=None
) -> tuple[SurveyInvite, str]:
    return invite_manager.create(
        db_session,
        user,
        survey.id,
        version.id,
        max_completions=max_completions,
        expires_at=expires_at or NOW + timedelta(days=7),
        now=NOW,
    )


def submit_answers(db_session, token: str, respondent_key: str, answers: dict, now=NOW):
    """Run a respondent through start, save and submit. Returns the submit result."""
    public_id = start_or_resume_session(db_session, token, respondent_key, now=now)["session_public_id"]
    for field_id, value in answers.items():
        save_answer(db_session, public_id, field_id, value, now=now)
    return submit_session(db_session, public_id, now=now)
