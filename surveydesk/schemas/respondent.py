from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from surveydesk.models.session import SessionStatus
from surveydesk.schemas.survey import SurveyField, SurveySettings


class PublicSurvey(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None = None


class PublicSurveyVersion(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version: int
    fields: list[SurveyField]
    settings: SurveySettings


class InviteResolution(BaseModel):
    state: str
    survey: PublicSurvey | None = None
    version: PublicSurveyVersion | None = None
    expires_at: datetime | None = None


class SessionStartRequest(BaseModel):
    invite_token: str = Field(min_length=1, max_length=200)
    respondent_key: str
    prior_session_public_id: str | None = None


class ProgressRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    answered_count: int
    required_answered_count: int
    required_count: int
    progress_percent: int


class SessionStartResponse(BaseModel):
    session_public_id: str
    status: SessionStatus
    progress: ProgressRead


class AnswerSave(BaseModel):
    value: Any = None


class AnswerSaveResponse(BaseModel):
    progress_percent: int
    status: SessionStatus


class SubmitResponse(BaseModel):
    response_id: UUID
    completed_at: datetime


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    public_id: str
    survey_id: UUID
    survey_version_id: UUID
    status: SessionStatus
    answers_draft: dict
    started_at: datetime
    last_activity_at: datetime
    completed_at: datetime | None = None
