from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from surveydesk.models.invite import InviteStatus


class InviteCreate(BaseModel):
    survey_version_id: UUID
    max_completions: int | None = Field(default=None, ge=1, le=100000)
    expires_at: datetime | None = None


class InviteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    survey_id: UUID
    survey_version_id: UUID
    status: InviteStatus
    max_completions: int
    completion_count: int
    expires_at: datetime | None = None
    created_at: datetime
    revoked_at: datetime | None = None


class InviteIssued(BaseModel):
    """Returned once at creation; the plaintext token is never stored."""

    invite: InviteRead
    token: str
    link: str
