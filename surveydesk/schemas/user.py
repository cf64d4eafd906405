from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from surveydesk.models.user import UserRole


class AppUserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subject: str
    email: str
    role: UserRole
    last_login_at: datetime
    created_at: datetime
