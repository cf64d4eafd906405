from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class OutboxEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_name: str
    distinct_id: str
    status: str
    attempt_count: int
    next_attempt_at: datetime
    last_error: str | None = None
    sent_at: datetime | None = None
    created_at: datetime


class OutboxStatusRead(BaseModel):
    pending: int = 0
    sent: int = 0
    failed: int = 0
