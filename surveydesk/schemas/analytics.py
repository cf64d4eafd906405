from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel

from surveydesk.models.session import SessionStatus
from surveydesk.schemas.survey import FieldKind


class FunnelRead(BaseModel):
    started: int
    completed: int
    idle: int
    abandoned: int
    reactivated: int
    conversion_rate: float


class ScoringSummaryRead(BaseModel):
    graded_responses: int
    avg_score_percent: float
    total_correct: int
    total_incorrect: int


class TrendPoint(BaseModel):
    date_key: str
    started: int
    completed: int
    idle: int
    abandoned: int
    reactivated: int
    conversion_rate: float
    avg_score_percent: float


class BucketRead(BaseModel):
    key: str
    label: str
    count: int
    percent: float


class FieldAnswerBreakdown(BaseModel):
    field_id: str
    label: str
    kind: FieldKind
    total_answered: int
    buckets: list[BucketRead]


class DailyAnswered(BaseModel):
    date_key: str
    answered_count: int


class PhraseCount(BaseModel):
    phrase: str
    count: int


class SnippetCount(BaseModel):
    snippet: str
    count: int


class FieldBreakdownRead(FieldAnswerBreakdown):
    daily_trend: list[DailyAnswered]
    top_phrases: list[PhraseCount] | None = None
    sampled_text: list[SnippetCount] | None = None


class DropoffStep(BaseModel):
    field_id: str
    label: str
    reached_count: int
    answered_count: int
    dropoff_count: int
    dropoff_rate: float


class CsvExportRead(BaseModel):
    filename: str
    headers: list[str]
    rows: list[list[str]]


class IdleSessionRead(BaseModel):
    session_id: UUID
    session_public_id: str
    status: SessionStatus
    invite_id: UUID
    started_at: datetime
    last_activity_at: datetime
    idle_minutes: int


class RebuildRequest(BaseModel):
    from_date: str
    to_date: str
    reason: str | None = None


class RebuildResult(BaseModel):
    days_processed: int


CsvReport = Literal["funnel", "scoring", "answer_breakdown"]
