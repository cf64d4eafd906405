"""Daily rollup tables served to analytics reads.

``SurveyMetricsDaily`` holds live counters bumped as lifecycle events occur.
The remaining tables are derived and can be rebuilt from responses at any
time; each is keyed by survey and UTC day key (plus field / bucket).
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from surveydesk.db import Base


class SurveyMetricsDaily(Base):
    __tablename__ = "survey_metrics_daily"
    __table_args__ = (UniqueConstraint("survey_id", "date_key", name="uq_survey_metrics_daily_key"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    survey_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("surveys.id"), nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    started: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    idle: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    abandoned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reactivated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class SurveyAnalyticsDaily(Base):
    __tablename__ = "survey_analytics_daily"
    __table_args__ = (UniqueConstraint("survey_id", "date_key", name="uq_survey_analytics_daily_key"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    survey_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("surveys.id"), nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    started: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    idle: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    abandoned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reactivated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_score_percent: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_graded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_correct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_incorrect: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class SurveyFieldAnalyticsDaily(Base):
    __tablename__ = "survey_field_analytics_daily"
    __table_args__ = (
        UniqueConstraint("survey_id", "field_id", "date_key", name="uq_survey_field_analytics_daily_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    survey_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("surveys.id"), nullable=False)
    field_id: Mapped[str] = mapped_column(String(128), nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    reached_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    answered_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dropoff_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


Index(
    "ix_survey_field_analytics_daily_survey_date",
    SurveyFieldAnalyticsDaily.survey_id,
    SurveyFieldAnalyticsDaily.date_key,
)


class SurveyAnswerBucketsDaily(Base):
    __tablename__ = "survey_answer_buckets_daily"
    __table_args__ = (
        UniqueConstraint(
            "survey_id", "field_id", "date_key", "bucket_key", name="uq_survey_answer_buckets_daily_key"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    survey_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("surveys.id"), nullable=False)
    field_id: Mapped[str] = mapped_column(String(128), nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    bucket_key: Mapped[str] = mapped_column(String(200), nullable=False)
    bucket_label: Mapped[str] = mapped_column(String(200), nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


Index(
    "ix_survey_answer_buckets_daily_survey_date",
    SurveyAnswerBucketsDaily.survey_id,
    SurveyAnswerBucketsDaily.date_key,
)


class SurveyTextInsightsDaily(Base):
    __tablename__ = "survey_text_insights_daily"
    __table_args__ = (
        UniqueConstraint("survey_id", "field_id", "date_key", name="uq_survey_text_insights_daily_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    survey_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("surveys.id"), nullable=False)
    field_id: Mapped[str] = mapped_column(String(128), nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    top_phrases: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    sampled_snippets: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


Index(
    "ix_survey_text_insights_daily_survey_date",
    SurveyTextInsightsDaily.survey_id,
    SurveyTextInsightsDaily.date_key,
)
