import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, BigInteger, DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from surveydesk.db import Base


class SessionStatus(enum.Enum):
    in_progress = "in_progress"
    idle = "idle"
    abandoned = "abandoned"
    completed = "completed"


class SurveySession(Base):
    """A respondent's pass through one invite.

    ``public_id`` is the only identifier handed to respondents.
    """

    __tablename__ = "survey_sessions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    public_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    survey_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("surveys.id"), nullable=False)
    survey_version_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("survey_versions.id"), nullable=False
    )
    invite_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("survey_invites.id"), nullable=False, index=True
    )
    respondent_key: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus), default=SessionStatus.in_progress, nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    answers_draft: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


Index("ix_survey_sessions_status_last_activity", SurveySession.status, SurveySession.last_activity_at)
Index("ix_survey_sessions_survey_status", SurveySession.survey_id, SurveySession.status)


class SurveyResponse(Base):
    """Frozen submission. Written once per session and never updated."""

    __tablename__ = "survey_responses"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("survey_sessions.id"), nullable=False, unique=True
    )
    session_public_id: Mapped[str] = mapped_column(String(64), nullable=False)
    survey_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("surveys.id"), nullable=False)
    survey_version_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("survey_versions.id"), nullable=False
    )
    invite_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("survey_invites.id"), nullable=False
    )
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    answers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    duration_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    grading: Mapped[dict | None] = mapped_column(JSON)


Index("ix_survey_responses_survey_submitted", SurveyResponse.survey_id, SurveyResponse.submitted_at)


class SessionTransition(Base):
    """Append-only log of session status changes."""

    __tablename__ = "session_transitions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("survey_sessions.id"), nullable=False
    )
    survey_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("surveys.id"), nullable=False)
    from_status: Mapped[SessionStatus | None] = mapped_column(Enum(SessionStatus))
    to_status: Mapped[SessionStatus] = mapped_column(Enum(SessionStatus), nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


Index("ix_session_transitions_session_at", SessionTransition.session_id, SessionTransition.at)
Index("ix_session_transitions_survey_at", SessionTransition.survey_id, SessionTransition.at)
