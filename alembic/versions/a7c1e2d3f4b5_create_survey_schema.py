"""Create survey, session, analytics rollup, outbox and audit tables.

Revision ID: a7c1e2d3f4b5
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a7c1e2d3f4b5"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

user_role = sa.Enum("admin", "member", name="userrole")
survey_status = sa.Enum("draft", "published", "archived", name="surveystatus")
invite_status = sa.Enum("active", "revoked", "exhausted", "expired", name="invitestatus")
session_status = sa.Enum("in_progress", "idle", "abandoned", "completed", name="sessionstatus")
actor_type = sa.Enum("admin", "system", "respondent", name="auditactortype")


def _id_column() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _survey_fk(index: bool = False) -> sa.Column:
    return sa.Column(
        "survey_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("surveys.id"), nullable=False, index=index
    )


def _counter(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "app_users",
        _id_column(),
        sa.Column("subject", sa.String(255), nullable=False, unique=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", user_role, nullable=False),
        _timestamp("last_login_at"),
        _timestamp("created_at"),
    )
    op.create_index("ix_app_users_subject", "app_users", ["subject"])
    op.create_index("ix_app_users_email", "app_users", ["email"])

    op.create_table(
        "surveys",
        _id_column(),
        sa.Column("slug", sa.String(160), nullable=False, unique=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", survey_status, nullable=False),
        sa.Column("current_version_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "created_by_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("app_users.id"), nullable=False
        ),
        sa.Column(
            "updated_by_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("app_users.id"), nullable=False
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_surveys_updated_at", "surveys", ["updated_at"])
    op.create_index("ix_surveys_status_updated", "surveys", ["status", "updated_at"])

    op.create_table(
        "survey_versions",
        _id_column(),
        _survey_fk(index=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("fields", sa.JSON(), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column(
            "created_by_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("app_users.id"), nullable=False
        ),
        _timestamp("created_at"),
        _timestamp("published_at"),
        sa.UniqueConstraint("survey_id", "version", name="uq_survey_versions_survey_version"),
    )

    op.create_table(
        "survey_invites",
        _id_column(),
        _survey_fk(index=True),
        sa.Column(
            "survey_version_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("survey_versions.id"), nullable=False
        ),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("status", invite_status, nullable=False),
        sa.Column("max_completions", sa.Integer(), nullable=False, server_default="1"),
        _counter("completion_count"),
        _timestamp("expires_at"),
        sa.Column(
            "created_by_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("app_users.id"), nullable=False
        ),
        _timestamp("created_at"),
        _timestamp("revoked_at"),
    )
    op.create_index("ix_survey_invites_status_expires", "survey_invites", ["status", "expires_at"])

    op.create_table(
        "survey_sessions",
        _id_column(),
        sa.Column("public_id", sa.String(64), nullable=False, unique=True),
        _survey_fk(),
        sa.Column(
            "survey_version_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("survey_versions.id"), nullable=False
        ),
        sa.Column(
            "invite_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("survey_invites.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("respondent_key", sa.String(256), nullable=False),
        sa.Column("status", session_status, nullable=False),
        _timestamp("started_at"),
        _timestamp("last_activity_at"),
        _timestamp("completed_at"),
        sa.Column("answers_draft", sa.JSON(), nullable=False),
    )
    op.create_index(
        "ix_survey_sessions_status_last_activity", "survey_sessions", ["status", "last_activity_at"]
    )
    op.create_index("ix_survey_sessions_survey_status", "survey_sessions", ["survey_id", "status"])

    op.create_table(
        "survey_responses",
        _id_column(),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("survey_sessions.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("session_public_id", sa.String(64), nullable=False),
        _survey_fk(),
        sa.Column(
            "survey_version_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("survey_versions.id"), nullable=False
        ),
        sa.Column("invite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("survey_invites.id"), nullable=False),
        _timestamp("submitted_at", nullable=False),
        sa.Column("answers", sa.JSON(), nullable=False),
        sa.Column("duration_ms", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("grading", sa.JSON(), nullable=True),
    )
    op.create_index(
        "ix_survey_responses_survey_submitted", "survey_responses", ["survey_id", "submitted_at"]
    )

    op.create_table(
        "session_transitions",
        _id_column(),
        sa.Column(
            "session_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("survey_sessions.id"), nullable=False
        ),
        _survey_fk(),
        sa.Column("from_status", session_status, nullable=True),
        sa.Column("to_status", session_status, nullable=False),
        sa.Column("reason", sa.String(64), nullable=False),
        _timestamp("at"),
    )
    op.create_index("ix_session_transitions_session_at", "session_transitions", ["session_id", "at"])
    op.create_index("ix_session_transitions_survey_at", "session_transitions", ["survey_id", "at"])

    op.create_table(
        "survey_metrics_daily",
        _id_column(),
        _survey_fk(),
        sa.Column("date_key", sa.String(10), nullable=False),
        _counter("started"),
        _counter("completed"),
        _counter("idle"),
        _counter("abandoned"),
        _counter("reactivated"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("survey_id", "date_key", name="uq_survey_metrics_daily_key"),
    )

    op.create_table(
        "survey_analytics_daily",
        _id_column(),
        _survey_fk(),
        sa.Column("date_key", sa.String(10), nullable=False),
        _counter("started"),
        _counter("completed"),
        _counter("idle"),
        _counter("abandoned"),
        _counter("reactivated"),
        sa.Column("avg_score_percent", sa.Float(), nullable=False, server_default="0"),
        _counter("total_graded"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("survey_id", "date_key", name="uq_survey_analytics_daily_key"),
    )

    op.create_table(
        "survey_field_analytics_daily",
        _id_column(),
        _survey_fk(),
        sa.Column("field_id", sa.String(128), nullable=False),
        sa.Column("date_key", sa.String(10), nullable=False),
        _counter("reached_count"),
        _counter("answered_count"),
        _counter("dropoff_count"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("survey_id", "field_id", "date_key", name="uq_survey_field_analytics_daily_key"),
    )
    op.create_index(
        "ix_survey_field_analytics_daily_survey_date", "survey_field_analytics_daily", ["survey_id", "date_key"]
    )

    op.create_table(
        "survey_answer_buckets_daily",
        _id_column(),
        _survey_fk(),
        sa.Column("field_id", sa.String(128), nullable=False),
        sa.Column("date_key", sa.String(10), nullable=False),
        sa.Column("bucket_key", sa.String(200), nullable=False),
        sa.Column("bucket_label", sa.String(200), nullable=False),
        _counter("count"),
        _timestamp("updated_at"),
        sa.UniqueConstraint(
            "survey_id", "field_id", "date_key", "bucket_key", name="uq_survey_answer_buckets_daily_key"
        ),
    )
    op.create_index(
        "ix_survey_answer_buckets_daily_survey_date", "survey_answer_buckets_daily", ["survey_id", "date_key"]
    )

    op.create_table(
        "survey_text_insights_daily",
        _id_column(),
        _survey_fk(),
        sa.Column("field_id", sa.String(128), nullable=False),
        sa.Column("date_key", sa.String(10), nullable=False),
        sa.Column("top_phrases", sa.JSON(), nullable=False),
        sa.Column("sampled_snippets", sa.JSON(), nullable=False),
        _timestamp("updated_at"),
        sa.UniqueConstraint("survey_id", "field_id", "date_key", name="uq_survey_text_insights_daily_key"),
    )
    op.create_index(
        "ix_survey_text_insights_daily_survey_date", "survey_text_insights_daily", ["survey_id", "date_key"]
    )

    op.create_table(
        "analytics_outbox",
        _id_column(),
        sa.Column("event_name", sa.String(120), nullable=False),
        sa.Column("distinct_id", sa.String(255), nullable=False),
        sa.Column("properties", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        _counter("attempt_count"),
        _timestamp("next_attempt_at", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("sent_at"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_analytics_outbox_created_at", "analytics_outbox", ["created_at"])
    op.create_index(
        "ix_analytics_outbox_status_next_attempt", "analytics_outbox", ["status", "next_attempt_at"]
    )

    op.create_table(
        "audit_logs",
        _id_column(),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(80), nullable=False),
        sa.Column("actor_type", actor_type, nullable=False),
        sa.Column("actor_id", sa.String(256), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    for table in (
        "audit_logs",
        "analytics_outbox",
        "survey_text_insights_daily",
        "survey_answer_buckets_daily",
        "survey_field_analytics_daily",
        "survey_analytics_daily",
        "survey_metrics_daily",
        "session_transitions",
        "survey_responses",
        "survey_sessions",
        "survey_invites",
        "survey_versions",
        "surveys",
        "app_users",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum in (actor_type, session_status, invite_status, survey_status, user_role):
        enum.drop(bind, checkfirst=True)
