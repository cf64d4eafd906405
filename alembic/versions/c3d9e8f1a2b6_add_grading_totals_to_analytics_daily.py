"""add_grading_totals_to_analytics_daily

Revision ID: c3d9e8f1a2b6
Revises: a7c1e2d3f4b5
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa


revision = "c3d9e8f1a2b6"
down_revision = "a7c1e2d3f4b5"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "survey_analytics_daily",
        sa.Column("total_correct", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.add_column(
        "survey_analytics_daily",
        sa.Column("total_incorrect", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )


def downgrade() -> None:
    op.drop_column("survey_analytics_daily", "total_incorrect")
    op.drop_column("survey_analytics_daily", "total_correct")
